from __future__ import annotations

from enum import Enum
from typing import Dict, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from pattern_audit.app.config import Settings


class PaymentTier(str, Enum):
    SINGLE = "single"
    ANNUAL = "annual"


class TierOffer(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    tier: PaymentTier
    name: str
    amount: int = Field(..., gt=0)
    description: str
    features: Tuple[str, ...] = ()


def tier_catalog(settings: Settings) -> Dict[PaymentTier, TierOffer]:
    """Offers for both tiers, priced from configuration."""
    return {
        PaymentTier.SINGLE: TierOffer(
            tier=PaymentTier.SINGLE,
            name="Single Audit",
            amount=settings.single_tier_price,
            description="One comprehensive decision audit",
            features=(
                "Full Pattern Audit for this decision",
                "Complete sequencing corrections",
                "All failure mode analysis",
                "Pattern intelligence matches",
                "PDF export",
            ),
        ),
        PaymentTier.ANNUAL: TierOffer(
            tier=PaymentTier.ANNUAL,
            name="Annual Architect",
            amount=settings.annual_tier_price,
            description="Unlimited audits for one year",
            features=(
                "Unlimited Pattern Audits",
                "Priority processing",
                "Direct analyst access",
                "Quarterly portfolio review",
                "Custom jurisdiction analysis",
            ),
        ),
    }


class PaymentOrder(BaseModel):
    """
    A created order, and after checkout, the vendor receipt.

    ``payment_id`` and ``signature`` are only set once the checkout
    widget reports completion.
    """

    model_config = ConfigDict(frozen=True)

    tier: PaymentTier
    amount: int
    currency: str
    order_id: str
    vendor_key: str
    description: str = ""
    payment_id: Optional[str] = None
    signature: Optional[str] = None

    def with_receipt(self, outcome: "CheckoutOutcome") -> "PaymentOrder":
        return self.model_copy(
            update={
                "payment_id": outcome.payment_id,
                "signature": outcome.signature,
            }
        )


class OrderResult(BaseModel):
    """Answer to an order request: either already paid or a fresh order."""

    model_config = ConfigDict(frozen=True)

    already_paid: bool = False
    order: Optional[PaymentOrder] = None


class CheckoutStatus(str, Enum):
    COMPLETED = "completed"
    DISMISSED = "dismissed"


class CheckoutOutcome(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: CheckoutStatus
    payment_id: Optional[str] = None
    order_id: Optional[str] = None
    signature: Optional[str] = None

    @classmethod
    def completed(
        cls, *, payment_id: str, order_id: str, signature: str
    ) -> "CheckoutOutcome":
        return cls(
            status=CheckoutStatus.COMPLETED,
            payment_id=payment_id,
            order_id=order_id,
            signature=signature,
        )

    @classmethod
    def dismissed(cls) -> "CheckoutOutcome":
        return cls(status=CheckoutStatus.DISMISSED)


class PaymentOutcome(str, Enum):
    IN_PROGRESS = "in_progress"
    ALREADY_PAID = "already_paid"
    DISMISSED = "dismissed"
    VERIFIED = "verified"
    FAILED = "failed"
