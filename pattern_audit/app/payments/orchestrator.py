"""
Payment orchestration.

Execution flow:
    1. Create an order for the selected tier.
    2. If the backend reports the intake already paid, skip checkout and
       unlock the full content directly. No second order is created.
    3. Otherwise await the checkout widget.
    4. Dismissal ends the attempt quietly; the action is re-enabled.
    5. A completed checkout is posted for signature verification.
    6. Verified -> force a full reload. Rejected -> raise
       ``PaymentVerificationFailure`` for the caller to surface inline.

Only one attempt can be in flight at a time.
"""

from __future__ import annotations

import logging
from typing import Awaitable, Callable, Dict

from pattern_audit.app.client.api import AuditApiClient
from pattern_audit.app.errors import PaymentInitiationFailure, PaymentVerificationFailure
from pattern_audit.app.payments.checkout import CheckoutWidget
from pattern_audit.app.schemas.payment import (
    CheckoutStatus,
    PaymentOutcome,
    PaymentTier,
    TierOffer,
)

logger = logging.getLogger("pattern_audit.payments")

AsyncAction = Callable[[], Awaitable[None]]

VERIFICATION_FAILED_MESSAGE = (
    "Payment verification failed. Please contact support if amount was deducted."
)


class PaymentOrchestrator:
    def __init__(
        self,
        api: AuditApiClient,
        checkout: CheckoutWidget,
        *,
        catalog: Dict[PaymentTier, TierOffer],
        product: str,
        currency: str,
        on_already_paid: AsyncAction,
        on_verified: AsyncAction,
    ) -> None:
        self._api = api
        self._checkout = checkout
        self._catalog = catalog
        self._product = product
        self._currency = currency
        self._on_already_paid = on_already_paid
        self._on_verified = on_verified
        self._in_flight = False

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    def offer(self, tier: PaymentTier) -> TierOffer:
        return self._catalog[tier]

    async def initiate(self, intake_id: str, tier: PaymentTier) -> PaymentOutcome:
        if self._in_flight:
            logger.info("payment already in flight: intake_id=%s", intake_id)
            return PaymentOutcome.IN_PROGRESS

        self._in_flight = True
        try:
            return await self._run(intake_id, tier)
        finally:
            self._in_flight = False

    async def _run(self, intake_id: str, tier: PaymentTier) -> PaymentOutcome:
        offer = self.offer(tier)
        result = await self._api.initiate_payment(
            intake_id,
            tier=tier,
            amount=offer.amount,
            currency=self._currency,
            description=f"SFO Pattern Audit - {offer.name}",
        )

        if result.already_paid:
            logger.info("intake already paid, unlocking: intake_id=%s", intake_id)
            await self._on_already_paid()
            return PaymentOutcome.ALREADY_PAID

        order = result.order
        if order is None:
            raise PaymentInitiationFailure("Order response contained no order")

        outcome = await self._checkout(order)
        if outcome.status is CheckoutStatus.DISMISSED:
            logger.info("checkout dismissed: intake_id=%s order_id=%s", intake_id, order.order_id)
            return PaymentOutcome.DISMISSED

        receipt = order.with_receipt(outcome)
        verified = await self._api.verify_payment(
            intake_id, product=self._product, order=receipt
        )
        if not verified:
            logger.warning(
                "payment verification failed: intake_id=%s order_id=%s",
                intake_id,
                order.order_id,
            )
            raise PaymentVerificationFailure(VERIFICATION_FAILED_MESSAGE)

        logger.info("payment verified: intake_id=%s order_id=%s", intake_id, order.order_id)
        await self._on_verified()
        return PaymentOutcome.VERIFIED
