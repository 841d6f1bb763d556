from __future__ import annotations

import asyncio
from typing import Optional, Protocol

from pattern_audit.app.schemas.payment import CheckoutOutcome, PaymentOrder


class CheckoutWidget(Protocol):
    """Hands an order to the vendor checkout and resolves with its outcome."""

    async def __call__(self, order: PaymentOrder) -> CheckoutOutcome:
        ...


class DeferredCheckout:
    """
    Adapter for callback-driven checkout widgets.

    The orchestrator awaits the call; the widget's success and dismiss
    callbacks resolve it through ``complete`` / ``dismiss``. Only one
    checkout can be pending at a time.
    """

    def __init__(self) -> None:
        self._pending: Optional[asyncio.Future[CheckoutOutcome]] = None
        self.current_order: Optional[PaymentOrder] = None

    @property
    def pending(self) -> bool:
        return self._pending is not None and not self._pending.done()

    async def __call__(self, order: PaymentOrder) -> CheckoutOutcome:
        if self.pending:
            raise RuntimeError("A checkout is already pending")
        future: asyncio.Future[CheckoutOutcome] = asyncio.get_running_loop().create_future()
        self._pending = future
        self.current_order = order
        try:
            return await future
        finally:
            self._pending = None
            self.current_order = None

    def complete(self, *, payment_id: str, order_id: str, signature: str) -> None:
        self._resolve(
            CheckoutOutcome.completed(
                payment_id=payment_id, order_id=order_id, signature=signature
            )
        )

    def dismiss(self) -> None:
        self._resolve(CheckoutOutcome.dismissed())

    def _resolve(self, outcome: CheckoutOutcome) -> None:
        if self._pending is None or self._pending.done():
            raise RuntimeError("No checkout is pending")
        self._pending.set_result(outcome)
