"""
Payment flow through the controller.

Invariants under test:
- an already-paid intake skips checkout and unlocks without a second order
- a dismissed checkout re-enables the action with no error
- a rejected verification surfaces inline and leaves the session untouched
- a verified payment forces a full reload
- only one payment attempt runs at a time
"""

import asyncio
from unittest.mock import AsyncMock

import pytest

from pattern_audit.app.errors import PaymentInitiationFailure
from pattern_audit.app.lifecycle.state import ControllerPhase
from pattern_audit.app.payments.checkout import DeferredCheckout
from pattern_audit.app.payments.orchestrator import (
    VERIFICATION_FAILED_MESSAGE,
    PaymentOrchestrator,
)
from pattern_audit.app.schemas.payment import (
    CheckoutOutcome,
    OrderResult,
    PaymentOutcome,
    PaymentTier,
    tier_catalog,
)
from pattern_audit.app.schemas.session import AuditStatus
from pattern_audit.tests.fakes import (
    FakeAuditApi,
    ScriptedCheckout,
    make_controller,
    make_session,
    make_settings,
    wait_for,
)

pytestmark = pytest.mark.anyio

COMPLETED = CheckoutOutcome.completed(payment_id="pay_1", order_id="order_001", signature="sig")


async def _previewing(api, **kwargs):
    controller = make_controller(api, **kwargs)
    await controller.mount()
    assert controller.state.phase is ControllerPhase.PREVIEW
    return controller


# ----------------------------------------------------------------------
# Outcomes
# ----------------------------------------------------------------------

async def test_already_paid_unlocks_without_checkout():
    api = FakeAuditApi(
        [make_session(AuditStatus.PREVIEW_READY)], order=OrderResult(already_paid=True)
    )
    checkout = ScriptedCheckout(COMPLETED)
    controller = await _previewing(api, checkout=checkout)

    outcome = await controller.pay(PaymentTier.ANNUAL)

    assert outcome is PaymentOutcome.ALREADY_PAID
    assert checkout.orders == []
    assert api.calls["create_order"] == 1
    assert api.calls["verify"] == 0
    assert controller.state.phase is ControllerPhase.FULL_CONTENT
    assert controller.state.status is AuditStatus.PAID
    assert controller.state.payment_processing is False
    await controller.aclose()


async def test_dismissed_checkout_re_enables_action():
    api = FakeAuditApi([make_session(AuditStatus.PREVIEW_READY)])
    controller = await _previewing(api, checkout=ScriptedCheckout(CheckoutOutcome.dismissed()))

    outcome = await controller.pay()

    assert outcome is PaymentOutcome.DISMISSED
    assert controller.state.payment_processing is False
    assert controller.state.payment_error is None
    assert api.calls["verify"] == 0
    await controller.aclose()


async def test_rejected_verification_surfaces_inline():
    api = FakeAuditApi([make_session(AuditStatus.PREVIEW_READY)], verified=False)
    reloads = []

    async def _reload():
        reloads.append(True)

    controller = await _previewing(api, checkout=ScriptedCheckout(COMPLETED), reload_page=_reload)

    outcome = await controller.pay()

    assert outcome is PaymentOutcome.FAILED
    assert controller.state.payment_error == VERIFICATION_FAILED_MESSAGE
    assert controller.state.phase is ControllerPhase.PREVIEW
    assert reloads == []
    await controller.aclose()


async def test_order_failure_surfaces_inline():
    api = FakeAuditApi(
        [make_session(AuditStatus.PREVIEW_READY)],
        order=PaymentInitiationFailure("Failed to create payment order"),
    )
    controller = await _previewing(api, checkout=ScriptedCheckout(COMPLETED))

    assert await controller.pay() is PaymentOutcome.FAILED
    assert controller.state.payment_error == "Failed to create payment order"
    await controller.aclose()


async def test_verified_payment_posts_receipt_and_reloads():
    api = FakeAuditApi(
        [make_session(AuditStatus.PREVIEW_READY), make_session(AuditStatus.PAID)]
    )
    checkout = ScriptedCheckout(COMPLETED)
    controller = await _previewing(api, checkout=checkout)

    outcome = await controller.pay(PaymentTier.SINGLE)

    assert outcome is PaymentOutcome.VERIFIED
    assert checkout.orders[0].description == "SFO Pattern Audit - Single Audit"
    assert checkout.orders[0].amount == 5000
    receipt = api.verified_orders[0]
    assert receipt.payment_id == "pay_1"
    assert receipt.signature == "sig"
    # Default reload re-runs the fetch path, which now sees PAID.
    assert api.calls["session"] == 2
    assert controller.state.phase is ControllerPhase.FULL_CONTENT
    assert controller.state.selected_tier is PaymentTier.SINGLE
    await controller.aclose()


async def test_paid_session_never_creates_an_order():
    api = FakeAuditApi([make_session(AuditStatus.PAID)])
    controller = make_controller(api, checkout=ScriptedCheckout(COMPLETED))
    await controller.mount()

    assert await controller.pay() is PaymentOutcome.ALREADY_PAID
    assert api.calls["create_order"] == 0
    await controller.aclose()


# ----------------------------------------------------------------------
# Concurrency
# ----------------------------------------------------------------------

async def test_second_attempt_while_in_flight_is_refused():
    api = FakeAuditApi([make_session(AuditStatus.PREVIEW_READY)])
    checkout = DeferredCheckout()
    reloads = []

    async def _reload():
        reloads.append(True)

    controller = await _previewing(api, checkout=checkout, reload_page=_reload)

    first = asyncio.get_running_loop().create_task(controller.pay())
    await wait_for(lambda: checkout.pending)
    assert controller.state.payment_processing is True

    assert await controller.pay() is PaymentOutcome.IN_PROGRESS
    assert api.calls["create_order"] == 1

    checkout.complete(payment_id="pay_1", order_id="order_001", signature="sig")
    assert await first is PaymentOutcome.VERIFIED
    assert reloads == [True]
    assert controller.state.payment_processing is False
    await controller.aclose()


async def test_deferred_checkout_rejects_stray_callbacks():
    checkout = DeferredCheckout()

    with pytest.raises(RuntimeError):
        checkout.dismiss()

    assert not checkout.pending
    assert checkout.current_order is None


# ----------------------------------------------------------------------
# Orchestrator in isolation
# ----------------------------------------------------------------------

async def test_orchestrator_already_paid_invokes_unlock_once():
    api = AsyncMock()
    api.initiate_payment.return_value = OrderResult(already_paid=True)
    checkout = AsyncMock()
    on_already_paid = AsyncMock()
    on_verified = AsyncMock()

    orchestrator = PaymentOrchestrator(
        api,
        checkout,
        catalog=tier_catalog(make_settings()),
        product="sfo_pattern_audit",
        currency="USD",
        on_already_paid=on_already_paid,
        on_verified=on_verified,
    )

    outcome = await orchestrator.initiate("fo_audit_x", PaymentTier.ANNUAL)

    assert outcome is PaymentOutcome.ALREADY_PAID
    api.initiate_payment.assert_awaited_once_with(
        "fo_audit_x",
        tier=PaymentTier.ANNUAL,
        amount=25000,
        currency="USD",
        description="SFO Pattern Audit - Annual Architect",
    )
    on_already_paid.assert_awaited_once()
    checkout.assert_not_awaited()
    on_verified.assert_not_awaited()
    assert not orchestrator.in_flight
