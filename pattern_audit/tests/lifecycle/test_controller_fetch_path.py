"""
Controller fetch path.

Each test drives one status through the controller against in-memory
doubles and checks:
- which backend reads happened, and how many times
- whether the push channel was opened
- the phase the controller settles in
"""

from datetime import timedelta

import anyio
import pytest

from pattern_audit.app.errors import AuthRequiredError, FetchFailure, TransientAbort
from pattern_audit.app.events.memory_channel import MemoryPushChannel
from pattern_audit.app.events.models import PushSignalType
from pattern_audit.app.lifecycle.state import ControllerPhase
from pattern_audit.app.schemas.session import AuditStatus, SessionSnapshot
from pattern_audit.tests.fakes import (
    FIXED_NOW,
    INTAKE_ID,
    FakeAuditApi,
    make_controller,
    make_full,
    make_gate,
    make_session,
    make_settings,
    wait_for,
)

pytestmark = pytest.mark.anyio


# ----------------------------------------------------------------------
# Direct statuses
# ----------------------------------------------------------------------

async def test_preview_ready_fetches_preview_and_never_subscribes():
    api = FakeAuditApi([make_session(AuditStatus.PREVIEW_READY)])
    channel = MemoryPushChannel()
    controller = make_controller(api, channel=channel)

    await controller.mount()

    assert controller.state.phase is ControllerPhase.PREVIEW
    assert controller.state.preview_artifact is not None
    assert api.calls["session"] == 1
    assert api.calls["preview"] == 1
    assert channel.subscriptions_opened[INTAKE_ID] == 0
    assert not controller.channel_open

    await controller.aclose()


async def test_paid_session_fetches_report_then_full_artifact():
    api = FakeAuditApi([make_session(AuditStatus.FULL_READY)])
    controller = make_controller(api)

    await controller.mount()

    state = controller.state
    assert state.phase is ControllerPhase.FULL_CONTENT
    assert api.calls["report"] == 1
    assert api.calls["full"] == 1
    assert api.calls["preview"] == 0
    assert state.memo is not None
    assert state.memo.intake_id == INTAKE_ID
    assert state.memo.mitigation_timeline == ["week 1", "week 2"]

    await controller.aclose()


async def test_embedded_full_artifact_short_circuits_without_second_round_trip():
    snapshot = SessionSnapshot(
        session=make_session(AuditStatus.PREVIEW_READY).session,
        full_artifact=make_full(),
        embedded_report={"preview_data": {"intake_id": INTAKE_ID}},
    )
    api = FakeAuditApi([snapshot])
    controller = make_controller(api)

    await controller.mount()

    assert controller.state.phase is ControllerPhase.FULL_CONTENT
    assert controller.state.status is AuditStatus.PAID
    assert api.calls == {"session": 1}

    await controller.aclose()


# ----------------------------------------------------------------------
# Waiting + push channel
# ----------------------------------------------------------------------

async def test_duplicate_signals_trigger_exactly_one_preview_fetch():
    api = FakeAuditApi([make_session(AuditStatus.PROCESSING)])
    api.preview_gate = anyio.Event()
    channel = MemoryPushChannel()
    controller = make_controller(api, channel=channel)

    await controller.mount()
    assert controller.state.phase is ControllerPhase.WAITING_FOR_PREVIEW
    await wait_for(lambda: channel.open_subscriptions(INTAKE_ID) == 1)

    await channel.publish(INTAKE_ID, PushSignalType.CONNECTED)
    await channel.publish(INTAKE_ID)
    await channel.publish(INTAKE_ID)
    await wait_for(lambda: api.calls["preview"] >= 1)
    await anyio.sleep(0.01)

    api.preview_gate.set()
    await wait_for(lambda: controller.state.phase is ControllerPhase.PREVIEW)
    await wait_for(lambda: channel.open_subscriptions(INTAKE_ID) == 0)

    assert api.calls["preview"] == 1
    assert channel.subscriptions_opened[INTAKE_ID] == 1
    assert controller.state.status is AuditStatus.PREVIEW_READY
    assert not controller.state.channel_connected

    await controller.aclose()


async def test_failure_after_signal_is_terminal_and_does_not_resubscribe():
    api = FakeAuditApi(
        [make_session(AuditStatus.IN_REVIEW)],
        preview=FetchFailure("boom", status_code=500),
    )
    channel = MemoryPushChannel()
    controller = make_controller(api, channel=channel)

    await controller.mount()
    await wait_for(lambda: channel.open_subscriptions(INTAKE_ID) == 1)
    await channel.publish(INTAKE_ID)

    await wait_for(lambda: controller.state.phase is ControllerPhase.FAILED)
    await wait_for(lambda: channel.open_subscriptions(INTAKE_ID) == 0)

    assert controller.state.error == "Failed to load preview. Please refresh the page."
    assert channel.subscriptions_opened[INTAKE_ID] == 1
    assert not controller.countdown_running

    await controller.aclose()


# ----------------------------------------------------------------------
# Auth
# ----------------------------------------------------------------------

async def test_auth_required_prompts_challenge_and_resumes_with_fresh_token():
    api = FakeAuditApi(
        [AuthRequiredError("401"), make_session(AuditStatus.PREVIEW_READY)]
    )
    controller = make_controller(api)

    await controller.mount()
    assert controller.state.phase is ControllerPhase.AWAITING_CHALLENGE

    await controller.complete_challenge("fresh-token", remember_device=False)

    assert controller.state.phase is ControllerPhase.PREVIEW
    assert api.tokens_seen[0] is None
    assert api.tokens_seen[1] == "fresh-token"

    await controller.aclose()


async def test_challenge_during_pending_fetch_does_not_start_a_second_one():
    api = FakeAuditApi([make_session(AuditStatus.PREVIEW_READY)])
    api.session_gate = anyio.Event()
    controller = make_controller(api)

    async with anyio.create_task_group() as tg:
        tg.start_soon(controller.mount)
        await wait_for(lambda: api.calls["session"] == 1)

        await controller.complete_challenge("fresh-token", remember_device=False)
        await controller.fetch_data()
        api.session_gate.set()

    assert api.calls["session"] == 1
    assert api.calls["preview"] == 1
    assert controller.state.phase is ControllerPhase.PREVIEW

    # The guard clears once the pending fetch settles.
    await controller.fetch_data()
    assert api.calls["session"] == 2

    await controller.aclose()


async def test_bypassed_intake_never_prompts_challenge():
    api = FakeAuditApi([AuthRequiredError("401")])
    controller = make_controller(
        api, intake_id="demo-1", gate=make_gate(bypass=["demo-1"])
    )

    await controller.mount()

    assert controller.state.phase is ControllerPhase.FAILED
    assert api.tokens_seen == ["mfa_bypass_token"]

    await controller.aclose()


async def test_transient_abort_leaves_state_untouched():
    api = FakeAuditApi([TransientAbort("timeout")])
    controller = make_controller(api)

    await controller.mount()

    state = controller.state
    assert state.phase is ControllerPhase.LOADING
    assert state.error is None
    assert state.loading is False
    assert state.session is None

    await controller.aclose()


# ----------------------------------------------------------------------
# Monotonicity & teardown
# ----------------------------------------------------------------------

async def test_stale_status_from_refetch_is_ignored():
    api = FakeAuditApi(
        [make_session(AuditStatus.PAID), make_session(AuditStatus.PREVIEW_READY)]
    )
    controller = make_controller(api)

    await controller.mount()
    await controller.fetch_data()

    assert controller.state.status is AuditStatus.PAID
    assert controller.state.phase is ControllerPhase.FULL_CONTENT
    assert api.calls["preview"] == 0

    await controller.aclose()


async def test_unmount_cancels_effects_and_discards_late_results():
    unlock_at = FIXED_NOW + timedelta(hours=1)
    api = FakeAuditApi([make_session(AuditStatus.SUBMITTED, unlock_at=unlock_at)])
    api.preview_gate = anyio.Event()
    channel = MemoryPushChannel()
    controller = make_controller(api, channel=channel)

    await controller.mount()
    assert controller.countdown_running
    assert controller.state.time_remaining_ms == 3_600_000
    await wait_for(lambda: channel.open_subscriptions(INTAKE_ID) == 1)

    await channel.publish(INTAKE_ID)
    await wait_for(lambda: api.calls["preview"] == 1)

    controller.unmount()
    assert not controller.channel_open
    assert not controller.countdown_running

    api.preview_gate.set()
    await controller.aclose()

    assert controller.state.phase is ControllerPhase.DISPOSED
    assert controller.state.preview_artifact is None
    assert channel.open_subscriptions(INTAKE_ID) == 0


async def test_finished_background_tasks_are_released():
    unlock_at = FIXED_NOW + timedelta(milliseconds=5)
    now = [FIXED_NOW]
    api = FakeAuditApi(
        [make_session(AuditStatus.PROCESSING, unlock_at=unlock_at)]
    )
    channel = MemoryPushChannel()
    controller = make_controller(
        api,
        channel=channel,
        clock=lambda: now[0],
        settings=make_settings(countdown_interval_seconds=0.001),
    )

    await controller.mount()
    await wait_for(lambda: channel.open_subscriptions(INTAKE_ID) == 1)
    assert controller.countdown_running

    now[0] = unlock_at
    await wait_for(lambda: controller.state.unlock_ready)
    await channel.publish(INTAKE_ID)
    await wait_for(lambda: controller.state.phase is ControllerPhase.PREVIEW)
    await wait_for(lambda: not controller.channel_open)

    # Channel, countdown and preview fetch have all settled.
    await wait_for(lambda: not controller._tasks)

    await controller.aclose()


async def test_listeners_receive_every_transition():
    api = FakeAuditApi([make_session(AuditStatus.PREVIEW_READY)])
    controller = make_controller(api)
    phases = []
    unsubscribe = controller.subscribe(lambda state: phases.append(state.phase))

    await controller.mount()
    unsubscribe()
    await controller.aclose()

    assert phases[-1] is ControllerPhase.PREVIEW
    assert ControllerPhase.DISPOSED not in phases
