"""
Audit session controller.

Owns one intake's lifecycle: the initial status fetch, the
status-specific entry action, the push channel while waiting, the
unlock countdown, the report challenge, and payment. All state lives in
an immutable ``ControllerState`` produced by the pure reducer; this
class only performs I/O and reconciles long-running effects (channel
subscription, countdown) against the latest state after every event.

Effect rules:
- the push channel is open exactly while the phase is
  ``WAITING_FOR_PREVIEW``; a channel that ended on its own is not reopened
- the countdown restarts whenever ``(unlock_at, is_unlocked)`` changes
  and stops on failure or disposal
- a push-triggered preview fetch runs at most once at a time
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Dict, List, Mapping, Optional, Set

from pattern_audit.app.access.gate import ReportAccessGate
from pattern_audit.app.assembly.pipeline import assemble_memo_data
from pattern_audit.app.client.api import AuditApiClient
from pattern_audit.app.config import Settings, get_settings
from pattern_audit.app.credentials.store import Clock, utc_now
from pattern_audit.app.errors import (
    AuditSessionError,
    AuthRequiredError,
    FetchFailure,
    PaymentError,
    TransientAbort,
)
from pattern_audit.app.events.channel import PushUpdateChannel
from pattern_audit.app.events.models import PushSignalType
from pattern_audit.app.lifecycle.countdown import UnlockCountdown
from pattern_audit.app.lifecycle.state import (
    ChallengeCompleted,
    ChallengeRequired,
    ChannelStatusChanged,
    ControllerEvent,
    ControllerPhase,
    ControllerState,
    CountdownTicked,
    Disposed,
    FetchAborted,
    FetchFailed,
    FetchStarted,
    FullContentReceived,
    PaymentFailed,
    PaymentSettled,
    PaymentStarted,
    PreviewReceived,
    Reloaded,
    SessionReceived,
    TierSelected,
    initial_state,
    is_regression,
    reduce,
)
from pattern_audit.app.payments.checkout import CheckoutWidget
from pattern_audit.app.payments.orchestrator import AsyncAction, PaymentOrchestrator
from pattern_audit.app.schemas.payment import PaymentOutcome, PaymentTier, TierOffer, tier_catalog
from pattern_audit.app.schemas.session import AuditSession, AuditStatus, FullArtifact

logger = logging.getLogger("pattern_audit.controller")

Listener = Callable[[ControllerState], None]
Assembler = Callable[..., Any]

SESSION_FAILURE_MESSAGE = "Failed to load audit session. Please refresh the page."
PREVIEW_FAILURE_MESSAGE = "Failed to load preview. Please refresh the page."
FULL_CONTENT_FAILURE_MESSAGE = (
    "Payment confirmed but artifact not available. Please contact support."
)


class AuditSessionController:
    def __init__(
        self,
        intake_id: str,
        *,
        api: AuditApiClient,
        gate: ReportAccessGate,
        channel: PushUpdateChannel,
        checkout: CheckoutWidget,
        settings: Optional[Settings] = None,
        clock: Clock = utc_now,
        assemble: Assembler = assemble_memo_data,
        reload_page: Optional[AsyncAction] = None,
    ) -> None:
        self.intake_id = intake_id
        self._api = api
        self._gate = gate
        self._channel = channel
        self._settings = settings or get_settings()
        self._clock = clock
        self._assemble = assemble
        self._reload_page = reload_page or self.reload

        self._state = initial_state(intake_id)
        self._listeners: List[Listener] = []
        self._token: Optional[str] = None
        self._mounted = False

        self._channel_task: Optional[asyncio.Task[None]] = None
        self._countdown: Optional[UnlockCountdown] = None
        self._preview_fetch_in_flight = False
        self._session_fetch_in_flight = False
        self._tasks: Set[asyncio.Task[None]] = set()

        self._catalog: Dict[PaymentTier, TierOffer] = tier_catalog(self._settings)
        self._payments = PaymentOrchestrator(
            api,
            checkout,
            catalog=self._catalog,
            product=self._settings.payment_product,
            currency=self._settings.payment_currency,
            on_already_paid=self._unlock_already_paid,
            on_verified=self._after_payment_verified,
        )

    # ------------------------------------------------------------------
    # Observation
    # ------------------------------------------------------------------

    @property
    def state(self) -> ControllerState:
        return self._state

    @property
    def offers(self) -> Mapping[PaymentTier, TierOffer]:
        return self._catalog

    @property
    def channel_open(self) -> bool:
        return self._channel_task is not None and not self._channel_task.done()

    @property
    def countdown_running(self) -> bool:
        return self._countdown is not None and self._countdown.running

    @property
    def challenge_bypassed(self) -> bool:
        return self._gate.is_bypassed(self.intake_id)

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a state listener; returns a callable that removes it."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def mount(self) -> None:
        if self._mounted:
            raise RuntimeError(f"controller for {self.intake_id} already mounted")
        self._mounted = True
        await self.fetch_data()

    def unmount(self) -> None:
        """
        Tear down synchronously: cancel channel and countdown, drop all
        later results. In-flight fetches may still finish.
        """
        if self._state.disposed:
            return
        logger.info("unmount: intake_id=%s", self.intake_id)
        self._dispatch(Disposed())

    async def aclose(self) -> None:
        """Unmount, then wait for every background task to settle."""
        self.unmount()
        pending = list(self._tasks)
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    async def reload(self) -> None:
        """Discard local state and run the fetch path from scratch."""
        if self._state.disposed:
            return
        logger.info("reload: intake_id=%s", self.intake_id)
        self._dispatch(Reloaded())
        await self.fetch_data()

    # ------------------------------------------------------------------
    # Fetch path
    # ------------------------------------------------------------------

    async def fetch_data(self, token: Optional[str] = None) -> None:
        if self._state.disposed:
            return
        if token:
            self._token = token
        if self._session_fetch_in_flight:
            logger.debug("session fetch already in flight: intake_id=%s", self.intake_id)
            return
        self._session_fetch_in_flight = True
        try:
            await self._fetch_session()
        finally:
            self._session_fetch_in_flight = False

    async def _fetch_session(self) -> None:
        auth_token = self._gate.resolve(self.intake_id, self._token)

        self._dispatch(FetchStarted())
        failure_message = SESSION_FAILURE_MESSAGE
        try:
            async with self._gate.privileged(self.intake_id):
                snapshot = await self._api.get_session(self.intake_id, auth_token)

                if snapshot.full_artifact is not None:
                    self._apply_embedded_full_content(
                        snapshot.session,
                        snapshot.full_artifact,
                        snapshot.embedded_report,
                    )
                    return

                previous = self._state.session
                self._dispatch(SessionReceived(session=snapshot.session))
                if self._state.disposed:
                    return
                if is_regression(previous, snapshot.session):
                    self._dispatch(FetchAborted())
                    return

                status = snapshot.session.status
                if status.is_paid:
                    failure_message = FULL_CONTENT_FAILURE_MESSAGE
                    await self._load_full_content(auth_token)
                elif status is AuditStatus.PREVIEW_READY:
                    failure_message = PREVIEW_FAILURE_MESSAGE
                    preview = await self._api.get_preview_artifact(self.intake_id, auth_token)
                    self._dispatch(PreviewReceived(artifact=preview))
                else:
                    logger.info(
                        "waiting for preview: intake_id=%s status=%s",
                        self.intake_id,
                        status.value,
                    )
        except (AuthRequiredError, TransientAbort, FetchFailure) as exc:
            self._handle_fetch_error(exc, failure_message)

    async def complete_challenge(self, token: str, *, remember_device: bool = True) -> None:
        """Store the challenge result and resume the interrupted fetch."""
        self._gate.complete_challenge(
            self.intake_id, token, remember_device=remember_device
        )
        self._token = token
        self._dispatch(ChallengeCompleted())
        await self.fetch_data(token)

    def _apply_embedded_full_content(
        self,
        session: AuditSession,
        full: FullArtifact,
        embedded_report: Optional[Dict[str, Any]],
    ) -> None:
        report: Dict[str, Any] = dict(embedded_report or {})
        memo = self._assemble(report, full, self.intake_id)
        logger.info("session embeds full artifact: intake_id=%s", self.intake_id)
        self._dispatch(
            FullContentReceived(
                full_artifact=full,
                report=report,
                memo=memo,
                session=session.promoted_to(AuditStatus.PAID),
            )
        )

    async def _load_full_content(
        self, token: Optional[str], *, session: Optional[AuditSession] = None
    ) -> None:
        report = await self._api.get_report(self.intake_id, token)
        full = await self._api.get_full_artifact(self.intake_id, token)
        memo = self._assemble(report, full, self.intake_id)
        self._dispatch(
            FullContentReceived(full_artifact=full, report=report, memo=memo, session=session)
        )

    def _handle_fetch_error(self, exc: AuditSessionError, failure_message: str) -> None:
        if isinstance(exc, AuthRequiredError):
            logger.info("report challenge required: intake_id=%s", self.intake_id)
            self._dispatch(ChallengeRequired())
        elif isinstance(exc, TransientAbort):
            logger.debug("fetch aborted: intake_id=%s", self.intake_id)
            self._dispatch(FetchAborted())
        else:
            logger.error("fetch failed: intake_id=%s error=%s", self.intake_id, exc)
            self._dispatch(FetchFailed(message=failure_message))

    # ------------------------------------------------------------------
    # Push channel
    # ------------------------------------------------------------------

    async def _consume_channel(self) -> None:
        logger.info("push channel open: intake_id=%s", self.intake_id)
        try:
            async for signal in self._channel.subscribe(self.intake_id):
                if signal.is_connection:
                    self._dispatch(ChannelStatusChanged(connected=True))
                elif signal.signal_type is PushSignalType.PREVIEW_READY:
                    self._on_preview_ready()
        finally:
            logger.info("push channel closed: intake_id=%s", self.intake_id)
            self._dispatch(ChannelStatusChanged(connected=False))

    def _on_preview_ready(self) -> None:
        if self._preview_fetch_in_flight:
            logger.debug("preview fetch already in flight: intake_id=%s", self.intake_id)
            return
        if self._state.phase is not ControllerPhase.WAITING_FOR_PREVIEW:
            return
        self._preview_fetch_in_flight = True
        self._spawn(self._fetch_preview_after_signal())

    async def _fetch_preview_after_signal(self) -> None:
        try:
            token = self._gate.resolve(self.intake_id, self._token)
            async with self._gate.privileged(self.intake_id):
                preview = await self._api.get_preview_artifact(self.intake_id, token)
            self._dispatch(PreviewReceived(artifact=preview))
        except (AuthRequiredError, TransientAbort, FetchFailure) as exc:
            self._handle_fetch_error(exc, PREVIEW_FAILURE_MESSAGE)
        finally:
            self._preview_fetch_in_flight = False

    # ------------------------------------------------------------------
    # Payment
    # ------------------------------------------------------------------

    def select_tier(self, tier: PaymentTier) -> None:
        self._dispatch(TierSelected(tier=tier))

    async def pay(self, tier: Optional[PaymentTier] = None) -> PaymentOutcome:
        if self._state.disposed:
            return PaymentOutcome.FAILED
        if tier is not None:
            self.select_tier(tier)

        session = self._state.session
        if session is not None and session.status.is_paid:
            if self._state.phase is not ControllerPhase.FULL_CONTENT:
                await self._unlock_already_paid()
            return PaymentOutcome.ALREADY_PAID

        if self._payments.in_flight:
            return PaymentOutcome.IN_PROGRESS

        self._dispatch(PaymentStarted())
        try:
            outcome = await self._payments.initiate(self.intake_id, self._state.selected_tier)
        except PaymentError as exc:
            logger.warning("payment failed: intake_id=%s error=%s", self.intake_id, exc)
            self._dispatch(PaymentFailed(message=str(exc)))
            return PaymentOutcome.FAILED

        self._dispatch(PaymentSettled())
        return outcome

    async def _unlock_already_paid(self) -> None:
        token = self._gate.resolve(self.intake_id, self._token)
        session = self._state.session
        promoted = session.promoted_to(AuditStatus.PAID) if session is not None else None
        try:
            async with self._gate.privileged(self.intake_id):
                await self._load_full_content(token, session=promoted)
        except AuthRequiredError:
            self._dispatch(ChallengeRequired())
        except (FetchFailure, TransientAbort) as exc:
            logger.warning(
                "unlock after already-paid failed, reloading: intake_id=%s error=%s",
                self.intake_id,
                exc,
            )
            await self._reload_page()

    async def _after_payment_verified(self) -> None:
        await self._reload_page()

    # ------------------------------------------------------------------
    # State & effects
    # ------------------------------------------------------------------

    def _dispatch(self, event: ControllerEvent) -> None:
        previous = self._state
        if isinstance(event, SessionReceived) and not previous.disposed:
            if is_regression(previous.session, event.session):
                logger.warning(
                    "ignoring status regression: intake_id=%s current=%s received=%s",
                    self.intake_id,
                    previous.status.value if previous.status else None,
                    event.session.status.value,
                )

        updated = reduce(previous, event)
        if updated == previous:
            return
        self._state = updated
        self._sync_effects()

        for listener in list(self._listeners):
            try:
                listener(self._state)
            except Exception:
                # A broken listener must never break the lifecycle.
                logger.exception("state listener failed: intake_id=%s", self.intake_id)

    def _sync_effects(self) -> None:
        state = self._state

        if state.phase is ControllerPhase.WAITING_FOR_PREVIEW:
            if self._channel_task is None:
                self._channel_task = self._spawn(self._consume_channel())
        elif self._channel_task is not None:
            self._stop_channel()

        session = state.session
        if session is None or state.phase in (ControllerPhase.FAILED, ControllerPhase.DISPOSED):
            self._stop_countdown()
            return

        key = (session.unlock_at, session.is_unlocked)
        if self._countdown is None or self._countdown.key != key:
            self._stop_countdown()
            countdown = UnlockCountdown(
                unlock_at=session.unlock_at,
                is_unlocked=session.is_unlocked,
                on_tick=self._on_countdown_tick,
                clock=self._clock,
                interval=self._settings.countdown_interval_seconds,
            )
            self._countdown = countdown
            countdown.start()
            if countdown.task is not None:
                self._track(countdown.task)

    def _on_countdown_tick(self, remaining: int, ready: bool) -> None:
        self._dispatch(CountdownTicked(remaining_ms=remaining, ready=ready))

    def _stop_channel(self) -> None:
        task, self._channel_task = self._channel_task, None
        if task is not None:
            task.cancel()

    def _stop_countdown(self) -> None:
        countdown, self._countdown = self._countdown, None
        if countdown is not None:
            countdown.cancel()

    def _spawn(self, coro: Any) -> "asyncio.Task[None]":
        return self._track(asyncio.get_running_loop().create_task(coro))

    def _track(self, task: "asyncio.Task[None]") -> "asyncio.Task[None]":
        # Held until done so aclose() can wait on it.
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task
