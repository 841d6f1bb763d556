"""
Session state machine: immutable state plus a pure reducer.

``reduce(state, event)`` never performs I/O. Side effects (fetches,
channel subscription, countdown) are driven by the controller from the
state the reducer returns.

Invariants enforced here:
- ``DISPOSED`` is absorbing; results arriving after teardown are dropped
- session status never moves backwards, except after ``Reloaded``
- a received preview implies at least ``PREVIEW_READY``
- received full content implies at least ``PAID``
- ``FAILED`` is terminal until an explicit reload
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional, Union

from pydantic import BaseModel, ConfigDict

from pattern_audit.app.schemas.memo import AssembledMemoData
from pattern_audit.app.schemas.payment import PaymentTier
from pattern_audit.app.schemas.session import (
    AuditSession,
    AuditStatus,
    FullArtifact,
    PreviewArtifact,
)


class ControllerPhase(str, Enum):
    LOADING = "loading"
    AWAITING_CHALLENGE = "awaiting_challenge"
    WAITING_FOR_PREVIEW = "waiting_for_preview"
    PREVIEW = "preview"
    FULL_CONTENT = "full_content"
    FAILED = "failed"
    DISPOSED = "disposed"


class ControllerState(BaseModel):
    model_config = ConfigDict(frozen=True)

    intake_id: str
    phase: ControllerPhase = ControllerPhase.LOADING
    loading: bool = False

    session: Optional[AuditSession] = None
    preview_artifact: Optional[PreviewArtifact] = None
    full_artifact: Optional[FullArtifact] = None
    report: Optional[Dict[str, Any]] = None
    memo: Optional[AssembledMemoData] = None
    error: Optional[str] = None

    selected_tier: PaymentTier = PaymentTier.SINGLE
    payment_processing: bool = False
    payment_error: Optional[str] = None

    time_remaining_ms: Optional[int] = None
    unlock_ready: bool = False
    channel_connected: bool = False

    @property
    def status(self) -> Optional[AuditStatus]:
        return self.session.status if self.session is not None else None

    @property
    def disposed(self) -> bool:
        return self.phase is ControllerPhase.DISPOSED


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------

class _Event(BaseModel):
    model_config = ConfigDict(frozen=True)


class FetchStarted(_Event):
    pass


class SessionReceived(_Event):
    session: AuditSession


class PreviewReceived(_Event):
    artifact: PreviewArtifact


class FullContentReceived(_Event):
    full_artifact: FullArtifact
    report: Dict[str, Any]
    memo: AssembledMemoData
    session: Optional[AuditSession] = None


class ChallengeRequired(_Event):
    pass


class ChallengeCompleted(_Event):
    pass


class FetchAborted(_Event):
    pass


class FetchFailed(_Event):
    message: str


class CountdownTicked(_Event):
    remaining_ms: int
    ready: bool


class ChannelStatusChanged(_Event):
    connected: bool


class TierSelected(_Event):
    tier: PaymentTier


class PaymentStarted(_Event):
    pass


class PaymentSettled(_Event):
    pass


class PaymentFailed(_Event):
    message: str


class Reloaded(_Event):
    pass


class Disposed(_Event):
    pass


ControllerEvent = Union[
    FetchStarted,
    SessionReceived,
    PreviewReceived,
    FullContentReceived,
    ChallengeRequired,
    ChallengeCompleted,
    FetchAborted,
    FetchFailed,
    CountdownTicked,
    ChannelStatusChanged,
    TierSelected,
    PaymentStarted,
    PaymentSettled,
    PaymentFailed,
    Reloaded,
    Disposed,
]


# ---------------------------------------------------------------------------
# Reducer
# ---------------------------------------------------------------------------

def initial_state(intake_id: str) -> ControllerState:
    return ControllerState(intake_id=intake_id)


def is_regression(current: Optional[AuditSession], incoming: AuditSession) -> bool:
    return current is not None and incoming.status.rank < current.status.rank


def _phase_for(session: AuditSession, current: ControllerPhase) -> ControllerPhase:
    if session.status.is_waiting:
        return ControllerPhase.WAITING_FOR_PREVIEW
    # Content for PREVIEW_READY / PAID is still being fetched.
    if current in (ControllerPhase.PREVIEW, ControllerPhase.FULL_CONTENT):
        return current
    return ControllerPhase.LOADING


def reduce(state: ControllerState, event: ControllerEvent) -> ControllerState:
    if state.disposed:
        return state

    if isinstance(event, Disposed):
        return state.model_copy(
            update={"phase": ControllerPhase.DISPOSED, "loading": False}
        )

    if isinstance(event, Reloaded):
        return ControllerState(
            intake_id=state.intake_id,
            selected_tier=state.selected_tier,
            loading=True,
        )

    # Presentation-only events are always accepted.
    if isinstance(event, CountdownTicked):
        return state.model_copy(
            update={
                "time_remaining_ms": event.remaining_ms,
                "unlock_ready": state.unlock_ready or event.ready,
            }
        )
    if isinstance(event, ChannelStatusChanged):
        return state.model_copy(update={"channel_connected": event.connected})
    if isinstance(event, TierSelected):
        return state.model_copy(update={"selected_tier": event.tier})
    if isinstance(event, PaymentStarted):
        return state.model_copy(
            update={"payment_processing": True, "payment_error": None}
        )
    if isinstance(event, PaymentSettled):
        return state.model_copy(update={"payment_processing": False})
    if isinstance(event, PaymentFailed):
        return state.model_copy(
            update={"payment_processing": False, "payment_error": event.message}
        )

    if state.phase is ControllerPhase.FAILED:
        return state

    if isinstance(event, FetchStarted):
        return state.model_copy(update={"loading": True, "error": None})

    if isinstance(event, FetchAborted):
        return state.model_copy(update={"loading": False})

    if isinstance(event, ChallengeRequired):
        return state.model_copy(
            update={"phase": ControllerPhase.AWAITING_CHALLENGE, "loading": False}
        )

    if isinstance(event, ChallengeCompleted):
        if state.phase is not ControllerPhase.AWAITING_CHALLENGE:
            return state
        return state.model_copy(update={"phase": ControllerPhase.LOADING})

    if isinstance(event, FetchFailed):
        return state.model_copy(
            update={
                "phase": ControllerPhase.FAILED,
                "loading": False,
                "error": event.message,
            }
        )

    if isinstance(event, SessionReceived):
        if is_regression(state.session, event.session):
            return state
        return state.model_copy(
            update={
                "session": event.session,
                "phase": _phase_for(event.session, state.phase),
                "loading": not event.session.status.is_waiting,
            }
        )

    if isinstance(event, PreviewReceived):
        if state.phase is ControllerPhase.FULL_CONTENT:
            return state
        session = state.session
        if session is not None:
            session = session.promoted_to(AuditStatus.PREVIEW_READY)
        return state.model_copy(
            update={
                "session": session,
                "preview_artifact": event.artifact,
                "phase": ControllerPhase.PREVIEW,
                "loading": False,
            }
        )

    if isinstance(event, FullContentReceived):
        session = event.session or state.session
        if session is not None and is_regression(state.session, session):
            session = state.session
        if session is not None:
            session = session.promoted_to(AuditStatus.PAID)
        return state.model_copy(
            update={
                "session": session,
                "full_artifact": event.full_artifact,
                "report": event.report,
                "memo": event.memo,
                "phase": ControllerPhase.FULL_CONTENT,
                "loading": False,
            }
        )

    raise TypeError(f"Unhandled controller event: {type(event).__name__}")
