"""
Session and artifact models for the pattern audit lifecycle.

Sessions are owned by the backend. The client reads them, never
mutates them, and never derives a status from other fields.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class AuditStatus(str, Enum):
    SUBMITTED = "SUBMITTED"
    PROCESSING = "PROCESSING"
    IN_REVIEW = "IN_REVIEW"
    PREVIEW_READY = "PREVIEW_READY"
    PAID = "PAID"
    FULL_READY = "FULL_READY"

    @property
    def rank(self) -> int:
        """
        Position in the forward-only lifecycle.

        Waiting statuses share rank 0, PAID and FULL_READY share rank 2.
        """
        return _STATUS_RANK[self]

    @property
    def is_waiting(self) -> bool:
        return self.rank == 0

    @property
    def is_paid(self) -> bool:
        return self.rank == 2


_STATUS_RANK: Dict[AuditStatus, int] = {
    AuditStatus.SUBMITTED: 0,
    AuditStatus.PROCESSING: 0,
    AuditStatus.IN_REVIEW: 0,
    AuditStatus.PREVIEW_READY: 1,
    AuditStatus.PAID: 2,
    AuditStatus.FULL_READY: 2,
}


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------

class AuditSession(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    id: str = Field(..., min_length=1)
    status: AuditStatus
    submitted_at: Optional[datetime] = None

    # Absent when the backend has not priced the intake yet.
    price: Optional[int] = None

    unlock_at: Optional[datetime] = None
    is_unlocked: bool = False

    def promoted_to(self, status: AuditStatus) -> "AuditSession":
        """Copy with ``status`` applied, unless that would move backwards."""
        if status.rank <= self.status.rank:
            return self
        return self.model_copy(update={"status": status})


class IntelligenceSources(BaseModel):
    model_config = ConfigDict(frozen=True)

    developments_matched: int = 0
    failure_patterns_matched: int = 0
    sequencing_rules_applied: int = 0


class PreviewArtifact(BaseModel):
    """Opaque preview payload. Only the intake id is interpreted."""

    model_config = ConfigDict(frozen=True)

    intake_id: str
    generated_at: Optional[str] = None
    payload: Dict[str, Any] = Field(default_factory=dict)


class FullArtifact(BaseModel):
    model_config = ConfigDict(frozen=True)

    intake_id: str
    generated_at: Optional[str] = None
    intelligence_sources: IntelligenceSources = Field(
        default_factory=IntelligenceSources
    )
    payload: Dict[str, Any] = Field(default_factory=dict)


class SessionSnapshot(BaseModel):
    """
    Result of the status fetch.

    When the backend embeds the full artifact, ``embedded_report`` carries
    the report fields that arrived with it so the paid path needs no
    second round trip.
    """

    model_config = ConfigDict(frozen=True)

    session: AuditSession
    full_artifact: Optional[FullArtifact] = None
    embedded_report: Optional[Dict[str, Any]] = None


# ---------------------------------------------------------------------------
# Access
# ---------------------------------------------------------------------------

class ReportAccessToken(BaseModel):
    model_config = ConfigDict(frozen=True)

    value: str = Field(..., min_length=1)
    expires_at: Optional[datetime] = None
    device_trusted: bool = False
