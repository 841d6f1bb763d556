from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict

from pydantic import BaseModel, ConfigDict, Field


class PushSignalType(str, Enum):
    """
    Server-sent signals the lifecycle reacts to.

    Progress events the backend also streams (opportunities, mistakes,
    intelligence matches) carry no lifecycle meaning and are dropped at
    the channel boundary.
    """

    # ---------------------------------------------------------------------
    # Connection
    # ---------------------------------------------------------------------
    CONNECTED = "connected"
    RECONNECTED = "reconnected"

    # ---------------------------------------------------------------------
    # Lifecycle
    # ---------------------------------------------------------------------
    PREVIEW_READY = "preview_ready"
    MEMO_GENERATING = "memo_generating"
    MEMO_READY = "memo_ready"


class PushSignal(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    intake_id: str
    signal_type: PushSignalType
    received_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    data: Dict[str, Any] = Field(default_factory=dict)

    @property
    def is_connection(self) -> bool:
        return self.signal_type in (PushSignalType.CONNECTED, PushSignalType.RECONNECTED)
