from __future__ import annotations

from typing import AsyncIterator, Protocol

from pattern_audit.app.events.models import PushSignal


class PushUpdateChannel(Protocol):
    """
    Server-push notification channel.

    Contract:
    - one call to ``subscribe`` opens exactly one subscription
    - the iterator ends when the server closes the stream for good
    - closing the iterator (or cancelling its consumer) releases it
    """

    def subscribe(self, intake_id: str) -> AsyncIterator[PushSignal]:
        ...
