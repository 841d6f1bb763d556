from __future__ import annotations

import asyncio
from collections import Counter, defaultdict
from typing import AsyncIterator, Dict, List, Optional

from pattern_audit.app.events.models import PushSignal, PushSignalType


class MemoryPushChannel:
    """
    In-process push channel.

    Properties:
    - every open subscription for an intake receives every published signal
    - ordering is preserved per subscription
    - ``close`` ends all subscriptions for an intake cleanly
    """

    def __init__(self) -> None:
        self._queues: Dict[str, List[asyncio.Queue[Optional[PushSignal]]]] = defaultdict(list)
        self.subscriptions_opened: Counter[str] = Counter()

    def open_subscriptions(self, intake_id: str) -> int:
        return len(self._queues.get(intake_id, ()))

    async def publish(
        self,
        intake_id: str,
        signal_type: PushSignalType = PushSignalType.PREVIEW_READY,
    ) -> int:
        """Deliver a signal; returns the number of subscriptions reached."""
        signal = PushSignal(intake_id=intake_id, signal_type=signal_type)
        queues = list(self._queues.get(intake_id, ()))
        for queue in queues:
            await queue.put(signal)
        return len(queues)

    async def close(self, intake_id: str) -> None:
        for queue in list(self._queues.get(intake_id, ())):
            await queue.put(None)

    async def subscribe(self, intake_id: str) -> AsyncIterator[PushSignal]:
        queue: asyncio.Queue[Optional[PushSignal]] = asyncio.Queue()
        self._queues[intake_id].append(queue)
        self.subscriptions_opened[intake_id] += 1
        try:
            while True:
                signal = await queue.get()
                if signal is None:
                    break
                yield signal
        finally:
            self._queues[intake_id].remove(queue)
            if not self._queues[intake_id]:
                del self._queues[intake_id]
