"""
Unlock countdown.

Remaining time is always recomputed from the wall clock and never
accumulated, so a late tick cannot drift the value. It never goes
negative, and the ready flag flips exactly once.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Callable, Optional, Tuple

from pattern_audit.app.credentials.store import Clock, utc_now

logger = logging.getLogger("pattern_audit.countdown")

TickCallback = Callable[[int, bool], None]


def remaining_ms(
    unlock_at: Optional[datetime], is_unlocked: bool, now: datetime
) -> Optional[int]:
    """Milliseconds until unlock; ``0`` once unlocked, ``None`` if unscheduled."""
    if is_unlocked:
        return 0
    if unlock_at is None:
        return None
    delta = (unlock_at - now).total_seconds() * 1000
    return max(0, int(delta))


class UnlockCountdown:
    def __init__(
        self,
        *,
        unlock_at: Optional[datetime],
        is_unlocked: bool,
        on_tick: TickCallback,
        clock: Clock = utc_now,
        interval: float = 1.0,
    ) -> None:
        self._unlock_at = unlock_at
        self._is_unlocked = is_unlocked
        self._on_tick = on_tick
        self._clock = clock
        self._interval = interval
        self._ready = False
        self._task: Optional[asyncio.Task[None]] = None

    @property
    def key(self) -> Tuple[Optional[datetime], bool]:
        return (self._unlock_at, self._is_unlocked)

    @property
    def ready(self) -> bool:
        return self._ready

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def tick(self) -> Optional[int]:
        remaining = remaining_ms(self._unlock_at, self._is_unlocked, self._clock())
        if remaining is None:
            return None
        if remaining == 0 and not self._ready:
            self._ready = True
            logger.info("unlock countdown reached zero")
        self._on_tick(remaining, self._ready)
        return remaining

    def start(self) -> None:
        """
        Emit the first value immediately and keep ticking until ready.

        No-op when there is nothing scheduled. Must be called from a
        running event loop.
        """
        if self.tick() is None or self._ready:
            return
        self._task = asyncio.get_running_loop().create_task(self._run())

    async def _run(self) -> None:
        while not self._ready:
            await asyncio.sleep(self._interval)
            self.tick()

    @property
    def task(self) -> Optional[asyncio.Task[None]]:
        return self._task

    def cancel(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
