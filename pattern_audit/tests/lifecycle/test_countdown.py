"""
Unlock countdown invariants:
- an unlocked session reads 0 and is ready immediately
- no unlock time means no countdown at all
- successive values never increase and never go below zero
- the ready flag flips exactly once, after which ticking stops
"""

from datetime import datetime, timedelta, timezone

import anyio

from pattern_audit.app.lifecycle.countdown import UnlockCountdown, remaining_ms

START = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


class SteppingClock:
    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


# ----------------------------------------------------------------------
# Pure computation
# ----------------------------------------------------------------------

def test_remaining_ms_cases():
    assert remaining_ms(START + timedelta(seconds=5), True, START) == 0
    assert remaining_ms(None, False, START) is None
    assert remaining_ms(START + timedelta(seconds=5), False, START) == 5000
    assert remaining_ms(START - timedelta(seconds=5), False, START) == 0


# ----------------------------------------------------------------------
# Ticking
# ----------------------------------------------------------------------

def test_values_decrease_floor_at_zero_and_ready_flips_once():
    clock = SteppingClock(START)
    ticks = []
    countdown = UnlockCountdown(
        unlock_at=START + timedelta(seconds=3),
        is_unlocked=False,
        on_tick=lambda remaining, ready: ticks.append((remaining, ready)),
        clock=clock,
    )

    for _ in range(6):
        countdown.tick()
        clock.advance(1)

    values = [remaining for remaining, _ in ticks]
    assert values == [3000, 2000, 1000, 0, 0, 0]
    assert all(later <= earlier for earlier, later in zip(values, values[1:]))

    flips = [i for i, (_, ready) in enumerate(ticks) if ready and (i == 0 or not ticks[i - 1][1])]
    assert flips == [3]


def test_unlocked_session_is_ready_without_scheduling():
    ticks = []

    async def _run():
        countdown = UnlockCountdown(
            unlock_at=START + timedelta(days=1),
            is_unlocked=True,
            on_tick=lambda remaining, ready: ticks.append((remaining, ready)),
            clock=lambda: START,
        )
        countdown.start()
        assert countdown.ready
        assert countdown.task is None

    anyio.run(_run)
    assert ticks == [(0, True)]


def test_missing_unlock_time_emits_nothing():
    ticks = []

    async def _run():
        countdown = UnlockCountdown(
            unlock_at=None,
            is_unlocked=False,
            on_tick=lambda remaining, ready: ticks.append((remaining, ready)),
        )
        countdown.start()
        assert not countdown.running

    anyio.run(_run)
    assert ticks == []


def test_running_countdown_stops_after_ready():
    clock = SteppingClock(START)
    ticks = []

    def _on_tick(remaining: int, ready: bool) -> None:
        ticks.append((remaining, ready))
        clock.advance(1)

    async def _run():
        countdown = UnlockCountdown(
            unlock_at=START + timedelta(seconds=2),
            is_unlocked=False,
            on_tick=_on_tick,
            clock=clock,
            interval=0.001,
        )
        countdown.start()
        with anyio.fail_after(2):
            while countdown.running:
                await anyio.sleep(0.001)
        assert countdown.ready

    anyio.run(_run)
    assert ticks == [(2000, False), (1000, False), (0, True)]
