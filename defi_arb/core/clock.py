"""Clocks used by the monitoring loop."""

import asyncio
import time
from typing import List, Tuple


class SystemClock:
    """Wall clock with real asyncio sleeps."""

    def time(self) -> float:
        return time.time()

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)


class ManualClock:
    """Clock that only moves when told to.

    ``sleep`` parks the caller until ``advance`` moves time past its wake-up
    point, which lets tests step the monitoring loop one interval at a time.
    """

    def __init__(self, start: float = 0.0):
        self._now = start
        self._sleepers: List[Tuple[float, asyncio.Future]] = []

    def time(self) -> float:
        return self._now

    async def sleep(self, seconds: float) -> None:
        if seconds <= 0:
            await asyncio.sleep(0)
            return
        future = asyncio.get_running_loop().create_future()
        self._sleepers.append((self._now + seconds, future))
        await future

    def advance(self, seconds: float) -> None:
        """Move time forward and wake every sleeper that is due."""
        self._now += seconds
        pending = []
        for wake_at, future in self._sleepers:
            if wake_at <= self._now:
                if not future.done():
                    future.set_result(None)
            else:
                pending.append((wake_at, future))
        self._sleepers = pending

    @property
    def sleeper_count(self) -> int:
        """Number of callers currently parked in sleep."""
        return sum(1 for _, future in self._sleepers if not future.done())
