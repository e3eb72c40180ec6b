"""Periodic market monitoring loop."""

import asyncio
import contextlib
from typing import Awaitable, Callable, Optional
from loguru import logger

from defi_arb.core.clock import SystemClock


class MonitoringLoop:
    """Runs ``tick`` every ``interval`` seconds until stopped.

    A failing tick is logged and counted; the loop keeps going. ``start`` and
    ``stop`` are idempotent.
    """

    def __init__(self, tick: Callable[[], Awaitable[None]], interval: float, clock=None):
        self.tick = tick
        self.interval = interval
        self.clock = clock or SystemClock()
        self.ticks = 0
        self.errors = 0
        self.last_error: Optional[str] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self) -> bool:
        """Run a single tick; returns whether it succeeded."""
        try:
            await self.tick()
            self.ticks += 1
            return True
        except Exception as e:
            self.errors += 1
            self.last_error = str(e)
            logger.error(f"Monitoring tick failed: {e}")
            return False

    async def _run(self):
        logger.info(f"Monitoring loop started (interval {self.interval}s)")
        while True:
            await self.run_once()
            await self.clock.sleep(self.interval)

    def start(self) -> bool:
        """Start the loop on the running event loop; no-op if already running."""
        if self.running:
            return False
        self._task = asyncio.get_running_loop().create_task(self._run())
        return True

    async def stop(self) -> bool:
        """Stop the loop; no-op if it is not running."""
        if not self.running:
            self._task = None
            return False
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
        logger.info(f"Monitoring loop stopped after {self.ticks} ticks ({self.errors} errors)")
        return True
