"""Background TTL sweep shared by the session and conversation stores."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable

logger = logging.getLogger(__name__)


class PeriodicSweeper:
    """
    Runs a sweep callback every `interval` seconds on the running event loop.

    Errors raised by the callback are logged and the loop keeps going; they
    never reach request paths.
    """

    def __init__(self, name: str, sweep: Callable[[], int], interval: float):
        if interval <= 0:
            raise ValueError("Sweep interval must be positive")
        self.name = name
        self.interval = interval
        self._sweep = sweep
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start the sweep loop. Must be called with a running event loop."""
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run(), name=f"{self.name}-sweeper")

    async def stop(self) -> None:
        """Cancel the sweep loop and wait for it to exit."""
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                removed = self._sweep()
            except Exception:
                logger.exception(f"{self.name} sweep failed")
                continue
            if removed:
                logger.info(f"{self.name} sweep evicted {removed} expired entries")


__all__ = ["PeriodicSweeper"]
