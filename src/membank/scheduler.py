from __future__ import annotations

import asyncio
import contextlib
from typing import TYPE_CHECKING

from membank.logging import get_logger

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

logger = get_logger("scheduler")


class CleanupScheduler:
    """Runs an async check on a fixed interval in a background task.

    ``sleep`` defaults to :func:`asyncio.sleep`; tests substitute a
    controllable coroutine to advance the schedule without wall-clock
    delays. A failing check is logged and the loop keeps going.
    """

    def __init__(
        self,
        check: Callable[[], Awaitable[object]],
        interval_seconds: float = 3600.0,
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._check = check
        self._interval = interval_seconds
        self._sleep = sleep
        self._task: asyncio.Task[None] | None = None

    @property
    def interval_seconds(self) -> float:
        return self._interval

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Spawn the background loop. Must be called from a running event loop."""
        if self.running:
            logger.warning("Cleanup scheduler already running")
            return
        self._task = asyncio.get_running_loop().create_task(self._loop())
        logger.info("Cleanup scheduler started (every %ss)", self._interval)

    async def stop(self) -> None:
        if self._task is None:
            return
        if not self._task.done():
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
        self._task = None
        logger.info("Cleanup scheduler stopped")

    async def tick(self) -> None:
        """Run one check now, outside the schedule."""
        try:
            await self._check()
        except Exception:
            logger.exception("Scheduled cleanup check failed")

    async def _loop(self) -> None:
        while True:
            await self._sleep(self._interval)
            await self.tick()
