"""Cancellable recurring task on the asyncio event loop."""

import asyncio
import logging
from contextlib import suppress
from typing import Any, Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


class PeriodicTask:
    """Run an async callback every ``interval`` seconds until stopped.

    A failing callback is logged and the schedule continues.
    """

    def __init__(
        self,
        callback: Callable[[], Awaitable[Any]],
        interval: float,
        name: str = "periodic-task",
        run_immediately: bool = False,
    ):
        if interval <= 0:
            raise ValueError("interval must be positive")
        self._callback = callback
        self.interval = interval
        self.name = name
        self.run_immediately = run_immediately
        self._task: Optional[asyncio.Task] = None
        self.runs = 0

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Schedule the loop on the running event loop. No-op if already running."""
        if self.is_running:
            return
        self._task = asyncio.get_running_loop().create_task(self._loop(), name=self.name)
        logger.debug(f"Started {self.name} (every {self.interval}s)")

    async def stop(self) -> None:
        """Cancel the loop and wait for it to finish."""
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        with suppress(asyncio.CancelledError):
            await task
        logger.debug(f"Stopped {self.name}")

    async def _loop(self) -> None:
        if self.run_immediately:
            await self._tick()
        while True:
            await asyncio.sleep(self.interval)
            await self._tick()

    async def _tick(self) -> None:
        self.runs += 1
        try:
            await self._callback()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"{self.name} failed: {e}", exc_info=True)
