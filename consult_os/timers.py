"""Cancellable periodic timers for the asyncio event loop."""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


class PeriodicTask:
    """Runs *callback* every *interval* seconds until stopped.

    ``stop()`` wakes the sleeping loop immediately. A tick that is already
    executing is allowed to finish before ``stop()`` returns, so no write
    issued by the callback can land after its owner has been torn down.
    """

    def __init__(
        self,
        name: str,
        interval: float,
        callback: Callable[[], Awaitable[None]],
    ):
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.name = name
        self.interval = interval
        self._callback = callback
        self._task: Optional[asyncio.Task] = None
        self._stop_event: Optional[asyncio.Event] = None
        self.ticks = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._run(self._stop_event), name=self.name)

    async def _run(self, stop_event: asyncio.Event) -> None:
        while True:
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self.interval)
                return
            except asyncio.TimeoutError:
                pass
            self.ticks += 1
            try:
                await self._callback()
            except Exception:
                logger.exception(f"Periodic task {self.name} tick failed")
            if stop_event.is_set():
                return

    async def stop(self) -> None:
        """Stop the loop, waiting for an in-flight tick to complete."""
        task, self._task = self._task, None
        if task is None:
            return
        if self._stop_event is not None:
            self._stop_event.set()
        if task is asyncio.current_task():
            # Stopped from inside its own tick; the loop exits after it returns.
            return
        try:
            await task
        except asyncio.CancelledError:
            if not task.cancelled():
                raise
