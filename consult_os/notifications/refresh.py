"""Single refresh entry point for polled and pushed invalidations."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from consult_os.notifications.broker import Notification, NotificationBroker, Subscription
from consult_os.timers import PeriodicTask

logger = logging.getLogger(__name__)

SOURCE_POLL = "poll"
SOURCE_PUSH = "push"
SOURCE_MANUAL = "manual"


class RefreshTrigger:
    """Refetch-wins reconciliation shared by timers and push notifications.

    Whatever the source, a trigger calls the same ``refetch`` coroutine,
    which must discard the cached view and re-read it from the server.
    Refetches are serialized so an older response can never overwrite a
    newer one. Background sources (poll, push) log failures; manual
    refreshes propagate them to the caller.
    """

    def __init__(
        self,
        name: str,
        refetch: Callable[[str], Awaitable[None]],
        *,
        broker: Optional[NotificationBroker] = None,
        topic: Optional[str] = None,
        poll_interval: Optional[float] = None,
    ):
        self.name = name
        self._refetch = refetch
        self._broker = broker
        self._topic = topic
        self._poller = (
            PeriodicTask(f"{name}-poll", poll_interval, self._on_poll) if poll_interval else None
        )
        self._subscription: Optional[Subscription] = None
        self._lock = asyncio.Lock()
        self.last_source: Optional[str] = None
        self.fire_count = 0

    @property
    def running(self) -> bool:
        polling = self._poller is not None and self._poller.running
        return polling or (self._subscription is not None and self._subscription.active)

    def start(self) -> None:
        if self._broker is not None and self._topic and self._subscription is None:
            self._subscription = self._broker.subscribe(self._topic, self._on_push)
        if self._poller is not None:
            self._poller.start()

    async def stop(self) -> None:
        if self._subscription is not None:
            self._subscription.cancel()
            self._subscription = None
        if self._poller is not None:
            await self._poller.stop()

    async def fire(self, source: str = SOURCE_MANUAL) -> None:
        async with self._lock:
            self.fire_count += 1
            self.last_source = source
            await self._refetch(source)

    async def _fire_quietly(self, source: str) -> None:
        try:
            await self.fire(source)
        except Exception as e:
            logger.warning(f"{self.name} refresh from {source} failed: {e}")

    async def _on_poll(self) -> None:
        await self._fire_quietly(SOURCE_POLL)

    async def _on_push(self, notification: Notification) -> None:
        logger.debug(f"{self.name} invalidated by {notification!r}")
        await self._fire_quietly(SOURCE_PUSH)
