"""Typed topic broker for out-of-band notifications.

The notification channel (a websocket in the clinic UI) delivers small JSON
messages. They carry identifiers only and are treated as cache-invalidation
hints: subscribers react by refetching from the API.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Union

logger = logging.getLogger(__name__)

QUEUE_TOPIC = "queue"


def encounter_topic(encounter_id: str) -> str:
    return f"encounter:{encounter_id}"


@dataclass(frozen=True)
class SummaryReady:
    """An AI summarization job finished (successfully or not)."""

    encounter_id: str


@dataclass(frozen=True)
class QueueChanged:
    """The waiting queue changed server-side."""

    reason: str = "queue_update"
    patient_id: Optional[str] = None


Notification = Union[SummaryReady, QueueChanged]
Handler = Callable[[Notification], Awaitable[None]]


class Subscription:
    """Handle returned by ``NotificationBroker.subscribe``."""

    def __init__(self, broker: "NotificationBroker", topic: str, handler: Handler):
        self.topic = topic
        self.handler = handler
        self._broker = broker
        self.active = True

    def cancel(self) -> None:
        if self.active:
            self.active = False
            self._broker._remove(self)


class NotificationBroker:
    """In-process pub/sub keyed by topic."""

    def __init__(self) -> None:
        self._subscriptions: dict[str, list[Subscription]] = {}

    def subscribe(self, topic: str, handler: Handler) -> Subscription:
        sub = Subscription(self, topic, handler)
        self._subscriptions.setdefault(topic, []).append(sub)
        return sub

    def _remove(self, sub: Subscription) -> None:
        subs = self._subscriptions.get(sub.topic, [])
        if sub in subs:
            subs.remove(sub)
        if not subs:
            self._subscriptions.pop(sub.topic, None)

    def subscriber_count(self, topic: str) -> int:
        return len(self._subscriptions.get(topic, []))

    async def publish(self, topic: str, notification: Notification) -> int:
        """Deliver *notification* to every live subscriber of *topic*.

        Returns the number of handlers invoked. A failing handler is logged and
        does not prevent delivery to the others.
        """
        delivered = 0
        for sub in list(self._subscriptions.get(topic, [])):
            if not sub.active:
                continue
            delivered += 1
            try:
                await sub.handler(notification)
            except Exception as e:
                logger.warning(f"Notification handler on {topic} failed: {e}")
        return delivered

    async def dispatch(self, message: dict[str, Any]) -> bool:
        """Route a raw channel message to its topic.

        Unknown message types are ignored and ``False`` is returned.
        """
        kind = message.get("type")
        data = message.get("data") or {}

        if kind == "ai_summary_ready":
            encounter_id = data.get("consultation_id") or message.get("consultation_id")
            if not encounter_id:
                logger.warning("ai_summary_ready notification without consultation_id")
                return False
            await self.publish(encounter_topic(str(encounter_id)), SummaryReady(str(encounter_id)))
            return True

        if kind in ("queue_update", "patient_called"):
            await self.publish(QUEUE_TOPIC, QueueChanged(reason=kind, patient_id=data.get("patient_id")))
            return True

        logger.debug(f"Ignoring notification of type {kind!r}")
        return False
