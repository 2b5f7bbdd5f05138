"""Push notification broker and refresh triggers."""

from consult_os.notifications.broker import (
    QUEUE_TOPIC,
    NotificationBroker,
    QueueChanged,
    Subscription,
    SummaryReady,
    encounter_topic,
)
from consult_os.notifications.refresh import (
    SOURCE_MANUAL,
    SOURCE_POLL,
    SOURCE_PUSH,
    RefreshTrigger,
)

__all__ = [
    "NotificationBroker",
    "QUEUE_TOPIC",
    "QueueChanged",
    "RefreshTrigger",
    "SOURCE_MANUAL",
    "SOURCE_POLL",
    "SOURCE_PUSH",
    "Subscription",
    "SummaryReady",
    "encounter_topic",
]
