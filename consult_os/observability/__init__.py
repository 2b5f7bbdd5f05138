"""Observability module for session engine telemetry."""

from consult_os.observability.events import (
    EventType,
    ObservabilityEvent,
    OperationEvent,
    QueueEvent,
    RecordingEvent,
    SessionEvent,
    SummaryEvent,
)
from consult_os.observability.logger import ObservabilityLogger

__all__ = [
    "EventType",
    "ObservabilityEvent",
    "ObservabilityLogger",
    "OperationEvent",
    "QueueEvent",
    "RecordingEvent",
    "SessionEvent",
    "SummaryEvent",
]
