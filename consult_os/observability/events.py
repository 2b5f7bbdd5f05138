"""Structured observability events for session engine telemetry."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field


class EventType(str, Enum):
    """Types of observability events."""

    QUEUE_REFRESH = "queue_refresh"
    QUEUE_TRANSITION = "queue_transition"
    SESSION_OPENED = "session_opened"
    SESSION_CLOSED = "session_closed"
    SAVE_SUCCESS = "save_success"
    SAVE_FALLBACK = "save_fallback"
    SAVE_ERROR = "save_error"
    AUTOSAVE_ERROR = "autosave_error"
    RECORDING_TRANSITION = "recording_transition"
    RECORDING_ABANDONED = "recording_abandoned"
    SUMMARY_REFRESH = "summary_refresh"
    SUMMARY_ACCEPTED = "summary_accepted"
    SUMMARY_REJECTED = "summary_rejected"
    OPERATION_SUCCESS = "operation_success"
    OPERATION_ERROR = "operation_error"


class ObservabilityEvent(BaseModel):
    """Base class for all observability events."""

    event_type: EventType
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    encounter_id: Optional[str] = None
    request_id: Optional[str] = None
    duration_ms: Optional[float] = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class QueueEvent(ObservabilityEvent):
    """Queue refreshes and entry transitions."""

    entry_id: Optional[str] = None
    from_status: Optional[str] = None
    to_status: Optional[str] = None
    source: Optional[str] = None  # poll, push, manual
    active_count: Optional[int] = None


class SessionEvent(ObservabilityEvent):
    """Encounter session lifecycle and saves."""

    patient_id: Optional[str] = None
    resource: Optional[str] = None  # vitals, notes, encounter
    created: bool = False

    error_type: Optional[str] = None
    error_message: Optional[str] = None


class RecordingEvent(ObservabilityEvent):
    """Recording pipeline state changes."""

    recording_id: Optional[str] = None
    from_state: Optional[str] = None
    to_state: Optional[str] = None
    duration_seconds: Optional[float] = None
    error_message: Optional[str] = None


class SummaryEvent(ObservabilityEvent):
    """AI summary refreshes and clinician decisions."""

    summary_id: Optional[str] = None
    summary_count: Optional[int] = None
    pending_count: Optional[int] = None


class OperationEvent(ObservabilityEvent):
    """A timed REST operation."""

    operation: str

    error_type: Optional[str] = None
    error_message: Optional[str] = None
