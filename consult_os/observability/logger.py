"""Observability logger for structured session telemetry."""

import json
import logging
import time
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Optional

from consult_os.observability.events import (
    EventType,
    ObservabilityEvent,
    OperationEvent,
    QueueEvent,
    RecordingEvent,
    SessionEvent,
    SummaryEvent,
)

logger = logging.getLogger(__name__)


class ObservabilityLogger:
    """Central logger for queue, session, recording and summary events.

    Writes structured events to JSON Lines files for later analysis and
    forwards them to registered callbacks for real-time monitoring.
    """

    def __init__(
        self,
        log_dir: Optional[Path] = None,
        enabled: bool = True,
        max_message_length: int = 200,
    ):
        """Initialize observability logger.

        Args:
            log_dir: Directory for log files (default: data/logs)
            enabled: Whether file logging is enabled
            max_message_length: Max length for stored error messages
        """
        self.enabled = enabled
        self.max_message_length = max_message_length

        if log_dir is None:
            log_dir = Path("data/logs")
        self.log_dir = log_dir
        if self.enabled:
            self.log_dir.mkdir(parents=True, exist_ok=True)

        self._log_files: dict[str, Path] = {
            "queue": self.log_dir / "queue.jsonl",
            "session": self.log_dir / "sessions.jsonl",
            "recording": self.log_dir / "recordings.jsonl",
            "summary": self.log_dir / "summaries.jsonl",
            "operation": self.log_dir / "operations.jsonl",
        }

        self._callbacks: list[Callable[[ObservabilityEvent], None]] = []

    def generate_request_id(self) -> str:
        """Generate a unique request ID."""
        return str(uuid.uuid4())[:8]

    def add_callback(self, callback: Callable[[ObservabilityEvent], None]) -> None:
        """Add callback for real-time event monitoring."""
        self._callbacks.append(callback)

    def _write_event(self, event: ObservabilityEvent, log_type: str) -> None:
        """Write event to the matching log file and notify callbacks."""
        for callback in self._callbacks:
            try:
                callback(event)
            except Exception as e:
                logger.warning(f"Observability callback failed: {e}")

        if not self.enabled:
            return

        try:
            log_file = self._log_files.get(log_type)
            if log_file:
                with open(log_file, "a") as f:
                    f.write(event.model_dump_json() + "\n")
        except OSError as e:
            logger.warning(f"Failed to write observability event: {e}")

    def _clip(self, message: str) -> str:
        return message[: self.max_message_length]

    # Timed operations

    @contextmanager
    def operation(
        self,
        name: str,
        encounter_id: Optional[str] = None,
        request_id: Optional[str] = None,
        **metadata: Any,
    ):
        """Context manager timing a REST operation.

        Usage:
            with obs.operation("save_vitals", encounter_id=enc.id) as event:
                await client.update_vitals(...)
                event.metadata["created"] = False
        """
        start_time = time.time()
        event = OperationEvent(
            event_type=EventType.OPERATION_SUCCESS,
            operation=name,
            encounter_id=encounter_id,
            request_id=request_id or self.generate_request_id(),
            metadata=dict(metadata),
        )

        try:
            yield event
        except Exception as e:
            event.event_type = EventType.OPERATION_ERROR
            event.error_type = type(e).__name__
            event.error_message = self._clip(str(e))
            raise
        finally:
            event.duration_ms = (time.time() - start_time) * 1000
            self._write_event(event, "operation")

    # Queue

    def log_queue_refresh(self, source: str, active_count: int) -> None:
        self._write_event(
            QueueEvent(event_type=EventType.QUEUE_REFRESH, source=source, active_count=active_count),
            "queue",
        )

    def log_queue_transition(
        self,
        entry_id: str,
        from_status: str,
        to_status: str,
        encounter_id: Optional[str] = None,
    ) -> None:
        self._write_event(
            QueueEvent(
                event_type=EventType.QUEUE_TRANSITION,
                entry_id=entry_id,
                from_status=from_status,
                to_status=to_status,
                encounter_id=encounter_id,
            ),
            "queue",
        )

    # Sessions

    def log_session(
        self,
        event_type: EventType,
        encounter_id: str,
        patient_id: Optional[str] = None,
        resource: Optional[str] = None,
        created: bool = False,
        error: Optional[BaseException] = None,
        **metadata: Any,
    ) -> None:
        event = SessionEvent(
            event_type=event_type,
            encounter_id=encounter_id,
            patient_id=patient_id,
            resource=resource,
            created=created,
            metadata=dict(metadata),
        )
        if error is not None:
            event.error_type = type(error).__name__
            event.error_message = self._clip(str(error))
        self._write_event(event, "session")

    # Recordings

    def log_recording_transition(
        self,
        encounter_id: str,
        from_state: str,
        to_state: str,
        recording_id: Optional[str] = None,
        duration_seconds: Optional[float] = None,
        error_message: Optional[str] = None,
        event_type: EventType = EventType.RECORDING_TRANSITION,
    ) -> None:
        self._write_event(
            RecordingEvent(
                event_type=event_type,
                encounter_id=encounter_id,
                recording_id=recording_id,
                from_state=from_state,
                to_state=to_state,
                duration_seconds=duration_seconds,
                error_message=self._clip(error_message) if error_message else None,
            ),
            "recording",
        )

    # Summaries

    def log_summary(
        self,
        event_type: EventType,
        encounter_id: str,
        summary_id: Optional[str] = None,
        summary_count: Optional[int] = None,
        pending_count: Optional[int] = None,
    ) -> None:
        self._write_event(
            SummaryEvent(
                event_type=event_type,
                encounter_id=encounter_id,
                summary_id=summary_id,
                summary_count=summary_count,
                pending_count=pending_count,
            ),
            "summary",
        )

    # Utility methods

    def get_recent_events(
        self,
        log_type: str,
        limit: int = 100,
    ) -> list[dict[str, Any]]:
        """Read recent events from a log file."""
        log_file = self._log_files.get(log_type)
        if not log_file or not log_file.exists():
            return []

        events = []
        with open(log_file) as f:
            for line in f:
                try:
                    events.append(json.loads(line))
                except json.JSONDecodeError:
                    continue

        return events[-limit:]

    def get_stats(self, log_type: str) -> dict[str, Any]:
        """Get basic statistics for a log type."""
        events = self.get_recent_events(log_type, limit=1000)
        if not events:
            return {"total": 0}

        total = len(events)
        errors = sum(1 for e in events if "error" in e.get("event_type", ""))
        durations = [e["duration_ms"] for e in events if e.get("duration_ms") is not None]

        return {
            "total": total,
            "errors": errors,
            "error_rate": errors / total,
            "avg_duration_ms": sum(durations) / len(durations) if durations else 0.0,
        }
