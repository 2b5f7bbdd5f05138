"""Waiting-queue models."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import AliasChoices, BaseModel, Field

from consult_os.models.lifecycle import TransitionTable


class QueueStatus(str, Enum):
    """Queue entry lifecycle statuses."""

    WAITING = "waiting"
    CALLED = "called"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


QUEUE_TRANSITIONS: TransitionTable[QueueStatus] = TransitionTable(
    "queue_entry",
    {
        QueueStatus.WAITING: {QueueStatus.CALLED, QueueStatus.CANCELLED},
        QueueStatus.CALLED: {QueueStatus.IN_PROGRESS},
        QueueStatus.IN_PROGRESS: {QueueStatus.COMPLETED, QueueStatus.WAITING},
    },
)


class QueueEntry(BaseModel):
    """A patient's position and status in the day's waiting list."""

    id: str = Field(validation_alias=AliasChoices("id", "queue_id"))
    patient_id: str
    patient_name: Optional[str] = None
    appointment_id: Optional[str] = None
    provider_id: Optional[str] = None
    encounter_id: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("encounter_id", "consultation_id")
    )
    status: QueueStatus = QueueStatus.WAITING
    priority: int = 0
    scheduled_time: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        validation_alias=AliasChoices("scheduled_time", "appointment_time"),
    )
    called_at: Optional[datetime] = None

    @property
    def is_active(self) -> bool:
        return not QUEUE_TRANSITIONS.is_terminal(self.status)

    def transition_to(self, target: QueueStatus) -> None:
        """Move to *target*, rejecting edges outside the queue graph."""
        self.status = QUEUE_TRANSITIONS.check(self.status, target)
        if target == QueueStatus.CALLED:
            self.called_at = datetime.now(timezone.utc)

    def sort_key(self) -> tuple:
        """Priority descending, then scheduled time ascending."""
        return (-self.priority, self.scheduled_time)


class EnqueueRequest(BaseModel):
    """Check-in of a patient into the waiting list."""

    patient_id: str
    appointment_id: Optional[str] = None
    priority: int = Field(default=0, ge=0)
