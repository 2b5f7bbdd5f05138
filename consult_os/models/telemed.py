"""Telemedicine session model."""

from datetime import datetime

from pydantic import BaseModel


class TelemedicineSession(BaseModel):
    id: str
    encounter_id: str
    scheduled_start: datetime
    scheduled_end: datetime
    link: str

    @property
    def duration_minutes(self) -> int:
        return int((self.scheduled_end - self.scheduled_start).total_seconds() // 60)
