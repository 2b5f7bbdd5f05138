"""Encounter (consultation) aggregate and its value objects."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from pydantic import AliasChoices, BaseModel, Field

from consult_os.models.recording import AISummary, Recording


# ── Value objects ────────────────────────────────────────────────────────────


class VitalSigns(BaseModel):
    blood_pressure: Optional[str] = None
    heart_rate: Optional[int] = None
    temperature: Optional[float] = None
    respiratory_rate: Optional[int] = None
    oxygen_saturation: Optional[int] = None
    weight: Optional[float] = None
    height: Optional[float] = None

    def is_empty(self) -> bool:
        return all(v is None for v in self.model_dump().values())


class ClinicalNotes(BaseModel):
    anamnesis: str = Field(default="", validation_alias=AliasChoices("anamnesis", "anamnese"))
    physical_exam: str = ""
    evolution: str = ""
    diagnosis: str = ""
    treatment_plan: str = ""


# ── Attachments ──────────────────────────────────────────────────────────────


class Attachment(BaseModel):
    id: str
    file_name: str
    mime_type: str = Field(
        default="application/octet-stream",
        validation_alias=AliasChoices("mime_type", "file_type"),
    )
    url: str = Field(default="", validation_alias=AliasChoices("url", "file_url"))
    category: Optional[str] = None
    uploaded_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


# ── Encounter ────────────────────────────────────────────────────────────────


class Encounter(BaseModel):
    """The clinical record for one patient visit."""

    id: str
    patient_id: str
    provider_id: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("provider_id", "doctor_id")
    )
    appointment_id: Optional[str] = None
    vitals: VitalSigns = Field(default_factory=VitalSigns)
    notes: ClinicalNotes = Field(default_factory=ClinicalNotes)
    diagnosis_code: Optional[str] = None
    attachments: list[Attachment] = Field(default_factory=list)
    recording: Optional[Recording] = None
    summary: Optional[AISummary] = None
    is_locked: bool = False
    locked_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    def has_diagnosis(self) -> bool:
        return bool(self.notes.diagnosis.strip() or (self.diagnosis_code or "").strip())

    def lock(self) -> None:
        self.is_locked = True
        self.locked_at = datetime.now(timezone.utc)


class EncounterCreate(BaseModel):
    """Body of the create-encounter call."""

    patient_id: str
    appointment_id: str
    provider_id: str
    chief_complaint: str = "Consultation in progress"
