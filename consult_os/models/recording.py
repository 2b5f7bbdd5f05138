"""Recording and AI summary models."""

from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import AliasChoices, BaseModel, Field

from consult_os.models.lifecycle import TransitionTable


class RecordingState(str, Enum):
    IDLE = "idle"
    CONSENT_PENDING = "consent_pending"
    RECORDING = "recording"
    STOPPED = "stopped"
    UPLOADING = "uploading"
    AWAITING_PROCESSING = "awaiting_processing"
    DONE = "done"
    ERROR = "error"


RECORDING_TRANSITIONS: TransitionTable[RecordingState] = TransitionTable(
    "recording",
    {
        RecordingState.IDLE: {RecordingState.CONSENT_PENDING},
        RecordingState.CONSENT_PENDING: {RecordingState.RECORDING, RecordingState.IDLE},
        RecordingState.RECORDING: {RecordingState.STOPPED, RecordingState.ERROR},
        RecordingState.STOPPED: {RecordingState.UPLOADING, RecordingState.ERROR},
        RecordingState.UPLOADING: {RecordingState.AWAITING_PROCESSING, RecordingState.ERROR},
        RecordingState.AWAITING_PROCESSING: {RecordingState.DONE, RecordingState.ERROR},
    },
)

# States in which a new recording may be started.
RESTING_STATES = frozenset({RecordingState.IDLE, RecordingState.DONE, RecordingState.ERROR})


class Recording(BaseModel):
    id: Optional[str] = None
    consent_given: bool = False
    state: RecordingState = RecordingState.IDLE
    duration_seconds: float = 0.0
    error_message: Optional[str] = None

    @property
    def is_resting(self) -> bool:
        return self.state in RESTING_STATES

    def transition_to(self, target: RecordingState) -> None:
        self.state = RECORDING_TRANSITIONS.check(self.state, target)


class UploadTarget(BaseModel):
    """Short-lived upload destination issued by ``/record/start``."""

    recording_id: str
    presigned_upload_url: str
    upload_fields: dict[str, str] = Field(default_factory=dict)


# ── AI summary ───────────────────────────────────────────────────────────────


class SummaryStatus(str, Enum):
    PENDING = "pending"
    DONE = "done"
    ERROR = "error"


SUMMARY_TRANSITIONS: TransitionTable[SummaryStatus] = TransitionTable(
    "ai_summary",
    {SummaryStatus.PENDING: {SummaryStatus.DONE, SummaryStatus.ERROR}},
)


class SummaryDiagnosis(BaseModel):
    description: str
    cid_code: Optional[str] = None
    confidence: Optional[float] = Field(default=None, ge=0.0, le=1.0)


class SuggestedExam(BaseModel):
    name: str
    justification: str = ""
    selected: bool = True


class SummaryPayload(BaseModel):
    """Structured output of the summarization job, possibly clinician-edited."""

    anamnesis: str = Field(default="", validation_alias=AliasChoices("anamnesis", "anamnese"))
    diagnoses: list[SummaryDiagnosis] = Field(default_factory=list)
    suggested_exams: list[SuggestedExam] = Field(default_factory=list)
    treatment_plan: str = ""

    def primary_cid_code(self) -> Optional[str]:
        for dx in self.diagnoses:
            if dx.cid_code:
                return dx.cid_code
        return None

    def diagnosis_text(self) -> str:
        parts = []
        for dx in self.diagnoses:
            parts.append(f"{dx.description} ({dx.cid_code})" if dx.cid_code else dx.description)
        return "; ".join(parts)


class AISummary(BaseModel):
    id: str
    recording_id: Optional[str] = None
    status: SummaryStatus = SummaryStatus.PENDING
    transcript: str = Field(default="", validation_alias=AliasChoices("transcript", "transcript_text"))
    structured_payload: SummaryPayload = Field(
        default_factory=SummaryPayload,
        validation_alias=AliasChoices("structured_payload", "summary_json"),
    )
    accepted: bool = False
    accepted_payload: Optional[SummaryPayload] = None
    rejected: bool = False

    @property
    def is_immutable(self) -> bool:
        return self.accepted
