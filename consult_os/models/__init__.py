"""Data model for queue entries, encounters, recordings and summaries."""

from consult_os.models.encounter import (
    Attachment,
    ClinicalNotes,
    Encounter,
    EncounterCreate,
    VitalSigns,
)
from consult_os.models.lifecycle import TransitionTable
from consult_os.models.queue import QUEUE_TRANSITIONS, EnqueueRequest, QueueEntry, QueueStatus
from consult_os.models.recording import (
    RECORDING_TRANSITIONS,
    SUMMARY_TRANSITIONS,
    AISummary,
    Recording,
    RecordingState,
    SuggestedExam,
    SummaryDiagnosis,
    SummaryPayload,
    SummaryStatus,
    UploadTarget,
)
from consult_os.models.telemed import TelemedicineSession

__all__ = [
    "AISummary",
    "Attachment",
    "ClinicalNotes",
    "Encounter",
    "EncounterCreate",
    "EnqueueRequest",
    "QUEUE_TRANSITIONS",
    "QueueEntry",
    "QueueStatus",
    "RECORDING_TRANSITIONS",
    "Recording",
    "RecordingState",
    "SUMMARY_TRANSITIONS",
    "SuggestedExam",
    "SummaryDiagnosis",
    "SummaryPayload",
    "SummaryStatus",
    "TelemedicineSession",
    "TransitionTable",
    "UploadTarget",
    "VitalSigns",
]
