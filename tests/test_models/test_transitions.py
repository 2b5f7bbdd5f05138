"""Tests for the explicit state machines and model parsing."""

import pytest

from consult_os.errors import InvalidTransitionError
from consult_os.models import (
    QUEUE_TRANSITIONS,
    RECORDING_TRANSITIONS,
    SUMMARY_TRANSITIONS,
    AISummary,
    Encounter,
    QueueEntry,
    QueueStatus,
    Recording,
    RecordingState,
    SummaryPayload,
    SummaryStatus,
    VitalSigns,
)


class TestQueueTransitions:
    """Only the documented queue edges are reachable."""

    @pytest.mark.parametrize(
        "current,target",
        [
            (QueueStatus.WAITING, QueueStatus.CALLED),
            (QueueStatus.WAITING, QueueStatus.CANCELLED),
            (QueueStatus.CALLED, QueueStatus.IN_PROGRESS),
            (QueueStatus.IN_PROGRESS, QueueStatus.COMPLETED),
            (QueueStatus.IN_PROGRESS, QueueStatus.WAITING),
        ],
    )
    def test_allowed_edges(self, current, target):
        assert QUEUE_TRANSITIONS.check(current, target) == target

    def test_every_other_edge_is_rejected(self):
        allowed = {
            (QueueStatus.WAITING, QueueStatus.CALLED),
            (QueueStatus.WAITING, QueueStatus.CANCELLED),
            (QueueStatus.CALLED, QueueStatus.IN_PROGRESS),
            (QueueStatus.IN_PROGRESS, QueueStatus.COMPLETED),
            (QueueStatus.IN_PROGRESS, QueueStatus.WAITING),
        }
        for current in QueueStatus:
            for target in QueueStatus:
                if (current, target) in allowed:
                    continue
                with pytest.raises(InvalidTransitionError):
                    QUEUE_TRANSITIONS.check(current, target)

    def test_terminal_statuses_have_no_outgoing_edges(self):
        assert QUEUE_TRANSITIONS.is_terminal(QueueStatus.COMPLETED)
        assert QUEUE_TRANSITIONS.is_terminal(QueueStatus.CANCELLED)
        assert QUEUE_TRANSITIONS.allowed(QueueStatus.COMPLETED) == frozenset()

    def test_path_walks_intermediate_states(self):
        path = QUEUE_TRANSITIONS.path(QueueStatus.WAITING, QueueStatus.IN_PROGRESS)
        assert path == [QueueStatus.CALLED, QueueStatus.IN_PROGRESS]

    def test_path_to_unreachable_state_raises(self):
        with pytest.raises(InvalidTransitionError):
            QUEUE_TRANSITIONS.path(QueueStatus.COMPLETED, QueueStatus.WAITING)

    def test_entry_transition_sets_called_at(self):
        entry = QueueEntry(id="q1", patient_id="p1")
        entry.transition_to(QueueStatus.CALLED)
        assert entry.status == QueueStatus.CALLED
        assert entry.called_at is not None

    def test_entry_rejects_skipping_call(self):
        entry = QueueEntry(id="q1", patient_id="p1")
        with pytest.raises(InvalidTransitionError):
            entry.transition_to(QueueStatus.COMPLETED)


class TestRecordingTransitions:
    def test_upload_requires_recording_first(self):
        assert not RECORDING_TRANSITIONS.can(RecordingState.IDLE, RecordingState.UPLOADING)
        assert not RECORDING_TRANSITIONS.can(
            RecordingState.CONSENT_PENDING, RecordingState.UPLOADING
        )
        assert RECORDING_TRANSITIONS.path(RecordingState.IDLE, RecordingState.UPLOADING) == [
            RecordingState.CONSENT_PENDING,
            RecordingState.RECORDING,
            RecordingState.STOPPED,
            RecordingState.UPLOADING,
        ]

    def test_recording_requires_consent(self):
        recording = Recording()
        with pytest.raises(InvalidTransitionError):
            recording.transition_to(RecordingState.RECORDING)

    def test_done_and_error_are_terminal(self):
        assert RECORDING_TRANSITIONS.is_terminal(RecordingState.DONE)
        assert RECORDING_TRANSITIONS.is_terminal(RecordingState.ERROR)

    def test_resting_states(self):
        assert Recording(state=RecordingState.IDLE).is_resting
        assert Recording(state=RecordingState.ERROR).is_resting
        assert not Recording(state=RecordingState.UPLOADING).is_resting


class TestSummaryTransitions:
    def test_pending_resolves_once(self):
        assert SUMMARY_TRANSITIONS.can(SummaryStatus.PENDING, SummaryStatus.DONE)
        assert SUMMARY_TRANSITIONS.can(SummaryStatus.PENDING, SummaryStatus.ERROR)
        assert SUMMARY_TRANSITIONS.is_terminal(SummaryStatus.DONE)


class TestModels:
    def test_queue_entry_accepts_server_field_names(self):
        entry = QueueEntry.model_validate(
            {
                "queue_id": "q9",
                "patient_id": "p9",
                "consultation_id": "c9",
                "status": "in_progress",
                "appointment_time": "2024-03-04T10:30:00Z",
            }
        )
        assert entry.id == "q9"
        assert entry.encounter_id == "c9"
        assert entry.status == QueueStatus.IN_PROGRESS
        assert entry.scheduled_time.hour == 10

    def test_sort_key_prefers_priority_then_time(self, entry_factory):
        urgent_late = entry_factory("q1", "p1", priority=2, hour=11)
        normal_early = entry_factory("q2", "p2", priority=0, hour=8)
        normal_late = entry_factory("q3", "p3", priority=0, hour=10)

        ordered = sorted([normal_late, normal_early, urgent_late], key=QueueEntry.sort_key)

        assert [e.id for e in ordered] == ["q1", "q2", "q3"]

    def test_encounter_diagnosis_from_notes_or_code(self):
        encounter = Encounter(id="e1", patient_id="p1")
        assert not encounter.has_diagnosis()

        encounter.diagnosis_code = "J06.9"
        assert encounter.has_diagnosis()

        other = Encounter.model_validate(
            {"id": "e2", "patient_id": "p1", "doctor_id": "d1", "notes": {"diagnosis": "IVAS"}}
        )
        assert other.provider_id == "d1"
        assert other.has_diagnosis()

    def test_lock_sets_timestamp(self):
        encounter = Encounter(id="e1", patient_id="p1")
        encounter.lock()
        assert encounter.is_locked
        assert encounter.locked_at is not None

    def test_empty_vitals(self):
        assert VitalSigns().is_empty()
        assert not VitalSigns(heart_rate=72).is_empty()

    def test_summary_payload_helpers(self, summary_factory):
        payload = summary_factory().structured_payload
        assert payload.anamnesis.startswith("Cefaleia")
        assert payload.primary_cid_code() == "G44.2"
        assert payload.diagnosis_text() == "Cefaleia tensional (G44.2)"

    def test_summary_accepts_legacy_field_names(self):
        summary = AISummary.model_validate(
            {
                "id": "s1",
                "status": "pending",
                "transcript_text": "...",
                "summary_json": {"anamnese": "texto"},
            }
        )
        assert summary.transcript == "..."
        assert summary.structured_payload == SummaryPayload(anamnesis="texto")
        assert not summary.is_immutable
