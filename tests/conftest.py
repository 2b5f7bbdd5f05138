"""Pytest configuration and fixtures."""

from datetime import datetime, timezone

import pytest
from unittest.mock import AsyncMock, MagicMock

from consult_os.client import ClinicApiClient
from consult_os.config import Settings
from consult_os.engine import CaptureDevice, SessionContext, UserNotifier
from consult_os.models import (
    AISummary,
    ClinicalNotes,
    Encounter,
    QueueEntry,
    QueueStatus,
    SummaryPayload,
    SummaryStatus,
    UploadTarget,
    VitalSigns,
)
from consult_os.notifications import NotificationBroker
from consult_os.observability import ObservabilityLogger


class FakeCaptureDevice(CaptureDevice):
    """In-memory capture device that records how it was driven."""

    def __init__(self, blob: bytes = b"fake-webm-audio", open_error=None, stop_error=None):
        self.blob = blob
        self.open_error = open_error
        self.stop_error = stop_error
        self.opened = False
        self.started = False
        self.paused = False
        self.stopped = False
        self.release_count = 0

    @property
    def released(self) -> bool:
        return self.release_count > 0

    async def open(self) -> None:
        if self.open_error is not None:
            raise self.open_error
        self.opened = True

    def start(self) -> None:
        self.started = True

    def pause(self) -> None:
        self.paused = True

    def resume(self) -> None:
        self.paused = False

    async def stop(self) -> bytes:
        if self.stop_error is not None:
            raise self.stop_error
        self.stopped = True
        return self.blob

    def release(self) -> None:
        self.release_count += 1


@pytest.fixture
def settings():
    """Settings isolated from the environment, with long timers."""
    return Settings(
        _env_file=None,
        api_base_url="http://api.test/api/v1",
        api_token="test-token",
        queue_poll_interval=60.0,
        autosave_interval=60.0,
        auto_advance=False,
        auto_advance_delay=0.01,
        observability_enabled=False,
        telemed_link_base="http://app.test/telemed",
    )


@pytest.fixture
def mock_client():
    """Create a mock API client whose reads return empty resources."""
    client = MagicMock(spec=ClinicApiClient)
    client.list_queue = AsyncMock(return_value=[])
    client.enqueue = AsyncMock()
    client.call_patient = AsyncMock(return_value={"status": "called"})
    client.return_to_queue = AsyncMock(return_value=None)
    client.finalize_queue_entry = AsyncMock(return_value=None)
    client.cancel_queue_entry = AsyncMock(return_value=None)

    client.find_encounters = AsyncMock(return_value=[])
    client.get_encounter = AsyncMock()
    client.create_encounter = AsyncMock()
    client.update_encounter = AsyncMock(return_value=None)

    client.get_vitals = AsyncMock(return_value=VitalSigns())
    client.update_vitals = AsyncMock(return_value=None)
    client.create_vitals = AsyncMock(return_value=None)
    client.get_notes = AsyncMock(return_value=ClinicalNotes())
    client.update_notes = AsyncMock(return_value=None)
    client.create_notes = AsyncMock(return_value=None)

    client.list_attachments = AsyncMock(return_value=[])
    client.upload_attachment = AsyncMock()
    client.delete_attachment = AsyncMock(return_value=None)
    client.download = AsyncMock(return_value=b"")

    client.start_recording_upload = AsyncMock(
        return_value=UploadTarget(
            recording_id="rec-1",
            presigned_upload_url="https://storage.test/upload/rec-1",
        )
    )
    client.transfer_blob = AsyncMock(return_value=None)
    client.complete_recording = AsyncMock(return_value=None)

    client.list_summaries = AsyncMock(return_value=[])
    client.accept_summary = AsyncMock(return_value=None)
    client.create_telemed_session = AsyncMock(return_value={})
    client.aclose = AsyncMock(return_value=None)
    return client


@pytest.fixture
def broker():
    return NotificationBroker()


@pytest.fixture
def notifier():
    return UserNotifier()


@pytest.fixture
def obs_events():
    """Events emitted through the observability logger, in order."""
    return []


@pytest.fixture
def obs(obs_events):
    logger = ObservabilityLogger(enabled=False)
    logger.add_callback(obs_events.append)
    return logger


@pytest.fixture
def device():
    return FakeCaptureDevice()


@pytest.fixture
def ctx(settings, mock_client, broker, notifier, obs, device):
    """Session context wired with mocks."""
    return SessionContext(
        settings=settings,
        client=mock_client,
        broker=broker,
        notifier=notifier,
        obs=obs,
        provider_id="dr-1",
        device_factory=lambda: device,
    )


@pytest.fixture
def encounter():
    """An open encounter for today."""
    return Encounter(
        id="enc-1",
        patient_id="pat-1",
        provider_id="dr-1",
        appointment_id="apt-1",
        created_at=datetime(2024, 3, 4, 9, 0, tzinfo=timezone.utc),
    )


def make_entry(
    entry_id: str,
    patient_id: str,
    status: QueueStatus = QueueStatus.WAITING,
    priority: int = 0,
    hour: int = 9,
    minute: int = 0,
    **kwargs,
) -> QueueEntry:
    return QueueEntry(
        id=entry_id,
        patient_id=patient_id,
        patient_name=kwargs.pop("patient_name", f"Patient {patient_id}"),
        appointment_id=kwargs.pop("appointment_id", f"apt-{patient_id}"),
        status=status,
        priority=priority,
        scheduled_time=datetime(2024, 3, 4, hour, minute, tzinfo=timezone.utc),
        **kwargs,
    )


def make_summary(
    summary_id: str = "sum-1",
    recording_id: str = "rec-1",
    status: SummaryStatus = SummaryStatus.DONE,
) -> AISummary:
    return AISummary(
        id=summary_id,
        recording_id=recording_id,
        status=status,
        transcript="Paciente relata cefaleia ha tres dias.",
        structured_payload=SummaryPayload.model_validate(
            {
                "anamnese": "Cefaleia frontal ha 3 dias, sem febre.",
                "diagnoses": [
                    {"description": "Cefaleia tensional", "cid_code": "G44.2", "confidence": 0.8}
                ],
                "suggested_exams": [{"name": "Hemograma", "justification": "Rotina"}],
                "treatment_plan": "Analgesia e retorno em 7 dias.",
            }
        ),
    )


@pytest.fixture
def entry_factory():
    return make_entry


@pytest.fixture
def summary_factory():
    return make_summary
