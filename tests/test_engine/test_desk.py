"""Tests for ConsultationDesk: explicit results and user notices."""

import asyncio

import pytest

from consult_os.engine import ConsultationDesk, ErrorKind, NoticeLevel
from consult_os.errors import TransientNetworkError
from consult_os.models import Encounter, QueueStatus


@pytest.fixture
def desk(ctx, mock_client):
    mock_client.find_encounters.return_value = [
        Encounter(id="enc-1", patient_id="pat-1", provider_id="dr-1", appointment_id="apt-1")
    ]
    return ConsultationDesk(ctx)


class TestWithoutSession:
    @pytest.mark.asyncio
    async def test_edit_without_session_is_a_validation_failure(self, desk):
        result = await desk.update_notes(anamnesis="Dor toracica")

        assert not result.ok
        assert result.error_kind == ErrorKind.VALIDATION
        assert desk.notices[-1].level == NoticeLevel.WARNING
        assert desk.notices[-1].title == "Notes"

    @pytest.mark.asyncio
    async def test_telemedicine_requires_session(self, desk, mock_client):
        result = await desk.start_telemedicine()

        assert result.error_kind == ErrorKind.VALIDATION
        mock_client.create_telemed_session.assert_not_called()

    @pytest.mark.asyncio
    async def test_stray_stop_recording_is_a_validation_failure(self, desk, mock_client):
        await desk.open_encounter("pat-1", "apt-1")

        result = await desk.stop_recording()

        assert result.error_kind == ErrorKind.VALIDATION
        mock_client.start_recording_upload.assert_not_called()
        await desk.close()


class TestSessionActions:
    @pytest.mark.asyncio
    async def test_open_edit_and_finalize(self, desk, mock_client):
        opened = await desk.open_encounter("pat-1", "apt-1")
        assert opened.ok
        assert desk.session is opened.value

        await desk.update_notes(anamnesis="Dor lombar", diagnosis="Lombalgia")
        result = await desk.finalize()

        assert result.ok
        assert result.value.encounter_id == "enc-1"
        assert result.value.pending_recording_state is None
        mock_client.finalize_queue_entry.assert_awaited_once_with("enc-1")
        assert desk.session is None
        assert desk.notices[-1].level == NoticeLevel.SUCCESS
        assert desk.notices[-1].message == "Consultation finalized"

    @pytest.mark.asyncio
    async def test_finalize_without_diagnosis(self, desk, mock_client):
        await desk.open_encounter("pat-1", "apt-1")

        result = await desk.finalize()

        assert result.error_kind == ErrorKind.VALIDATION
        assert desk.session is not None
        mock_client.finalize_queue_entry.assert_not_called()
        await desk.close()

    @pytest.mark.asyncio
    async def test_network_failure_is_reported_as_warning(self, desk, mock_client):
        await desk.open_encounter("pat-1", "apt-1")
        mock_client.update_notes.side_effect = TransientNetworkError("connection refused")

        result = await desk.save_notes()

        assert result.error_kind == ErrorKind.NETWORK
        assert desk.notices[-1].level == NoticeLevel.WARNING
        assert "Connection problem" in desk.notices[-1].message
        await desk.close()

    @pytest.mark.asyncio
    async def test_duplicate_finalize_is_rejected(self, desk, mock_client):
        entered = asyncio.Event()
        gate = asyncio.Event()

        async def slow_finalize(encounter_id):
            entered.set()
            await gate.wait()

        mock_client.finalize_queue_entry.side_effect = slow_finalize
        await desk.open_encounter("pat-1", "apt-1")
        await desk.update_notes(diagnosis="Lombalgia")

        first = asyncio.create_task(desk.finalize())
        await entered.wait()
        assert desk.is_busy("finalize", "enc-1")

        second = await desk.finalize()

        assert second.error_kind == ErrorKind.CONFLICT
        gate.set()
        assert (await first).ok
        mock_client.finalize_queue_entry.assert_awaited_once()


class TestQueueActions:
    @pytest.mark.asyncio
    async def test_call_opens_session(self, desk, mock_client, entry_factory):
        mock_client.list_queue.return_value = [entry_factory("q1", "pat-1")]
        await desk.start()
        mock_client.list_queue.return_value = [
            entry_factory(
                "q1", "pat-1", QueueStatus.IN_PROGRESS, encounter_id="enc-1", provider_id="dr-1"
            )
        ]

        result = await desk.call("q1")

        assert result.ok
        assert result.value.id == "enc-1"
        mock_client.call_patient.assert_awaited_once_with("pat-1")
        assert desk.queue.get("q1").status == QueueStatus.IN_PROGRESS
        await desk.close()
        mock_client.aclose.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_invalid_check_in(self, desk, mock_client):
        result = await desk.enqueue("pat-9", priority=-1)

        assert result.error_kind == ErrorKind.VALIDATION
        mock_client.enqueue.assert_not_called()
