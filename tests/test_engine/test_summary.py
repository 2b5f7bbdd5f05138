"""Tests for AI summary delivery, acceptance and rejection."""

import pytest

from consult_os.engine import RecordingPipeline, SummaryNotifier
from consult_os.errors import (
    NotFoundError,
    PreconditionError,
    ResourceConflictError,
    TransientNetworkError,
)
from consult_os.models import RecordingState, SummaryDiagnosis, SummaryStatus
from consult_os.notifications import encounter_topic


@pytest.fixture
def pipeline(ctx, encounter):
    return RecordingPipeline(ctx, encounter)


@pytest.fixture
def notifier_under_test(ctx, encounter, pipeline):
    summaries = SummaryNotifier(ctx, encounter, pipeline=pipeline)
    pipeline.on_awaiting = summaries.expect
    return summaries


async def record_and_upload(pipeline):
    pipeline.request_consent()
    await pipeline.grant_consent()
    await pipeline.stop()


class TestSummaryDelivery:
    @pytest.mark.asyncio
    async def test_push_refetches_and_completes_recording(
        self, broker, mock_client, pipeline, notifier_under_test, summary_factory, notifier
    ):
        notifier_under_test.start()
        await record_and_upload(pipeline)
        assert notifier_under_test.expected_recording_id == "rec-1"

        mock_client.list_summaries.return_value = [summary_factory()]
        await broker.dispatch({"type": "ai_summary_ready", "data": {"consultation_id": "enc-1"}})

        assert pipeline.state == RecordingState.DONE
        assert notifier_under_test.latest.id == "sum-1"
        assert notifier_under_test.expected_recording_id is None
        assert notifier.history[-1].title == "AI summary ready"

    @pytest.mark.asyncio
    async def test_failed_summary_moves_recording_to_error(
        self, broker, mock_client, pipeline, notifier_under_test, summary_factory
    ):
        notifier_under_test.start()
        await record_and_upload(pipeline)

        mock_client.list_summaries.return_value = [
            summary_factory(status=SummaryStatus.ERROR)
        ]
        await broker.dispatch({"type": "ai_summary_ready", "data": {"consultation_id": "enc-1"}})

        assert pipeline.state == RecordingState.ERROR

    @pytest.mark.asyncio
    async def test_pending_summary_keeps_waiting(
        self, broker, mock_client, pipeline, notifier_under_test, summary_factory
    ):
        notifier_under_test.start()
        await record_and_upload(pipeline)

        mock_client.list_summaries.return_value = [
            summary_factory(status=SummaryStatus.PENDING)
        ]
        await broker.dispatch({"type": "ai_summary_ready", "data": {"consultation_id": "enc-1"}})

        assert pipeline.state == RecordingState.AWAITING_PROCESSING
        assert notifier_under_test.pending_count == 1

    @pytest.mark.asyncio
    async def test_ready_push_during_upload_completion(
        self, broker, mock_client, pipeline, notifier_under_test, summary_factory
    ):
        notifier_under_test.start()

        async def complete_with_push(recording_id):
            mock_client.list_summaries.return_value = [summary_factory()]
            await broker.dispatch(
                {"type": "ai_summary_ready", "data": {"consultation_id": "enc-1"}}
            )

        mock_client.complete_recording.side_effect = complete_with_push
        await record_and_upload(pipeline)

        assert pipeline.state == RecordingState.DONE
        assert notifier_under_test.expected_recording_id is None
        assert pipeline.request_consent().state == RecordingState.CONSENT_PENDING

    @pytest.mark.asyncio
    async def test_refetch_replaces_cache(self, mock_client, notifier_under_test, summary_factory):
        mock_client.list_summaries.return_value = [summary_factory("a"), summary_factory("b")]
        await notifier_under_test.refresh()

        mock_client.list_summaries.return_value = [summary_factory("c")]
        await notifier_under_test.refresh()

        assert [s.id for s in notifier_under_test.summaries] == ["c"]

    @pytest.mark.asyncio
    async def test_missing_summaries_mean_empty(self, mock_client, notifier_under_test):
        mock_client.list_summaries.side_effect = NotFoundError("none")

        assert await notifier_under_test.refresh() == []

    @pytest.mark.asyncio
    async def test_manual_refresh_surfaces_network_errors(self, mock_client, notifier_under_test):
        mock_client.list_summaries.side_effect = TransientNetworkError("down")

        with pytest.raises(TransientNetworkError):
            await notifier_under_test.refresh()

    @pytest.mark.asyncio
    async def test_stop_unsubscribes(self, broker, notifier_under_test):
        notifier_under_test.start()
        assert broker.subscriber_count(encounter_topic("enc-1")) == 1

        await notifier_under_test.stop()

        assert broker.subscriber_count(encounter_topic("enc-1")) == 0
        assert not notifier_under_test.subscribed


class TestAccept:
    @pytest.mark.asyncio
    async def test_accept_merges_into_encounter(
        self, mock_client, encounter, notifier_under_test, summary_factory
    ):
        mock_client.list_summaries.return_value = [summary_factory()]
        await notifier_under_test.refresh()
        encounter.notes.physical_exam = "Sem alteracoes"

        summary = await notifier_under_test.accept("sum-1")

        assert summary.accepted and summary.is_immutable
        assert encounter.notes.anamnesis == "Cefaleia frontal ha 3 dias, sem febre."
        assert encounter.notes.treatment_plan == "Analgesia e retorno em 7 dias."
        assert encounter.notes.diagnosis == "Cefaleia tensional (G44.2)"
        assert encounter.notes.physical_exam == "Sem alteracoes"
        assert encounter.diagnosis_code == "G44.2"
        mock_client.accept_summary.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_accept_twice_with_same_payload_is_a_no_op(
        self, mock_client, notifier_under_test, summary_factory
    ):
        mock_client.list_summaries.return_value = [summary_factory()]
        await notifier_under_test.refresh()

        first = await notifier_under_test.accept("sum-1")
        second = await notifier_under_test.accept("sum-1")

        assert first is second
        mock_client.accept_summary.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_accept_again_with_different_payload_conflicts(
        self, mock_client, notifier_under_test, summary_factory
    ):
        mock_client.list_summaries.return_value = [summary_factory()]
        await notifier_under_test.refresh()
        await notifier_under_test.accept("sum-1")

        edited = summary_factory().structured_payload.model_copy(
            update={"treatment_plan": "Outro plano"}
        )
        with pytest.raises(ResourceConflictError):
            await notifier_under_test.accept("sum-1", edited)

    @pytest.mark.asyncio
    async def test_acceptance_survives_refetch(
        self, mock_client, notifier_under_test, summary_factory
    ):
        mock_client.list_summaries.return_value = [summary_factory()]
        await notifier_under_test.refresh()
        await notifier_under_test.accept("sum-1")

        mock_client.list_summaries.return_value = [summary_factory()]
        await notifier_under_test.refresh()
        await notifier_under_test.accept("sum-1")

        assert notifier_under_test.get("sum-1").accepted
        mock_client.accept_summary.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_refetch_during_accept_keeps_acceptance(
        self, broker, mock_client, encounter, notifier_under_test, summary_factory
    ):
        mock_client.list_summaries.return_value = [summary_factory()]
        notifier_under_test.start()
        await notifier_under_test.refresh()

        async def accept_with_push(summary_id, payload):
            mock_client.list_summaries.return_value = [summary_factory()]
            await broker.dispatch(
                {"type": "ai_summary_ready", "data": {"consultation_id": "enc-1"}}
            )

        mock_client.accept_summary.side_effect = accept_with_push
        first = await notifier_under_test.accept("sum-1")
        second = await notifier_under_test.accept("sum-1")

        assert first is second
        assert notifier_under_test.get("sum-1").accepted
        mock_client.accept_summary.assert_awaited_once()
        await notifier_under_test.stop()

    @pytest.mark.asyncio
    async def test_edited_payload_is_sent(
        self, mock_client, encounter, notifier_under_test, summary_factory
    ):
        mock_client.list_summaries.return_value = [summary_factory()]
        await notifier_under_test.refresh()
        edited = summary_factory().structured_payload.model_copy(
            update={"diagnoses": [SummaryDiagnosis(description="Enxaqueca", cid_code="G43.9")]}
        )

        await notifier_under_test.accept("sum-1", edited)

        mock_client.accept_summary.assert_awaited_once_with("sum-1", edited)
        assert encounter.diagnosis_code == "G43.9"

    @pytest.mark.asyncio
    async def test_failed_accept_changes_nothing(
        self, mock_client, encounter, notifier_under_test, summary_factory
    ):
        mock_client.list_summaries.return_value = [summary_factory()]
        mock_client.accept_summary.side_effect = TransientNetworkError("down")
        await notifier_under_test.refresh()

        with pytest.raises(TransientNetworkError):
            await notifier_under_test.accept("sum-1")

        assert not notifier_under_test.get("sum-1").accepted
        assert encounter.notes.anamnesis == ""
        assert encounter.diagnosis_code is None

    @pytest.mark.asyncio
    async def test_pending_summary_cannot_be_accepted(
        self, mock_client, notifier_under_test, summary_factory
    ):
        mock_client.list_summaries.return_value = [summary_factory(status=SummaryStatus.PENDING)]
        await notifier_under_test.refresh()

        with pytest.raises(PreconditionError):
            await notifier_under_test.accept("sum-1")

    @pytest.mark.asyncio
    async def test_unknown_summary(self, notifier_under_test):
        with pytest.raises(NotFoundError):
            await notifier_under_test.accept("missing")


class TestReject:
    @pytest.mark.asyncio
    async def test_reject_keeps_manual_notes_and_allows_new_recording(
        self,
        broker,
        mock_client,
        encounter,
        pipeline,
        notifier_under_test,
        summary_factory,
    ):
        notifier_under_test.start()
        encounter.notes.anamnesis = "Nota manual"
        await record_and_upload(pipeline)
        mock_client.list_summaries.return_value = [summary_factory()]
        await broker.dispatch({"type": "ai_summary_ready", "data": {"consultation_id": "enc-1"}})

        summary = notifier_under_test.reject("sum-1")

        assert summary.rejected
        assert encounter.notes.anamnesis == "Nota manual"
        pipeline.request_consent()
        assert pipeline.state == RecordingState.CONSENT_PENDING

    @pytest.mark.asyncio
    async def test_rejection_survives_refetch(
        self, mock_client, notifier_under_test, summary_factory
    ):
        mock_client.list_summaries.return_value = [summary_factory()]
        await notifier_under_test.refresh()
        notifier_under_test.reject("sum-1")

        await notifier_under_test.refresh()

        assert notifier_under_test.get("sum-1").rejected
        with pytest.raises(PreconditionError):
            await notifier_under_test.accept("sum-1")

    @pytest.mark.asyncio
    async def test_accepted_summary_cannot_be_rejected(
        self, mock_client, notifier_under_test, summary_factory
    ):
        mock_client.list_summaries.return_value = [summary_factory()]
        await notifier_under_test.refresh()
        await notifier_under_test.accept("sum-1")

        with pytest.raises(ResourceConflictError):
            notifier_under_test.reject("sum-1")
