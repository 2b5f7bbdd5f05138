"""AI summary delivery and the accept/reject workflow."""

import logging
from typing import TYPE_CHECKING, Callable, Optional

from consult_os.engine.context import SessionContext
from consult_os.errors import NotFoundError, PreconditionError, ResourceConflictError
from consult_os.models import AISummary, Encounter, SummaryPayload, SummaryStatus
from consult_os.notifications import SOURCE_MANUAL, RefreshTrigger, encounter_topic
from consult_os.observability import EventType

if TYPE_CHECKING:
    from consult_os.engine.recording import RecordingPipeline

logger = logging.getLogger(__name__)


class SummaryNotifier:
    """Keeps the encounter's summaries in sync with the server.

    Summaries are refetched whenever a ``SummaryReady`` notification arrives
    on the encounter's topic. There is no fallback poll: if the push never
    arrives the clinician has to call :meth:`refresh`.
    """

    def __init__(
        self,
        ctx: SessionContext,
        encounter: Encounter,
        pipeline: Optional["RecordingPipeline"] = None,
        on_merged: Optional[Callable[[], None]] = None,
    ):
        self.ctx = ctx
        self.encounter = encounter
        self.pipeline = pipeline
        self.on_merged = on_merged
        self.summaries: list[AISummary] = []
        self.expected_recording_id: Optional[str] = None

        # Client-side decisions survive refetches.
        self._accepted: dict[str, SummaryPayload] = {}
        self._rejected: set[str] = set()

        self._trigger = RefreshTrigger(
            f"summaries[{encounter.id}]",
            self._refetch,
            broker=ctx.broker,
            topic=encounter_topic(encounter.id),
        )

    @property
    def subscribed(self) -> bool:
        return self._trigger.running

    @property
    def latest(self) -> Optional[AISummary]:
        return self.summaries[0] if self.summaries else None

    @property
    def pending_count(self) -> int:
        return sum(1 for s in self.summaries if s.status == SummaryStatus.PENDING)

    def start(self) -> None:
        self._trigger.start()

    async def stop(self) -> None:
        await self._trigger.stop()

    def expect(self, recording_id: str) -> None:
        """Watch for the summary produced from *recording_id*."""
        self.expected_recording_id = recording_id
        logger.info(f"Waiting for AI summary of recording {recording_id}")
        # The ready push may have landed before the upload finished.
        self._check_expected()

    async def refresh(self) -> list[AISummary]:
        await self._trigger.fire(SOURCE_MANUAL)
        return list(self.summaries)

    async def _refetch(self, source: str) -> None:
        try:
            summaries = await self.ctx.client.list_summaries(self.encounter.id)
        except NotFoundError:
            summaries = []

        self.summaries = summaries
        self._apply_decisions()
        self.encounter.summary = self.latest
        self.ctx.obs.log_summary(
            EventType.SUMMARY_REFRESH,
            self.encounter.id,
            summary_count=len(summaries),
            pending_count=self.pending_count,
        )
        logger.debug(f"Summaries for {self.encounter.id} refetched ({source}): {len(summaries)}")
        self._check_expected()

    def _apply_decisions(self) -> None:
        for summary in self.summaries:
            if summary.id in self._rejected:
                summary.rejected = True
            if summary.id in self._accepted and not summary.accepted:
                summary.accepted = True
                summary.accepted_payload = self._accepted[summary.id]

    def _check_expected(self) -> None:
        recording_id = self.expected_recording_id
        if recording_id is None:
            return
        for summary in self.summaries:
            if summary.recording_id != recording_id or summary.status == SummaryStatus.PENDING:
                continue
            self.expected_recording_id = None
            ok = summary.status == SummaryStatus.DONE
            if self.pipeline is not None:
                self.pipeline.processing_finished(
                    recording_id, ok, None if ok else "Summarization failed"
                )
            if ok:
                self.ctx.notifier.success("AI summary ready", "Review and accept the suggested record.")
            else:
                self.ctx.notifier.error("AI summary failed", "Record again or document manually.")
            return

    def get(self, summary_id: str) -> AISummary:
        for summary in self.summaries:
            if summary.id == summary_id:
                return summary
        raise NotFoundError(f"Summary {summary_id} not found for encounter {self.encounter.id}")

    async def accept(
        self, summary_id: str, edited_payload: Optional[SummaryPayload] = None
    ) -> AISummary:
        """Accept a summary, optionally edited, and merge it into the encounter.

        Accepting again with the same payload is a no-op; a different payload
        is rejected because an accepted summary is immutable.
        """
        summary = self.get(summary_id)
        payload = edited_payload or summary.structured_payload

        if summary.accepted:
            accepted = summary.accepted_payload or summary.structured_payload
            if accepted == payload:
                return summary
            raise ResourceConflictError(f"Summary {summary_id} was already accepted")
        if summary.status != SummaryStatus.DONE:
            raise PreconditionError("The summary is not ready yet")
        if summary.rejected:
            raise PreconditionError("The summary was rejected")
        if self.encounter.is_locked:
            raise PreconditionError("The encounter is locked")

        with self.ctx.obs.operation("accept_summary", encounter_id=self.encounter.id):
            await self.ctx.client.accept_summary(summary_id, payload)

        summary.accepted = True
        summary.accepted_payload = payload
        self._accepted[summary_id] = payload
        # A refetch during the request may have replaced the cached summary.
        self._apply_decisions()
        self._merge(payload)

        self.ctx.obs.log_summary(EventType.SUMMARY_ACCEPTED, self.encounter.id, summary_id=summary_id)
        logger.info(f"Summary {summary_id} accepted into encounter {self.encounter.id}")
        return next((s for s in self.summaries if s.id == summary_id), summary)

    def _merge(self, payload: SummaryPayload) -> None:
        notes = self.encounter.notes
        if payload.anamnesis:
            notes.anamnesis = payload.anamnesis
        if payload.treatment_plan:
            notes.treatment_plan = payload.treatment_plan
        diagnosis = payload.diagnosis_text()
        if diagnosis:
            notes.diagnosis = diagnosis
        cid = payload.primary_cid_code()
        if cid:
            self.encounter.diagnosis_code = cid
        if self.on_merged is not None:
            self.on_merged()

    def reject(self, summary_id: str) -> AISummary:
        """Discard a summary locally; manual notes stay as they are."""
        summary = self.get(summary_id)
        if summary.accepted:
            raise ResourceConflictError(f"Summary {summary_id} was already accepted")
        summary.rejected = True
        self._rejected.add(summary_id)
        self.ctx.obs.log_summary(EventType.SUMMARY_REJECTED, self.encounter.id, summary_id=summary_id)
        return summary
