"""The open encounter: clinical data, autosave and finalization."""

import asyncio
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Optional

from pydantic import ValidationError

from consult_os.engine.attachments import AttachmentStore
from consult_os.engine.context import SessionContext
from consult_os.engine.recording import RecordingPipeline
from consult_os.engine.summary import SummaryNotifier
from consult_os.errors import ConsultError, NotFoundError, PreconditionError, SaveError
from consult_os.models import ClinicalNotes, Encounter, RecordingState, VitalSigns
from consult_os.observability import EventType
from consult_os.timers import PeriodicTask

if TYPE_CHECKING:
    from consult_os.engine.queue import QueueCoordinator

logger = logging.getLogger(__name__)


@dataclass
class FinalizeReport:
    """What finalize left behind."""

    encounter_id: str
    pending_recording_state: Optional[RecordingState] = None
    pending_recording_id: Optional[str] = None


class ConsultationSession:
    """Aggregate for one open encounter.

    Owns the periodic autosave, the recording pipeline, the summary
    subscription and the attachment store. All of them are torn down by
    :meth:`close`, which every exit path (finalize, leave, switching patient)
    goes through.
    """

    def __init__(
        self,
        ctx: SessionContext,
        encounter: Encounter,
        queue: Optional["QueueCoordinator"] = None,
        on_close: Optional[Callable[["ConsultationSession"], None]] = None,
    ):
        self.ctx = ctx
        self.encounter = encounter
        self.queue = queue
        self.on_close = on_close

        self.pipeline = RecordingPipeline(ctx, encounter)
        self.summaries = SummaryNotifier(
            ctx, encounter, pipeline=self.pipeline, on_merged=self._mark_dirty
        )
        self.pipeline.on_awaiting = self.summaries.expect
        self.attachments = AttachmentStore(ctx, encounter)

        self._autosave = PeriodicTask(
            f"autosave[{encounter.id}]", ctx.settings.autosave_interval, self._autosave_tick
        )
        self._revision = 0
        self._saved_revision = 0
        self._saved_diagnosis_code = encounter.diagnosis_code
        self._closed = False
        self._pending_state: Optional[RecordingState] = None
        self._save_lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def id(self) -> str:
        return self.encounter.id

    @property
    def is_open(self) -> bool:
        return not self._closed

    @property
    def is_dirty(self) -> bool:
        return self._revision != self._saved_revision

    @property
    def autosave_running(self) -> bool:
        return self._autosave.running

    def _require_open(self) -> None:
        if self._closed:
            raise PreconditionError(f"Encounter {self.id} is no longer open")

    def _require_writable(self) -> None:
        self._require_open()
        if self.encounter.is_locked:
            raise PreconditionError(f"Encounter {self.id} is locked; unlock it to edit")

    def _mark_dirty(self) -> None:
        self._revision += 1

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def load(self) -> None:
        """Fetch the encounter's sub-resources; a 404 on any of them means empty."""
        vitals, notes = await asyncio.gather(
            _or_default(self.ctx.client.get_vitals(self.id), VitalSigns()),
            _or_default(self.ctx.client.get_notes(self.id), ClinicalNotes()),
        )
        self.encounter.vitals = vitals
        self.encounter.notes = notes
        await self.attachments.refresh()
        await self.summaries.refresh()
        self._saved_revision = self._revision

    def start(self) -> None:
        self._require_open()
        self._autosave.start()
        self.summaries.start()

    async def refresh(self) -> Encounter:
        """Reload everything from the server; the local draft is discarded."""
        self._require_open()
        fresh = await self.ctx.client.get_encounter(self.id)
        self.encounter.is_locked = fresh.is_locked
        self.encounter.locked_at = fresh.locked_at
        self.encounter.diagnosis_code = fresh.diagnosis_code
        self._saved_diagnosis_code = fresh.diagnosis_code
        await self.load()
        return self.encounter

    async def close(self) -> Optional[RecordingState]:
        """Tear down timers, subscriptions and the recording pipeline.

        Returns the state of a recording the server is still processing.
        """
        if self._closed:
            return self._pending_state
        self._closed = True

        await self._autosave.stop()
        await self.summaries.stop()
        self._pending_state = await self.pipeline.shutdown()
        if self._pending_state is not None:
            self.ctx.notifier.warning(
                "Recording still processing",
                f"The AI summary will be attached to encounter {self.id} when it is ready.",
            )

        self.ctx.obs.log_session(
            EventType.SESSION_CLOSED, self.id, patient_id=self.encounter.patient_id
        )
        logger.info(f"Session for encounter {self.id} closed")
        if self.on_close is not None:
            self.on_close(self)
        return self._pending_state

    # ------------------------------------------------------------------
    # Editing
    # ------------------------------------------------------------------

    def update_notes(self, **fields: Any) -> ClinicalNotes:
        self._require_writable()
        unknown = set(fields) - set(ClinicalNotes.model_fields)
        if unknown:
            raise PreconditionError(f"Unknown note fields: {', '.join(sorted(unknown))}")
        self.encounter.notes = self.encounter.notes.model_copy(update=fields)
        self._mark_dirty()
        return self.encounter.notes

    def update_vitals(self, **fields: Any) -> VitalSigns:
        self._require_writable()
        try:
            vitals = VitalSigns.model_validate({**self.encounter.vitals.model_dump(), **fields})
        except ValidationError as e:
            raise PreconditionError(f"Invalid vital signs: {e.errors()[0]['msg']}") from e
        self.encounter.vitals = vitals
        return vitals

    def set_diagnosis_code(self, code: Optional[str]) -> None:
        self._require_writable()
        self.encounter.diagnosis_code = code or None
        self._mark_dirty()

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    async def save_vitals(self, vitals: Optional[VitalSigns] = None) -> VitalSigns:
        self._require_writable()
        if vitals is not None:
            self.encounter.vitals = vitals
        async with self._save_lock:
            await self._upsert(
                "vitals",
                self.ctx.client.update_vitals,
                self.ctx.client.create_vitals,
                self.encounter.vitals,
            )
        return self.encounter.vitals

    async def save_notes(self, notes: Optional[ClinicalNotes] = None) -> ClinicalNotes:
        self._require_writable()
        if notes is not None:
            self.encounter.notes = notes
            self._mark_dirty()
        await self._persist_notes()
        return self.encounter.notes

    async def flush(self) -> None:
        """Persist a dirty draft before the session is torn down."""
        if self._closed or self.encounter.is_locked or not self.is_dirty:
            return
        try:
            await self._persist_notes()
        except ConsultError as e:
            logger.warning(f"Unsaved notes for encounter {self.id} could not be flushed: {e}")
            self.ctx.obs.log_session(
                EventType.SAVE_ERROR, self.id, resource="notes", error=e, flush=True
            )

    async def _persist_notes(self) -> None:
        # Concurrent saves would each fall back to a create on a 404.
        async with self._save_lock:
            revision = self._revision
            await self._upsert(
                "notes",
                self.ctx.client.update_notes,
                self.ctx.client.create_notes,
                self.encounter.notes,
            )
            code = self.encounter.diagnosis_code
            if code != self._saved_diagnosis_code:
                with self.ctx.obs.operation("update_diagnosis_code", encounter_id=self.id):
                    await self.ctx.client.update_encounter(self.id, {"diagnosis_code": code})
                self._saved_diagnosis_code = code
            # Edits made while the request was in flight stay dirty.
            self._saved_revision = max(self._saved_revision, revision)

    async def _upsert(
        self,
        resource: str,
        update: Callable[[str, Any], Awaitable[None]],
        create: Callable[[str, Any], Awaitable[None]],
        payload: Any,
    ) -> None:
        """PUT, and on a 404 POST exactly once."""
        created = False
        try:
            try:
                await update(self.id, payload)
            except NotFoundError:
                self.ctx.obs.log_session(EventType.SAVE_FALLBACK, self.id, resource=resource)
                try:
                    await create(self.id, payload)
                except NotFoundError as e:
                    raise SaveError(
                        f"Could not save {resource}: encounter {self.id} not found"
                    ) from e
                created = True
        except ConsultError as e:
            self.ctx.obs.log_session(EventType.SAVE_ERROR, self.id, resource=resource, error=e)
            raise
        self.ctx.obs.log_session(
            EventType.SAVE_SUCCESS, self.id, resource=resource, created=created
        )

    async def _autosave_tick(self) -> None:
        if self._closed or self.encounter.is_locked or not self.is_dirty:
            return
        try:
            await self._persist_notes()
        except ConsultError as e:
            logger.warning(f"Autosave failed for encounter {self.id}: {e}")
            self.ctx.obs.log_session(EventType.AUTOSAVE_ERROR, self.id, resource="notes", error=e)

    # ------------------------------------------------------------------
    # Exits
    # ------------------------------------------------------------------

    async def finalize(self) -> FinalizeReport:
        """Persist everything, complete the queue entry and lock the encounter."""
        self._require_writable()
        if self.ctx.settings.require_diagnosis and not self.encounter.has_diagnosis():
            raise PreconditionError("A diagnosis is required to finalize the consultation")

        # Any autosave tick in flight finishes before the final save starts.
        await self._autosave.stop()
        try:
            if not self.encounter.vitals.is_empty():
                await self.save_vitals()
            await self._persist_notes()
            if self.queue is not None:
                await self.queue.finalize(self.id)
        except ConsultError:
            self._autosave.start()
            raise

        self.encounter.lock()
        recording_id = self.pipeline.recording.id
        pending = await self.close()
        logger.info(f"Encounter {self.id} finalized")
        return FinalizeReport(
            encounter_id=self.id,
            pending_recording_state=pending,
            pending_recording_id=recording_id if pending is not None else None,
        )

    async def leave(self) -> None:
        """Return the patient to the waiting list, keeping saved data."""
        self._require_open()
        if self.is_dirty and not self.encounter.is_locked:
            await self._persist_notes()
        if self.queue is not None:
            await self.queue.return_entry(self.id)
        await self.close()

    async def unlock(self) -> None:
        self._require_open()
        if not self.encounter.is_locked:
            return
        with self.ctx.obs.operation("unlock_encounter", encounter_id=self.id):
            await self.ctx.client.update_encounter(self.id, {"is_locked": False})
        self.encounter.is_locked = False
        self.encounter.locked_at = None


async def _or_default(coro: Awaitable[Any], default: Any) -> Any:
    try:
        return await coro
    except NotFoundError:
        return default
