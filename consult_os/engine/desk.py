"""User-action facade over the session engine.

Every method corresponds to a control in the consultation screen. Methods
never raise engine errors; they return an :class:`ActionResult` and post a
notice for the clinician. Illegal state-machine edges still raise, since
they indicate a bug in the caller.
"""

import inspect
import logging
from typing import Any, Awaitable, Callable, Optional, Union

from consult_os.engine.context import SessionContext
from consult_os.engine.guard import InFlightGuard
from consult_os.engine.queue import EntryRef, QueueCoordinator
from consult_os.engine.results import ActionResult
from consult_os.engine.session import ConsultationSession, FinalizeReport
from consult_os.engine.telemed import TelemedicineBridge
from consult_os.errors import (
    ConsultError,
    PreconditionError,
    TransientNetworkError,
)
from consult_os.models import (
    AISummary,
    Attachment,
    ClinicalNotes,
    QueueEntry,
    Recording,
    SummaryPayload,
    TelemedicineSession,
    VitalSigns,
)

logger = logging.getLogger(__name__)

Action = Callable[[], Union[Any, Awaitable[Any]]]


class ConsultationDesk:
    """One clinician's workspace: the queue plus the open consultation."""

    def __init__(self, ctx: SessionContext, queue: Optional[QueueCoordinator] = None):
        self.ctx = ctx
        self.queue = queue or QueueCoordinator(ctx)
        self.registry = self.queue.registry
        self.telemed = TelemedicineBridge(ctx)
        self.guard = InFlightGuard()

    @property
    def session(self) -> Optional[ConsultationSession]:
        return self.registry.active

    @property
    def notices(self):
        return list(self.ctx.notifier.history)

    def is_busy(self, action: str, key: str = "") -> bool:
        """Whether a control should be shown disabled."""
        return self.guard.is_busy(self._key(action, key))

    @staticmethod
    def _key(action: str, key: str) -> str:
        return f"{action}:{key}" if key else action

    def _require_session(self) -> ConsultationSession:
        session = self.registry.active
        if session is None or not session.is_open:
            raise PreconditionError("No consultation is open")
        return session

    async def _run(
        self,
        action: str,
        fn: Action,
        *,
        key: str = "",
        title: str = "",
        success: Optional[str] = None,
    ) -> ActionResult:
        title = title or action.replace("_", " ").capitalize()
        try:
            async with self.guard.hold(self._key(action, key)):
                value = fn()
                if inspect.isawaitable(value):
                    value = await value
        except ConsultError as e:
            self._report(title, e)
            return ActionResult.failure(e)
        if success:
            self.ctx.notifier.success(title, success)
        return ActionResult.success(value)

    def _report(self, title: str, error: ConsultError) -> None:
        if isinstance(error, PreconditionError):
            self.ctx.notifier.warning(title, str(error))
        elif isinstance(error, TransientNetworkError):
            self.ctx.notifier.warning(title, f"Connection problem: {error}")
        else:
            self.ctx.notifier.error(title, str(error))

    # ------------------------------------------------------------------
    # Desk lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> ActionResult[list[QueueEntry]]:
        self.queue.start()
        return await self.refresh_queue()

    async def close(self) -> None:
        await self.queue.stop()
        await self.registry.close()
        await self.ctx.client.aclose()

    # ------------------------------------------------------------------
    # Queue
    # ------------------------------------------------------------------

    async def refresh_queue(self) -> ActionResult[list[QueueEntry]]:
        return await self._run("refresh_queue", self.queue.refresh, title="Waiting list")

    async def enqueue(
        self, patient_id: str, appointment_id: Optional[str] = None, priority: int = 0
    ) -> ActionResult[QueueEntry]:
        return await self._run(
            "enqueue",
            lambda: self.queue.enqueue(patient_id, appointment_id, priority),
            key=patient_id,
            title="Check-in",
            success="Patient added to the waiting list",
        )

    async def call(self, entry: EntryRef) -> ActionResult[ConsultationSession]:
        entry_id = entry.id if isinstance(entry, QueueEntry) else entry
        return await self._run(
            "call", lambda: self.queue.call(entry), key=entry_id, title="Call patient"
        )

    async def cancel(self, entry: EntryRef) -> ActionResult[None]:
        entry_id = entry.id if isinstance(entry, QueueEntry) else entry
        return await self._run(
            "cancel",
            lambda: self.queue.cancel(entry),
            key=entry_id,
            title="Cancel",
            success="Queue entry cancelled",
        )

    # ------------------------------------------------------------------
    # Session
    # ------------------------------------------------------------------

    async def open_encounter(
        self,
        patient_id: str,
        appointment_id: Optional[str] = None,
        provider_id: Optional[str] = None,
    ) -> ActionResult[ConsultationSession]:
        return await self._run(
            "open",
            lambda: self.registry.open(patient_id, appointment_id, provider_id),
            key=patient_id,
            title="Open consultation",
        )

    async def reopen(self, encounter_id: str) -> ActionResult[ConsultationSession]:
        return await self._run(
            "open",
            lambda: self.registry.reopen(encounter_id),
            key=encounter_id,
            title="Open consultation",
        )

    async def update_notes(self, **fields: Any) -> ActionResult[ClinicalNotes]:
        return await self._run(
            "update_notes", lambda: self._require_session().update_notes(**fields), title="Notes"
        )

    async def update_vitals(self, **fields: Any) -> ActionResult[VitalSigns]:
        return await self._run(
            "update_vitals",
            lambda: self._require_session().update_vitals(**fields),
            title="Vital signs",
        )

    async def save_vitals(self, vitals: Optional[VitalSigns] = None) -> ActionResult[VitalSigns]:
        return await self._run(
            "save_vitals",
            lambda: self._require_session().save_vitals(vitals),
            title="Vital signs",
            success="Vital signs saved",
        )

    async def save_notes(self, notes: Optional[ClinicalNotes] = None) -> ActionResult[ClinicalNotes]:
        return await self._run(
            "save_notes",
            lambda: self._require_session().save_notes(notes),
            title="Notes",
            success="Notes saved",
        )

    async def refresh_session(self):
        return await self._run(
            "refresh_session", lambda: self._require_session().refresh(), title="Consultation"
        )

    async def finalize(self) -> ActionResult[FinalizeReport]:
        session = self.registry.active
        key = session.id if session is not None else ""
        return await self._run(
            "finalize",
            lambda: self._require_session().finalize(),
            key=key,
            title="Finalize",
            success="Consultation finalized",
        )

    async def return_to_queue(self) -> ActionResult[None]:
        session = self.registry.active
        key = session.id if session is not None else ""
        return await self._run(
            "return",
            lambda: self._require_session().leave(),
            key=key,
            title="Return to queue",
            success="Patient returned to the waiting list",
        )

    async def unlock(self) -> ActionResult[None]:
        return await self._run(
            "unlock",
            lambda: self._require_session().unlock(),
            title="Unlock",
            success="Consultation unlocked for editing",
        )

    async def close_session(self) -> ActionResult[None]:
        return await self._run("close_session", self.registry.close, title="Close")

    # ------------------------------------------------------------------
    # Recording
    # ------------------------------------------------------------------

    async def request_recording(self) -> ActionResult[Recording]:
        return await self._run(
            "request_recording",
            lambda: self._require_session().pipeline.request_consent(),
            title="Recording",
        )

    async def grant_consent(self) -> ActionResult[Recording]:
        return await self._run(
            "grant_consent",
            lambda: self._require_session().pipeline.grant_consent(),
            title="Recording",
        )

    async def decline_consent(self) -> ActionResult[None]:
        return await self._run(
            "decline_consent",
            lambda: self._require_session().pipeline.decline_consent(),
            title="Recording",
        )

    async def pause_recording(self) -> ActionResult[None]:
        return await self._run(
            "pause_recording", lambda: self._require_session().pipeline.pause(), title="Recording"
        )

    async def resume_recording(self) -> ActionResult[None]:
        return await self._run(
            "resume_recording", lambda: self._require_session().pipeline.resume(), title="Recording"
        )

    async def stop_recording(self) -> ActionResult[Recording]:
        return await self._run(
            "stop_recording",
            lambda: self._require_session().pipeline.stop(),
            title="Recording",
            success="Recording sent for summarization",
        )

    # ------------------------------------------------------------------
    # AI summaries
    # ------------------------------------------------------------------

    async def refresh_summaries(self) -> ActionResult[list[AISummary]]:
        return await self._run(
            "refresh_summaries",
            lambda: self._require_session().summaries.refresh(),
            title="AI summary",
        )

    async def accept_summary(
        self, summary_id: str, edited_payload: Optional[SummaryPayload] = None
    ) -> ActionResult[AISummary]:
        return await self._run(
            "accept_summary",
            lambda: self._require_session().summaries.accept(summary_id, edited_payload),
            key=summary_id,
            title="AI summary",
            success="Summary added to the medical record",
        )

    async def reject_summary(self, summary_id: str) -> ActionResult[AISummary]:
        return await self._run(
            "reject_summary",
            lambda: self._require_session().summaries.reject(summary_id),
            key=summary_id,
            title="AI summary",
            success="You can record again or document manually",
        )

    # ------------------------------------------------------------------
    # Attachments
    # ------------------------------------------------------------------

    async def upload_attachment(
        self,
        file_name: str,
        content: bytes,
        mime_type: str = "application/octet-stream",
        category: str = "exam",
    ) -> ActionResult[Attachment]:
        return await self._run(
            "upload_attachment",
            lambda: self._require_session().attachments.upload(
                file_name, content, mime_type, category
            ),
            key=file_name,
            title="Attachment",
            success=f"{file_name} attached",
        )

    async def delete_attachment(self, attachment_id: str) -> ActionResult[list[Attachment]]:
        return await self._run(
            "delete_attachment",
            lambda: self._require_session().attachments.delete(attachment_id),
            key=attachment_id,
            title="Attachment",
            success="Attachment removed",
        )

    async def download_attachment(self, attachment_id: str) -> ActionResult[bytes]:
        return await self._run(
            "download_attachment",
            lambda: self._require_session().attachments.download(attachment_id),
            key=attachment_id,
            title="Attachment",
        )

    # ------------------------------------------------------------------
    # Telemedicine
    # ------------------------------------------------------------------

    async def start_telemedicine(self) -> ActionResult[TelemedicineSession]:
        return await self._run(
            "start_telemedicine",
            lambda: self.telemed.create_session(self._require_session().encounter),
            title="Telemedicine",
            success="Video session created",
        )
