"""Waiting-list coordination: which patient is seen next."""

import asyncio
import logging
from typing import Optional, Union

from pydantic import ValidationError

from consult_os.engine.context import SessionContext
from consult_os.engine.guard import InFlightGuard
from consult_os.engine.registry import SessionRegistry
from consult_os.engine.session import ConsultationSession
from consult_os.errors import ConsultError, NotFoundError, PreconditionError, ResourceConflictError
from consult_os.models import QUEUE_TRANSITIONS, EnqueueRequest, QueueEntry, QueueStatus
from consult_os.notifications import QUEUE_TOPIC, SOURCE_MANUAL, RefreshTrigger

logger = logging.getLogger(__name__)

EntryRef = Union[QueueEntry, str]


class QueueCoordinator:
    """Ordered waiting list backed by the server.

    The local view is only ever replaced by a full refetch (poll, push, or
    after a mutating call). Failed network calls leave it untouched.
    """

    def __init__(self, ctx: SessionContext, registry: Optional[SessionRegistry] = None):
        self.ctx = ctx
        self.registry = registry or SessionRegistry(ctx)
        self.registry.queue = self
        self.guard = InFlightGuard()
        self._entries: list[QueueEntry] = []
        self._trigger = RefreshTrigger(
            "queue",
            self._refetch,
            broker=ctx.broker,
            topic=QUEUE_TOPIC,
            poll_interval=ctx.settings.queue_poll_interval,
        )
        self._advance_task: Optional[asyncio.Task] = None

    # ------------------------------------------------------------------
    # View
    # ------------------------------------------------------------------

    def list_active(self) -> list[QueueEntry]:
        """Non-terminal entries, most urgent first, then earliest scheduled."""
        return sorted((e for e in self._entries if e.is_active), key=QueueEntry.sort_key)

    def get(self, entry_id: str) -> Optional[QueueEntry]:
        return next((e for e in self._entries if e.id == entry_id), None)

    def find_by_encounter(self, encounter_id: str) -> Optional[QueueEntry]:
        return next((e for e in self._entries if e.encounter_id == encounter_id), None)

    def next_waiting(self) -> Optional[QueueEntry]:
        return next((e for e in self.list_active() if e.status == QueueStatus.WAITING), None)

    async def refresh(self) -> list[QueueEntry]:
        await self._trigger.fire(SOURCE_MANUAL)
        return self.list_active()

    async def _refetch(self, source: str) -> None:
        self._entries = await self.ctx.client.list_queue()
        self.ctx.obs.log_queue_refresh(source, len(self.list_active()))

    async def _refresh_after_mutation(self) -> None:
        try:
            await self.refresh()
        except ConsultError as e:
            logger.warning(f"Queue refresh after update failed: {e}")

    def start(self) -> None:
        self._trigger.start()

    async def stop(self) -> None:
        await self._trigger.stop()
        task, self._advance_task = self._advance_task, None
        if task is not None and not task.done():
            task.cancel()
            await asyncio.wait({task})

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def _resolve(self, entry: EntryRef) -> QueueEntry:
        if isinstance(entry, QueueEntry):
            return self.get(entry.id) or entry
        found = self.get(entry)
        if found is None:
            raise NotFoundError(f"Queue entry {entry} is not in the waiting list")
        return found

    def _apply(self, entry: QueueEntry, target: QueueStatus, **updates) -> QueueEntry:
        """Walk *entry* to *target* on a copy and swap it into the view."""
        working = entry.model_copy()
        for status in QUEUE_TRANSITIONS.path(entry.status, target):
            previous = working.status
            working.transition_to(status)
            self.ctx.obs.log_queue_transition(
                working.id, previous.value, status.value, encounter_id=working.encounter_id
            )
        for key, value in updates.items():
            setattr(working, key, value)
        self._entries = [working if e.id == working.id else e for e in self._entries]
        if self.get(working.id) is None:
            self._entries.append(working)
        return working

    @staticmethod
    def _require_edge(entry: QueueEntry, target: QueueStatus) -> None:
        # A terminal or otherwise stale entry means someone else moved it.
        if not QUEUE_TRANSITIONS.can(entry.status, target):
            raise ResourceConflictError(
                f"Queue entry {entry.id} is {entry.status.value}; cannot move to {target.value}"
            )

    async def call(self, entry: EntryRef) -> ConsultationSession:
        """Call a patient in and open their consultation.

        Calling an entry already in progress for this provider resumes it.
        """
        entry = self._resolve(entry)
        provider_id = self.ctx.provider_id
        async with self.guard.hold(f"call:{entry.id}"):
            owner = entry.provider_id
            if entry.status in (QueueStatus.CALLED, QueueStatus.IN_PROGRESS) and (
                owner and provider_id and owner != provider_id
            ):
                raise ResourceConflictError(
                    f"{entry.patient_name or entry.patient_id} is being seen by another provider"
                )

            if entry.status == QueueStatus.IN_PROGRESS:
                if entry.encounter_id:
                    return await self.registry.reopen(entry.encounter_id)
                return await self.registry.open(
                    entry.patient_id, entry.appointment_id, owner or provider_id
                )

            if entry.status == QueueStatus.WAITING:
                self._require_edge(entry, QueueStatus.CALLED)
            else:
                self._require_edge(entry, QueueStatus.IN_PROGRESS)
            with self.ctx.obs.operation("call_patient", patient_id=entry.patient_id):
                await self.ctx.client.call_patient(entry.patient_id)

            session = await self.registry.open(
                entry.patient_id, entry.appointment_id, owner or provider_id
            )
            self._apply(
                entry,
                QueueStatus.IN_PROGRESS,
                encounter_id=session.id,
                provider_id=owner or provider_id,
            )
            logger.info(f"Called {entry.patient_name or entry.patient_id} (encounter {session.id})")
        await self._refresh_after_mutation()
        return session

    async def return_entry(self, encounter_id: str) -> None:
        async with self.guard.hold(f"return:{encounter_id}"):
            entry = self.find_by_encounter(encounter_id)
            if entry is not None:
                self._require_edge(entry, QueueStatus.WAITING)
            with self.ctx.obs.operation("return_to_queue", encounter_id=encounter_id):
                await self.ctx.client.return_to_queue(encounter_id)
            if entry is not None:
                self._apply(entry, QueueStatus.WAITING)
        await self._refresh_after_mutation()

    async def finalize(self, encounter_id: str) -> None:
        async with self.guard.hold(f"finalize:{encounter_id}"):
            entry = self.find_by_encounter(encounter_id)
            if entry is not None:
                self._require_edge(entry, QueueStatus.COMPLETED)
            with self.ctx.obs.operation("finalize_queue_entry", encounter_id=encounter_id):
                await self.ctx.client.finalize_queue_entry(encounter_id)
            if entry is not None:
                self._apply(entry, QueueStatus.COMPLETED)
        await self._refresh_after_mutation()
        if self.ctx.settings.auto_advance:
            self._schedule_advance()

    async def enqueue(
        self, patient_id: str, appointment_id: Optional[str] = None, priority: int = 0
    ) -> QueueEntry:
        """Check a patient in."""
        try:
            request = EnqueueRequest(
                patient_id=patient_id, appointment_id=appointment_id, priority=priority
            )
        except ValidationError as e:
            raise PreconditionError(f"Invalid check-in: {e.errors()[0]['msg']}") from e
        with self.ctx.obs.operation("enqueue", patient_id=patient_id):
            entry = await self.ctx.client.enqueue(request)
        await self._refresh_after_mutation()
        return entry

    async def cancel(self, entry: EntryRef) -> None:
        entry = self._resolve(entry)
        async with self.guard.hold(f"cancel:{entry.id}"):
            self._require_edge(entry, QueueStatus.CANCELLED)
            with self.ctx.obs.operation("cancel_queue_entry", patient_id=entry.patient_id):
                await self.ctx.client.cancel_queue_entry(entry.id)
            self._apply(entry, QueueStatus.CANCELLED)
        await self._refresh_after_mutation()

    # ------------------------------------------------------------------
    # Auto-advance
    # ------------------------------------------------------------------

    def _schedule_advance(self) -> None:
        if self._advance_task is not None and not self._advance_task.done():
            self._advance_task.cancel()
        self._advance_task = asyncio.create_task(self._auto_advance(), name="queue-auto-advance")

    async def _auto_advance(self) -> Optional[ConsultationSession]:
        await asyncio.sleep(self.ctx.settings.auto_advance_delay)
        try:
            await self.refresh()
            entry = self.next_waiting()
            if entry is None:
                logger.info("Auto-advance: nobody waiting")
                return None
            session = await self.call(entry)
        except ConsultError as e:
            logger.warning(f"Auto-advance failed: {e}")
            self.ctx.notifier.warning("Could not call the next patient", str(e))
            return None
        self.ctx.notifier.info("Next patient", f"{entry.patient_name or entry.patient_id} called")
        return session
