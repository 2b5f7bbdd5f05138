"""Keeps at most one consultation session open."""

import asyncio
import logging
from datetime import date
from typing import TYPE_CHECKING, Optional

from consult_os.engine.context import SessionContext
from consult_os.engine.session import ConsultationSession
from consult_os.errors import NotFoundError, PreconditionError
from consult_os.models import Encounter, EncounterCreate
from consult_os.observability import EventType

if TYPE_CHECKING:
    from consult_os.engine.queue import QueueCoordinator

logger = logging.getLogger(__name__)


class SessionRegistry:
    """Opens, resumes and tears down consultation sessions.

    Opening a session for another encounter first flushes and closes the
    current one, so its timers and subscriptions are gone before the new
    encounter is loaded.
    """

    def __init__(self, ctx: SessionContext, queue: Optional["QueueCoordinator"] = None):
        self.ctx = ctx
        self.queue = queue
        self.active: Optional[ConsultationSession] = None
        self._lock = asyncio.Lock()

    async def open(
        self,
        patient_id: str,
        appointment_id: Optional[str] = None,
        provider_id: Optional[str] = None,
    ) -> ConsultationSession:
        """Resume today's unlocked encounter for the patient, or create one."""
        provider_id = provider_id or self.ctx.provider_id
        async with self._lock:
            current = self.active
            if current is not None and current.is_open and current.encounter.patient_id == patient_id:
                return current

            await self._close_active()
            encounter, created = await self._resolve(patient_id, appointment_id, provider_id)
            return await self._activate(encounter, created)

    async def reopen(self, encounter_id: str) -> ConsultationSession:
        """Open a past encounter by id; a locked one stays read-only until unlocked."""
        async with self._lock:
            current = self.active
            if current is not None and current.is_open and current.id == encounter_id:
                return current

            await self._close_active()
            encounter = await self.ctx.client.get_encounter(encounter_id)
            return await self._activate(encounter, created=False)

    async def close(self) -> None:
        async with self._lock:
            await self._close_active()

    async def _close_active(self) -> None:
        session = self.active
        if session is None:
            return
        await session.flush()
        await session.close()
        self.active = None

    async def _resolve(
        self,
        patient_id: str,
        appointment_id: Optional[str],
        provider_id: Optional[str],
    ) -> tuple[Encounter, bool]:
        try:
            encounters = await self.ctx.client.find_encounters(patient_id, date.today())
        except NotFoundError:
            encounters = []
        for encounter in encounters:
            if not encounter.is_locked:
                logger.info(f"Resuming encounter {encounter.id} for patient {patient_id}")
                return encounter, False

        if not appointment_id or not provider_id:
            raise PreconditionError(
                "An appointment and a provider are required to start a new consultation"
            )
        request = EncounterCreate(
            patient_id=patient_id, appointment_id=appointment_id, provider_id=provider_id
        )
        with self.ctx.obs.operation("create_encounter", patient_id=patient_id):
            encounter = await self.ctx.client.create_encounter(request)
        logger.info(f"Created encounter {encounter.id} for patient {patient_id}")
        return encounter, True

    async def _activate(self, encounter: Encounter, created: bool) -> ConsultationSession:
        session = ConsultationSession(
            self.ctx, encounter, queue=self.queue, on_close=self._on_closed
        )
        await session.load()
        session.start()
        self.active = session
        self.ctx.obs.log_session(
            EventType.SESSION_OPENED,
            encounter.id,
            patient_id=encounter.patient_id,
            created=created,
        )
        return session

    def _on_closed(self, session: ConsultationSession) -> None:
        if self.active is session:
            self.active = None
