"""Time-boxed video sessions tied to an encounter."""

import logging
from datetime import datetime, timedelta, timezone

from consult_os.engine.context import SessionContext
from consult_os.errors import ApiError
from consult_os.models import Encounter, TelemedicineSession

logger = logging.getLogger(__name__)


class TelemedicineBridge:
    """Creates telemedicine sessions; owns nothing beyond the returned ids."""

    def __init__(self, ctx: SessionContext):
        self.ctx = ctx

    async def create_session(self, encounter: Encounter) -> TelemedicineSession:
        start = datetime.now(timezone.utc)
        minutes = self.ctx.settings.telemed_duration_minutes
        end = start + timedelta(minutes=minutes)

        body = {
            "consultation_id": encounter.id,
            "appointment_id": encounter.appointment_id,
            "doctor_id": encounter.provider_id or self.ctx.provider_id,
            "allow_recording": False,
            "max_duration_minutes": minutes,
            "scheduled_start": start.isoformat(),
            "scheduled_end": end.isoformat(),
        }
        with self.ctx.obs.operation("create_telemed_session", encounter_id=encounter.id):
            data = await self.ctx.client.create_telemed_session(body)

        session_id = data.get("session_id") or data.get("id")
        if not session_id:
            raise ApiError(502, "Telemedicine service returned no session id")
        session_id = str(session_id)

        session = TelemedicineSession(
            id=session_id,
            encounter_id=encounter.id,
            scheduled_start=start,
            scheduled_end=end,
            link=data.get("link") or self.join(session_id),
        )
        logger.info(f"Telemedicine session {session.id} created for encounter {encounter.id}")
        return session

    def join(self, session_id: str) -> str:
        """Navigation target for a session."""
        return f"{self.ctx.settings.telemed_link_base.rstrip('/')}/{session_id}"
