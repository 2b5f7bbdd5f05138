"""Clinic REST API client over httpx."""

import logging
from datetime import date
from typing import Any, Optional

import httpx

from consult_os.config import Settings
from consult_os.errors import (
    ApiError,
    NotFoundError,
    ResourceConflictError,
    TransientNetworkError,
    format_error_detail,
)
from consult_os.models import (
    AISummary,
    Attachment,
    ClinicalNotes,
    Encounter,
    EncounterCreate,
    EnqueueRequest,
    QueueEntry,
    SummaryPayload,
    UploadTarget,
    VitalSigns,
)

logger = logging.getLogger(__name__)


def _items(payload: Any) -> list[dict[str, Any]]:
    """Accept both bare lists and ``{"items": [...]}`` envelopes."""
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict):
        for key in ("items", "summaries", "results"):
            if isinstance(payload.get(key), list):
                return payload[key]
    return []


class ClinicApiClient:
    """Async client for the clinic REST surface used by the session engine.

    Every method translates transport failures and HTTP statuses into the
    engine's error taxonomy; callers never see raw httpx exceptions.
    """

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        timeout: float = 30.0,
        upload_timeout: float = 120.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize the client.

        Args:
            base_url: API root, e.g. http://localhost:8000/api/v1
            token: Bearer token (optional)
            timeout: Request timeout in seconds
            upload_timeout: Timeout for direct blob transfers to storage
            transport: Optional transport override (tests use httpx.MockTransport)
        """
        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"

        self._base_url = base_url.rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            headers=headers,
            timeout=httpx.Timeout(timeout, connect=10.0),
            transport=transport,
        )
        # Presigned storage URLs reject foreign Authorization headers.
        self._storage = httpx.AsyncClient(
            timeout=httpx.Timeout(upload_timeout, connect=10.0),
            transport=transport,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "ClinicApiClient":
        return cls(
            base_url=settings.api_base_url,
            token=settings.api_token or None,
            timeout=settings.request_timeout,
            upload_timeout=settings.upload_timeout,
        )

    async def aclose(self) -> None:
        await self._client.aclose()
        await self._storage.aclose()

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    async def _send(
        self,
        client: httpx.AsyncClient,
        method: str,
        url: str,
        **kwargs: Any,
    ) -> httpx.Response:
        try:
            response = await client.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            logger.warning(f"{method} {url} timed out: {e}")
            raise TransientNetworkError(f"{method} {url} timed out") from e
        except httpx.TransportError as e:
            logger.warning(f"{method} {url} transport error: {e}")
            raise TransientNetworkError(f"Could not reach {url}: {e}") from e

        if response.is_success:
            return response

        try:
            body: Any = response.json()
        except ValueError:
            body = response.text
        detail = format_error_detail(body)
        status = response.status_code

        if status == 404:
            raise NotFoundError(detail, path=url)
        if status == 409:
            raise ResourceConflictError(detail)
        if status >= 500:
            logger.error(f"{method} {url} failed with {status}: {detail}")
            raise TransientNetworkError(f"Server error {status}: {detail}", status_code=status)
        logger.error(f"{method} {url} failed with {status}: {detail}")
        raise ApiError(status, detail)

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        response = await self._send(self._client, method, path, **kwargs)
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            return response.text

    # ------------------------------------------------------------------
    # Queue
    # ------------------------------------------------------------------

    async def list_queue(self) -> list[QueueEntry]:
        data = await self._request("GET", "/queue")
        return [QueueEntry.model_validate(item) for item in _items(data)]

    async def enqueue(self, request: EnqueueRequest) -> QueueEntry:
        data = await self._request("POST", "/queue/enqueue", json=request.model_dump())
        return QueueEntry.model_validate(data)

    async def call_patient(self, patient_id: str) -> Optional[dict[str, Any]]:
        return await self._request("POST", f"/queue/call/{patient_id}")

    async def return_to_queue(self, encounter_id: str) -> None:
        await self._request("POST", f"/queue/return/{encounter_id}")

    async def finalize_queue_entry(self, encounter_id: str) -> None:
        await self._request("POST", f"/queue/finalize/{encounter_id}")

    async def cancel_queue_entry(self, entry_id: str) -> None:
        await self._request("POST", f"/queue/cancel/{entry_id}")

    # ------------------------------------------------------------------
    # Encounters
    # ------------------------------------------------------------------

    async def find_encounters(self, patient_id: str, day: Optional[date] = None) -> list[Encounter]:
        params = {"patient_id": patient_id}
        if day is not None:
            params["date"] = day.isoformat()
        data = await self._request("GET", "/consultations", params=params)
        return [Encounter.model_validate(item) for item in _items(data)]

    async def get_encounter(self, encounter_id: str) -> Encounter:
        data = await self._request("GET", f"/consultations/{encounter_id}")
        return Encounter.model_validate(data)

    async def create_encounter(self, request: EncounterCreate) -> Encounter:
        data = await self._request("POST", "/consultations", json=request.model_dump())
        return Encounter.model_validate(data)

    async def update_encounter(self, encounter_id: str, fields: dict[str, Any]) -> None:
        await self._request("PATCH", f"/consultations/{encounter_id}", json=fields)

    # ------------------------------------------------------------------
    # Vitals and notes (update-or-create sub-resources)
    # ------------------------------------------------------------------

    async def get_vitals(self, encounter_id: str) -> VitalSigns:
        data = await self._request("GET", f"/vitals/{encounter_id}")
        return VitalSigns.model_validate(data or {})

    async def update_vitals(self, encounter_id: str, vitals: VitalSigns) -> None:
        await self._request("PUT", f"/vitals/{encounter_id}", json=vitals.model_dump())

    async def create_vitals(self, encounter_id: str, vitals: VitalSigns) -> None:
        await self._request("POST", f"/vitals/{encounter_id}", json=vitals.model_dump())

    async def get_notes(self, encounter_id: str) -> ClinicalNotes:
        data = await self._request("GET", f"/notes/{encounter_id}")
        return ClinicalNotes.model_validate(data or {})

    async def update_notes(self, encounter_id: str, notes: ClinicalNotes) -> None:
        await self._request("PUT", f"/notes/{encounter_id}", json=notes.model_dump())

    async def create_notes(self, encounter_id: str, notes: ClinicalNotes) -> None:
        await self._request("POST", f"/notes/{encounter_id}", json=notes.model_dump())

    # ------------------------------------------------------------------
    # Attachments
    # ------------------------------------------------------------------

    async def list_attachments(self, encounter_id: str) -> list[Attachment]:
        data = await self._request("GET", f"/attachments/{encounter_id}")
        return [Attachment.model_validate(item) for item in _items(data)]

    async def upload_attachment(
        self,
        *,
        encounter_id: str,
        patient_id: str,
        file_name: str,
        content: bytes,
        mime_type: str,
        category: str,
    ) -> Attachment:
        data = await self._request(
            "POST",
            "/attachments/upload",
            data={
                "consultation_id": encounter_id,
                "patient_id": patient_id,
                "category": category,
            },
            files={"file": (file_name, content, mime_type)},
        )
        return Attachment.model_validate(data)

    async def delete_attachment(self, attachment_id: str) -> None:
        await self._request("DELETE", f"/attachments/{attachment_id}")

    async def download(self, url: str) -> bytes:
        external = url.startswith(("http://", "https://")) and not url.startswith(self._base_url)
        response = await self._send(self._storage if external else self._client, "GET", url)
        return response.content

    # ------------------------------------------------------------------
    # Recording upload
    # ------------------------------------------------------------------

    async def start_recording_upload(
        self, encounter_id: str, meta: Optional[dict[str, Any]] = None
    ) -> UploadTarget:
        data = await self._request(
            "POST",
            "/record/start",
            json={"consultation_id": encounter_id, "consent": True, "meta": meta or {}},
        )
        return UploadTarget.model_validate(data)

    async def transfer_blob(self, target: UploadTarget, blob: bytes, mime_type: str) -> None:
        """Send the blob straight to storage (PUT, or form POST when fields are issued)."""
        if target.upload_fields:
            await self._send(
                self._storage,
                "POST",
                target.presigned_upload_url,
                data=target.upload_fields,
                files={"file": ("recording.webm", blob, mime_type)},
            )
        else:
            await self._send(
                self._storage,
                "PUT",
                target.presigned_upload_url,
                content=blob,
                headers={"Content-Type": mime_type},
            )

    async def complete_recording(self, recording_id: str) -> None:
        await self._request("POST", f"/record/complete/{recording_id}")

    # ------------------------------------------------------------------
    # Summaries
    # ------------------------------------------------------------------

    async def list_summaries(self, encounter_id: str) -> list[AISummary]:
        data = await self._request("GET", "/summaries", params={"consultation_id": encounter_id})
        return [AISummary.model_validate(item) for item in _items(data)]

    async def accept_summary(self, summary_id: str, payload: SummaryPayload) -> None:
        await self._request(
            "POST",
            f"/summaries/{summary_id}/accept",
            json={"edited_payload": payload.model_dump()},
        )

    # ------------------------------------------------------------------
    # Telemedicine
    # ------------------------------------------------------------------

    async def create_telemed_session(self, body: dict[str, Any]) -> dict[str, Any]:
        data = await self._request("POST", "/telemed/sessions", json=body)
        return data or {}
