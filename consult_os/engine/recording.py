"""Consent-gated audio capture and two-phase upload for AI summarization."""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from typing import Callable, Optional

from consult_os.engine.context import SessionContext
from consult_os.errors import (
    ConsultError,
    DeviceError,
    PreconditionError,
    ResourceConflictError,
)
from consult_os.models import Encounter, Recording, RecordingState
from consult_os.observability import EventType

logger = logging.getLogger(__name__)


class CaptureDevice(ABC):
    """Abstract microphone/camera capture supplied by the host UI."""

    @abstractmethod
    async def open(self) -> None:
        """Acquire the device.

        Raises:
            DeviceError: If permission is denied or no device is available
        """
        pass

    @abstractmethod
    def start(self) -> None:
        """Begin buffering media."""
        pass

    @abstractmethod
    def pause(self) -> None:
        pass

    @abstractmethod
    def resume(self) -> None:
        pass

    @abstractmethod
    async def stop(self) -> bytes:
        """Stop capture and return the buffered media as one blob."""
        pass

    @abstractmethod
    def release(self) -> None:
        """Release the device tracks. Must be idempotent."""
        pass


class RecordingPipeline:
    """idle → consent_pending → recording → stopped → uploading →
    awaiting_processing → done | error.

    The capture device is acquired only after consent is granted and is
    released on every exit from ``recording``, including failures.
    """

    def __init__(
        self,
        ctx: SessionContext,
        encounter: Encounter,
        on_awaiting: Optional[Callable[[str], None]] = None,
    ):
        self.ctx = ctx
        self.encounter = encounter
        self.on_awaiting = on_awaiting
        self.recording: Recording = encounter.recording or Recording()
        self.encounter.recording = self.recording

        self._device: Optional[CaptureDevice] = None
        self._upload_task: Optional[asyncio.Task] = None
        self._started_at: Optional[float] = None
        self._paused_at: Optional[float] = None
        self._paused_total = 0.0

    # ------------------------------------------------------------------
    # State helpers
    # ------------------------------------------------------------------

    @property
    def state(self) -> RecordingState:
        return self.recording.state

    @property
    def holds_device(self) -> bool:
        return self._device is not None

    @property
    def is_paused(self) -> bool:
        return self._paused_at is not None

    @property
    def duration_seconds(self) -> float:
        if self._started_at is None:
            return self.recording.duration_seconds
        now = self._paused_at if self._paused_at is not None else time.monotonic()
        return max(0.0, now - self._started_at - self._paused_total)

    def _transition(self, target: RecordingState, error_message: Optional[str] = None) -> None:
        previous = self.recording.state
        self.recording.transition_to(target)
        if error_message:
            self.recording.error_message = error_message
        self.ctx.obs.log_recording_transition(
            encounter_id=self.encounter.id,
            from_state=previous.value,
            to_state=target.value,
            recording_id=self.recording.id,
            duration_seconds=self.recording.duration_seconds or None,
            error_message=error_message,
        )
        logger.debug(f"Recording {self.recording.id or '-'}: {previous.value} -> {target.value}")

    def _release_device(self) -> None:
        device, self._device = self._device, None
        if device is None:
            return
        try:
            device.release()
        except Exception as e:
            logger.warning(f"Capture device release failed: {e}")

    def _freeze_duration(self) -> None:
        self.recording.duration_seconds = round(self.duration_seconds, 1)
        self._started_at = None
        self._paused_at = None
        self._paused_total = 0.0

    # ------------------------------------------------------------------
    # Consent and capture
    # ------------------------------------------------------------------

    def request_consent(self) -> Recording:
        if not self.recording.is_resting:
            raise ResourceConflictError(
                f"A recording is already {self.state.value} for this encounter"
            )
        if self.state != RecordingState.IDLE:
            # A finished recording is replaced, never reused.
            self.recording = Recording()
            self.encounter.recording = self.recording
        self._transition(RecordingState.CONSENT_PENDING)
        return self.recording

    def decline_consent(self) -> None:
        self.recording.consent_given = False
        self._transition(RecordingState.IDLE)

    async def grant_consent(self) -> Recording:
        if self.state != RecordingState.CONSENT_PENDING:
            # Reaching capture without a pending consent is a programming error.
            self._transition(RecordingState.RECORDING)

        self.recording.consent_given = True
        if self.ctx.device_factory is None:
            self._transition(RecordingState.IDLE, "No capture device configured")
            raise DeviceError("No capture device configured")

        self._device = self.ctx.device_factory()
        try:
            await self._device.open()
            self._device.start()
        except Exception as e:
            self._release_device()
            self._transition(RecordingState.IDLE, str(e))
            if isinstance(e, DeviceError):
                raise
            raise DeviceError(f"Capture device unavailable: {e}") from e

        self._started_at = time.monotonic()
        self._paused_total = 0.0
        self._paused_at = None
        self._transition(RecordingState.RECORDING)
        return self.recording

    def pause(self) -> None:
        if self.state != RecordingState.RECORDING or self._device is None:
            raise PreconditionError("No recording in progress")
        if self._paused_at is not None:
            return
        self._device.pause()
        self._paused_at = time.monotonic()

    def resume(self) -> None:
        if self.state != RecordingState.RECORDING or self._device is None:
            raise PreconditionError("No recording in progress")
        if self._paused_at is None:
            return
        self._device.resume()
        self._paused_total += time.monotonic() - self._paused_at
        self._paused_at = None

    def device_lost(self, error: Exception) -> None:
        """The capture device was revoked or disconnected mid-capture."""
        if self.state != RecordingState.RECORDING:
            logger.debug(f"Ignoring device loss in state {self.state.value}: {error}")
            return
        self._release_device()
        self._freeze_duration()
        self._transition(RecordingState.ERROR, f"Capture device lost: {error}")
        self.ctx.notifier.error("Recording interrupted", "The microphone was disconnected.")

    # ------------------------------------------------------------------
    # Stop and upload
    # ------------------------------------------------------------------

    async def stop(self) -> Recording:
        """Stop capture, then upload the blob and hand off to processing."""
        if self.state != RecordingState.RECORDING:
            raise PreconditionError("No recording in progress")
        self._transition(RecordingState.STOPPED)
        device = self._device
        try:
            if device is None:
                raise DeviceError("Capture device is no longer available")
            blob = await device.stop()
        except Exception as e:
            self._release_device()
            if self.state == RecordingState.STOPPED:
                self._freeze_duration()
                self._transition(RecordingState.ERROR, str(e))
            if isinstance(e, DeviceError):
                raise
            raise DeviceError(f"Failed to finish capture: {e}") from e
        self._release_device()

        if self.state != RecordingState.STOPPED:
            # The session closed while capture was finishing.
            raise ResourceConflictError("Recording discarded because the session closed")
        self._freeze_duration()

        self._transition(RecordingState.UPLOADING)
        task = asyncio.create_task(self._upload(blob))
        self._upload_task = task
        try:
            await asyncio.wait({task})
        finally:
            if self._upload_task is task and task.done():
                self._upload_task = None
        if task.cancelled():
            raise ResourceConflictError("Recording upload cancelled because the session closed")
        task.result()
        return self.recording

    async def _upload(self, blob: bytes) -> None:
        settings = self.ctx.settings
        encounter_id = self.encounter.id
        try:
            with self.ctx.obs.operation("record_start", encounter_id=encounter_id):
                target = await self.ctx.client.start_recording_upload(
                    encounter_id,
                    meta={
                        "device": "desktop",
                        "language": settings.recording_language,
                        "duration_seconds": self.recording.duration_seconds,
                    },
                )
            self.recording.id = target.recording_id

            with self.ctx.obs.operation("record_transfer", encounter_id=encounter_id, size=len(blob)):
                await self.ctx.client.transfer_blob(target, blob, settings.recording_mime_type)

            with self.ctx.obs.operation("record_complete", encounter_id=encounter_id):
                await self.ctx.client.complete_recording(target.recording_id)
        except ConsultError as e:
            self._transition(RecordingState.ERROR, str(e))
            raise
        except asyncio.CancelledError:
            self._transition(RecordingState.ERROR, "Upload cancelled")
            raise

        self._transition(RecordingState.AWAITING_PROCESSING)
        if self.on_awaiting is not None:
            self.on_awaiting(target.recording_id)

    def processing_finished(self, recording_id: str, ok: bool, message: Optional[str] = None) -> bool:
        """Close the pipeline once the server reports the summary outcome."""
        if self.recording.id != recording_id or self.state != RecordingState.AWAITING_PROCESSING:
            return False
        self._transition(RecordingState.DONE if ok else RecordingState.ERROR, message)
        return True

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    async def shutdown(self) -> Optional[RecordingState]:
        """Release everything this pipeline holds.

        Returns the state of a recording the server is still processing, or
        ``None`` when nothing is left pending.
        """
        state = self.state
        if state == RecordingState.CONSENT_PENDING:
            self._transition(RecordingState.IDLE)
        elif state in (RecordingState.RECORDING, RecordingState.STOPPED):
            self._release_device()
            self._freeze_duration()
            self._transition(RecordingState.ERROR, "Recording abandoned when the session closed")
            self._log_abandoned(state)

        task, self._upload_task = self._upload_task, None
        if task is not None and not task.done():
            task.cancel()
            await asyncio.wait({task})
            self._log_abandoned(state)

        self._release_device()

        if self.state == RecordingState.AWAITING_PROCESSING:
            # Server-side work continues; the summary will land on the encounter.
            self._log_abandoned(state)
            return self.state
        return None

    def _log_abandoned(self, state: RecordingState) -> None:
        self.ctx.obs.log_recording_transition(
            encounter_id=self.encounter.id,
            from_state=state.value,
            to_state=self.state.value,
            recording_id=self.recording.id,
            event_type=EventType.RECORDING_ABANDONED,
        )
