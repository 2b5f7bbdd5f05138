"""Consultation session engine."""

from consult_os.engine.attachments import AttachmentStore
from consult_os.engine.context import Notice, NoticeLevel, SessionContext, UserNotifier
from consult_os.engine.desk import ConsultationDesk
from consult_os.engine.guard import InFlightGuard
from consult_os.engine.queue import QueueCoordinator
from consult_os.engine.recording import CaptureDevice, RecordingPipeline
from consult_os.engine.registry import SessionRegistry
from consult_os.engine.results import ActionResult, ErrorKind
from consult_os.engine.session import ConsultationSession, FinalizeReport
from consult_os.engine.summary import SummaryNotifier
from consult_os.engine.telemed import TelemedicineBridge

__all__ = [
    "ActionResult",
    "AttachmentStore",
    "CaptureDevice",
    "ConsultationDesk",
    "ConsultationSession",
    "ErrorKind",
    "FinalizeReport",
    "InFlightGuard",
    "Notice",
    "NoticeLevel",
    "QueueCoordinator",
    "RecordingPipeline",
    "SessionContext",
    "SessionRegistry",
    "SummaryNotifier",
    "TelemedicineBridge",
    "UserNotifier",
]
