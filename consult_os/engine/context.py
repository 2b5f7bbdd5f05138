"""Explicit context handed to every engine component."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Callable, Optional

from consult_os.client import ClinicApiClient
from consult_os.config import Settings
from consult_os.notifications import NotificationBroker
from consult_os.observability import ObservabilityLogger

if TYPE_CHECKING:
    from consult_os.engine.recording import CaptureDevice

logger = logging.getLogger(__name__)


class NoticeLevel(str, Enum):
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


@dataclass
class Notice:
    """A non-blocking message for the clinician (a toast in the UI)."""

    level: NoticeLevel
    title: str
    message: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class UserNotifier:
    """Collects user-facing notices and forwards them to the UI layer."""

    def __init__(self, max_history: int = 100) -> None:
        self._callbacks: list[Callable[[Notice], None]] = []
        self._max_history = max_history
        self.history: list[Notice] = []

    def add_callback(self, callback: Callable[[Notice], None]) -> None:
        self._callbacks.append(callback)

    def notify(self, level: NoticeLevel, title: str, message: str) -> Notice:
        notice = Notice(level=level, title=title, message=message)
        self.history.append(notice)
        del self.history[: -self._max_history]

        log = logger.warning if level in (NoticeLevel.WARNING, NoticeLevel.ERROR) else logger.info
        log(f"[{level.value}] {title}: {message}")

        for callback in self._callbacks:
            try:
                callback(notice)
            except Exception as e:
                logger.warning(f"Notice callback failed: {e}")
        return notice

    def info(self, title: str, message: str) -> Notice:
        return self.notify(NoticeLevel.INFO, title, message)

    def success(self, title: str, message: str) -> Notice:
        return self.notify(NoticeLevel.SUCCESS, title, message)

    def warning(self, title: str, message: str) -> Notice:
        return self.notify(NoticeLevel.WARNING, title, message)

    def error(self, title: str, message: str) -> Notice:
        return self.notify(NoticeLevel.ERROR, title, message)


@dataclass
class SessionContext:
    """Everything a component needs; created at desk start, closed at desk end."""

    settings: Settings
    client: ClinicApiClient
    broker: NotificationBroker
    notifier: UserNotifier
    obs: ObservabilityLogger
    provider_id: Optional[str] = None
    device_factory: Optional[Callable[[], "CaptureDevice"]] = None
