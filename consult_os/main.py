"""Entry point for embedding the consultation engine."""

import logging
import sys
from typing import Callable, Optional

from consult_os.config import Settings, get_settings


def setup_logging(settings: Optional[Settings] = None):
    """Configure logging based on settings."""
    settings = settings or get_settings()

    logging.basicConfig(
        level=getattr(logging, settings.log_level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )


def create_desk(
    settings: Optional[Settings] = None,
    provider_id: Optional[str] = None,
    device_factory: Optional[Callable] = None,
):
    """Wire a ready-to-start consultation desk.

    Example:
        import asyncio
        from consult_os.main import create_desk

        async def run():
            desk = create_desk(provider_id="dr-1", device_factory=Microphone)
            await desk.start()
            result = await desk.call(desk.queue.next_waiting())
            ...
            await desk.close()

        asyncio.run(run())
    """
    from consult_os.client import ClinicApiClient
    from consult_os.engine import ConsultationDesk, SessionContext, UserNotifier
    from consult_os.notifications import NotificationBroker
    from consult_os.observability import ObservabilityLogger

    settings = settings or get_settings()

    ctx = SessionContext(
        settings=settings,
        client=ClinicApiClient.from_settings(settings),
        broker=NotificationBroker(),
        notifier=UserNotifier(),
        obs=ObservabilityLogger(
            log_dir=settings.observability_dir,
            enabled=settings.observability_enabled,
        ),
        provider_id=provider_id,
        device_factory=device_factory,
    )
    return ConsultationDesk(ctx)
