"""Per-key serialization of user-triggered operations."""

from contextlib import asynccontextmanager
from typing import AsyncIterator

from consult_os.errors import ResourceConflictError


class InFlightGuard:
    """Rejects a second invocation of an action while the first is running.

    This is the programmatic equivalent of disabling a button while its
    request is in flight: duplicates fail fast instead of queueing.
    """

    def __init__(self) -> None:
        self._busy: set[str] = set()

    def is_busy(self, key: str) -> bool:
        return key in self._busy

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        if key in self._busy:
            raise ResourceConflictError(f"{key} is already in progress")
        self._busy.add(key)
        try:
            yield
        finally:
            self._busy.discard(key)
