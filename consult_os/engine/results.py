"""Explicit success/failure values returned by user-facing actions."""

from dataclasses import dataclass
from enum import Enum
from typing import Generic, Optional, TypeVar

from consult_os.errors import (
    ApiError,
    ConsultError,
    DeviceError,
    NotFoundError,
    PreconditionError,
    ResourceConflictError,
    SaveError,
    TransientNetworkError,
)

T = TypeVar("T")


class ErrorKind(str, Enum):
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    NETWORK = "network"
    API = "api"
    CONFLICT = "conflict"
    DEVICE = "device"


_KINDS: list[tuple[type[ConsultError], ErrorKind]] = [
    (PreconditionError, ErrorKind.VALIDATION),
    (NotFoundError, ErrorKind.NOT_FOUND),
    (SaveError, ErrorKind.NOT_FOUND),
    (TransientNetworkError, ErrorKind.NETWORK),
    (ResourceConflictError, ErrorKind.CONFLICT),
    (DeviceError, ErrorKind.DEVICE),
    (ApiError, ErrorKind.API),
]


def classify_error(error: ConsultError) -> ErrorKind:
    for cls, kind in _KINDS:
        if isinstance(error, cls):
            return kind
    return ErrorKind.API


@dataclass
class ActionResult(Generic[T]):
    """Outcome of a user-initiated action."""

    ok: bool
    value: Optional[T] = None
    error_kind: Optional[ErrorKind] = None
    message: str = ""

    @classmethod
    def success(cls, value: Optional[T] = None, message: str = "") -> "ActionResult[T]":
        return cls(ok=True, value=value, message=message)

    @classmethod
    def failure(cls, error: ConsultError) -> "ActionResult[T]":
        return cls(ok=False, error_kind=classify_error(error), message=str(error))
