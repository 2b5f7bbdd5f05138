"""Error taxonomy shared by the REST client and the session engine."""

from typing import Any, Optional


class ConsultError(Exception):
    """Base exception for recoverable engine errors."""

    pass


class PreconditionError(ConsultError):
    """A required input is missing (e.g. no resolvable appointment)."""

    pass


class NotFoundError(ConsultError):
    """The server answered 404.

    On an update path this is the signal to fall back to a create call.
    """

    def __init__(self, message: str, path: Optional[str] = None):
        super().__init__(message)
        self.path = path


class SaveError(ConsultError):
    """An update-or-create save failed on its create fallback."""

    pass


class TransientNetworkError(ConsultError):
    """Connection failure, timeout, or a 5xx from the server."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ApiError(ConsultError):
    """Any other non-success response."""

    def __init__(self, status_code: int, detail: str):
        super().__init__(f"Request failed ({status_code}): {detail}")
        self.status_code = status_code
        self.detail = detail


class ResourceConflictError(ConsultError):
    """The operation conflicts with something already in progress."""

    pass


class DeviceError(ConsultError):
    """Capture device unavailable, permission denied, or revoked."""

    pass


class InvalidTransitionError(RuntimeError):
    """An illegal state-machine edge was attempted.

    This is a programming error and is never converted into a user-facing
    result.
    """

    def __init__(self, machine: str, current: Any, target: Any):
        current_value = getattr(current, "value", current)
        target_value = getattr(target, "value", target)
        super().__init__(f"{machine}: illegal transition {current_value} -> {target_value}")
        self.machine = machine
        self.current = current
        self.target = target


def format_error_detail(payload: Any) -> str:
    """Flatten an API error body into a readable message.

    FastAPI validation errors arrive as ``{"detail": [{"loc": [...], "msg": ...}]}``
    and are rendered as ``field: msg; field: msg``.
    """
    if isinstance(payload, dict):
        detail = payload.get("detail")
        if isinstance(detail, list):
            parts = []
            for err in detail:
                if not isinstance(err, dict):
                    parts.append(str(err))
                    continue
                loc = [str(p) for p in err.get("loc", [])[1:]]
                field = ".".join(loc) or "field"
                parts.append(f"{field}: {err.get('msg', 'invalid')}")
            return "; ".join(parts)
        if isinstance(detail, str):
            return detail
        if detail is not None:
            return str(detail)
        if "message" in payload:
            return str(payload["message"])
    if isinstance(payload, str) and payload:
        return payload
    return "unknown error"
