"""Error taxonomy and the typed Outcome returned by every public command.

Components raise CoreError subclasses internally. SessionController converts
them into Outcome values so nothing escapes to the caller uncaught.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional


class ErrorKind(str, Enum):
    INVALID_STATE_TRANSITION = "invalid_state_transition"
    PROVIDER_DISCONNECTED = "provider_disconnected"
    OUT_OF_ORDER_RESULT = "out_of_order_result"
    REQUEST_CANCELLED = "request_cancelled"
    REQUEST_FAILED = "request_failed"
    TIMEOUT = "timeout"
    CAPTURE_PERMISSION = "capture_permission"
    INVALID_ARGUMENT = "invalid_argument"


class CoreError(Exception):
    kind = ErrorKind.REQUEST_FAILED


class InvalidStateTransition(CoreError):
    kind = ErrorKind.INVALID_STATE_TRANSITION


class AlreadyActiveError(InvalidStateTransition):
    pass


class ProviderDisconnected(CoreError):
    kind = ErrorKind.PROVIDER_DISCONNECTED


class RequestFailed(CoreError):
    kind = ErrorKind.REQUEST_FAILED


class RequestTimeout(RequestFailed):
    kind = ErrorKind.TIMEOUT


class CapturePermissionError(CoreError):
    kind = ErrorKind.CAPTURE_PERMISSION


class InvalidArgument(CoreError):
    kind = ErrorKind.INVALID_ARGUMENT


@dataclass
class Outcome:
    ok: bool
    value: Any = None
    error: Optional[ErrorKind] = None
    detail: Optional[str] = None

    @classmethod
    def success(cls, value: Any = None) -> "Outcome":
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, error: ErrorKind, detail: Optional[str] = None, value: Any = None) -> "Outcome":
        return cls(ok=False, value=value, error=error, detail=detail)

    @classmethod
    def from_error(cls, exc: CoreError, value: Any = None) -> "Outcome":
        return cls.failure(exc.kind, detail=str(exc) or type(exc).__name__, value=value)
