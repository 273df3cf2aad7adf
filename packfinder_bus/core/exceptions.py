"""Error taxonomy shared by the event bus and the order state machines.

Every failure that crosses a component boundary is one of the kinds in
``ErrorKind``. The consumer runtime inspects the kind to decide whether a
handler failure is permanent (acknowledge and drop) or recoverable (negative
acknowledge so the broker redelivers).
"""

from __future__ import annotations

from enum import StrEnum
from typing import Any

MAX_ERROR_BYTES = 1024


class ErrorKind(StrEnum):
    """Closed set of error kinds."""

    INVALID_ARG = "invalid_arg"
    NOT_FOUND = "not_found"
    FORBIDDEN = "forbidden"
    STATE_CONFLICT = "state_conflict"
    CONFLICT = "conflict"
    DEPENDENCY = "dependency"
    INTERNAL = "internal"


PERMANENT_KINDS = frozenset(
    {
        ErrorKind.INVALID_ARG,
        ErrorKind.NOT_FOUND,
        ErrorKind.CONFLICT,
        ErrorKind.STATE_CONFLICT,
        ErrorKind.FORBIDDEN,
    }
)

_STATUS_CODES = {
    ErrorKind.INVALID_ARG: 400,
    ErrorKind.FORBIDDEN: 403,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.CONFLICT: 409,
    ErrorKind.STATE_CONFLICT: 422,
    ErrorKind.INTERNAL: 500,
    ErrorKind.DEPENDENCY: 503,
}


class BusError(Exception):
    """Base exception for the event bus and the business services.

    Attributes:
        kind: Error kind used for propagation decisions.
        detail: Human-readable error message.
        extra: Additional context about the error.
        status_code: HTTP-style status associated with the kind.

    Example:
            raise StateConflictError(
            "order is not awaiting a vendor decision",
            extra={"order_id": str(order_id), "status": order.status},
        )
    """

    kind: ErrorKind = ErrorKind.INTERNAL

    def __init__(self, detail: str, *, extra: dict[str, Any] | None = None) -> None:
        """Initialize the error.

        Args:
            detail: Human-readable error message.
            extra: Additional context about the error.
        """
        self.detail = detail
        self.extra = extra or {}
        super().__init__(detail)

    @property
    def status_code(self) -> int:
        """HTTP-style status for the error kind."""
        return _STATUS_CODES[self.kind]

    @property
    def retryable(self) -> bool:
        """Whether a caller may retry the operation unchanged."""
        return self.kind not in PERMANENT_KINDS

    def __str__(self) -> str:
        """Format error message with context."""
        if self.extra:
            extra_str = ", ".join(f"{k}={v!r}" for k, v in self.extra.items())
            return f"{self.kind}: {self.detail} ({extra_str})"
        return f"{self.kind}: {self.detail}"


class InvalidArgError(BusError):
    """Missing transaction, empty consumer name, nil id or malformed input."""

    kind = ErrorKind.INVALID_ARG


class NotFoundError(BusError):
    """Aggregate lookup returned nothing."""

    kind = ErrorKind.NOT_FOUND


class ForbiddenError(BusError):
    """Actor is not allowed to act on the aggregate."""

    kind = ErrorKind.FORBIDDEN


class StateConflictError(BusError):
    """Current status is not in the permitted predecessor set."""

    kind = ErrorKind.STATE_CONFLICT


class ConflictError(BusError):
    """A resource precondition failed."""

    kind = ErrorKind.CONFLICT


class DependencyError(BusError):
    """Underlying storage, broker or KV store failure."""

    kind = ErrorKind.DEPENDENCY


class InternalError(BusError):
    """Invariant violation."""

    kind = ErrorKind.INTERNAL


def error_kind(exc: BaseException) -> ErrorKind:
    """Return the kind of an exception; anything untyped is internal."""
    if isinstance(exc, BusError):
        return exc.kind
    return ErrorKind.INTERNAL


def is_permanent(exc: BaseException) -> bool:
    """Whether redelivering the same message can never succeed."""
    return error_kind(exc) in PERMANENT_KINDS


def truncate_error(message: str | BaseException | None, limit: int = MAX_ERROR_BYTES) -> str:
    """Truncate an error message to ``limit`` bytes of UTF-8.

    The cut never splits a multi-byte character.
    """
    if message is None:
        return ""
    text = str(message)
    encoded = text.encode("utf-8")
    if len(encoded) <= limit:
        return text
    return encoded[:limit].decode("utf-8", errors="ignore")


__all__ = [
    "MAX_ERROR_BYTES",
    "PERMANENT_KINDS",
    "BusError",
    "ConflictError",
    "DependencyError",
    "ErrorKind",
    "ForbiddenError",
    "InternalError",
    "InvalidArgError",
    "NotFoundError",
    "StateConflictError",
    "error_kind",
    "is_permanent",
    "truncate_error",
]
