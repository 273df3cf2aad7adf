"""Context propagation for structured logging.

Consumer and publisher tasks set the identifiers of the message they are
working on once, and every log record emitted below that point carries them.
The context lives in a ``ContextVar`` so each asyncio task sees its own copy.
"""

from __future__ import annotations

import contextlib
import logging
from collections.abc import Iterator
from contextvars import ContextVar
from typing import Any

_log_context: ContextVar[dict[str, Any]] = ContextVar("log_context", default={})


def set_log_context(**kwargs: Any) -> None:
    """Add fields to the logging context of the current task."""
    current = _log_context.get().copy()
    current.update(kwargs)
    _log_context.set(current)


def get_log_context() -> dict[str, Any]:
    """Return a copy of the current logging context."""
    return _log_context.get().copy()


def clear_log_context() -> None:
    """Clear all logging context for the current task."""
    _log_context.set({})


@contextlib.contextmanager
def log_context(**kwargs: Any) -> Iterator[None]:
    """Scope fields to a block and restore the previous context on exit.

    Example:
        ```python
        with log_context(consumer="analytics", event_id=str(envelope.event_id)):
            await handler(message)
        ```
    """
    current = _log_context.get().copy()
    current.update(kwargs)
    token = _log_context.set(current)
    try:
        yield
    finally:
        _log_context.reset(token)


class ContextInjectingFilter(logging.Filter):
    """Copy the current logging context onto every LogRecord.

    Installed on the queue handler by ``configure_logging`` so JSONFormatter
    sees the fields without any change at the call sites.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        for key, value in _log_context.get().items():
            if not hasattr(record, key):
                setattr(record, key, value)
        return True


__all__ = [
    "ContextInjectingFilter",
    "clear_log_context",
    "get_log_context",
    "log_context",
    "set_log_context",
]
