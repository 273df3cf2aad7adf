"""CLI utilities for running async operations and formatting output."""

from packfinder_bus.cli.utils.async_runner import coro
from packfinder_bus.cli.utils.formatters import (
    error,
    field,
    header,
    info,
    success,
)

__all__ = [
    "coro",
    "error",
    "field",
    "header",
    "info",
    "success",
]
