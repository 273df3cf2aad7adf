"""Helpers to normalize environment values before validation."""

from __future__ import annotations

import re
from datetime import timedelta
from typing import Any

_DURATION_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*(ms|s|m|h|d)?\s*$")
_UNIT_SECONDS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0, "d": 86400.0}


def strip_inline_comment(value: str) -> str:
    """Remove inline comments of the form ``"value  # comment"``.

    A ``#`` without preceding whitespace is part of the value.
    """
    idx = value.find("#")
    if idx == -1:
        return value.strip()
    if idx == 0:
        return ""
    if not value[idx - 1].isspace():
        return value.strip()
    return value[:idx].strip()


def parse_duration_seconds(value: Any) -> Any:
    """Convert ``"500ms"``, ``"10s"``, ``"7d"`` or a bare number into seconds.

    Non-string values (and strings that are not durations) pass through so
    pydantic reports the validation error.
    """
    if isinstance(value, timedelta):
        return value.total_seconds()
    if not isinstance(value, str):
        return value
    cleaned = strip_inline_comment(value)
    match = _DURATION_RE.match(cleaned)
    if match is None:
        return cleaned or value
    number, unit = match.groups()
    return float(number) * _UNIT_SECONDS[unit or "s"]
