"""Domain events and the versioned wire envelope.

A ``DomainEvent`` is what a state machine hands to the emitter. The emitter
wraps its ``data`` in a ``PayloadEnvelope`` with a fresh ``event_id`` and stores
the envelope bytes in the outbox. The same bytes travel through the broker
unchanged, so consumers decode exactly what was committed.

Wire format::

    {"version": 1, "event_id": "<uuid>", "occurred_at": "2026-01-02T03:04:05.000000Z",
     "actor": {"user_id": "<uuid>", "store_id": "<uuid>|null", "role": "vendor"} | null,
     "data": {...}}
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_serializer, field_validator

from packfinder_bus.core.events.types import AggregateType, EventType
from packfinder_bus.core.exceptions import InvalidArgError

NIL_UUID = uuid.UUID(int=0)


def format_timestamp(value: datetime) -> str:
    """RFC 3339 UTC with a ``Z`` suffix."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


class Actor(BaseModel):
    """Who triggered the event."""

    model_config = ConfigDict(frozen=True)

    user_id: uuid.UUID
    store_id: uuid.UUID | None = None
    role: str = ""


class DomainEvent(BaseModel):
    """An event about to be emitted, before it gets an id.

    Attributes:
        event_type: Member of the closed ``EventType`` set
        aggregate_type: Member of the closed ``AggregateType`` set
        aggregate_id: Aggregate the event describes
        actor: Optional actor that triggered it
        data: JSON-serializable mapping or pydantic model
        version: Payload schema version
        occurred_at: Filled with the current time by the emitter when unset
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    event_type: EventType
    aggregate_type: AggregateType
    aggregate_id: uuid.UUID
    actor: Actor | None = None
    data: Any = None
    version: int = Field(default=1, ge=1)
    occurred_at: datetime | None = None

    def data_as_dict(self) -> Any:
        """Plain JSON-compatible form of ``data``."""
        if isinstance(self.data, BaseModel):
            return self.data.model_dump(mode="json")
        return self.data


class PayloadEnvelope(BaseModel):
    """Versioned wire envelope stored in the outbox and shipped to the broker."""

    model_config = ConfigDict(frozen=True)

    version: int = Field(default=1, ge=1)
    event_id: uuid.UUID
    occurred_at: datetime
    actor: Actor | None = None
    data: Any = None

    @field_validator("occurred_at")
    @classmethod
    def _as_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)

    @field_serializer("occurred_at")
    def _serialize_occurred_at(self, value: datetime) -> str:
        return format_timestamp(value)

    def encode(self) -> bytes:
        return self.model_dump_json().encode("utf-8")


def encode_envelope(envelope: PayloadEnvelope) -> bytes:
    return envelope.encode()


def decode_envelope(raw: bytes | str) -> PayloadEnvelope:
    """Parse envelope bytes.

    Raises:
        InvalidArgError: If the bytes are not a well-formed envelope or the
            event id is the nil UUID.
    """
    try:
        envelope = PayloadEnvelope.model_validate_json(raw)
    except ValidationError as e:
        msg = "malformed event envelope"
        raise InvalidArgError(msg, extra={"errors": e.error_count()}) from e
    if envelope.event_id == NIL_UUID:
        msg = "event envelope has nil event_id"
        raise InvalidArgError(msg)
    return envelope


__all__ = [
    "NIL_UUID",
    "Actor",
    "DomainEvent",
    "PayloadEnvelope",
    "decode_envelope",
    "encode_envelope",
    "format_timestamp",
]
