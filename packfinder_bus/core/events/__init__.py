"""Domain events, the wire envelope and the outbox emitter.

Usage:
    from packfinder_bus.core.events import (
        Actor,
        AggregateType,
        DomainEvent,
        EventType,
        OutboxEmitter,
    )

    emitter = OutboxEmitter()
    event_id = await emitter.emit(
        session,
        DomainEvent(
            event_type=EventType.ORDER_CANCELED,
            aggregate_type=AggregateType.VENDOR_ORDER,
            aggregate_id=order.id,
            actor=Actor(user_id=user_id, store_id=store_id, role="buyer"),
            data=OrderCanceledPayload(...),
        ),
    )
"""

from packfinder_bus.core.events.emitter import OutboxEmitter
from packfinder_bus.core.events.envelope import (
    NIL_UUID,
    Actor,
    DomainEvent,
    PayloadEnvelope,
    decode_envelope,
    encode_envelope,
)
from packfinder_bus.core.events.registry import (
    DecoderRegistry,
    EventDescriptor,
    EventRegistry,
    build_default_registry,
    event_registry,
)
from packfinder_bus.core.events.types import IDEMPOTENT_EVENT_TYPES, AggregateType, EventType, Topic

__all__ = [
    "IDEMPOTENT_EVENT_TYPES",
    "NIL_UUID",
    "Actor",
    "AggregateType",
    "DecoderRegistry",
    "DomainEvent",
    "EventDescriptor",
    "EventRegistry",
    "EventType",
    "OutboxEmitter",
    "PayloadEnvelope",
    "Topic",
    "build_default_registry",
    "decode_envelope",
    "encode_envelope",
    "event_registry",
]
