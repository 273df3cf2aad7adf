"""Event type registry for validation, routing and typed decoding.

The registry maps every event type to a descriptor naming its aggregate type,
its broker topic and the payload model of each schema version. It is used:

- by the emitter, to reject events that do not match their descriptor
- by the publisher, to pick the broker topic of a row
- by consumers, to decode ``data`` into the payload model

Usage:
    from packfinder_bus.core.events import event_registry, EventType

    topic = event_registry.topic_for(EventType.ORDER_PAID)  # "billing"
    payload = event_registry.decode(EventType.ORDER_PAID, 1, envelope.data)

Consumers that only understand a subset of types declare a narrower
``DecoderRegistry``:

    decoders = DecoderRegistry()
    decoders.register(EventType.ORDER_CREATED, 1, OrderCreatedPayload)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError

from packfinder_bus.core.events import payloads as p
from packfinder_bus.core.events.envelope import NIL_UUID
from packfinder_bus.core.events.types import AggregateType, EventType, Topic
from packfinder_bus.core.exceptions import InvalidArgError

if TYPE_CHECKING:
    from packfinder_bus.core.events.envelope import DomainEvent

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class EventDescriptor:
    """Links an event type to its aggregate, topic and payload schemas."""

    event_type: EventType
    aggregate_type: AggregateType
    topic: str
    payloads: dict[int, type[p.EventPayload]] = field(default_factory=dict)

    @property
    def latest_version(self) -> int:
        return max(self.payloads, default=1)


def _decode_with(model: type[p.EventPayload], event_type: str, version: int, data: Any) -> p.EventPayload:
    if data is None or data == {}:
        msg = f"payload missing for {event_type}"
        raise InvalidArgError(msg, extra={"version": version})
    try:
        return model.model_validate(data)
    except ValidationError as e:
        msg = f"decode {event_type} payload"
        raise InvalidArgError(msg, extra={"version": version, "errors": e.error_count()}) from e


class DecoderRegistry:
    """Closed mapping of ``(event_type, version)`` to a payload model."""

    def __init__(self) -> None:
        self._decoders: dict[tuple[str, int], type[p.EventPayload]] = {}

    def register(self, event_type: EventType | str, version: int, model: type[p.EventPayload]) -> None:
        key = (str(event_type), version)
        existing = self._decoders.get(key)
        if existing is not None and existing is not model:
            msg = f"Decoder for '{event_type}' version {version} already registered with {existing.__name__}"
            raise ValueError(msg)
        self._decoders[key] = model

    def supports(self, event_type: EventType | str, version: int) -> bool:
        return (str(event_type), version) in self._decoders

    def decode(self, event_type: EventType | str, version: int, data: Any) -> p.EventPayload:
        """Decode ``data`` into the registered model.

        Raises:
            InvalidArgError: If the pair is not registered or the payload does
                not validate. Both are permanent for the consumer.
        """
        model = self._decoders.get((str(event_type), version))
        if model is None:
            msg = f"decoder not registered for {event_type}@v{version}"
            raise InvalidArgError(msg)
        return _decode_with(model, str(event_type), version, data)

    def __len__(self) -> int:
        return len(self._decoders)


class EventRegistry:
    """Registry of event descriptors.

    Registration is expected at import time; lookups are read-only after that.
    """

    def __init__(self) -> None:
        self._descriptors: dict[EventType, EventDescriptor] = {}

    def register(self, descriptor: EventDescriptor) -> EventDescriptor:
        existing = self._descriptors.get(descriptor.event_type)
        if existing is not None and existing != descriptor:
            msg = f"Event type '{descriptor.event_type}' already registered"
            raise ValueError(msg)
        self._descriptors[descriptor.event_type] = descriptor
        logger.debug(
            "Registered event type",
            extra={
                "event_type": str(descriptor.event_type),
                "aggregate_type": str(descriptor.aggregate_type),
                "topic": descriptor.topic,
            },
        )
        return descriptor

    def get(self, event_type: EventType | str) -> EventDescriptor | None:
        try:
            return self._descriptors.get(EventType(event_type))
        except ValueError:
            return None

    def get_or_raise(self, event_type: EventType | str) -> EventDescriptor:
        descriptor = self.get(event_type)
        if descriptor is None:
            msg = f"unsupported event type {event_type}"
            raise InvalidArgError(msg)
        return descriptor

    def topic_for(self, event_type: EventType | str, default: str | None = None) -> str | None:
        """Broker topic of an event type, or ``default`` when unregistered."""
        descriptor = self.get(event_type)
        if descriptor is None:
            return default
        return descriptor.topic

    def validate(self, event: DomainEvent) -> EventDescriptor:
        """Check an event against its descriptor before it is stored.

        Raises:
            InvalidArgError: Unknown type, aggregate mismatch, nil aggregate id,
                missing payload, or payload failing its schema.
        """
        descriptor = self.get_or_raise(event.event_type)
        if descriptor.aggregate_type != event.aggregate_type:
            msg = (
                f"aggregate mismatch: expected {descriptor.aggregate_type} "
                f"got {event.aggregate_type}"
            )
            raise InvalidArgError(msg, extra={"event_type": str(event.event_type)})
        if event.aggregate_id == NIL_UUID:
            msg = "missing aggregate_id"
            raise InvalidArgError(msg, extra={"event_type": str(event.event_type)})
        data = event.data_as_dict()
        model = descriptor.payloads.get(event.version)
        if model is None:
            if data is None or data == {}:
                msg = f"payload missing for {event.event_type}"
                raise InvalidArgError(msg)
            return descriptor
        _decode_with(model, str(event.event_type), event.version, data)
        return descriptor

    def decode(self, event_type: EventType | str, version: int, data: Any) -> p.EventPayload:
        descriptor = self.get_or_raise(event_type)
        model = descriptor.payloads.get(version)
        if model is None:
            msg = f"decoder not registered for {event_type}@v{version}"
            raise InvalidArgError(msg)
        return _decode_with(model, str(event_type), version, data)

    def decoders(self, *event_types: EventType) -> DecoderRegistry:
        """Narrow ``DecoderRegistry`` covering every version of the given types."""
        decoders = DecoderRegistry()
        for event_type in event_types:
            descriptor = self.get_or_raise(event_type)
            for version, model in descriptor.payloads.items():
                decoders.register(event_type, version, model)
        return decoders

    def event_types(self) -> list[EventType]:
        return sorted(self._descriptors)

    def __contains__(self, event_type: object) -> bool:
        return isinstance(event_type, str) and self.get(event_type) is not None

    def __len__(self) -> int:
        return len(self._descriptors)


def build_default_registry() -> EventRegistry:
    """Registry with every event type the marketplace emits."""
    registry = EventRegistry()
    descriptors = [
        (EventType.ORDER_CREATED, AggregateType.CHECKOUT_GROUP, Topic.ORDERS, p.OrderCreatedPayload),
        (EventType.ORDER_DECIDED, AggregateType.VENDOR_ORDER, Topic.ORDERS, p.OrderDecidedPayload),
        (
            EventType.ORDER_READY_FOR_DISPATCH,
            AggregateType.VENDOR_ORDER,
            Topic.ORDERS,
            p.OrderReadyForDispatchPayload,
        ),
        (EventType.ORDER_CANCELED, AggregateType.VENDOR_ORDER, Topic.ORDERS, p.OrderCanceledPayload),
        (EventType.ORDER_RETRIED, AggregateType.VENDOR_ORDER, Topic.ORDERS, p.OrderRetriedPayload),
        (EventType.ORDER_EXPIRED, AggregateType.VENDOR_ORDER, Topic.ORDERS, p.OrderExpiredPayload),
        (
            EventType.ORDER_PENDING_NUDGE,
            AggregateType.VENDOR_ORDER,
            Topic.ORDERS,
            p.OrderPendingNudgePayload,
        ),
        (EventType.CASH_COLLECTED, AggregateType.VENDOR_ORDER, Topic.ORDERS, p.CashCollectedPayload),
        (EventType.PAYMENT_FAILED, AggregateType.VENDOR_ORDER, Topic.ORDERS, p.PaymentStatusPayload),
        (
            EventType.RESERVATION_RELEASED,
            AggregateType.VENDOR_ORDER,
            Topic.ORDERS,
            p.ReservationReleasedPayload,
        ),
        (
            EventType.NOTIFICATION_REQUESTED,
            AggregateType.VENDOR_ORDER,
            Topic.NOTIFICATIONS,
            p.NotificationRequestedPayload,
        ),
        (
            EventType.CHECKOUT_CONVERTED,
            AggregateType.CHECKOUT_GROUP,
            Topic.NOTIFICATIONS,
            p.CheckoutConvertedPayload,
        ),
        (EventType.ORDER_PAID, AggregateType.VENDOR_ORDER, Topic.BILLING, p.OrderPaidPayload),
        (EventType.PAYMENT_SETTLED, AggregateType.VENDOR_ORDER, Topic.BILLING, p.PaymentStatusPayload),
        (
            EventType.VENDOR_PAYOUT_RECORDED,
            AggregateType.LEDGER_EVENT,
            Topic.BILLING,
            p.VendorPayoutRecordedPayload,
        ),
    ]
    for event_type, aggregate_type, topic, model in descriptors:
        registry.register(
            EventDescriptor(
                event_type=event_type,
                aggregate_type=aggregate_type,
                topic=str(topic),
                payloads={1: model},
            )
        )
    return registry


# Global registry instance
event_registry = build_default_registry()


__all__ = [
    "DecoderRegistry",
    "EventDescriptor",
    "EventRegistry",
    "build_default_registry",
    "event_registry",
]
