"""Tests for the event registry and decoder registries."""

from __future__ import annotations

import uuid

import pytest

from packfinder_bus.core.events import (
    NIL_UUID,
    AggregateType,
    DecoderRegistry,
    DomainEvent,
    EventDescriptor,
    EventRegistry,
    EventType,
    event_registry,
)
from packfinder_bus.core.events.payloads import (
    OrderCreatedPayload,
    OrderPaidPayload,
    ReservationReleasedPayload,
)
from packfinder_bus.core.exceptions import InvalidArgError


def _released(**overrides) -> DomainEvent:
    fields = {
        "event_type": EventType.RESERVATION_RELEASED,
        "aggregate_type": AggregateType.VENDOR_ORDER,
        "aggregate_id": uuid.uuid4(),
        "data": ReservationReleasedPayload(order_id=uuid.uuid4(), product_id=uuid.uuid4(), qty=2),
    }
    fields.update(overrides)
    return DomainEvent(**fields)


@pytest.mark.unit
class TestDefaultRegistry:
    """Registry of every marketplace event type."""

    def test_every_event_type_registered(self):
        assert set(event_registry.event_types()) == set(EventType)
        assert len(event_registry) == len(EventType)

    @pytest.mark.parametrize(
        ("event_type", "topic"),
        [
            (EventType.ORDER_CREATED, "orders"),
            (EventType.CASH_COLLECTED, "orders"),
            (EventType.ORDER_PAID, "billing"),
            (EventType.VENDOR_PAYOUT_RECORDED, "billing"),
            (EventType.NOTIFICATION_REQUESTED, "notifications"),
        ],
    )
    def test_topic_for(self, event_type, topic):
        assert event_registry.topic_for(event_type) == topic

    def test_unknown_type_uses_default_topic(self):
        assert event_registry.topic_for("order.teleported", default="events") == "events"
        assert "order.teleported" not in event_registry
        assert "order.paid" in event_registry


@pytest.mark.unit
class TestValidate:
    """Checks applied before an event is stored."""

    def test_valid_event(self):
        descriptor = event_registry.validate(_released())
        assert descriptor.topic == "orders"

    def test_aggregate_mismatch(self):
        with pytest.raises(InvalidArgError, match="aggregate mismatch"):
            event_registry.validate(_released(aggregate_type=AggregateType.CHECKOUT_GROUP))

    def test_nil_aggregate_id(self):
        with pytest.raises(InvalidArgError, match="missing aggregate_id"):
            event_registry.validate(_released(aggregate_id=NIL_UUID))

    def test_missing_payload(self):
        with pytest.raises(InvalidArgError, match="payload missing"):
            event_registry.validate(_released(data=None))

    def test_payload_failing_schema(self):
        with pytest.raises(InvalidArgError, match="decode reservation.released payload"):
            event_registry.validate(_released(data={"order_id": "not-a-uuid", "qty": 1}))

    def test_dict_payload_accepted(self):
        data = {"order_id": str(uuid.uuid4()), "product_id": str(uuid.uuid4()), "qty": 1}
        event_registry.validate(_released(data=data))


@pytest.mark.unit
class TestDecode:
    """Typed decoding of ``data``."""

    def test_decode_known_version(self):
        group_id = uuid.uuid4()
        payload = event_registry.decode(
            EventType.ORDER_CREATED,
            1,
            {"checkout_group_id": str(group_id), "amount_cents": 900, "future_field": True},
        )
        assert isinstance(payload, OrderCreatedPayload)
        assert payload.checkout_group_id == group_id
        assert payload.amount_cents == 900

    def test_unknown_version_is_invalid(self):
        with pytest.raises(InvalidArgError, match="decoder not registered"):
            event_registry.decode(EventType.ORDER_CREATED, 9, {"checkout_group_id": str(uuid.uuid4())})

    def test_unknown_type_is_invalid(self):
        with pytest.raises(InvalidArgError, match="unsupported event type"):
            event_registry.decode("order.teleported", 1, {})

    def test_narrow_decoders(self):
        decoders = event_registry.decoders(EventType.ORDER_CREATED, EventType.ORDER_PAID)
        assert len(decoders) == 2
        assert decoders.supports(EventType.ORDER_PAID, 1)
        assert not decoders.supports(EventType.ORDER_CANCELED, 1)
        with pytest.raises(InvalidArgError):
            decoders.decode(EventType.ORDER_CANCELED, 1, {"order_id": str(uuid.uuid4())})


@pytest.mark.unit
class TestRegistration:
    """Registration conflicts."""

    def test_reregistering_same_descriptor_is_allowed(self):
        registry = EventRegistry()
        descriptor = EventDescriptor(
            event_type=EventType.ORDER_PAID,
            aggregate_type=AggregateType.VENDOR_ORDER,
            topic="billing",
            payloads={1: OrderPaidPayload},
        )
        registry.register(descriptor)
        registry.register(descriptor)
        assert registry.get(EventType.ORDER_PAID).latest_version == 1

    def test_conflicting_descriptor_rejected(self):
        registry = EventRegistry()
        registry.register(EventDescriptor(EventType.ORDER_PAID, AggregateType.VENDOR_ORDER, "billing"))
        with pytest.raises(ValueError, match="already registered"):
            registry.register(EventDescriptor(EventType.ORDER_PAID, AggregateType.VENDOR_ORDER, "orders"))

    def test_conflicting_decoder_rejected(self):
        decoders = DecoderRegistry()
        decoders.register(EventType.ORDER_PAID, 1, OrderPaidPayload)
        with pytest.raises(ValueError, match="already registered"):
            decoders.register(EventType.ORDER_PAID, 1, OrderCreatedPayload)
