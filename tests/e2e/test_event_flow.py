"""End-to-end tests: business transaction -> outbox -> publisher -> broker -> analytics."""

from __future__ import annotations

import uuid

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from packfinder_bus.core.events import AggregateType, DomainEvent, EventType, OutboxEmitter
from packfinder_bus.core.events.payloads import OrderCreatedPayload
from packfinder_bus.core.exceptions import ConflictError, DependencyError
from packfinder_bus.features.analytics import InMemoryWarehouseSink, build_analytics_consumer
from packfinder_bus.features.orders import (
    OrderAssignment,
    OrderService,
    OrderStatus,
    PaymentIntent,
    PaymentStatus,
    VendorOrder,
)
from packfinder_bus.infra.events.outbox import OutboxEvent, OutboxPublisher
from packfinder_bus.infra.messaging import InMemoryBroker


@pytest.fixture
def sink() -> InMemoryWarehouseSink:
    return InMemoryWarehouseSink()


@pytest.fixture
def pipeline(runner, guard, sink, publisher_settings):
    """Publisher feeding an in-memory broker with the analytics consumer subscribed."""
    broker = InMemoryBroker()
    broker.subscribe(build_analytics_consumer(guard, sink), topics=["orders", "billing"])
    publisher = OutboxPublisher(broker, runner=runner, settings=publisher_settings)
    return broker, publisher


async def _place_order(runner, buyer) -> tuple[uuid.UUID, uuid.UUID]:
    """Business transaction creating an order and staging ``order.created``."""
    emitter = OutboxEmitter()
    checkout_group_id = uuid.uuid4()
    order = VendorOrder(
        id=uuid.uuid4(),
        checkout_group_id=checkout_group_id,
        buyer_store_id=buyer.store_id,
        vendor_store_id=uuid.uuid4(),
        total_cents=2500,
        balance_due_cents=2500,
    )

    async def _create(session):
        session.add(order)
        return await emitter.emit(
            session,
            DomainEvent(
                event_type=EventType.ORDER_CREATED,
                aggregate_type=AggregateType.CHECKOUT_GROUP,
                aggregate_id=checkout_group_id,
                actor=buyer,
                data=OrderCreatedPayload(
                    checkout_group_id=checkout_group_id,
                    vendor_order_ids=[order.id],
                    buyer_store_id=buyer.store_id,
                    amount_cents=2500,
                ),
            ),
        )

    event_id = await runner.with_tx(_create)
    return checkout_group_id, event_id


async def _outbox_row(session_factory) -> OutboxEvent:
    async with session_factory() as session:
        return (await session.execute(select(OutboxEvent))).scalar_one()


@pytest.mark.e2e
class TestEventFlow:
    """Delivery guarantees across the whole pipeline."""

    async def test_happy_path_and_duplicate_delivery(self, pipeline, runner, session_factory, sink, buyer):
        broker, publisher = pipeline
        checkout_group_id, event_id = await _place_order(runner, buyer)

        assert await publisher.run_once() == 1

        row = await _outbox_row(session_factory)
        assert row.published_at is not None
        assert row.aggregate_id == checkout_group_id
        assert len(sink) == 1
        assert sink.rows[event_id].checkout_group_id == checkout_group_id
        assert sink.rows[event_id].amount_cents == 2500

        await broker.deliver(broker.sent[0])

        assert len(sink) == 1

    async def test_crash_after_send_republishes_once(
        self, pipeline, runner, session_factory, sink, buyer, monkeypatch
    ):
        broker, publisher = pipeline
        _, event_id = await _place_order(runner, buyer)
        mark_published = publisher._repository.mark_published
        calls = 0

        async def _crash_once(session, row_id):
            nonlocal calls
            calls += 1
            if calls == 1:
                raise OperationalError("UPDATE event_outbox", {}, Exception("connection lost"))
            await mark_published(session, row_id)

        monkeypatch.setattr(publisher._repository, "mark_published", _crash_once)

        with pytest.raises(DependencyError):
            await publisher.run_once()

        row = await _outbox_row(session_factory)
        assert row.published_at is None
        assert len(broker.sent) == 1

        assert await publisher.run_once() == 1

        row = await _outbox_row(session_factory)
        assert row.published_at is not None
        assert row.attempt_count == 0
        assert [m.message_id for m in broker.sent] == [str(event_id)] * 2
        assert len(sink) == 1

    async def test_send_timeout_after_broker_accepted(self, pipeline, runner, session_factory, sink, buyer):
        broker, publisher = pipeline
        _, event_id = await _place_order(runner, buyer)
        send = broker.send
        calls = 0

        async def _ack_lost(topic, body, attributes):
            nonlocal calls
            calls += 1
            await send(topic, body, attributes)
            if calls == 1:
                raise TimeoutError

        broker.send = _ack_lost

        await publisher.run_once()
        row = await _outbox_row(session_factory)
        assert (row.published_at, row.attempt_count) == (None, 1)

        await publisher.run_once()

        row = await _outbox_row(session_factory)
        assert row.published_at is not None
        assert row.attempt_count == 1
        assert len(broker.sent) == 2
        assert list(sink.rows) == [event_id]

    async def test_cash_collection_reaches_warehouse(
        self, pipeline, runner, session_factory, sink, buyer_store_id, vendor_store_id, agent_user_id
    ):
        _, publisher = pipeline
        service = OrderService(runner=runner)
        order = VendorOrder(
            id=uuid.uuid4(),
            checkout_group_id=uuid.uuid4(),
            buyer_store_id=buyer_store_id,
            vendor_store_id=vendor_store_id,
            status=OrderStatus.DELIVERED,
            total_cents=1500,
            balance_due_cents=1500,
        )
        async with session_factory() as session, session.begin():
            session.add(order)
        intent = PaymentIntent(id=uuid.uuid4(), order_id=order.id, amount_cents=1500, status=PaymentStatus.UNPAID)
        async with session_factory() as session, session.begin():
            session.add_all([OrderAssignment(order_id=order.id, agent_user_id=agent_user_id), intent])

        with pytest.raises(ConflictError, match="amount mismatch"):
            await service.agent_cash_collected(order.id, agent_user_id, 1200)
        assert await publisher.run_once() == 0
        assert len(sink) == 0

        async with session_factory() as session, session.begin():
            stored = await session.get(VendorOrder, order.id)
            stored.status = OrderStatus.DELIVERED
            stored_intent = await session.get(PaymentIntent, intent.id)
            stored_intent.status = PaymentStatus.UNPAID

        await service.agent_cash_collected(order.id, agent_user_id, 1500)
        assert await publisher.run_once() == 1

        [row] = sink.rows.values()
        assert (row.event_type, row.order_id, row.amount_cents) == ("cash.collected", order.id, 1500)

