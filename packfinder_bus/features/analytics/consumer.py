"""Analytics consumer: projects order events into the warehouse.

The consumer is named ``analytics`` and handles ``order.created``,
``cash.collected`` and ``order.paid``. Each event becomes one flat
``WarehouseRow`` written to a ``WarehouseSink``. Sinks ignore rows whose
``event_id`` they already hold, so a redelivery that slips past the
idempotency guard (mark expired, released after a late failure) still
produces exactly one row.

Usage:
    runtime = build_analytics_consumer(guard, SqlWarehouseSink(session_factory))
    broker.subscribe(runtime, topics=["orders", "billing"])
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from typing import TYPE_CHECKING, Any, Protocol

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from packfinder_bus.core.database import storage_errors
from packfinder_bus.core.events import EventType, event_registry
from packfinder_bus.core.events.payloads import CashCollectedPayload, OrderCreatedPayload, OrderPaidPayload
from packfinder_bus.core.exceptions import InvalidArgError
from packfinder_bus.features.analytics.models import AnalyticsOrderEvent
from packfinder_bus.infra.messaging.consumer import ConsumerRuntime

if TYPE_CHECKING:
    import uuid
    from datetime import datetime

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from packfinder_bus.core.events.registry import EventRegistry
    from packfinder_bus.infra.idempotency.guard import IdempotencyGuard
    from packfinder_bus.infra.messaging.consumer import ConsumedEvent

logger = logging.getLogger(__name__)

ANALYTICS_CONSUMER = "analytics"
ANALYTICS_EVENT_TYPES = (EventType.ORDER_CREATED, EventType.CASH_COLLECTED, EventType.ORDER_PAID)


@dataclass(frozen=True, slots=True)
class WarehouseRow:
    event_id: uuid.UUID
    event_type: str
    occurred_at: datetime
    checkout_group_id: uuid.UUID | None = None
    order_id: uuid.UUID | None = None
    buyer_store_id: uuid.UUID | None = None
    vendor_store_id: uuid.UUID | None = None
    amount_cents: int | None = None
    payload: dict[str, Any] = field(default_factory=dict)


class WarehouseSink(Protocol):
    """Destination for warehouse rows."""

    async def write(self, row: WarehouseRow) -> bool:
        """Store ``row``; return False when its ``event_id`` is already stored."""
        ...


def build_row(event: ConsumedEvent) -> WarehouseRow:
    """Flatten a consumed order event into a warehouse row.

    Raises:
        InvalidArgError: The event type is not one the warehouse tracks, or
            the payload was not decoded.
    """
    payload = event.payload
    common = {
        "event_id": event.event_id,
        "event_type": event.event_type,
        "occurred_at": event.envelope.occurred_at,
        "payload": dict(event.data) if isinstance(event.data, dict) else {},
    }
    match payload:
        case OrderCreatedPayload():
            return WarehouseRow(
                **common,
                checkout_group_id=payload.checkout_group_id,
                buyer_store_id=payload.buyer_store_id,
                amount_cents=payload.amount_cents,
            )
        case CashCollectedPayload():
            return WarehouseRow(
                **common,
                order_id=payload.order_id,
                buyer_store_id=payload.buyer_store_id,
                vendor_store_id=payload.vendor_store_id,
                amount_cents=payload.amount_cents,
            )
        case OrderPaidPayload():
            return WarehouseRow(
                **common,
                order_id=payload.order_id,
                buyer_store_id=payload.buyer_store_id,
                vendor_store_id=payload.vendor_store_id,
                amount_cents=payload.amount_cents,
            )
    msg = f"no warehouse projection for {event.event_type}"
    raise InvalidArgError(msg, extra={"event_id": str(event.event_id)})


class InMemoryWarehouseSink:
    """Warehouse sink keeping rows in a dict keyed by ``event_id``."""

    def __init__(self) -> None:
        self.rows: dict[uuid.UUID, WarehouseRow] = {}

    async def write(self, row: WarehouseRow) -> bool:
        if row.event_id in self.rows:
            return False
        self.rows[row.event_id] = row
        return True

    def __len__(self) -> int:
        return len(self.rows)


class SqlWarehouseSink:
    """Warehouse sink over the ``analytics_order_events`` table.

    Each write runs in its own transaction.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def write(self, row: WarehouseRow) -> bool:
        stmt = select(AnalyticsOrderEvent.id).where(AnalyticsOrderEvent.event_id == row.event_id)
        async with self._session_factory() as session:
            with storage_errors("write warehouse row"):
                try:
                    async with session.begin():
                        if (await session.execute(stmt)).scalar_one_or_none() is not None:
                            return False
                        session.add(AnalyticsOrderEvent(**asdict(row)))
                except IntegrityError:
                    # Concurrent writer stored the same event_id
                    return False
        return True


class AnalyticsHandler:
    """Handler for the analytics consumer."""

    def __init__(self, sink: WarehouseSink) -> None:
        self.sink = sink

    async def __call__(self, event: ConsumedEvent) -> None:
        row = build_row(event)
        created = await self.sink.write(row)
        logger.info(
            "Warehouse row written" if created else "Warehouse row already present",
            extra={
                "event_type": row.event_type,
                "order_id": str(row.order_id) if row.order_id else None,
                "amount_cents": row.amount_cents,
            },
        )


def build_analytics_consumer(
    guard: IdempotencyGuard,
    sink: WarehouseSink,
    *,
    registry: EventRegistry = event_registry,
    ack_deadline: float | None = None,
) -> ConsumerRuntime:
    """Consumer runtime named ``analytics`` writing to ``sink``."""
    return ConsumerRuntime(
        ANALYTICS_CONSUMER,
        AnalyticsHandler(sink),
        event_types=ANALYTICS_EVENT_TYPES,
        guard=guard,
        decoders=registry.decoders(*ANALYTICS_EVENT_TYPES),
        ack_deadline=ack_deadline,
    )


__all__ = [
    "ANALYTICS_CONSUMER",
    "ANALYTICS_EVENT_TYPES",
    "AnalyticsHandler",
    "InMemoryWarehouseSink",
    "SqlWarehouseSink",
    "WarehouseRow",
    "WarehouseSink",
    "build_analytics_consumer",
    "build_row",
]
