"""Outbox emitter: stage domain events in the caller's transaction.

The emitter never talks to the broker. It wraps the event in a
``PayloadEnvelope`` with a fresh ``event_id`` and inserts the envelope bytes
into the outbox through the caller's session. The outbox publisher ships the
row after the transaction commits; if the transaction rolls back the event is
discarded with it.

Usage:
    emitter = OutboxEmitter()

    async def accept(session: AsyncSession) -> None:
        order.status = OrderStatus.ACCEPTED
        await emitter.emit_if_absent(
            session,
            DomainEvent(
                event_type=EventType.ORDER_DECIDED,
                aggregate_type=AggregateType.VENDOR_ORDER,
                aggregate_id=order.id,
                actor=actor,
                data=payload,
            ),
        )

    await runner.with_tx(accept)
"""

from __future__ import annotations

import logging
import uuid
from typing import TYPE_CHECKING

from sqlalchemy.exc import IntegrityError

from packfinder_bus.core.database.base import utcnow
from packfinder_bus.core.database.repository import require_session
from packfinder_bus.core.events.envelope import PayloadEnvelope
from packfinder_bus.core.events.registry import event_registry

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from packfinder_bus.core.events.envelope import DomainEvent
    from packfinder_bus.core.events.registry import EventRegistry
    from packfinder_bus.infra.events.outbox.models import OutboxEvent
    from packfinder_bus.infra.events.outbox.repository import OutboxRepository

logger = logging.getLogger(__name__)


class OutboxEmitter:
    """Writes domain events to the outbox.

    Attributes:
        repository: Outbox store used for inserts and event-key lookups
        registry: Descriptor registry events are validated against; ``None``
            skips validation
    """

    def __init__(
        self,
        repository: OutboxRepository | None = None,
        registry: EventRegistry | None = event_registry,
    ) -> None:
        if repository is None:
            # Import here to avoid circular imports
            from packfinder_bus.infra.events.outbox.repository import OutboxRepository

            repository = OutboxRepository()
        self.repository = repository
        self.registry = registry

    async def emit(self, session: AsyncSession | None, event: DomainEvent) -> uuid.UUID:
        """Stage an event and return its envelope ``event_id``.

        Raises:
            InvalidArgError: Missing session, or the event does not match its
                registered descriptor.
        """
        session = require_session(session)
        row, event_id = self._build_row(event)
        await self.repository.insert(session, row)

        logger.debug(
            "Event staged in outbox",
            extra={
                "event_type": str(event.event_type),
                "event_id": str(event_id),
                "aggregate_id": str(event.aggregate_id),
            },
        )
        return event_id

    async def emit_if_absent(self, session: AsyncSession | None, event: DomainEvent) -> uuid.UUID | None:
        """Stage an event unless one with the same event key already exists.

        The event key is ``(event_type, aggregate_type, aggregate_id)``. The
        insert runs inside a SAVEPOINT so a uniqueness violation raised by a
        concurrent writer only rolls back the savepoint, leaving the caller's
        transaction usable.

        Returns:
            The new ``event_id``, or ``None`` when the event was already staged.
        """
        session = require_session(session)
        row, event_id = self._build_row(event)

        if await self.repository.exists(session, row.event_type, row.aggregate_type, row.aggregate_id):
            logger.debug(
                "Event already staged",
                extra={"event_type": row.event_type, "aggregate_id": str(row.aggregate_id)},
            )
            return None

        try:
            async with session.begin_nested():
                await self.repository.insert(session, row)
        except IntegrityError:
            logger.info(
                "Concurrent writer staged the same event key",
                extra={"event_type": row.event_type, "aggregate_id": str(row.aggregate_id)},
            )
            return None

        logger.debug(
            "Event staged in outbox",
            extra={
                "event_type": row.event_type,
                "event_id": str(event_id),
                "aggregate_id": str(row.aggregate_id),
            },
        )
        return event_id

    def _build_row(self, event: DomainEvent) -> tuple[OutboxEvent, uuid.UUID]:
        from packfinder_bus.infra.events.outbox.models import OutboxEvent

        if self.registry is not None:
            self.registry.validate(event)

        envelope = PayloadEnvelope(
            version=event.version,
            event_id=uuid.uuid4(),
            occurred_at=event.occurred_at or utcnow(),
            actor=event.actor,
            data=event.data_as_dict(),
        )
        row = OutboxEvent(
            event_type=str(event.event_type),
            aggregate_type=str(event.aggregate_type),
            aggregate_id=event.aggregate_id,
            payload=envelope.encode(),
        )
        return row, envelope.event_id


__all__ = ["OutboxEmitter"]
