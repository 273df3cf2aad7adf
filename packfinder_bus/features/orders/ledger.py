"""Append-only ledger of money movements per order."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from sqlalchemy import select

from packfinder_bus.core.database import BaseRepository, storage_errors
from packfinder_bus.core.events.envelope import NIL_UUID
from packfinder_bus.core.exceptions import InvalidArgError
from packfinder_bus.features.orders.enums import LedgerEventType
from packfinder_bus.features.orders.models import LedgerEvent

if TYPE_CHECKING:
    from uuid import UUID

    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)


class LedgerRepository(BaseRepository[LedgerEvent]):
    def __init__(self) -> None:
        super().__init__(LedgerEvent)

    async def find(self, session: AsyncSession, order_id: UUID, event_type: str) -> LedgerEvent | None:
        stmt = select(LedgerEvent).where(LedgerEvent.order_id == order_id, LedgerEvent.type == event_type)
        with storage_errors("load ledger event"):
            return (await session.execute(stmt)).scalar_one_or_none()


class LedgerService:
    """Record ledger events inside the caller's transaction.

    Example:
        entry = await ledger.record_once(
            session,
            order_id=order.id,
            buyer_store_id=order.buyer_store_id,
            vendor_store_id=order.vendor_store_id,
            actor_user_id=agent_user_id,
            event_type=LedgerEventType.CASH_COLLECTED,
            amount_cents=amount_cents,
        )
    """

    def __init__(self, repository: LedgerRepository | None = None) -> None:
        self._repository = repository or LedgerRepository()

    async def has_event(self, session: AsyncSession, order_id: UUID, event_type: LedgerEventType | str) -> bool:
        if order_id == NIL_UUID:
            msg = "order id is required"
            raise InvalidArgError(msg)
        return await self._repository.find(session, order_id, _parse_type(event_type)) is not None

    async def record(
        self,
        session: AsyncSession,
        *,
        order_id: UUID,
        buyer_store_id: UUID,
        vendor_store_id: UUID,
        actor_user_id: UUID,
        event_type: LedgerEventType | str,
        amount_cents: int,
        details: dict[str, Any] | None = None,
    ) -> LedgerEvent:
        """Append one ledger row.

        Raises:
            InvalidArgError: On a nil id or an unknown ledger event type
            DependencyError: On storage failure, including a duplicate
                ``(order_id, type)``
        """
        for name, value in (
            ("order id", order_id),
            ("buyer store id", buyer_store_id),
            ("vendor store id", vendor_store_id),
            ("actor user id", actor_user_id),
        ):
            if value is None or value == NIL_UUID:
                msg = f"{name} is required"
                raise InvalidArgError(msg)

        entry = LedgerEvent(
            order_id=order_id,
            buyer_store_id=buyer_store_id,
            vendor_store_id=vendor_store_id,
            actor_user_id=actor_user_id,
            type=_parse_type(event_type),
            amount_cents=amount_cents,
            details=details,
        )
        with storage_errors("append ledger event"):
            await self._repository.create(session, entry)
        logger.info(
            "Ledger event recorded",
            extra={"order_id": str(order_id), "type": entry.type, "amount_cents": amount_cents},
        )
        return entry

    async def record_once(self, session: AsyncSession, **kwargs: Any) -> LedgerEvent | None:
        """Like ``record``, but a no-op returning None when ``(order_id, type)`` exists."""
        existing = await self._repository.find(session, kwargs["order_id"], _parse_type(kwargs["event_type"]))
        if existing is not None:
            logger.debug(
                "Ledger event already recorded",
                extra={"order_id": str(existing.order_id), "type": existing.type},
            )
            return None
        return await self.record(session, **kwargs)


def _parse_type(event_type: LedgerEventType | str) -> LedgerEventType:
    try:
        return LedgerEventType(event_type)
    except ValueError:
        msg = f"invalid ledger event type {event_type!r}"
        raise InvalidArgError(msg) from None


__all__ = ["LedgerRepository", "LedgerService"]
