"""Repository for vendor orders and the rows that hang off them.

Every method takes the caller's session and runs inside the caller's
transaction. SQLAlchemy failures surface as ``DependencyError`` carrying the
operation name.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import select

from packfinder_bus.core.database import BaseRepository, require_session, storage_errors
from packfinder_bus.core.exceptions import NotFoundError
from packfinder_bus.features.orders.models import (
    OrderAssignment,
    OrderLineItem,
    PaymentIntent,
    VendorOrder,
)

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence
    from uuid import UUID

    from sqlalchemy.ext.asyncio import AsyncSession


class OrderRepository(BaseRepository[VendorOrder]):
    """Repository for ``VendorOrder`` and its line items, intent and assignments.

    Inherits from BaseRepository:
        - get(session, id) -> VendorOrder | None
        - create(session, instance) -> VendorOrder

    Order-specific methods below.
    """

    def __init__(self) -> None:
        super().__init__(VendorOrder)

    async def get_for_update(self, session: AsyncSession, order_id: UUID) -> VendorOrder:
        """Load an order with a row lock held until commit.

        Raises:
            NotFoundError: If no order has this id
            DependencyError: On storage failure
        """
        stmt = select(VendorOrder).where(VendorOrder.id == order_id).with_for_update()
        with storage_errors("load vendor order"):
            order = (await require_session(session).execute(stmt)).scalar_one_or_none()
        if order is None:
            msg = "order not found"
            raise NotFoundError(msg, extra={"order_id": str(order_id)})
        return order

    async def list_items(self, session: AsyncSession, order_id: UUID) -> Sequence[OrderLineItem]:
        stmt = (
            select(OrderLineItem)
            .where(OrderLineItem.order_id == order_id)
            .order_by(OrderLineItem.created_at, OrderLineItem.id)
        )
        with storage_errors("load order line items"):
            result = await session.execute(stmt)
        return result.scalars().all()

    async def get_item(self, session: AsyncSession, line_item_id: UUID) -> OrderLineItem:
        with storage_errors("load line item"):
            item = await session.get(OrderLineItem, line_item_id)
        if item is None:
            msg = "line item not found"
            raise NotFoundError(msg, extra={"line_item_id": str(line_item_id)})
        return item

    async def get_payment_intent(self, session: AsyncSession, order_id: UUID) -> PaymentIntent | None:
        stmt = select(PaymentIntent).where(PaymentIntent.order_id == order_id).with_for_update()
        with storage_errors("load payment intent"):
            return (await session.execute(stmt)).scalar_one_or_none()

    async def get_active_assignment(self, session: AsyncSession, order_id: UUID) -> OrderAssignment | None:
        stmt = (
            select(OrderAssignment)
            .where(OrderAssignment.order_id == order_id, OrderAssignment.active.is_(True))
            .order_by(OrderAssignment.assigned_at.desc())
            .limit(1)
        )
        with storage_errors("load order assignment"):
            return (await session.execute(stmt)).scalar_one_or_none()

    async def add_all(self, session: AsyncSession, instances: Iterable[object], *, operation: str) -> None:
        """Stage new rows and flush them."""
        with storage_errors(operation):
            session.add_all(list(instances))
            await session.flush()

    async def flush(self, session: AsyncSession, *, operation: str) -> None:
        """Write pending attribute changes so constraint errors surface here."""
        with storage_errors(operation):
            await session.flush()


__all__ = ["OrderRepository"]
