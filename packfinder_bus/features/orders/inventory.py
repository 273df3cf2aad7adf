"""Inventory reservation and release inside the caller's transaction.

Both primitives are conditional single-row updates, so concurrent callers
never drive ``available_qty`` or ``reserved_qty`` negative:

    reserve:  available -= qty, reserved += qty  where available >= qty
    release:  available += qty, reserved -= qty  where reserved >= qty
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

from sqlalchemy import update

from packfinder_bus.core.database import require_session, storage_errors
from packfinder_bus.core.database.base import utcnow
from packfinder_bus.core.exceptions import InvalidArgError
from packfinder_bus.features.orders.models import InventoryItem

if TYPE_CHECKING:
    from collections.abc import Sequence
    from uuid import UUID

    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

INSUFFICIENT_INVENTORY = "insufficient inventory"


@dataclass(frozen=True, slots=True)
class ReservationRequest:
    line_item_id: UUID
    product_id: UUID
    qty: int


@dataclass(frozen=True, slots=True)
class ReservationResult:
    line_item_id: UUID
    product_id: UUID
    qty: int
    reserved: bool
    reason: str = ""


class InventoryReleaser(Protocol):
    """Return reserved stock to the available pool."""

    async def release(self, session: AsyncSession, product_id: UUID, qty: int) -> None: ...


class InventoryReserver(Protocol):
    """Move stock from available to reserved, one result per request."""

    async def reserve(
        self,
        session: AsyncSession,
        requests: Sequence[ReservationRequest],
    ) -> list[ReservationResult]: ...


class SqlInventoryReleaser:
    """``InventoryReleaser`` over the ``inventory_items`` table."""

    async def release(self, session: AsyncSession, product_id: UUID, qty: int) -> None:
        if qty <= 0:
            return
        session = require_session(session)
        stmt = (
            update(InventoryItem)
            .where(InventoryItem.product_id == product_id, InventoryItem.reserved_qty >= qty)
            .values(
                available_qty=InventoryItem.available_qty + qty,
                reserved_qty=InventoryItem.reserved_qty - qty,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        with storage_errors("release inventory"):
            result = await session.execute(stmt)
        if result.rowcount == 0:
            logger.warning(
                "Inventory release matched no reserved stock",
                extra={"product_id": str(product_id), "qty": qty},
            )


class SqlInventoryReserver:
    """``InventoryReserver`` over the ``inventory_items`` table.

    Requests are applied in order, so two requests for the same product
    compete for the same stock.
    """

    async def reserve(
        self,
        session: AsyncSession,
        requests: Sequence[ReservationRequest],
    ) -> list[ReservationResult]:
        """Reserve each request independently.

        Raises:
            InvalidArgError: If any request has a non-positive quantity
            DependencyError: On storage failure
        """
        if not requests:
            return []
        session = require_session(session)
        for request in requests:
            if request.qty <= 0:
                msg = "reservation quantity must be positive"
                raise InvalidArgError(msg, extra={"product_id": str(request.product_id)})

        results: list[ReservationResult] = []
        for request in requests:
            stmt = (
                update(InventoryItem)
                .where(
                    InventoryItem.product_id == request.product_id,
                    InventoryItem.available_qty >= request.qty,
                )
                .values(
                    available_qty=InventoryItem.available_qty - request.qty,
                    reserved_qty=InventoryItem.reserved_qty + request.qty,
                    updated_at=utcnow(),
                )
                .execution_options(synchronize_session=False)
            )
            with storage_errors("reserve inventory"):
                result = await session.execute(stmt)
            reserved = result.rowcount == 1
            results.append(
                ReservationResult(
                    line_item_id=request.line_item_id,
                    product_id=request.product_id,
                    qty=request.qty,
                    reserved=reserved,
                    reason="" if reserved else INSUFFICIENT_INVENTORY,
                )
            )
        return results


__all__ = [
    "INSUFFICIENT_INVENTORY",
    "InventoryReleaser",
    "InventoryReserver",
    "ReservationRequest",
    "ReservationResult",
    "SqlInventoryReleaser",
    "SqlInventoryReserver",
]
