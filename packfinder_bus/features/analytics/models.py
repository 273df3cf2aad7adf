"""Warehouse table fed by the analytics consumer."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import JSON, Integer, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from packfinder_bus.core.database.base import Base, CreatedAtMixin, UTCDateTime, UUIDPKMixin


class AnalyticsOrderEvent(Base, UUIDPKMixin, CreatedAtMixin):
    """One order-related event as seen by the warehouse.

    ``event_id`` is unique, so replaying a delivery never adds a second row.
    """

    __tablename__ = "analytics_order_events"

    event_id: Mapped[uuid.UUID] = mapped_column(Uuid, unique=True, nullable=False)
    event_type: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    occurred_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, index=True)
    checkout_group_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    order_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True, index=True)
    buyer_store_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    vendor_store_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True, index=True)
    amount_cents: Mapped[int | None] = mapped_column(Integer, nullable=True)
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)


__all__ = ["AnalyticsOrderEvent"]
