"""SQLAlchemy models for vendor orders, payments, assignments, ledger and inventory.

Only the columns the state machines read or write are mapped. Status columns
store the ``StrEnum`` values from ``features.orders.enums`` as plain strings.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import JSON, Boolean, ForeignKey, Integer, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from packfinder_bus.core.database.base import (
    Base,
    CreatedAtMixin,
    TimestampMixin,
    UTCDateTime,
    UUIDPKMixin,
    utcnow,
)
from packfinder_bus.features.orders.enums import (
    FulfillmentStatus,
    LineItemStatus,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    ShippingStatus,
)


class VendorOrder(Base, UUIDPKMixin, TimestampMixin):
    """One vendor's slice of a buyer checkout.

    Monetary invariants: every total is non-negative, ``discounts_cents``
    never exceeds ``subtotal_cents`` and ``balance_due_cents`` equals
    ``max(0, total_cents - amount_paid_cents)``.
    """

    __tablename__ = "vendor_orders"

    checkout_group_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    cart_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    buyer_store_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    vendor_store_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    currency: Mapped[str] = mapped_column(String(3), default="USD", nullable=False)

    status: Mapped[str] = mapped_column(String(32), default=OrderStatus.CREATED_PENDING, nullable=False)
    fulfillment_status: Mapped[str] = mapped_column(
        String(32),
        default=FulfillmentStatus.PENDING,
        nullable=False,
    )
    shipping_status: Mapped[str] = mapped_column(String(32), default=ShippingStatus.PENDING, nullable=False)
    payment_method: Mapped[str] = mapped_column(String(16), default=PaymentMethod.CASH, nullable=False)

    subtotal_cents: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    discounts_cents: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    tax_cents: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    transport_fee_cents: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_cents: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    amount_paid_cents: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    balance_due_cents: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    delivered_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    canceled_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    expired_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    def __repr__(self) -> str:
        return f"<VendorOrder(id={self.id}, status={self.status})>"


class OrderLineItem(Base, UUIDPKMixin, TimestampMixin):
    __tablename__ = "order_line_items"

    order_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("vendor_orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    product_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    name: Mapped[str] = mapped_column(String(255), default="", nullable=False)
    unit_price_cents: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    qty: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    discount_cents: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    line_subtotal_cents: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_cents: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    status: Mapped[str] = mapped_column(String(32), default=LineItemStatus.PENDING, nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)


class PaymentIntent(Base, UUIDPKMixin, TimestampMixin):
    __tablename__ = "payment_intents"

    order_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("vendor_orders.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    method: Mapped[str] = mapped_column(String(16), default=PaymentMethod.CASH, nullable=False)
    status: Mapped[str] = mapped_column(String(16), default=PaymentStatus.UNPAID, nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    cash_collected_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    vendor_paid_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    failure_reason: Mapped[str | None] = mapped_column(Text, nullable=True)


class OrderAssignment(Base, UUIDPKMixin):
    """Delivery agent assignment; at most one active per order."""

    __tablename__ = "order_assignments"

    order_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("vendor_orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    agent_user_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    assigned_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow, nullable=False)
    unassigned_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    pickup_time: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    delivery_time: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    cash_pickup_time: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)


class LedgerEvent(Base, UUIDPKMixin, CreatedAtMixin):
    """Append-only money movement record; one row per ``(order_id, type)``."""

    __tablename__ = "ledger_events"
    __table_args__ = (UniqueConstraint("order_id", "type", name="uq_ledger_events_order_type"),)

    order_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    buyer_store_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    vendor_store_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    actor_user_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    type: Mapped[str] = mapped_column(String(32), nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    # "metadata" is reserved on declarative classes
    details: Mapped[dict[str, Any] | None] = mapped_column("metadata", JSON, nullable=True)


class InventoryItem(Base, TimestampMixin):
    __tablename__ = "inventory_items"

    product_id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True)
    available_qty: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    reserved_qty: Mapped[int] = mapped_column(Integer, default=0, nullable=False)


__all__ = [
    "InventoryItem",
    "LedgerEvent",
    "OrderAssignment",
    "OrderLineItem",
    "PaymentIntent",
    "VendorOrder",
]
