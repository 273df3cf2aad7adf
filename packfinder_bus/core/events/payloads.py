"""Typed ``data`` payloads, one model per event type and schema version.

Payloads are flat value objects: ids and scalars only, no references to
other payloads. Unknown keys are ignored on decode so producers can add
fields without breaking older consumers.
"""

from __future__ import annotations

import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class EventPayload(BaseModel):
    """Base for every event payload."""

    model_config = ConfigDict(frozen=True, extra="ignore")


class OrderCreatedPayload(EventPayload):
    checkout_group_id: uuid.UUID
    vendor_order_ids: list[uuid.UUID] = Field(default_factory=list)
    buyer_store_id: uuid.UUID | None = None
    amount_cents: int | None = None


class OrderDecidedPayload(EventPayload):
    order_id: uuid.UUID
    checkout_group_id: uuid.UUID
    buyer_store_id: uuid.UUID
    vendor_store_id: uuid.UUID
    decision: str
    status: str


class OrderReadyForDispatchPayload(EventPayload):
    order_id: uuid.UUID
    checkout_group_id: uuid.UUID
    buyer_store_id: uuid.UUID
    vendor_store_id: uuid.UUID
    vendor_store_ids: list[uuid.UUID] = Field(default_factory=list)
    fulfillment_status: str
    shipping_status: str
    rejected_item_count: int = 0
    resolved_line_item_id: uuid.UUID


class OrderCanceledPayload(EventPayload):
    order_id: uuid.UUID
    checkout_group_id: uuid.UUID
    buyer_store_id: uuid.UUID
    vendor_store_id: uuid.UUID
    canceled_at: datetime
    reason: str | None = None


class OrderRetriedPayload(EventPayload):
    original_order_id: uuid.UUID
    order_id: uuid.UUID
    checkout_group_id: uuid.UUID
    buyer_store_id: uuid.UUID
    vendor_store_id: uuid.UUID


class OrderPaidPayload(EventPayload):
    order_id: uuid.UUID
    buyer_store_id: uuid.UUID
    vendor_store_id: uuid.UUID
    payment_intent_id: uuid.UUID
    amount_cents: int
    vendor_paid_at: datetime


class OrderExpiredPayload(EventPayload):
    order_id: uuid.UUID
    checkout_group_id: uuid.UUID
    buyer_store_id: uuid.UUID
    vendor_store_id: uuid.UUID
    expired_at: datetime
    ttl_days: int | None = None


class OrderPendingNudgePayload(EventPayload):
    order_id: uuid.UUID
    checkout_group_id: uuid.UUID
    buyer_store_id: uuid.UUID
    vendor_store_id: uuid.UUID
    pending_days: int


class NotificationRequestedPayload(EventPayload):
    order_id: uuid.UUID
    checkout_group_id: uuid.UUID
    buyer_store_id: uuid.UUID
    vendor_store_id: uuid.UUID
    type: str


class CashCollectedPayload(EventPayload):
    order_id: uuid.UUID
    buyer_store_id: uuid.UUID
    vendor_store_id: uuid.UUID
    amount_cents: int
    cash_collected_at: datetime


class PaymentStatusPayload(EventPayload):
    """Shared by ``payment.settled`` and ``payment.failed``."""

    order_id: uuid.UUID
    payment_intent_id: uuid.UUID
    buyer_store_id: uuid.UUID
    vendor_store_id: uuid.UUID
    status: str
    amount_cents: int
    reason: str | None = None


class VendorPayoutRecordedPayload(EventPayload):
    ledger_event_id: uuid.UUID
    order_id: uuid.UUID
    vendor_store_id: uuid.UUID
    amount_cents: int


class ReservationReleasedPayload(EventPayload):
    order_id: uuid.UUID
    product_id: uuid.UUID
    qty: int


class CheckoutConvertedPayload(EventPayload):
    checkout_group_id: uuid.UUID
    cart_id: uuid.UUID | None = None
    buyer_store_id: uuid.UUID
    vendor_order_ids: list[uuid.UUID] = Field(default_factory=list)
    vendor_store_ids: list[uuid.UUID] = Field(default_factory=list)
    converted_at: datetime
    total_cents: int = 0


__all__ = [
    "CashCollectedPayload",
    "CheckoutConvertedPayload",
    "EventPayload",
    "NotificationRequestedPayload",
    "OrderCanceledPayload",
    "OrderCreatedPayload",
    "OrderDecidedPayload",
    "OrderExpiredPayload",
    "OrderPaidPayload",
    "OrderPendingNudgePayload",
    "OrderReadyForDispatchPayload",
    "OrderRetriedPayload",
    "PaymentStatusPayload",
    "ReservationReleasedPayload",
    "VendorPayoutRecordedPayload",
]
