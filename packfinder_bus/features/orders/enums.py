"""Closed status sets for vendor orders, line items and payments."""

from __future__ import annotations

from enum import StrEnum


class OrderStatus(StrEnum):
    CREATED_PENDING = "created_pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    HOLD = "hold"
    READY_FOR_DISPATCH = "ready_for_dispatch"
    HOLD_FOR_PICKUP = "hold_for_pickup"
    IN_TRANSIT = "in_transit"
    DELIVERED = "delivered"
    CLOSED = "closed"
    CANCELED = "canceled"
    EXPIRED = "expired"


class FulfillmentStatus(StrEnum):
    PENDING = "pending"
    PARTIAL = "partial"
    FULFILLED = "fulfilled"


class ShippingStatus(StrEnum):
    PENDING = "pending"
    IN_TRANSIT = "in_transit"
    DELIVERED = "delivered"


class PaymentStatus(StrEnum):
    UNPAID = "unpaid"
    PENDING = "pending"
    SETTLED = "settled"
    PAID = "paid"
    FAILED = "failed"
    REJECTED = "rejected"


class PaymentMethod(StrEnum):
    CASH = "cash"
    ACH = "ach"


class LineItemStatus(StrEnum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    HOLD = "hold"
    FULFILLED = "fulfilled"
    REJECTED = "rejected"


class Decision(StrEnum):
    """Vendor decision on a whole order."""

    ACCEPT = "accept"
    REJECT = "reject"


class LineItemDecision(StrEnum):
    """Vendor decision on one line item."""

    FULFILL = "fulfill"
    REJECT = "reject"


class LedgerEventType(StrEnum):
    CASH_COLLECTED = "cash_collected"
    VENDOR_PAYOUT = "vendor_payout"
    ADJUSTMENT = "adjustment"
    REFUND = "refund"


# Buyer cancel and nudge are refused once an order reaches any of these
FINAL_ORDER_STATUSES = frozenset(
    {
        OrderStatus.IN_TRANSIT,
        OrderStatus.DELIVERED,
        OrderStatus.CLOSED,
        OrderStatus.CANCELED,
        OrderStatus.EXPIRED,
    }
)

DECIDABLE_LINE_ITEM_STATUSES = frozenset(
    {LineItemStatus.PENDING, LineItemStatus.ACCEPTED, LineItemStatus.HOLD}
)

PICKUP_STATUSES = frozenset(
    {OrderStatus.READY_FOR_DISPATCH, OrderStatus.HOLD_FOR_PICKUP, OrderStatus.IN_TRANSIT}
)

DELIVERY_STATUSES = frozenset({OrderStatus.IN_TRANSIT, OrderStatus.DELIVERED})

FINALIZED_PAYMENT_STATUSES = frozenset(
    {PaymentStatus.SETTLED, PaymentStatus.PAID, PaymentStatus.FAILED, PaymentStatus.REJECTED}
)


__all__ = [
    "DECIDABLE_LINE_ITEM_STATUSES",
    "DELIVERY_STATUSES",
    "FINALIZED_PAYMENT_STATUSES",
    "FINAL_ORDER_STATUSES",
    "PICKUP_STATUSES",
    "Decision",
    "FulfillmentStatus",
    "LedgerEventType",
    "LineItemDecision",
    "LineItemStatus",
    "OrderStatus",
    "PaymentMethod",
    "PaymentStatus",
    "ShippingStatus",
]
