"""Closed sets of event types, aggregate types and broker topics."""

from __future__ import annotations

from enum import StrEnum


class EventType(StrEnum):
    ORDER_CREATED = "order.created"
    ORDER_DECIDED = "order.decided"
    ORDER_READY_FOR_DISPATCH = "order.ready_for_dispatch"
    ORDER_CANCELED = "order.canceled"
    ORDER_RETRIED = "order.retried"
    ORDER_PAID = "order.paid"
    ORDER_EXPIRED = "order.expired"
    ORDER_PENDING_NUDGE = "order.pending_nudge"
    NOTIFICATION_REQUESTED = "notification.requested"
    CASH_COLLECTED = "cash.collected"
    PAYMENT_SETTLED = "payment.settled"
    PAYMENT_FAILED = "payment.failed"
    VENDOR_PAYOUT_RECORDED = "vendor_payout.recorded"
    RESERVATION_RELEASED = "reservation.released"
    CHECKOUT_CONVERTED = "checkout.converted"


class AggregateType(StrEnum):
    VENDOR_ORDER = "vendor_order"
    CHECKOUT_GROUP = "checkout_group"
    NOTIFICATION = "notification"
    LEDGER_EVENT = "ledger_event"
    STORE = "store"


class Topic(StrEnum):
    ORDERS = "orders"
    NOTIFICATIONS = "notifications"
    BILLING = "billing"


# One-time facts per aggregate; at most one outbox row per
# (event_type, aggregate_type, aggregate_id).
IDEMPOTENT_EVENT_TYPES: frozenset[EventType] = frozenset(
    {
        EventType.ORDER_DECIDED,
        EventType.ORDER_READY_FOR_DISPATCH,
        EventType.ORDER_EXPIRED,
        EventType.CASH_COLLECTED,
        EventType.ORDER_PAID,
    }
)


__all__ = ["IDEMPOTENT_EVENT_TYPES", "AggregateType", "EventType", "Topic"]
