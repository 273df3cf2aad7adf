"""Vendor order lifecycle, cash collection, payout, ledger and inventory."""

from .enums import (
    Decision,
    FulfillmentStatus,
    LedgerEventType,
    LineItemDecision,
    LineItemStatus,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    ShippingStatus,
)
from .inventory import (
    InventoryReleaser,
    InventoryReserver,
    ReservationRequest,
    ReservationResult,
    SqlInventoryReleaser,
    SqlInventoryReserver,
)
from .ledger import LedgerService
from .models import InventoryItem, LedgerEvent, OrderAssignment, OrderLineItem, PaymentIntent, VendorOrder
from .repository import OrderRepository
from .service import OrderService

__all__ = [
    "Decision",
    "FulfillmentStatus",
    "InventoryItem",
    "InventoryReleaser",
    "InventoryReserver",
    "LedgerEvent",
    "LedgerEventType",
    "LedgerService",
    "LineItemDecision",
    "LineItemStatus",
    "OrderAssignment",
    "OrderLineItem",
    "OrderRepository",
    "OrderService",
    "OrderStatus",
    "PaymentIntent",
    "PaymentMethod",
    "PaymentStatus",
    "ReservationRequest",
    "ReservationResult",
    "ShippingStatus",
    "SqlInventoryReleaser",
    "SqlInventoryReserver",
    "VendorOrder",
]
