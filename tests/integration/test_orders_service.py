"""Integration tests for the order, cash collection and payout state machines."""

from __future__ import annotations

import uuid
from unittest.mock import patch

import pytest
from sqlalchemy import select

from packfinder_bus.core.events import Actor, decode_envelope
from packfinder_bus.core.exceptions import (
    MAX_ERROR_BYTES,
    ConflictError,
    ForbiddenError,
    InvalidArgError,
    NotFoundError,
    StateConflictError,
)
from packfinder_bus.features.orders import (
    FulfillmentStatus,
    InventoryItem,
    LedgerEvent,
    LineItemStatus,
    OrderAssignment,
    OrderLineItem,
    OrderService,
    OrderStatus,
    PaymentIntent,
    PaymentMethod,
    PaymentStatus,
    ReservationResult,
    ShippingStatus,
    VendorOrder,
)
from packfinder_bus.features.orders.service import ORDER_NUDGE
from packfinder_bus.infra.events.outbox import OutboxEvent

# ============================================================================
# Helpers
# ============================================================================


class RecordingReleaser:
    """Releaser that records calls instead of touching inventory."""

    def __init__(self) -> None:
        self.calls: list[tuple[uuid.UUID, int]] = []

    async def release(self, session, product_id, qty):
        self.calls.append((product_id, qty))


class RefusingReserver:
    async def reserve(self, session, requests):
        return [
            ReservationResult(
                line_item_id=r.line_item_id,
                product_id=r.product_id,
                qty=r.qty,
                reserved=False,
                reason="insufficient inventory",
            )
            for r in requests
        ]


def _order(buyer_store_id, vendor_store_id, *, status=OrderStatus.CREATED_PENDING, **fields) -> VendorOrder:
    fields.setdefault("subtotal_cents", 3000)
    fields.setdefault("total_cents", 3000)
    fields.setdefault("balance_due_cents", 3000)
    return VendorOrder(
        id=uuid.uuid4(),
        checkout_group_id=uuid.uuid4(),
        buyer_store_id=buyer_store_id,
        vendor_store_id=vendor_store_id,
        status=status,
        **fields,
    )


def _item(order: VendorOrder, *, total_cents=1500, qty=1, product_id=None, status=LineItemStatus.PENDING, name="item"):
    return OrderLineItem(
        id=uuid.uuid4(),
        order_id=order.id,
        product_id=product_id,
        name=name,
        unit_price_cents=total_cents // max(qty, 1),
        qty=qty,
        line_subtotal_cents=total_cents,
        total_cents=total_cents,
        status=status,
    )


async def _get(session_factory, model, key):
    async with session_factory() as session:
        return await session.get(model, key)


async def _events(session_factory) -> list[OutboxEvent]:
    async with session_factory() as session:
        stmt = select(OutboxEvent).order_by(OutboxEvent.created_at, OutboxEvent.id)
        return list((await session.execute(stmt)).scalars())


async def _ledger(session_factory, order_id) -> list[LedgerEvent]:
    async with session_factory() as session:
        stmt = select(LedgerEvent).where(LedgerEvent.order_id == order_id)
        return list((await session.execute(stmt)).scalars())


@pytest.fixture
def releaser() -> RecordingReleaser:
    return RecordingReleaser()


@pytest.fixture
def service(runner) -> OrderService:
    return OrderService(runner=runner)


# ============================================================================
# Vendor decision
# ============================================================================


@pytest.mark.integration
class TestVendorDecision:
    """Accept or reject a pending order."""

    async def test_accept_emits_decided(self, service, seed, session_factory, buyer_store_id, vendor_store_id, vendor):
        order = _order(buyer_store_id, vendor_store_id)
        await seed(order)

        await service.vendor_decision(order.id, vendor, "accept")

        assert (await _get(session_factory, VendorOrder, order.id)).status == OrderStatus.ACCEPTED
        [event] = await _events(session_factory)
        assert event.event_type == "order.decided"
        assert event.aggregate_id == order.id
        envelope = decode_envelope(event.payload)
        assert envelope.data["decision"] == "accept"
        assert envelope.data["status"] == "accepted"
        assert envelope.actor == vendor

    async def test_repeat_is_noop(self, service, seed, session_factory, buyer_store_id, vendor_store_id, vendor):
        order = _order(buyer_store_id, vendor_store_id)
        await seed(order)

        await service.vendor_decision(order.id, vendor, "reject")
        await service.vendor_decision(order.id, vendor, "reject")

        assert (await _get(session_factory, VendorOrder, order.id)).status == OrderStatus.REJECTED
        assert len(await _events(session_factory)) == 1

    async def test_decided_order_cannot_flip(self, service, seed, buyer_store_id, vendor_store_id, vendor):
        order = _order(buyer_store_id, vendor_store_id, status=OrderStatus.ACCEPTED)
        await seed(order)

        with pytest.raises(StateConflictError, match="vendor decision not allowed in current state"):
            await service.vendor_decision(order.id, vendor, "reject")

    async def test_other_vendor_forbidden(self, service, seed, session_factory, buyer_store_id, vendor_store_id):
        order = _order(buyer_store_id, vendor_store_id)
        await seed(order)
        stranger = Actor(user_id=uuid.uuid4(), store_id=uuid.uuid4(), role="vendor")

        with pytest.raises(ForbiddenError, match="order does not belong to store"):
            await service.vendor_decision(order.id, stranger, "accept")

        assert (await _get(session_factory, VendorOrder, order.id)).status == OrderStatus.CREATED_PENDING
        assert await _events(session_factory) == []

    async def test_invalid_decision(self, service, vendor):
        with pytest.raises(InvalidArgError, match="invalid decision"):
            await service.vendor_decision(uuid.uuid4(), vendor, "maybe")

    async def test_nil_order_id(self, service, vendor):
        with pytest.raises(InvalidArgError, match="order id required"):
            await service.vendor_decision(uuid.UUID(int=0), vendor, "accept")

    @pytest.mark.parametrize(
        ("actor", "message"),
        [
            (None, "user identity missing"),
            (Actor(user_id=uuid.UUID(int=0), store_id=uuid.uuid4()), "user identity missing"),
            (Actor(user_id=uuid.uuid4()), "store context missing"),
        ],
    )
    async def test_identity_required(self, service, actor, message):
        with pytest.raises(ForbiddenError, match=message):
            await service.vendor_decision(uuid.uuid4(), actor, "accept")

    async def test_unknown_order(self, service, vendor):
        with pytest.raises(NotFoundError, match="order not found"):
            await service.vendor_decision(uuid.uuid4(), vendor, "accept")


# ============================================================================
# Line item decision
# ============================================================================


@pytest.mark.integration
class TestLineItemDecision:
    """Per-item fulfillment and the ready-for-dispatch transition."""

    async def test_last_item_makes_order_ready(self, service, seed, session_factory, buyer_store_id, vendor_store_id, vendor):
        order = _order(buyer_store_id, vendor_store_id, status=OrderStatus.ACCEPTED)
        first, second = _item(order), _item(order)
        await seed(order)
        await seed(first, second)

        await service.line_item_decision(order.id, first.id, vendor, "fulfill")
        assert (await _get(session_factory, VendorOrder, order.id)).status == OrderStatus.ACCEPTED
        assert await _events(session_factory) == []

        await service.line_item_decision(order.id, second.id, vendor, "fulfill", notes="packed")

        stored = await _get(session_factory, VendorOrder, order.id)
        assert stored.status == OrderStatus.READY_FOR_DISPATCH
        assert stored.fulfillment_status == FulfillmentStatus.FULFILLED
        assert (await _get(session_factory, OrderLineItem, second.id)).notes == "packed"

        [event] = await _events(session_factory)
        assert event.event_type == "order.ready_for_dispatch"
        data = decode_envelope(event.payload).data
        assert data["resolved_line_item_id"] == str(second.id)
        assert data["rejected_item_count"] == 0
        assert data["vendor_store_ids"] == [str(vendor_store_id)]

    async def test_reject_releases_stock_and_recomputes_totals(
        self, runner, seed, session_factory, releaser, buyer_store_id, vendor_store_id, vendor
    ):
        service = OrderService(runner=runner, releaser=releaser)
        order = _order(buyer_store_id, vendor_store_id, status=OrderStatus.ACCEPTED, tax_cents=200)
        product_id = uuid.uuid4()
        kept = _item(order, total_cents=1000, status=LineItemStatus.FULFILLED)
        dropped = _item(order, total_cents=2000, qty=2, product_id=product_id)
        await seed(order)
        await seed(kept, dropped)

        await service.line_item_decision(order.id, dropped.id, vendor, "reject")

        assert releaser.calls == [(product_id, 2)]
        stored = await _get(session_factory, VendorOrder, order.id)
        assert stored.subtotal_cents == 1000
        assert stored.total_cents == 1200
        assert stored.balance_due_cents == 1200
        assert stored.status == OrderStatus.READY_FOR_DISPATCH
        assert stored.fulfillment_status == FulfillmentStatus.PARTIAL

        [event] = await _events(session_factory)
        assert decode_envelope(event.payload).data["rejected_item_count"] == 1

    async def test_reject_clamps_discount_to_remaining_subtotal(
        self, runner, seed, session_factory, releaser, buyer_store_id, vendor_store_id, vendor
    ):
        service = OrderService(runner=runner, releaser=releaser)
        order = _order(buyer_store_id, vendor_store_id, status=OrderStatus.ACCEPTED, discounts_cents=1500, tax_cents=100)
        kept = _item(order, total_cents=1000, status=LineItemStatus.FULFILLED)
        dropped = _item(order, total_cents=2000)
        await seed(order)
        await seed(kept, dropped)

        await service.line_item_decision(order.id, dropped.id, vendor, "reject")

        stored = await _get(session_factory, VendorOrder, order.id)
        assert (stored.subtotal_cents, stored.discounts_cents) == (1000, 1000)
        assert stored.total_cents == 100
        assert stored.balance_due_cents == 100

    async def test_reject_floors_balance_when_already_paid(
        self, runner, seed, session_factory, releaser, buyer_store_id, vendor_store_id, vendor
    ):
        service = OrderService(runner=runner, releaser=releaser)
        order = _order(buyer_store_id, vendor_store_id, status=OrderStatus.ACCEPTED, amount_paid_cents=3000)
        kept = _item(order, total_cents=1000, status=LineItemStatus.FULFILLED)
        dropped = _item(order, total_cents=2000)
        await seed(order)
        await seed(kept, dropped)

        await service.line_item_decision(order.id, dropped.id, vendor, "reject")

        stored = await _get(session_factory, VendorOrder, order.id)
        assert stored.total_cents == 1000
        assert stored.amount_paid_cents == 3000
        assert stored.balance_due_cents == 0

    async def test_repeat_is_noop(self, runner, seed, releaser, buyer_store_id, vendor_store_id, vendor):
        service = OrderService(runner=runner, releaser=releaser)
        order = _order(buyer_store_id, vendor_store_id)
        item = _item(order, product_id=uuid.uuid4(), qty=1)
        await seed(order)
        await seed(item, _item(order))

        await service.line_item_decision(order.id, item.id, vendor, "reject")
        await service.line_item_decision(order.id, item.id, vendor, "reject")

        assert len(releaser.calls) == 1

    async def test_fulfilled_item_cannot_be_rejected(self, service, seed, buyer_store_id, vendor_store_id, vendor):
        order = _order(buyer_store_id, vendor_store_id)
        item = _item(order, status=LineItemStatus.FULFILLED)
        await seed(order)
        await seed(item)

        with pytest.raises(StateConflictError, match="line item cannot be updated in current state"):
            await service.line_item_decision(order.id, item.id, vendor, "reject")

    async def test_item_of_other_order_forbidden(self, service, seed, buyer_store_id, vendor_store_id, vendor):
        order = _order(buyer_store_id, vendor_store_id)
        other = _order(buyer_store_id, vendor_store_id)
        foreign = _item(other)
        await seed(order, other)
        await seed(foreign)

        with pytest.raises(ForbiddenError, match="line item does not belong to order"):
            await service.line_item_decision(order.id, foreign.id, vendor, "fulfill")

    async def test_unknown_item(self, service, seed, buyer_store_id, vendor_store_id, vendor):
        order = _order(buyer_store_id, vendor_store_id)
        await seed(order)

        with pytest.raises(NotFoundError, match="line item not found"):
            await service.line_item_decision(order.id, uuid.uuid4(), vendor, "fulfill")

    async def test_invalid_decision(self, service, vendor):
        with pytest.raises(InvalidArgError, match="line item decision must be fulfill or reject"):
            await service.line_item_decision(uuid.uuid4(), uuid.uuid4(), vendor, "accept")

    async def test_nil_line_item(self, service, vendor):
        with pytest.raises(InvalidArgError, match="line item id required"):
            await service.line_item_decision(uuid.uuid4(), uuid.UUID(int=0), vendor, "fulfill")


# ============================================================================
# Payout
# ============================================================================


@pytest.mark.integration
class TestConfirmPayout:
    """Vendor payout on delivered, settled orders."""

    async def _delivered(self, seed, buyer_store_id, vendor_store_id, *, status=OrderStatus.DELIVERED, payment=PaymentStatus.SETTLED):
        order = _order(buyer_store_id, vendor_store_id, status=status)
        intent = PaymentIntent(order_id=order.id, status=payment, amount_cents=3000)
        await seed(order)
        await seed(intent)
        return order, intent

    async def test_payout_closes_order(self, service, seed, session_factory, buyer_store_id, vendor_store_id, vendor):
        order, intent = await self._delivered(seed, buyer_store_id, vendor_store_id)

        await service.confirm_payout(order.id, vendor)

        assert (await _get(session_factory, VendorOrder, order.id)).status == OrderStatus.CLOSED
        stored_intent = await _get(session_factory, PaymentIntent, intent.id)
        assert stored_intent.status == PaymentStatus.PAID
        assert stored_intent.vendor_paid_at is not None

        [entry] = await _ledger(session_factory, order.id)
        assert entry.type == "vendor_payout"
        assert entry.amount_cents == 3000
        assert entry.actor_user_id == vendor.user_id

        [event] = await _events(session_factory)
        assert event.event_type == "order.paid"
        assert decode_envelope(event.payload).data["payment_intent_id"] == str(intent.id)

    async def test_repeat_is_noop(self, service, seed, session_factory, buyer_store_id, vendor_store_id, vendor):
        order, _ = await self._delivered(seed, buyer_store_id, vendor_store_id)

        await service.confirm_payout(order.id, vendor)
        await service.confirm_payout(order.id, vendor)

        assert len(await _ledger(session_factory, order.id)) == 1
        assert len(await _events(session_factory)) == 1

    async def test_requires_delivery(self, service, seed, buyer_store_id, vendor_store_id, vendor):
        order, _ = await self._delivered(seed, buyer_store_id, vendor_store_id, status=OrderStatus.IN_TRANSIT)

        with pytest.raises(StateConflictError, match="order not eligible for payout"):
            await service.confirm_payout(order.id, vendor)

    async def test_requires_settlement(self, service, seed, buyer_store_id, vendor_store_id, vendor):
        order, _ = await self._delivered(seed, buyer_store_id, vendor_store_id, payment=PaymentStatus.UNPAID)

        with pytest.raises(StateConflictError, match="payment not settled"):
            await service.confirm_payout(order.id, vendor)

    async def test_requires_intent(self, service, seed, buyer_store_id, vendor_store_id, vendor):
        order = _order(buyer_store_id, vendor_store_id, status=OrderStatus.DELIVERED)
        await seed(order)

        with pytest.raises(ConflictError, match="payment intent missing"):
            await service.confirm_payout(order.id, vendor)

    async def test_buyer_cannot_confirm(self, service, seed, buyer_store_id, vendor_store_id, buyer):
        order, _ = await self._delivered(seed, buyer_store_id, vendor_store_id)

        with pytest.raises(ForbiddenError):
            await service.confirm_payout(order.id, buyer)


# ============================================================================
# Buyer operations
# ============================================================================


@pytest.mark.integration
class TestCancelOrder:
    """Buyer cancel releases reserved stock."""

    async def test_cancel_releases_inventory(self, service, seed, session_factory, buyer_store_id, vendor_store_id, buyer):
        product_id = uuid.uuid4()
        order = _order(buyer_store_id, vendor_store_id, status=OrderStatus.ACCEPTED)
        item = _item(order, product_id=product_id, qty=3, total_cents=3000)
        await seed(order, InventoryItem(product_id=product_id, available_qty=5, reserved_qty=3))
        await seed(item)

        await service.cancel_order(order.id, buyer, reason="found it cheaper")

        stored = await _get(session_factory, VendorOrder, order.id)
        assert stored.status == OrderStatus.CANCELED
        assert stored.balance_due_cents == 0
        assert stored.canceled_at is not None
        assert (await _get(session_factory, OrderLineItem, item.id)).status == LineItemStatus.REJECTED

        stock = await _get(session_factory, InventoryItem, product_id)
        assert (stock.available_qty, stock.reserved_qty) == (8, 0)

        [event] = await _events(session_factory)
        assert event.event_type == "order.canceled"
        assert decode_envelope(event.payload).data["reason"] == "found it cheaper"

    async def test_settled_items_not_released(self, runner, seed, session_factory, releaser, buyer_store_id, vendor_store_id, buyer):
        service = OrderService(runner=runner, releaser=releaser)
        order = _order(buyer_store_id, vendor_store_id, status=OrderStatus.READY_FOR_DISPATCH)
        open_item = _item(order, product_id=uuid.uuid4(), qty=1)
        fulfilled = _item(order, product_id=uuid.uuid4(), qty=1, status=LineItemStatus.FULFILLED)
        await seed(order)
        await seed(open_item, fulfilled)

        await service.cancel_order(order.id, buyer)

        assert releaser.calls == [(open_item.product_id, 1)]
        assert (await _get(session_factory, OrderLineItem, fulfilled.id)).status == LineItemStatus.FULFILLED

    @pytest.mark.parametrize("status", [OrderStatus.IN_TRANSIT, OrderStatus.DELIVERED, OrderStatus.CANCELED])
    async def test_final_status_refused(self, service, seed, session_factory, buyer_store_id, vendor_store_id, buyer, status):
        order = _order(buyer_store_id, vendor_store_id, status=status)
        await seed(order)

        with pytest.raises(StateConflictError, match="order cannot be canceled in current state"):
            await service.cancel_order(order.id, buyer)
        assert await _events(session_factory) == []

    async def test_vendor_cannot_cancel(self, service, seed, buyer_store_id, vendor_store_id, vendor):
        order = _order(buyer_store_id, vendor_store_id)
        await seed(order)

        with pytest.raises(ForbiddenError):
            await service.cancel_order(order.id, vendor)


@pytest.mark.integration
class TestNudgeVendor:
    """Buyer nudges."""

    async def test_nudge_requests_notification(self, service, seed, session_factory, buyer_store_id, vendor_store_id, buyer):
        order = _order(buyer_store_id, vendor_store_id)
        await seed(order)

        await service.nudge_vendor(order.id, buyer)
        await service.nudge_vendor(order.id, buyer)

        events = await _events(session_factory)
        assert [e.event_type for e in events] == ["notification.requested"] * 2
        assert decode_envelope(events[0].payload).data["type"] == ORDER_NUDGE

    async def test_closed_order_refused(self, service, seed, buyer_store_id, vendor_store_id, buyer):
        order = _order(buyer_store_id, vendor_store_id, status=OrderStatus.CLOSED)
        await seed(order)

        with pytest.raises(StateConflictError, match="order cannot be nudged in current state"):
            await service.nudge_vendor(order.id, buyer)


@pytest.mark.integration
class TestRetryOrder:
    """Re-placing expired orders."""

    async def _expired(self, seed, buyer_store_id, vendor_store_id, *, available: int):
        product_id = uuid.uuid4()
        order = _order(buyer_store_id, vendor_store_id, status=OrderStatus.EXPIRED, payment_method=PaymentMethod.CASH)
        item = _item(order, product_id=product_id, qty=2, total_cents=3000, status=LineItemStatus.REJECTED)
        await seed(order, InventoryItem(product_id=product_id, available_qty=available, reserved_qty=0))
        await seed(item, PaymentIntent(order_id=order.id, method=PaymentMethod.CASH, status=PaymentStatus.UNPAID))
        return order, item

    async def test_retry_creates_pending_copy(self, service, seed, session_factory, buyer_store_id, vendor_store_id, buyer):
        order, item = await self._expired(seed, buyer_store_id, vendor_store_id, available=5)

        new_id = await service.retry_order(order.id, buyer)

        assert new_id != order.id
        new_order = await _get(session_factory, VendorOrder, new_id)
        assert new_order.status == OrderStatus.CREATED_PENDING
        assert new_order.shipping_status == ShippingStatus.PENDING
        assert new_order.amount_paid_cents == 0
        assert new_order.balance_due_cents == new_order.total_cents == 3000
        assert new_order.checkout_group_id != order.checkout_group_id

        async with session_factory() as session:
            items = list(
                (await session.execute(select(OrderLineItem).where(OrderLineItem.order_id == new_id))).scalars()
            )
            intent = (
                await session.execute(select(PaymentIntent).where(PaymentIntent.order_id == new_id))
            ).scalar_one()
        assert [(i.product_id, i.qty, i.status) for i in items] == [(item.product_id, 2, LineItemStatus.PENDING)]
        assert (intent.method, intent.status, intent.amount_cents) == (PaymentMethod.CASH, PaymentStatus.UNPAID, 3000)

        stock = await _get(session_factory, InventoryItem, item.product_id)
        assert (stock.available_qty, stock.reserved_qty) == (3, 2)

        [event] = await _events(session_factory)
        assert event.event_type == "order.retried"
        assert event.aggregate_id == new_id
        assert decode_envelope(event.payload).data["original_order_id"] == str(order.id)

    async def test_insufficient_inventory_writes_nothing(self, service, seed, session_factory, buyer_store_id, vendor_store_id, buyer):
        order, item = await self._expired(seed, buyer_store_id, vendor_store_id, available=1)

        with pytest.raises(ConflictError, match="insufficient inventory for retry"):
            await service.retry_order(order.id, buyer)

        async with session_factory() as session:
            orders = list((await session.execute(select(VendorOrder))).scalars())
        assert [o.id for o in orders] == [order.id]
        stock = await _get(session_factory, InventoryItem, item.product_id)
        assert (stock.available_qty, stock.reserved_qty) == (1, 0)
        assert await _events(session_factory) == []

    async def test_reserver_refusal(self, runner, seed, session_factory, buyer_store_id, vendor_store_id, buyer):
        service = OrderService(runner=runner, reserver=RefusingReserver())
        order, _ = await self._expired(seed, buyer_store_id, vendor_store_id, available=100)

        with pytest.raises(ConflictError):
            await service.retry_order(order.id, buyer)
        assert await _events(session_factory) == []

    async def test_only_expired_orders(self, service, seed, buyer_store_id, vendor_store_id, buyer):
        order = _order(buyer_store_id, vendor_store_id, status=OrderStatus.CANCELED)
        await seed(order)

        with pytest.raises(StateConflictError, match="order retry only allowed for expired orders"):
            await service.retry_order(order.id, buyer)


# ============================================================================
# Delivery agent
# ============================================================================


@pytest.mark.integration
class TestAgentTransitions:
    """Pickup, delivery and cash collection."""

    async def _assigned(self, seed, buyer_store_id, vendor_store_id, agent_user_id, *, status, intent_amount=3000, **fields):
        order = _order(buyer_store_id, vendor_store_id, status=status, **fields)
        assignment = OrderAssignment(order_id=order.id, agent_user_id=agent_user_id)
        intent = PaymentIntent(order_id=order.id, amount_cents=intent_amount, status=PaymentStatus.UNPAID)
        await seed(order)
        await seed(assignment, intent)
        return order, assignment, intent

    async def test_pickup_then_deliver(self, service, seed, session_factory, buyer_store_id, vendor_store_id, agent_user_id):
        order, assignment, _ = await self._assigned(
            seed, buyer_store_id, vendor_store_id, agent_user_id, status=OrderStatus.READY_FOR_DISPATCH
        )

        await service.agent_pickup(order.id, agent_user_id)
        stored = await _get(session_factory, VendorOrder, order.id)
        assert (stored.status, stored.shipping_status) == (OrderStatus.IN_TRANSIT, ShippingStatus.IN_TRANSIT)
        picked_at = (await _get(session_factory, OrderAssignment, assignment.id)).pickup_time
        assert picked_at is not None

        await service.agent_pickup(order.id, agent_user_id)
        assert (await _get(session_factory, OrderAssignment, assignment.id)).pickup_time == picked_at

        await service.agent_deliver(order.id, agent_user_id)
        stored = await _get(session_factory, VendorOrder, order.id)
        assert (stored.status, stored.shipping_status) == (OrderStatus.DELIVERED, ShippingStatus.DELIVERED)
        assert stored.delivered_at is not None
        assert (await _get(session_factory, OrderAssignment, assignment.id)).delivery_time is not None

    async def test_pickup_requires_dispatch_state(self, service, seed, buyer_store_id, vendor_store_id, agent_user_id):
        order, _, _ = await self._assigned(
            seed, buyer_store_id, vendor_store_id, agent_user_id, status=OrderStatus.CREATED_PENDING
        )

        with pytest.raises(StateConflictError, match="order cannot be picked up in current state"):
            await service.agent_pickup(order.id, agent_user_id)

    async def test_deliver_requires_transit(self, service, seed, buyer_store_id, vendor_store_id, agent_user_id):
        order, _, _ = await self._assigned(
            seed, buyer_store_id, vendor_store_id, agent_user_id, status=OrderStatus.READY_FOR_DISPATCH
        )

        with pytest.raises(StateConflictError, match="order cannot be delivered in current state"):
            await service.agent_deliver(order.id, agent_user_id)

    async def test_unassigned_agent_forbidden(self, service, seed, buyer_store_id, vendor_store_id, agent_user_id):
        order, _, _ = await self._assigned(
            seed, buyer_store_id, vendor_store_id, agent_user_id, status=OrderStatus.READY_FOR_DISPATCH
        )

        with pytest.raises(ForbiddenError, match="order not assigned to agent"):
            await service.agent_pickup(order.id, uuid.uuid4())

    async def test_agent_identity_required(self, service):
        with pytest.raises(ForbiddenError, match="agent identity missing"):
            await service.agent_deliver(uuid.uuid4(), uuid.UUID(int=0))

    async def test_cash_collected_settles(self, service, seed, session_factory, buyer_store_id, vendor_store_id, agent_user_id):
        order, assignment, intent = await self._assigned(
            seed, buyer_store_id, vendor_store_id, agent_user_id, status=OrderStatus.DELIVERED
        )

        await service.agent_cash_collected(order.id, agent_user_id, 3000)

        stored_intent = await _get(session_factory, PaymentIntent, intent.id)
        assert stored_intent.status == PaymentStatus.SETTLED
        assert stored_intent.cash_collected_at is not None
        stored = await _get(session_factory, VendorOrder, order.id)
        assert (stored.amount_paid_cents, stored.balance_due_cents) == (3000, 0)
        assert (await _get(session_factory, OrderAssignment, assignment.id)).cash_pickup_time is not None

        [entry] = await _ledger(session_factory, order.id)
        assert (entry.type, entry.amount_cents, entry.actor_user_id) == ("cash_collected", 3000, agent_user_id)

        [event] = await _events(session_factory)
        assert event.event_type == "cash.collected"
        envelope = decode_envelope(event.payload)
        assert envelope.actor.user_id == agent_user_id
        assert envelope.actor.role == "agent"

    async def test_cash_on_ready_cash_order(self, service, seed, session_factory, buyer_store_id, vendor_store_id, agent_user_id):
        order, _, intent = await self._assigned(
            seed, buyer_store_id, vendor_store_id, agent_user_id, status=OrderStatus.READY_FOR_DISPATCH
        )

        await service.agent_cash_collected(order.id, agent_user_id, 3000)

        assert (await _get(session_factory, PaymentIntent, intent.id)).status == PaymentStatus.SETTLED

    async def test_intent_without_amount_uses_order_total(self, service, seed, session_factory, buyer_store_id, vendor_store_id, agent_user_id):
        order, _, intent = await self._assigned(
            seed, buyer_store_id, vendor_store_id, agent_user_id, status=OrderStatus.DELIVERED, intent_amount=0
        )

        await service.agent_cash_collected(order.id, agent_user_id, 3000)

        assert (await _get(session_factory, PaymentIntent, intent.id)).status == PaymentStatus.SETTLED

    async def test_amount_mismatch_commits_failure(self, service, seed, session_factory, buyer_store_id, vendor_store_id, agent_user_id):
        order, _, intent = await self._assigned(
            seed, buyer_store_id, vendor_store_id, agent_user_id, status=OrderStatus.DELIVERED
        )

        with pytest.raises(ConflictError, match="amount mismatch"):
            await service.agent_cash_collected(order.id, agent_user_id, 2500)

        stored_intent = await _get(session_factory, PaymentIntent, intent.id)
        assert stored_intent.status == PaymentStatus.FAILED
        assert "expected 3000, collected 2500" in stored_intent.failure_reason
        assert (await _get(session_factory, VendorOrder, order.id)).status == OrderStatus.HOLD
        assert await _ledger(session_factory, order.id) == []
        assert await _events(session_factory) == []

    async def test_intent_amount_must_match_order_total(
        self, service, seed, session_factory, buyer_store_id, vendor_store_id, agent_user_id
    ):
        order, _, intent = await self._assigned(
            seed,
            buyer_store_id,
            vendor_store_id,
            agent_user_id,
            status=OrderStatus.DELIVERED,
            intent_amount=3000,
            total_cents=5000,
            balance_due_cents=5000,
        )

        with pytest.raises(ConflictError, match="amount mismatch"):
            await service.agent_cash_collected(order.id, agent_user_id, 3000)

        stored_intent = await _get(session_factory, PaymentIntent, intent.id)
        assert stored_intent.status == PaymentStatus.FAILED
        assert stored_intent.failure_reason == "amount mismatch: intent 3000, order total 5000, collected 3000"
        stored = await _get(session_factory, VendorOrder, order.id)
        assert (stored.status, stored.balance_due_cents) == (OrderStatus.HOLD, 5000)
        assert await _ledger(session_factory, order.id) == []
        assert await _events(session_factory) == []

    async def test_mismatch_reason_is_truncated(self, service, seed, session_factory, buyer_store_id, vendor_store_id, agent_user_id):
        order, _, intent = await self._assigned(
            seed, buyer_store_id, vendor_store_id, agent_user_id, status=OrderStatus.DELIVERED
        )

        with (
            patch("packfinder_bus.features.orders.service.AMOUNT_MISMATCH", "x" * 2000),
            pytest.raises(ConflictError),
        ):
            await service.agent_cash_collected(order.id, agent_user_id, 2500)

        stored_intent = await _get(session_factory, PaymentIntent, intent.id)
        assert len(stored_intent.failure_reason.encode()) == MAX_ERROR_BYTES

    async def test_finalized_payment_refused(self, service, seed, buyer_store_id, vendor_store_id, agent_user_id):
        order, _, _ = await self._assigned(
            seed, buyer_store_id, vendor_store_id, agent_user_id, status=OrderStatus.DELIVERED
        )
        await service.agent_cash_collected(order.id, agent_user_id, 3000)

        with pytest.raises(StateConflictError, match="payment already finalized"):
            await service.agent_cash_collected(order.id, agent_user_id, 3000)

    async def test_in_transit_not_collectible(self, service, seed, buyer_store_id, vendor_store_id, agent_user_id):
        order, _, _ = await self._assigned(
            seed, buyer_store_id, vendor_store_id, agent_user_id, status=OrderStatus.IN_TRANSIT
        )

        with pytest.raises(StateConflictError, match="cash cannot be collected in current state"):
            await service.agent_cash_collected(order.id, agent_user_id, 3000)

    async def test_negative_amount(self, service, agent_user_id):
        with pytest.raises(InvalidArgError, match="amount must not be negative"):
            await service.agent_cash_collected(uuid.uuid4(), agent_user_id, -1)
