"""Order, cash collection and payout state machines.

Every operation follows the same shape inside one ``TransactionRunner.with_tx``
call: load and lock the order, authorize the actor, check the current status
against the permitted predecessors, apply the effects, emit through the
outbox, commit. A failure anywhere rolls back the whole transaction,
including the staged events.

Repeating an operation whose target state already holds is a no-op.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import TYPE_CHECKING, NoReturn

from packfinder_bus.core.database.base import utcnow
from packfinder_bus.core.events import Actor, AggregateType, DomainEvent, EventType, OutboxEmitter
from packfinder_bus.core.events.envelope import NIL_UUID
from packfinder_bus.core.events.payloads import (
    CashCollectedPayload,
    NotificationRequestedPayload,
    OrderCanceledPayload,
    OrderDecidedPayload,
    OrderPaidPayload,
    OrderReadyForDispatchPayload,
    OrderRetriedPayload,
)
from packfinder_bus.core.exceptions import (
    ConflictError,
    ForbiddenError,
    InvalidArgError,
    StateConflictError,
    truncate_error,
)
from packfinder_bus.features.orders.enums import (
    DECIDABLE_LINE_ITEM_STATUSES,
    DELIVERY_STATUSES,
    FINAL_ORDER_STATUSES,
    FINALIZED_PAYMENT_STATUSES,
    PICKUP_STATUSES,
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
from packfinder_bus.features.orders.inventory import (
    ReservationRequest,
    SqlInventoryReleaser,
    SqlInventoryReserver,
)
from packfinder_bus.features.orders.ledger import LedgerService
from packfinder_bus.features.orders.models import OrderLineItem, PaymentIntent, VendorOrder
from packfinder_bus.features.orders.repository import OrderRepository
from packfinder_bus.infra.database.session import get_transaction_runner

if TYPE_CHECKING:
    from collections.abc import Sequence
    from datetime import datetime

    from pydantic import BaseModel
    from sqlalchemy.ext.asyncio import AsyncSession

    from packfinder_bus.features.orders.inventory import InventoryReleaser, InventoryReserver
    from packfinder_bus.features.orders.models import OrderAssignment
    from packfinder_bus.infra.database.session import TransactionRunner

logger = logging.getLogger(__name__)

ORDER_NUDGE = "order_nudge"
AMOUNT_MISMATCH = "amount mismatch"

_DECISION_TARGETS = {
    Decision.ACCEPT: OrderStatus.ACCEPTED,
    Decision.REJECT: OrderStatus.REJECTED,
}

_LINE_ITEM_TARGETS = {
    LineItemDecision.FULFILL: LineItemStatus.FULFILLED,
    LineItemDecision.REJECT: LineItemStatus.REJECTED,
}


@dataclass(frozen=True, slots=True)
class OrderTotals:
    subtotal_cents: int
    discounts_cents: int
    total_cents: int
    balance_due_cents: int


def compute_totals(order: VendorOrder, items: Sequence[OrderLineItem]) -> OrderTotals:
    """Recompute order totals over the items that were not rejected.

    The discount is clamped to the subtotal and the balance never goes
    negative.
    """
    subtotal = sum(item.total_cents for item in items if item.status != LineItemStatus.REJECTED)
    discount = min(max(order.discounts_cents, 0), subtotal)
    total = max(0, subtotal - discount + order.tax_cents + order.transport_fee_cents)
    balance = max(0, total - order.amount_paid_cents)
    return OrderTotals(
        subtotal_cents=subtotal,
        discounts_cents=discount,
        total_cents=total,
        balance_due_cents=balance,
    )


def _require_order_id(order_id: uuid.UUID | None) -> None:
    if order_id is None or order_id == NIL_UUID:
        msg = "order id required"
        raise InvalidArgError(msg)


def _require_actor(actor: Actor | None) -> Actor:
    if actor is None or actor.user_id == NIL_UUID:
        msg = "user identity missing"
        raise ForbiddenError(msg)
    if actor.store_id is None or actor.store_id == NIL_UUID:
        msg = "store context missing"
        raise ForbiddenError(msg)
    return actor


def _require_agent(agent_user_id: uuid.UUID | None) -> None:
    if agent_user_id is None or agent_user_id == NIL_UUID:
        msg = "agent identity missing"
        raise ForbiddenError(msg)


class OrderService:
    """Vendor, buyer and delivery agent transitions on vendor orders.

    Example:
        service = OrderService()
        await service.vendor_decision(order_id, actor, Decision.ACCEPT)
        new_order_id = await service.retry_order(expired_order_id, actor)
    """

    def __init__(
        self,
        *,
        runner: TransactionRunner | None = None,
        emitter: OutboxEmitter | None = None,
        repository: OrderRepository | None = None,
        releaser: InventoryReleaser | None = None,
        reserver: InventoryReserver | None = None,
        ledger: LedgerService | None = None,
    ) -> None:
        self._runner = runner
        self.emitter = emitter or OutboxEmitter()
        self.repository = repository or OrderRepository()
        self.releaser = releaser or SqlInventoryReleaser()
        self.reserver = reserver or SqlInventoryReserver()
        self.ledger = ledger or LedgerService()

    @property
    def runner(self) -> TransactionRunner:
        if self._runner is None:
            self._runner = get_transaction_runner()
        return self._runner

    # ──────────────────────────────────────────────────────────────────────
    # Vendor
    # ──────────────────────────────────────────────────────────────────────

    async def vendor_decision(self, order_id: uuid.UUID, actor: Actor, decision: Decision | str) -> None:
        """Accept or reject a pending order.

        Raises:
            InvalidArgError: Nil order id or unknown decision
            ForbiddenError: Actor is not the vendor store
            NotFoundError: Order does not exist
            StateConflictError: Order is no longer ``created_pending``
        """
        _require_order_id(order_id)
        actor = _require_actor(actor)
        try:
            decision = Decision(decision)
        except ValueError:
            msg = "invalid decision"
            raise InvalidArgError(msg, extra={"decision": str(decision)}) from None
        target = _DECISION_TARGETS[decision]

        async def _apply(session: AsyncSession) -> None:
            order = await self.repository.get_for_update(session, order_id)
            if order.vendor_store_id != actor.store_id:
                _forbidden(order)
            if order.status == target:
                return
            if order.status != OrderStatus.CREATED_PENDING:
                msg = "vendor decision not allowed in current state"
                raise StateConflictError(msg, extra={"order_id": str(order.id), "status": order.status})

            order.status = target
            await self.repository.flush(session, operation="update order status")
            await self.emitter.emit_if_absent(
                session,
                self._event(
                    EventType.ORDER_DECIDED,
                    order.id,
                    actor,
                    OrderDecidedPayload(
                        order_id=order.id,
                        checkout_group_id=order.checkout_group_id,
                        buyer_store_id=order.buyer_store_id,
                        vendor_store_id=order.vendor_store_id,
                        decision=decision.value,
                        status=target.value,
                    ),
                ),
            )
            logger.info(
                "Vendor decision recorded",
                extra={"order_id": str(order.id), "decision": str(decision), "status": str(target)},
            )

        await self.runner.with_tx(_apply)

    async def line_item_decision(
        self,
        order_id: uuid.UUID,
        line_item_id: uuid.UUID,
        actor: Actor,
        decision: LineItemDecision | str,
        notes: str | None = None,
    ) -> None:
        """Fulfill or reject one line item and recompute the order totals.

        Once no item is pending the order moves to ``ready_for_dispatch``
        and ``order.ready_for_dispatch`` is emitted.
        """
        _require_order_id(order_id)
        if line_item_id is None or line_item_id == NIL_UUID:
            msg = "line item id required"
            raise InvalidArgError(msg)
        actor = _require_actor(actor)
        try:
            decision = LineItemDecision(decision)
        except ValueError:
            msg = "line item decision must be fulfill or reject"
            raise InvalidArgError(msg) from None
        target = _LINE_ITEM_TARGETS[decision]

        async def _apply(session: AsyncSession) -> None:
            order = await self.repository.get_for_update(session, order_id)
            if order.vendor_store_id != actor.store_id:
                _forbidden(order)

            line_item = await self.repository.get_item(session, line_item_id)
            if line_item.order_id != order.id:
                msg = "line item does not belong to order"
                raise ForbiddenError(msg, extra={"order_id": str(order.id), "line_item_id": str(line_item.id)})
            if line_item.status == target:
                return
            if line_item.status not in DECIDABLE_LINE_ITEM_STATUSES:
                msg = "line item cannot be updated in current state"
                raise StateConflictError(msg, extra={"line_item_id": str(line_item.id), "status": line_item.status})

            if target == LineItemStatus.REJECTED and line_item.product_id is not None and line_item.qty > 0:
                await self.releaser.release(session, line_item.product_id, line_item.qty)

            line_item.status = target
            if notes is not None:
                line_item.notes = notes

            items = await self.repository.list_items(session, order.id)
            totals = compute_totals(order, items)
            order.subtotal_cents = totals.subtotal_cents
            order.discounts_cents = totals.discounts_cents
            order.total_cents = totals.total_cents
            order.balance_due_cents = totals.balance_due_cents

            pending = sum(1 for item in items if item.status == LineItemStatus.PENDING)
            rejected = sum(1 for item in items if item.status == LineItemStatus.REJECTED)
            if pending == 0:
                order.fulfillment_status = FulfillmentStatus.PARTIAL if rejected else FulfillmentStatus.FULFILLED
                order.status = OrderStatus.READY_FOR_DISPATCH

            await self.repository.flush(session, operation="update order totals")

            if pending == 0:
                await self.emitter.emit_if_absent(
                    session,
                    self._event(
                        EventType.ORDER_READY_FOR_DISPATCH,
                        order.id,
                        actor,
                        OrderReadyForDispatchPayload(
                            order_id=order.id,
                            checkout_group_id=order.checkout_group_id,
                            buyer_store_id=order.buyer_store_id,
                            vendor_store_id=order.vendor_store_id,
                            vendor_store_ids=[order.vendor_store_id],
                            fulfillment_status=str(order.fulfillment_status),
                            shipping_status=str(order.shipping_status),
                            rejected_item_count=rejected,
                            resolved_line_item_id=line_item.id,
                        ),
                    ),
                )
                logger.info(
                    "Order ready for dispatch",
                    extra={
                        "order_id": str(order.id),
                        "fulfillment_status": str(order.fulfillment_status),
                        "rejected_item_count": rejected,
                    },
                )

        await self.runner.with_tx(_apply)

    async def confirm_payout(self, order_id: uuid.UUID, actor: Actor) -> None:
        """Pay the vendor for a delivered, settled order and close it."""
        _require_order_id(order_id)
        actor = _require_actor(actor)

        async def _apply(session: AsyncSession) -> None:
            order = await self.repository.get_for_update(session, order_id)
            if order.vendor_store_id != actor.store_id:
                _forbidden(order)
            intent = await self.repository.get_payment_intent(session, order.id)
            if intent is None:
                msg = "payment intent missing"
                raise ConflictError(msg, extra={"order_id": str(order.id)})
            if order.status == OrderStatus.CLOSED:
                return
            if order.status != OrderStatus.DELIVERED:
                msg = "order not eligible for payout"
                raise StateConflictError(msg, extra={"order_id": str(order.id), "status": order.status})
            if intent.status != PaymentStatus.SETTLED:
                msg = "payment not settled"
                raise StateConflictError(msg, extra={"order_id": str(order.id), "payment_status": intent.status})

            now = utcnow()
            intent.status = PaymentStatus.PAID
            intent.vendor_paid_at = now
            order.status = OrderStatus.CLOSED
            await self.repository.flush(session, operation="close order")

            await self.ledger.record_once(
                session,
                order_id=order.id,
                buyer_store_id=order.buyer_store_id,
                vendor_store_id=order.vendor_store_id,
                actor_user_id=actor.user_id,
                event_type=LedgerEventType.VENDOR_PAYOUT,
                amount_cents=intent.amount_cents,
            )
            await self.emitter.emit_if_absent(
                session,
                self._event(
                    EventType.ORDER_PAID,
                    order.id,
                    actor,
                    OrderPaidPayload(
                        order_id=order.id,
                        buyer_store_id=order.buyer_store_id,
                        vendor_store_id=order.vendor_store_id,
                        payment_intent_id=intent.id,
                        amount_cents=intent.amount_cents,
                        vendor_paid_at=now,
                    ),
                    occurred_at=now,
                ),
            )
            logger.info(
                "Vendor payout confirmed",
                extra={"order_id": str(order.id), "amount_cents": intent.amount_cents},
            )

        await self.runner.with_tx(_apply)

    # ──────────────────────────────────────────────────────────────────────
    # Buyer
    # ──────────────────────────────────────────────────────────────────────

    async def cancel_order(self, order_id: uuid.UUID, actor: Actor, reason: str | None = None) -> None:
        """Cancel an order that has not shipped, releasing its reserved stock."""
        _require_order_id(order_id)
        actor = _require_actor(actor)

        async def _apply(session: AsyncSession) -> None:
            order = await self.repository.get_for_update(session, order_id)
            if order.buyer_store_id != actor.store_id:
                _forbidden(order)
            if order.status in FINAL_ORDER_STATUSES:
                msg = "order cannot be canceled in current state"
                raise StateConflictError(msg, extra={"order_id": str(order.id), "status": order.status})

            released = 0
            for item in await self.repository.list_items(session, order.id):
                if item.status in (LineItemStatus.FULFILLED, LineItemStatus.REJECTED):
                    continue
                if item.product_id is not None and item.qty > 0:
                    await self.releaser.release(session, item.product_id, item.qty)
                    released += 1
                item.status = LineItemStatus.REJECTED

            now = utcnow()
            order.status = OrderStatus.CANCELED
            order.balance_due_cents = 0
            order.canceled_at = now
            await self.repository.flush(session, operation="update vendor order")

            await self.emitter.emit(
                session,
                self._event(
                    EventType.ORDER_CANCELED,
                    order.id,
                    actor,
                    OrderCanceledPayload(
                        order_id=order.id,
                        checkout_group_id=order.checkout_group_id,
                        buyer_store_id=order.buyer_store_id,
                        vendor_store_id=order.vendor_store_id,
                        canceled_at=now,
                        reason=reason,
                    ),
                    occurred_at=now,
                ),
            )
            logger.info(
                "Order canceled",
                extra={"order_id": str(order.id), "released_items": released, "reason": reason},
            )

        await self.runner.with_tx(_apply)

    async def nudge_vendor(self, order_id: uuid.UUID, actor: Actor) -> None:
        """Ask the vendor to act on an open order."""
        _require_order_id(order_id)
        actor = _require_actor(actor)

        async def _apply(session: AsyncSession) -> None:
            order = await self.repository.get_for_update(session, order_id)
            if order.buyer_store_id != actor.store_id:
                _forbidden(order)
            if order.status in FINAL_ORDER_STATUSES:
                msg = "order cannot be nudged in current state"
                raise StateConflictError(msg, extra={"order_id": str(order.id), "status": order.status})

            await self.emitter.emit(
                session,
                self._event(
                    EventType.NOTIFICATION_REQUESTED,
                    order.id,
                    actor,
                    NotificationRequestedPayload(
                        order_id=order.id,
                        checkout_group_id=order.checkout_group_id,
                        buyer_store_id=order.buyer_store_id,
                        vendor_store_id=order.vendor_store_id,
                        type=ORDER_NUDGE,
                    ),
                ),
            )

        await self.runner.with_tx(_apply)

    async def retry_order(self, order_id: uuid.UUID, actor: Actor) -> uuid.UUID:
        """Re-place an expired order as a new pending order.

        Items are copied back to ``pending`` and their stock is reserved
        again. Nothing is written unless every line is reserved.

        Returns:
            Id of the new order

        Raises:
            ConflictError: Some line could not be reserved
            StateConflictError: The order is not expired
        """
        _require_order_id(order_id)
        actor = _require_actor(actor)

        async def _apply(session: AsyncSession) -> uuid.UUID:
            order = await self.repository.get_for_update(session, order_id)
            if order.buyer_store_id != actor.store_id:
                _forbidden(order)
            if order.status != OrderStatus.EXPIRED:
                msg = "order retry only allowed for expired orders"
                raise StateConflictError(msg, extra={"order_id": str(order.id), "status": order.status})

            items = await self.repository.list_items(session, order.id)
            new_order = VendorOrder(
                id=uuid.uuid4(),
                checkout_group_id=uuid.uuid4(),
                cart_id=order.cart_id,
                buyer_store_id=order.buyer_store_id,
                vendor_store_id=order.vendor_store_id,
                currency=order.currency,
                status=OrderStatus.CREATED_PENDING,
                fulfillment_status=FulfillmentStatus.PENDING,
                shipping_status=ShippingStatus.PENDING,
                payment_method=order.payment_method,
                subtotal_cents=order.subtotal_cents,
                discounts_cents=order.discounts_cents,
                tax_cents=order.tax_cents,
                transport_fee_cents=order.transport_fee_cents,
                total_cents=order.total_cents,
                amount_paid_cents=0,
                balance_due_cents=order.total_cents,
                notes=order.notes,
            )
            new_items = [
                OrderLineItem(
                    id=uuid.uuid4(),
                    order_id=new_order.id,
                    product_id=item.product_id,
                    name=item.name,
                    unit_price_cents=item.unit_price_cents,
                    qty=item.qty,
                    discount_cents=item.discount_cents,
                    line_subtotal_cents=item.line_subtotal_cents,
                    total_cents=item.total_cents,
                    status=LineItemStatus.PENDING,
                )
                for item in items
            ]
            await self.repository.add_all(session, [new_order], operation="create vendor order")
            await self.repository.add_all(session, new_items, operation="create order line items")

            requests = [
                ReservationRequest(line_item_id=item.id, product_id=item.product_id, qty=item.qty)
                for item in new_items
                if item.product_id is not None and item.qty > 0
            ]
            if requests:
                results = await self.reserver.reserve(session, requests)
                if len(results) != len(requests) or not all(result.reserved for result in results):
                    msg = "insufficient inventory for retry"
                    raise ConflictError(
                        msg,
                        extra={
                            "order_id": str(order.id),
                            "unreserved": [str(r.product_id) for r in results if not r.reserved],
                        },
                    )

            original_intent = await self.repository.get_payment_intent(session, order.id)
            method = PaymentMethod(original_intent.method) if original_intent else PaymentMethod(order.payment_method)
            intent = PaymentIntent(
                order_id=new_order.id,
                method=method,
                status=PaymentStatus.UNPAID if method == PaymentMethod.CASH else PaymentStatus.PENDING,
                amount_cents=new_order.total_cents,
            )
            await self.repository.add_all(session, [intent], operation="create payment intent")

            await self.emitter.emit(
                session,
                self._event(
                    EventType.ORDER_RETRIED,
                    new_order.id,
                    actor,
                    OrderRetriedPayload(
                        original_order_id=order.id,
                        order_id=new_order.id,
                        checkout_group_id=new_order.checkout_group_id,
                        buyer_store_id=new_order.buyer_store_id,
                        vendor_store_id=new_order.vendor_store_id,
                    ),
                ),
            )
            logger.info(
                "Expired order retried",
                extra={"original_order_id": str(order.id), "order_id": str(new_order.id)},
            )
            return new_order.id

        return await self.runner.with_tx(_apply)

    # ──────────────────────────────────────────────────────────────────────
    # Delivery agent
    # ──────────────────────────────────────────────────────────────────────

    async def agent_pickup(self, order_id: uuid.UUID, agent_user_id: uuid.UUID) -> None:
        """Record that the assigned agent picked the order up."""
        _require_order_id(order_id)
        _require_agent(agent_user_id)

        async def _apply(session: AsyncSession) -> None:
            order, assignment = await self._load_assigned(session, order_id, agent_user_id)
            if order.status not in PICKUP_STATUSES:
                msg = "order cannot be picked up in current state"
                raise StateConflictError(msg, extra={"order_id": str(order.id), "status": order.status})

            order.status = OrderStatus.IN_TRANSIT
            order.shipping_status = ShippingStatus.IN_TRANSIT
            if assignment.pickup_time is None:
                assignment.pickup_time = utcnow()
            await self.repository.flush(session, operation="update order status")

        await self.runner.with_tx(_apply)

    async def agent_deliver(self, order_id: uuid.UUID, agent_user_id: uuid.UUID) -> None:
        """Record that the assigned agent delivered the order."""
        _require_order_id(order_id)
        _require_agent(agent_user_id)

        async def _apply(session: AsyncSession) -> None:
            order, assignment = await self._load_assigned(session, order_id, agent_user_id)
            if order.status not in DELIVERY_STATUSES:
                msg = "order cannot be delivered in current state"
                raise StateConflictError(msg, extra={"order_id": str(order.id), "status": order.status})

            now = utcnow()
            order.status = OrderStatus.DELIVERED
            order.shipping_status = ShippingStatus.DELIVERED
            if order.delivered_at is None:
                order.delivered_at = now
            if assignment.delivery_time is None:
                assignment.delivery_time = now
            await self.repository.flush(session, operation="update order status")

        await self.runner.with_tx(_apply)

    async def agent_cash_collected(self, order_id: uuid.UUID, agent_user_id: uuid.UUID, amount_cents: int) -> None:
        """Settle a cash payment collected by the assigned agent.

        The collected amount must equal both the payment intent amount and
        the order total (an intent without an amount only checks the total).
        On a mismatch the payment is marked failed and the order put on hold;
        that outcome is committed and then reported as ``ConflictError``.

        Raises:
            ConflictError: Missing payment intent, or amount mismatch after
                the failure has been committed
            StateConflictError: Order or payment not in a collectible state
        """
        _require_order_id(order_id)
        _require_agent(agent_user_id)
        if amount_cents < 0:
            msg = "amount must not be negative"
            raise InvalidArgError(msg, extra={"amount_cents": amount_cents})

        async def _apply(session: AsyncSession) -> str | None:
            order, assignment = await self._load_assigned(session, order_id, agent_user_id)
            collectible = order.status == OrderStatus.DELIVERED or (
                order.status == OrderStatus.READY_FOR_DISPATCH and order.payment_method == PaymentMethod.CASH
            )
            if not collectible:
                msg = "cash cannot be collected in current state"
                raise StateConflictError(msg, extra={"order_id": str(order.id), "status": order.status})

            intent = await self.repository.get_payment_intent(session, order.id)
            if intent is None:
                msg = "payment intent missing"
                raise ConflictError(msg, extra={"order_id": str(order.id)})
            if intent.status in FINALIZED_PAYMENT_STATUSES:
                msg = "payment already finalized"
                raise StateConflictError(msg, extra={"order_id": str(order.id), "payment_status": intent.status})

            intent_amount = intent.amount_cents if intent.amount_cents > 0 else order.total_cents
            if amount_cents != intent_amount or amount_cents != order.total_cents:
                if intent_amount != order.total_cents:
                    reason = (
                        f"{AMOUNT_MISMATCH}: intent {intent_amount}, order total {order.total_cents}, "
                        f"collected {amount_cents}"
                    )
                else:
                    reason = f"{AMOUNT_MISMATCH}: expected {intent_amount}, collected {amount_cents}"
                reason = truncate_error(reason)
                intent.status = PaymentStatus.FAILED
                intent.failure_reason = reason
                order.status = OrderStatus.HOLD
                await self.repository.flush(session, operation="record payment failure")
                logger.warning(
                    "Cash amount mismatch",
                    extra={
                        "order_id": str(order.id),
                        "intent_cents": intent_amount,
                        "order_total_cents": order.total_cents,
                        "collected_cents": amount_cents,
                    },
                )
                return reason

            now = utcnow()
            intent.status = PaymentStatus.SETTLED
            intent.cash_collected_at = now
            intent.failure_reason = None
            order.amount_paid_cents = amount_cents
            order.balance_due_cents = 0
            if assignment.cash_pickup_time is None:
                assignment.cash_pickup_time = now
            await self.repository.flush(session, operation="settle payment")

            await self.ledger.record_once(
                session,
                order_id=order.id,
                buyer_store_id=order.buyer_store_id,
                vendor_store_id=order.vendor_store_id,
                actor_user_id=agent_user_id,
                event_type=LedgerEventType.CASH_COLLECTED,
                amount_cents=amount_cents,
            )
            await self.emitter.emit_if_absent(
                session,
                self._event(
                    EventType.CASH_COLLECTED,
                    order.id,
                    Actor(user_id=agent_user_id, role="agent"),
                    CashCollectedPayload(
                        order_id=order.id,
                        buyer_store_id=order.buyer_store_id,
                        vendor_store_id=order.vendor_store_id,
                        amount_cents=amount_cents,
                        cash_collected_at=now,
                    ),
                    occurred_at=now,
                ),
            )
            logger.info(
                "Cash collected",
                extra={"order_id": str(order.id), "amount_cents": amount_cents},
            )
            return None

        mismatch = await self.runner.with_tx(_apply)
        if mismatch is not None:
            raise ConflictError(AMOUNT_MISMATCH, extra={"order_id": str(order_id), "reason": mismatch})

    # ──────────────────────────────────────────────────────────────────────
    # Helpers
    # ──────────────────────────────────────────────────────────────────────

    async def _load_assigned(
        self,
        session: AsyncSession,
        order_id: uuid.UUID,
        agent_user_id: uuid.UUID,
    ) -> tuple[VendorOrder, OrderAssignment]:
        order = await self.repository.get_for_update(session, order_id)
        assignment = await self.repository.get_active_assignment(session, order.id)
        if assignment is None or assignment.agent_user_id != agent_user_id:
            msg = "order not assigned to agent"
            raise ForbiddenError(msg, extra={"order_id": str(order.id)})
        return order, assignment

    @staticmethod
    def _event(
        event_type: EventType,
        aggregate_id: uuid.UUID,
        actor: Actor,
        data: BaseModel,
        *,
        occurred_at: datetime | None = None,
    ) -> DomainEvent:
        return DomainEvent(
            event_type=event_type,
            aggregate_type=AggregateType.VENDOR_ORDER,
            aggregate_id=aggregate_id,
            actor=actor,
            data=data,
            occurred_at=occurred_at,
        )


def _forbidden(order: VendorOrder) -> NoReturn:
    msg = "order does not belong to store"
    raise ForbiddenError(msg, extra={"order_id": str(order.id)})


__all__ = ["AMOUNT_MISMATCH", "ORDER_NUDGE", "OrderService", "OrderTotals", "compute_totals"]
