# Overview: Service-layer operations for orders (creation, lookup, pickup rescheduling, staff progression).

from __future__ import annotations

import logging
from datetime import date, datetime, time

from ..extensions import db
from ..enums import CancellationReason, OrderStatus, TransitionCause
from ..models import InventoryItem, Order, OrderItem
from ..time_utils import utcnow
from .audit_service import append_audit_event
from .concurrency import lock_for_update, run_with_retry
from .state_machine import cancel_order_with_restock, transition_order
from .stock_service import RestorationReport, reserve_order_stock

logger = logging.getLogger(__name__)


class OrderError(ValueError):
    """Invalid order input or operation."""
    pass


class OrderNotFound(OrderError, LookupError):
    pass


TERMINAL_ORDER_STATUSES = frozenset({OrderStatus.COMPLETED, OrderStatus.CANCELLED})


def get_order(order_id: str, *, lock: bool = False) -> Order:
    query = db.session.query(Order).filter_by(id=order_id)
    if lock:
        query = lock_for_update(query)
    order = query.first()
    if order is None:
        raise OrderNotFound(f"Order {order_id} not found")
    return order


def _coerce_date(value) -> date | None:
    if value is None or isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except ValueError:
        raise OrderError(f"invalid pickup_date: {value!r}")


def _coerce_time(value) -> time | None:
    if value is None or isinstance(value, time):
        return value
    try:
        return time.fromisoformat(str(value))
    except ValueError:
        raise OrderError(f"invalid pickup_time: {value!r}")


def create_order(
    *,
    user_id: str,
    lines: list[dict],
    pickup_date: date | str | None = None,
    pickup_time: time | str | None = None,
    customer_name: str | None = None,
    customer_email: str | None = None,
    customer_phone: str | None = None,
    payment_intent_id: str | None = None,
) -> Order:
    """
    Create a pending order and reserve its stock in one transaction.

    ``lines`` entries: {"inventory_item_id", "quantity", "unit_price_cents"?}.

    Raises:
        OrderError: empty/invalid lines or unknown items.
        StockError: insufficient stock (nothing is written).
    """
    if not user_id:
        raise OrderError("user_id is required")
    if not lines:
        raise OrderError("order must contain at least one line")

    parsed_date = _coerce_date(pickup_date)
    parsed_time = _coerce_time(pickup_time)
    if (parsed_date is None) != (parsed_time is None):
        raise OrderError("pickup_date and pickup_time must be given together")

    order = Order(
        user_id=user_id,
        status=OrderStatus.PENDING,
        customer_name=customer_name,
        customer_email=customer_email,
        customer_phone=customer_phone,
        pickup_date=parsed_date,
        pickup_time=parsed_time,
        payment_intent_id=payment_intent_id,
    )
    db.session.add(order)
    db.session.flush()

    total = 0
    try:
        for raw in lines:
            qty = int(raw.get("quantity") or 0)
            if qty <= 0:
                raise OrderError("line quantity must be positive")
            item = db.session.get(InventoryItem, raw.get("inventory_item_id"))
            if item is None:
                raise OrderError(f"Inventory item {raw.get('inventory_item_id')} not found")
            price = int(raw.get("unit_price_cents") or 0)
            if price < 0:
                raise OrderError("unit_price_cents must be non-negative")
            db.session.add(OrderItem(
                order_id=order.id,
                inventory_item_id=item.id,
                product_name=item.name,
                quantity=qty,
                unit_price_cents=price,
            ))
            total += qty * price
        order.total_amount_cents = total
        db.session.flush()

        reserve_order_stock(order.id)
        append_audit_event(
            action="order_created",
            order_id=order.id,
            cause=TransitionCause.MANUAL,
            to_status=OrderStatus.PENDING.value,
            payload={"lines": len(lines), "total_amount_cents": total},
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info("Created order %s for user %s (%s cents)", order.id, user_id, total)
    return order


def reschedule_pickup(
    order_id: str,
    pickup_date: date | str,
    pickup_time: time | str,
    *,
    now: datetime | None = None,
) -> Order:
    """
    Move an open order's pickup window.

    The reschedule timestamp is what lets the no-show scan skip orders whose
    pickup was moved recently.
    """
    new_date = _coerce_date(pickup_date)
    new_time = _coerce_time(pickup_time)
    if new_date is None or new_time is None:
        raise OrderError("pickup_date and pickup_time are required")

    def _op():
        order = get_order(order_id, lock=True)
        if OrderStatus(order.status) in TERMINAL_ORDER_STATUSES:
            raise OrderError(
                f"Cannot reschedule order {order_id}: status is '{OrderStatus(order.status).value}'"
            )
        previous = (
            f"{order.pickup_date.isoformat()} {order.pickup_time.strftime('%H:%M')}"
            if order.pickup_date and order.pickup_time else None
        )
        order.pickup_date = new_date
        order.pickup_time = new_time
        order.pickup_rescheduled_at = now or utcnow()
        append_audit_event(
            action="pickup_rescheduled",
            order_id=order.id,
            cause=TransitionCause.MANUAL,
            note=f"{previous} -> {new_date.isoformat()} {new_time.strftime('%H:%M')}",
        )
        db.session.commit()
        return order

    return run_with_retry(_op)


def advance_order(order_id: str, target: OrderStatus | str) -> Order:
    """Staff progression along the fulfilment path (confirmed -> preparing -> ready -> completed)."""
    try:
        target = OrderStatus(target)
    except ValueError:
        raise OrderError(f"unknown order status: {target!r}")
    if target == OrderStatus.CANCELLED:
        raise OrderError("use cancel_order to cancel")

    order = get_order(order_id, lock=True)
    try:
        transition_order(order, target, TransitionCause.MANUAL)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    return order


def cancel_order(
    order_id: str,
    reason: CancellationReason | str = CancellationReason.STAFF,
) -> RestorationReport:
    """Staff/customer cancellation with stock restoration, committed as one unit."""
    try:
        reason = CancellationReason(reason)
    except ValueError:
        raise OrderError(f"unknown cancellation reason: {reason!r}")
    try:
        report = cancel_order_with_restock(order_id, reason, TransitionCause.MANUAL)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    return report
