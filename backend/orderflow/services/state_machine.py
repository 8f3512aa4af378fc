# Overview: Service-layer state machine for orders and payments; the only writer of status columns.

"""
orderflow Order/Payment State Machine

================================================================================
PURPOSE: Enforce legal status transitions for orders and payments
================================================================================

ORDER:
    pending -> confirmed -> preparing -> ready -> completed
    confirmed | preparing | ready -> cancelled

    completed and cancelled are terminal.

PAYMENT:
    pending -> processing | requires_action
    requires_action -> processing
    processing -> requires_action | succeeded | failed | canceled
    succeeded -> disputed

RULES (NON-NEGOTIABLE):
1. Every transition not listed above raises InvalidTransition (same-state too).
2. Transition to cancelled requires a cancellation reason; no other target
   accepts one. cancellation_reason is therefore set iff status = cancelled.
3. Every applied transition appends an OrderAuditEvent in the same DB
   transaction, tagged with its TransitionCause.
4. Functions here flush but never commit. The caller owns the unit of work.
================================================================================
"""

from __future__ import annotations

import logging

from ..extensions import db
from ..enums import (
    CancellationReason,
    OrderPaymentStatus,
    OrderStatus,
    PaymentStatus,
    TransitionCause,
)
from ..ids import new_id
from ..models import Order, Payment
from .audit_service import append_audit_event
from .concurrency import lock_for_update
from .stock_service import RestorationReport, restore_order_stock

logger = logging.getLogger(__name__)


class InvalidTransition(ValueError):
    """
    Raised when a status change is not in the transition table.

    Domain error: callers must not retry it blindly.
    """
    pass


# Every member appears as a key so a new status fails loudly until handled.
ORDER_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.CONFIRMED}),
    OrderStatus.CONFIRMED: frozenset({OrderStatus.PREPARING, OrderStatus.CANCELLED}),
    OrderStatus.PREPARING: frozenset({OrderStatus.READY, OrderStatus.CANCELLED}),
    OrderStatus.READY: frozenset({OrderStatus.COMPLETED, OrderStatus.CANCELLED}),
    OrderStatus.COMPLETED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}

PAYMENT_TRANSITIONS: dict[PaymentStatus, frozenset[PaymentStatus]] = {
    PaymentStatus.PENDING: frozenset({PaymentStatus.PROCESSING, PaymentStatus.REQUIRES_ACTION}),
    PaymentStatus.REQUIRES_ACTION: frozenset({PaymentStatus.PROCESSING}),
    PaymentStatus.PROCESSING: frozenset({
        PaymentStatus.REQUIRES_ACTION,
        PaymentStatus.SUCCEEDED,
        PaymentStatus.FAILED,
        PaymentStatus.CANCELED,
    }),
    PaymentStatus.SUCCEEDED: frozenset({PaymentStatus.DISPUTED}),
    PaymentStatus.FAILED: frozenset(),
    PaymentStatus.CANCELED: frozenset(),
    PaymentStatus.DISPUTED: frozenset(),
}

# Payment statuses that are mirrored onto Order.payment_status.
ORDER_PAYMENT_MIRROR: dict[PaymentStatus, OrderPaymentStatus | None] = {
    PaymentStatus.PENDING: None,
    PaymentStatus.PROCESSING: None,
    PaymentStatus.REQUIRES_ACTION: None,
    PaymentStatus.SUCCEEDED: OrderPaymentStatus.PAID,
    PaymentStatus.FAILED: OrderPaymentStatus.FAILED,
    PaymentStatus.CANCELED: OrderPaymentStatus.CANCELED,
    PaymentStatus.DISPUTED: OrderPaymentStatus.DISPUTED,
}

CANCELLABLE_ORDER_STATUSES = frozenset(
    status for status, targets in ORDER_TRANSITIONS.items() if OrderStatus.CANCELLED in targets
)

_TERMINAL_PROVIDER_STATUSES = frozenset({
    PaymentStatus.SUCCEEDED,
    PaymentStatus.FAILED,
    PaymentStatus.CANCELED,
})

_HOP_FROM_STATUSES = frozenset({PaymentStatus.PENDING, PaymentStatus.REQUIRES_ACTION})


def can_transition_order(from_status: OrderStatus, to_status: OrderStatus) -> bool:
    return OrderStatus(to_status) in ORDER_TRANSITIONS[OrderStatus(from_status)]


def can_transition_payment(from_status: PaymentStatus, to_status: PaymentStatus) -> bool:
    return PaymentStatus(to_status) in PAYMENT_TRANSITIONS[PaymentStatus(from_status)]


def is_superseded_payment_status(current: PaymentStatus, reported: PaymentStatus) -> bool:
    """
    True when ``current`` is reachable from ``reported``: the payment already
    moved past what the provider reports (out-of-order delivery).
    """
    current, reported = PaymentStatus(current), PaymentStatus(reported)
    seen = {reported}
    frontier = [reported]
    while frontier:
        for nxt in PAYMENT_TRANSITIONS[frontier.pop()]:
            if nxt == current:
                return True
            if nxt not in seen:
                seen.add(nxt)
                frontier.append(nxt)
    return False


def can_advance_payment(current: PaymentStatus, target: PaymentStatus) -> bool:
    """Legal for advance_payment, counting the implicit processing hop."""
    current, target = PaymentStatus(current), PaymentStatus(target)
    if can_transition_payment(current, target):
        return True
    return target in _TERMINAL_PROVIDER_STATUSES and current in _HOP_FROM_STATUSES


def transition_order(
    order: Order,
    target: OrderStatus,
    cause: TransitionCause,
    reason: CancellationReason | None = None,
) -> Order:
    """
    Move an order to ``target``.

    Raises:
        InvalidTransition: edge not in ORDER_TRANSITIONS, or reason supplied
            (or missing) in violation of rule 2.
    """
    target = OrderStatus(target)
    current = OrderStatus(order.status)

    if not can_transition_order(current, target):
        raise InvalidTransition(
            f"Cannot move order {order.id} from '{current.value}' to '{target.value}'"
        )
    if target == OrderStatus.CANCELLED and reason is None:
        raise InvalidTransition(f"Cancelling order {order.id} requires a cancellation reason")
    if target != OrderStatus.CANCELLED and reason is not None:
        raise InvalidTransition(f"Cancellation reason given for non-cancel transition of order {order.id}")

    order.status = target
    order.cancellation_reason = CancellationReason(reason) if reason is not None else None

    append_audit_event(
        action="order_status_changed",
        order_id=order.id,
        cause=TransitionCause(cause),
        from_status=current.value,
        to_status=target.value,
        note=order.cancellation_reason.value if order.cancellation_reason else None,
    )
    logger.info("Order %s: %s -> %s (%s)", order.id, current.value, target.value, TransitionCause(cause).value)
    return order


def transition_payment(payment: Payment, target: PaymentStatus, cause: TransitionCause) -> Payment:
    """
    Move a payment to ``target`` and mirror the result onto its order.

    Raises:
        InvalidTransition: edge not in PAYMENT_TRANSITIONS.
    """
    target = PaymentStatus(target)
    current = PaymentStatus(payment.status)

    if not can_transition_payment(current, target):
        raise InvalidTransition(
            f"Cannot move payment {payment.id} from '{current.value}' to '{target.value}'"
        )

    payment.status = target

    mirrored = ORDER_PAYMENT_MIRROR[target]
    if mirrored is not None and payment.order is not None:
        payment.order.payment_status = mirrored

    append_audit_event(
        action="payment_status_changed",
        order_id=payment.order_id,
        payment_id=payment.id,
        cause=TransitionCause(cause),
        from_status=current.value,
        to_status=target.value,
    )
    logger.info("Payment %s: %s -> %s (%s)", payment.id, current.value, target.value, TransitionCause(cause).value)
    return payment


def advance_payment(payment: Payment, target: PaymentStatus, cause: TransitionCause) -> Payment:
    """
    Apply a provider-reported status, inserting the implicit 'processing' hop.

    Providers can report a terminal outcome for an intent we still hold as
    pending (or requires_action); the intermediate hop keeps the recorded
    history inside the transition table.
    """
    target = PaymentStatus(target)
    current = PaymentStatus(payment.status)
    if target in _TERMINAL_PROVIDER_STATUSES and current in _HOP_FROM_STATUSES:
        transition_payment(payment, PaymentStatus.PROCESSING, cause)
    return transition_payment(payment, target, cause)


def cancel_order_with_restock(
    order_id: str,
    reason: CancellationReason,
    cause: TransitionCause,
    batch_id: str | None = None,
) -> RestorationReport:
    """
    Cancel an order and return every line's quantity to stock.

    The order row is locked and its status re-validated before anything is
    touched, so a concurrent caller that already cancelled it causes
    InvalidTransition here with no stock change. Per-item failures are
    collected in the report and never block the other items.

    Does NOT commit: the caller commits cancellation and restoration together.

    Raises:
        OrderNotFound: no such order.
        InvalidTransition: order is not in a cancellable status.
    """
    from .order_service import OrderNotFound

    order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()
    if order is None:
        raise OrderNotFound(f"Order {order_id} not found")

    if not can_transition_order(order.status, OrderStatus.CANCELLED):
        raise InvalidTransition(
            f"Cannot cancel order {order_id}: current status is '{OrderStatus(order.status).value}'"
        )

    batch_id = batch_id or new_id("batch")
    report = restore_order_stock(
        order_id,
        reason=f"order cancelled: {CancellationReason(reason).value}",
        batch_id=batch_id,
    )
    transition_order(order, OrderStatus.CANCELLED, cause, reason=reason)

    append_audit_event(
        action="stock_restored",
        order_id=order_id,
        cause=TransitionCause(cause),
        note=f"batch {batch_id}",
        payload=report.to_dict(),
    )
    return report
