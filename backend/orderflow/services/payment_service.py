# Overview: Service-layer bookkeeping for provider payments; encapsulates lookups and row creation.

"""
Payment Bookkeeping Service

WHY: Webhook handlers receive provider-shaped objects (payment intents,
payment methods, disputes). This module maps them onto local Payment /
PaymentMethod rows. Status changes themselves go through
services.state_machine.

DESIGN PRINCIPLES:
- One Payment per payment_intent_id (unique constraint)
- Missing Payment rows are created from the event the first time we see them
- Amounts stay in provider minor units (cents)
- Nothing here commits; the webhook unit of work does
"""

from __future__ import annotations

import logging
from typing import Any

from ..extensions import db
from ..enums import PaymentStatus
from ..models import Order, Payment, PaymentMethod
from ..record_metadata import DisputeDetails
from .concurrency import lock_for_update

logger = logging.getLogger(__name__)


class PaymentError(Exception):
    """Raised when a provider object cannot be mapped to local rows."""
    pass


# =============================================================================
# LOOKUPS
# =============================================================================

def get_payment_by_intent(payment_intent_id: str, *, lock: bool = False) -> Payment | None:
    query = db.session.query(Payment).filter_by(payment_intent_id=payment_intent_id)
    if lock:
        query = lock_for_update(query)
    return query.first()


def _metadata(obj: dict[str, Any]) -> dict[str, Any]:
    meta = obj.get("metadata") or {}
    return meta if isinstance(meta, dict) else {}


def _resolve_order(intent: dict[str, Any]) -> Order | None:
    """Order from metadata.orderId, else the order already carrying this intent id."""
    order_id = _metadata(intent).get("orderId")
    if order_id:
        order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()
        if order is not None:
            return order
        logger.warning("Intent %s references unknown order %s", intent.get("id"), order_id)
    return (
        lock_for_update(db.session.query(Order).filter_by(payment_intent_id=intent.get("id")))
        .first()
    )


# =============================================================================
# PAYMENT INTENTS
# =============================================================================

def get_or_create_payment(intent: dict[str, Any]) -> Payment:
    """
    Local Payment for a provider payment intent, creating it if absent.

    Owner resolution: metadata.userId, else the linked order's user.

    Raises:
        PaymentError: intent has no id, or no owner can be resolved.
    """
    intent_id = intent.get("id")
    if not intent_id:
        raise PaymentError("payment intent has no id")

    payment = get_payment_by_intent(intent_id, lock=True)
    order = _resolve_order(intent)

    if payment is None:
        user_id = _metadata(intent).get("userId") or (order.user_id if order else None)
        if not user_id:
            raise PaymentError(f"Cannot resolve owner for payment intent {intent_id}")
        payment = Payment(
            payment_intent_id=intent_id,
            user_id=str(user_id),
            order=order,
            amount_cents=int(intent.get("amount") or 0),
            currency=(intent.get("currency") or "usd").lower()[:3],
            status=PaymentStatus.PENDING,
            payment_method_id=intent.get("payment_method"),
            provider_metadata=_metadata(intent),
        )
        db.session.add(payment)
        db.session.flush()
        logger.info("Created payment %s for intent %s", payment.id, intent_id)
    else:
        if payment.order_id is None and order is not None:
            payment.order = order
        if intent.get("payment_method"):
            payment.payment_method_id = intent["payment_method"]
        if _metadata(intent):
            payment.provider_metadata = {**(payment.provider_metadata or {}), **_metadata(intent)}

    if order is not None and not order.payment_intent_id:
        order.payment_intent_id = intent_id
    return payment


def record_dispute(payment: Payment, dispute: dict[str, Any]) -> DisputeDetails:
    details = DisputeDetails(
        dispute_id=dispute.get("id") or "",
        reason=dispute.get("reason"),
        amount=dispute.get("amount"),
        status=dispute.get("status"),
    )
    payment.dispute_details = details.to_json()
    return details


# =============================================================================
# PAYMENT METHODS
# =============================================================================

def upsert_payment_method(method: dict[str, Any]) -> PaymentMethod | None:
    """
    Record a saved payment method when its owner is known.

    Returns None (and records nothing) when metadata.userId is absent.
    """
    method_id = method.get("id")
    user_id = _metadata(method).get("userId")
    if not method_id or not user_id:
        logger.info("Skipping payment method %s: no owning user", method_id)
        return None

    card = method.get("card") or {}
    row = db.session.get(PaymentMethod, method_id)
    if row is None:
        row = PaymentMethod(id=method_id, user_id=str(user_id))
        db.session.add(row)
    row.user_id = str(user_id)
    row.type = method.get("type") or "card"
    row.customer_id = method.get("customer")
    row.card_brand = card.get("brand")
    row.card_last4 = card.get("last4")
    row.card_exp_month = card.get("exp_month")
    row.card_exp_year = card.get("exp_year")
    db.session.flush()
    return row


def list_order_payments(order_id: str) -> list[Payment]:
    return (
        db.session.query(Payment)
        .filter_by(order_id=order_id)
        .order_by(Payment.created_at, Payment.id)
        .all()
    )
