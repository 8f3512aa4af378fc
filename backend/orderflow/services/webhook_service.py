# Overview: Service-layer webhook ingress; verifies, deduplicates and dispatches payment-provider events.

"""
Webhook Ingress

================================================================================
PURPOSE: Apply each provider event exactly once despite at-least-once delivery
================================================================================

PIPELINE:
    1. Signature verified (services.signatures) before any state is read.
    2. Payload parsed and shape-checked (id, type, data.object).
    3. WebhookEventLog row inserted and committed. The unique event_id is the
       ONLY dedup mechanism: a second delivery fails the insert and is
       acknowledged without running handlers.
    4. Handler runs; its changes and processed_successfully=True commit together.
       On handler failure everything is rolled back and the log row records
       the error (still acknowledged with processed=false, replayable).
    5. Customer notifications requested by the handler are sent after the
       commit, in their own transactions. They never affect the outcome.
================================================================================
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Callable

from ..extensions import db
from ..enums import (
    CancellationReason,
    NotificationType,
    OrderStatus,
    PaymentStatus,
    TransitionCause,
)
from ..models import Payment, WebhookEventLog
from ..time_utils import to_utc_z, utcnow
from .channels import ChannelRegistry
from .concurrency import insert_unique
from .notification_service import send_notification
from .payment_service import (
    PaymentError,
    get_or_create_payment,
    get_payment_by_intent,
    record_dispute,
    upsert_payment_method,
)
from .signatures import WebhookVerifier
from .state_machine import (
    CANCELLABLE_ORDER_STATUSES,
    advance_payment,
    can_advance_payment,
    cancel_order_with_restock,
    is_superseded_payment_status,
    transition_order,
)

logger = logging.getLogger(__name__)


class WebhookPayloadError(ValueError):
    code = "INVALID_PAYLOAD"


class WebhookReplayError(ValueError):
    """Event cannot be replayed (unknown id or already processed)."""
    pass


# Recognised event families we acknowledge without acting on.
ACKNOWLEDGED_PREFIXES = ("invoice.", "customer.subscription.")


@dataclass
class HandlerResult:
    notifications: list[dict[str, Any]] = field(default_factory=list)

    def notify(self, notification_type: NotificationType, order, **extra) -> None:
        if order is None:
            return
        self.notifications.append({
            "notification_type": notification_type,
            "user_id": order.user_id,
            "order_id": order.id,
            **extra,
        })


# =============================================================================
# PARSING
# =============================================================================

def parse_event(raw_body: bytes) -> dict[str, Any]:
    try:
        event = json.loads(raw_body)
    except (ValueError, UnicodeDecodeError):
        raise WebhookPayloadError("Request body is not valid JSON")
    if not isinstance(event, dict):
        raise WebhookPayloadError("Event must be a JSON object")
    if not event.get("id") or not isinstance(event.get("id"), str):
        raise WebhookPayloadError("Event is missing 'id'")
    if not event.get("type") or not isinstance(event.get("type"), str):
        raise WebhookPayloadError("Event is missing 'type'")
    data = event.get("data")
    if not isinstance(data, dict) or not isinstance(data.get("object"), dict):
        raise WebhookPayloadError("Event is missing 'data.object'")
    return event


# =============================================================================
# HANDLERS
# =============================================================================

def _apply_payment_status(payment: Payment, target: PaymentStatus) -> bool:
    current = PaymentStatus(payment.status)
    if current == target:
        logger.info("Payment %s already %s, nothing to apply", payment.id, target.value)
        return False
    if not can_advance_payment(current, target) and is_superseded_payment_status(current, target):
        # Late delivery of an older provider status; illegal edges still raise.
        logger.info("Payment %s is already %s, ignoring stale %s", payment.id, current.value, target.value)
        return False
    advance_payment(payment, target, TransitionCause.WEBHOOK)
    return True


def _on_intent_succeeded(intent: dict) -> HandlerResult:
    result = HandlerResult()
    payment = get_or_create_payment(intent)
    _apply_payment_status(payment, PaymentStatus.SUCCEEDED)
    order = payment.order
    if order is not None and OrderStatus(order.status) == OrderStatus.PENDING:
        transition_order(order, OrderStatus.CONFIRMED, TransitionCause.WEBHOOK)
        result.notify(NotificationType.ORDER_CONFIRMATION, order)
    return result


def _on_intent_failed(intent: dict) -> HandlerResult:
    result = HandlerResult()
    payment = get_or_create_payment(intent)
    if _apply_payment_status(payment, PaymentStatus.FAILED):
        error = intent.get("last_payment_error") or {}
        result.notify(
            NotificationType.PAYMENT_FAILED,
            payment.order,
            metadata={"paymentIntentId": payment.payment_intent_id, "reason": error.get("message")},
        )
    return result


def _on_intent_canceled(intent: dict) -> HandlerResult:
    result = HandlerResult()
    payment = get_or_create_payment(intent)
    _apply_payment_status(payment, PaymentStatus.CANCELED)
    order = payment.order
    if order is not None and OrderStatus(order.status) in CANCELLABLE_ORDER_STATUSES:
        report = cancel_order_with_restock(
            order.id,
            CancellationReason.PAYMENT_CANCELED,
            TransitionCause.WEBHOOK,
        )
        if not report.all_restored:
            logger.warning(
                "Order %s cancelled after payment cancel; %s item(s) not restocked",
                order.id, len(report.failed_items),
            )
        result.notify(
            NotificationType.ORDER_CANCELLED,
            order,
            message_content=(
                f"Your order {order.id} was cancelled because its payment was canceled. "
                "Reserved items have been released."
            ),
        )
    return result


def _on_intent_processing(intent: dict) -> HandlerResult:
    payment = get_or_create_payment(intent)
    _apply_payment_status(payment, PaymentStatus.PROCESSING)
    return HandlerResult()


def _on_intent_requires_action(intent: dict) -> HandlerResult:
    payment = get_or_create_payment(intent)
    _apply_payment_status(payment, PaymentStatus.REQUIRES_ACTION)
    return HandlerResult()


def _on_payment_method_attached(method: dict) -> HandlerResult:
    try:
        upsert_payment_method(method)
    except Exception:
        # Saved-card bookkeeping never fails the event.
        db.session.rollback()
        logger.exception("Failed to record payment method %s", method.get("id"))
    return HandlerResult()


def _on_dispute_created(dispute: dict) -> HandlerResult:
    intent_id = dispute.get("payment_intent")
    if not intent_id:
        raise PaymentError(f"Dispute {dispute.get('id')} has no payment_intent")
    payment = get_payment_by_intent(intent_id, lock=True)
    if payment is None:
        raise PaymentError(f"Dispute {dispute.get('id')} references unknown payment intent {intent_id}")
    record_dispute(payment, dispute)
    _apply_payment_status(payment, PaymentStatus.DISPUTED)
    logger.warning("Dispute %s opened on payment %s", dispute.get("id"), payment.id)
    return HandlerResult()


HANDLERS: dict[str, Callable[[dict], HandlerResult]] = {
    "payment_intent.succeeded": _on_intent_succeeded,
    "payment_intent.payment_failed": _on_intent_failed,
    "payment_intent.canceled": _on_intent_canceled,
    "payment_intent.processing": _on_intent_processing,
    "payment_intent.requires_action": _on_intent_requires_action,
    "payment_method.attached": _on_payment_method_attached,
    "charge.dispute.created": _on_dispute_created,
}


# =============================================================================
# PROCESSING
# =============================================================================

def _ack(event: dict, processed: bool, **extra) -> dict[str, Any]:
    data = {
        "received": True,
        "eventId": event.get("id"),
        "eventType": event.get("type"),
        "processed": processed,
        "timestamp": to_utc_z(utcnow()),
    }
    data.update(extra)
    return data


def _process_logged_event(log_id: int, event: dict, channels: ChannelRegistry | None) -> dict[str, Any]:
    event_type = event["type"]
    handler = HANDLERS.get(event_type)
    result = HandlerResult()

    try:
        if handler is not None:
            result = handler(event["data"]["object"])
        elif event_type.startswith(ACKNOWLEDGED_PREFIXES):
            logger.info("Acknowledged %s event %s without action", event_type, event["id"])
        else:
            logger.info("Unhandled webhook event type %s (%s)", event_type, event["id"])

        log = db.session.get(WebhookEventLog, log_id)
        log.processed_successfully = True
        log.error_message = None
        log.processed_at = utcnow()
        db.session.commit()
    except Exception as exc:
        db.session.rollback()
        logger.exception("Webhook handler failed for %s %s", event_type, event["id"])
        _record_failure(log_id, exc)
        return _ack(event, False, error=str(exc))

    for request in result.notifications:
        outcome = send_notification(channels=channels, **request)
        if not outcome.success:
            logger.warning("Notification after %s failed: %s", event["id"], outcome.message)

    return _ack(event, True)


def _record_failure(log_id: int, exc: Exception) -> None:
    try:
        log = db.session.get(WebhookEventLog, log_id)
        log.processed_successfully = False
        log.error_message = f"{exc.__class__.__name__}: {exc}"
        log.processed_at = utcnow()
        db.session.commit()
    except Exception:
        db.session.rollback()
        logger.exception("Could not record failure for webhook log %s", log_id)


def handle_webhook(
    raw_body: bytes,
    signature_header: str | None,
    verifier: WebhookVerifier,
    channels: ChannelRegistry | None = None,
) -> dict[str, Any]:
    """
    Verify, deduplicate and apply one webhook delivery.

    Raises (nothing has been written in any of these cases):
        WebhookConfigurationError, WebhookSignatureError, WebhookPayloadError
    """
    verifier.verify(raw_body, signature_header)
    event = parse_event(raw_body)

    log = WebhookEventLog(
        event_id=event["id"],
        event_type=event["type"],
        processed_successfully=False,
        event_payload=event,
    )
    if not insert_unique(log):
        logger.info("Duplicate webhook event %s ignored", event["id"])
        return _ack(event, True, duplicate=True)

    return _process_logged_event(log.id, event, channels)


def replay_webhook_event(event_id: str, *, channels: ChannelRegistry | None = None) -> dict[str, Any]:
    """Re-run a stored event that previously failed, from its payload snapshot."""
    log = db.session.query(WebhookEventLog).filter_by(event_id=event_id).first()
    if log is None:
        raise WebhookReplayError(f"Webhook event {event_id} not found")
    if log.processed_successfully:
        raise WebhookReplayError(f"Webhook event {event_id} was already processed")
    if not log.event_payload:
        raise WebhookReplayError(f"Webhook event {event_id} has no stored payload")

    logger.info("Replaying webhook event %s (%s)", event_id, log.event_type)
    return _process_logged_event(log.id, log.event_payload, channels)


def list_failed_events(limit: int = 100) -> list[WebhookEventLog]:
    return (
        db.session.query(WebhookEventLog)
        .filter(WebhookEventLog.processed_successfully.is_(False))
        .order_by(WebhookEventLog.processed_at, WebhookEventLog.id)
        .limit(limit)
        .all()
    )
