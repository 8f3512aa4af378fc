# Overview: Service-layer notification dispatch; renders, persists and delivers customer notifications.

"""
Notification Dispatcher

RULES:
- A NotificationRecord is committed as 'pending' BEFORE delivery is tried, so
  every attempt leaves a trace even if the process dies mid-delivery.
- The record is then updated exactly once per attempt: 'sent' (+ sent_at) or
  'failed' (+ error_message, retry_count += 1).
- Delivery failure is reported in the result, never raised. Callers such as
  the no-show processor treat it as non-fatal.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from flask import current_app, has_app_context

from ..extensions import db
from ..enums import DeliveryMethod, NotificationStatus, NotificationType
from ..models import NotificationRecord, Order
from ..record_metadata import NotificationDetails
from ..time_utils import utcnow
from .channels import ChannelRegistry, DeliveryOutcome, InAppChannel
from .concurrency import commit_with_retry

logger = logging.getLogger(__name__)


class NotificationError(Exception):
    """Invalid notification request (bad delivery method, missing user)."""
    pass


# =============================================================================
# TEMPLATES
# =============================================================================

TEMPLATES: dict[NotificationType, tuple[str, str]] = {
    NotificationType.ORDER_CONFIRMATION: (
        "Order confirmed",
        "Hi {customer_name}, your order {order_id} is confirmed. Pickup: {pickup_window}.",
    ),
    NotificationType.PICKUP_READY: (
        "Order ready for pickup",
        "Hi {customer_name}, order {order_id} is ready. Please pick it up {pickup_window}.",
    ),
    NotificationType.PICKUP_REMINDER: (
        "Pickup reminder",
        "Hi {customer_name}, a reminder that order {order_id} is scheduled for pickup {pickup_window}.",
    ),
    NotificationType.ORDER_CANCELLED: (
        "Order cancelled",
        "Hi {customer_name}, order {order_id} was cancelled because it was not picked up "
        "{pickup_window}. Reserved items have been returned to stock.",
    ),
    NotificationType.PAYMENT_FAILED: (
        "Payment failed",
        "Hi {customer_name}, the payment for order {order_id} did not go through. "
        "Please update your payment method.",
    ),
    NotificationType.GENERIC: (
        "Order update",
        "Hi {customer_name}, there is an update on order {order_id}.",
    ),
}


def format_pickup_window(order: Order | None) -> str:
    if order is None or order.pickup_date is None or order.pickup_time is None:
        return "at the scheduled time"
    return f"on {order.pickup_date.isoformat()} at {order.pickup_time.strftime('%H:%M')}"


def render_notification(
    notification_type: NotificationType,
    *,
    customer_name: str | None = None,
    order_id: str | None = None,
    pickup_window: str | None = None,
) -> tuple[str, str]:
    """Title and body for a notification type with the context filled in."""
    title, body = TEMPLATES[NotificationType(notification_type)]
    return title, body.format(
        customer_name=customer_name or "there",
        order_id=order_id or "",
        pickup_window=pickup_window or "at the scheduled time",
    )


# =============================================================================
# RESULTS
# =============================================================================

@dataclass(frozen=True)
class NotificationResult:
    success: bool
    message: str
    notification_id: str | None = None
    delivery_method: str | None = None
    notification_type: str | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data = {
            "success": self.success,
            "notificationId": self.notification_id,
            "message": self.message,
            "deliveryMethod": self.delivery_method,
            "notificationType": self.notification_type,
        }
        if self.error:
            data["error"] = self.error
        return data


def _resolve_channels(channels: ChannelRegistry | None) -> ChannelRegistry:
    if channels is not None:
        return channels
    if has_app_context():
        state = current_app.extensions.get("orderflow") or {}
        if state.get("channels") is not None:
            return state["channels"]
    return ChannelRegistry({DeliveryMethod.IN_APP: InAppChannel()})


def _deliver(record: NotificationRecord, channels: ChannelRegistry) -> DeliveryOutcome:
    channel = channels.for_method(record.delivery_method)
    if channel is None:
        return DeliveryOutcome(ok=False, error=f"no channel for {record.delivery_method.value}")
    try:
        return channel.deliver(record)
    except Exception as exc:
        logger.exception("Channel %s raised for notification %s", channel.name, record.id)
        return DeliveryOutcome(ok=False, error=f"{exc.__class__.__name__}: {exc}")


def _finalize(record: NotificationRecord, outcome: DeliveryOutcome, caller_context: dict, template_used: bool) -> None:
    record.details = NotificationDetails(
        caller_context=caller_context,
        channel_reference=outcome.reference,
        template_used=template_used,
    ).to_json()
    if outcome.ok:
        record.status = NotificationStatus.SENT
        record.sent_at = utcnow()
        record.error_message = None
    else:
        record.status = NotificationStatus.FAILED
        record.error_message = outcome.error
        record.retry_count = (record.retry_count or 0) + 1
    commit_with_retry()


# =============================================================================
# DISPATCH
# =============================================================================

def send_notification(
    notification_type: NotificationType | str,
    user_id: str,
    *,
    order_id: str | None = None,
    customer_name: str | None = None,
    customer_email: str | None = None,
    customer_phone: str | None = None,
    message_content: str | None = None,
    delivery_method: DeliveryMethod | str = DeliveryMethod.IN_APP,
    metadata: dict[str, Any] | None = None,
    channels: ChannelRegistry | None = None,
) -> NotificationResult:
    """
    Render, persist and deliver one notification.

    Unknown notification types fall back to the generic template. Contact
    details and the pickup window are filled from the order when omitted.
    Never raises: validation problems and storage errors come back as a
    failed NotificationResult.
    """
    n_type = NotificationType.parse(getattr(notification_type, "value", notification_type))
    try:
        method = DeliveryMethod(delivery_method)
    except ValueError:
        return NotificationResult(
            success=False,
            message=f"Unsupported delivery method: {delivery_method}",
            notification_type=n_type.value,
            error="invalid_delivery_method",
        )
    if not user_id:
        return NotificationResult(
            success=False,
            message="userId is required",
            delivery_method=method.value,
            notification_type=n_type.value,
            error="missing_user",
        )

    registry = _resolve_channels(channels)
    record_id = None
    try:
        order = db.session.get(Order, order_id) if order_id else None
        if order is not None:
            customer_name = customer_name or order.customer_name
            customer_email = customer_email or order.customer_email
            customer_phone = customer_phone or order.customer_phone

        title, rendered = render_notification(
            n_type,
            customer_name=customer_name,
            order_id=order_id,
            pickup_window=format_pickup_window(order),
        )
        template_used = not message_content

        record = NotificationRecord(
            notification_type=n_type,
            user_id=str(user_id),
            order_id=order_id,
            customer_name=customer_name,
            customer_email=customer_email,
            customer_phone=customer_phone,
            title=title,
            message_content=message_content or rendered,
            delivery_method=method,
            status=NotificationStatus.PENDING,
        )
        db.session.add(record)
        commit_with_retry()
        record_id = record.id

        outcome = _deliver(record, registry)
        _finalize(record, outcome, dict(metadata or {}), template_used)
    except Exception as exc:
        db.session.rollback()
        logger.exception("Failed to send %s notification for order %s", n_type.value, order_id)
        return NotificationResult(
            success=False,
            message="Notification could not be recorded",
            notification_id=record_id,
            delivery_method=method.value,
            notification_type=n_type.value,
            error=str(exc),
        )

    if outcome.ok:
        logger.info("Sent %s notification %s via %s", n_type.value, record.id, method.value)
        message = "Notification sent"
    else:
        logger.warning("Notification %s failed via %s: %s", record.id, method.value, outcome.error)
        message = f"Notification delivery failed: {outcome.error}"

    return NotificationResult(
        success=outcome.ok,
        message=message,
        notification_id=record.id,
        delivery_method=method.value,
        notification_type=n_type.value,
        error=None if outcome.ok else outcome.error,
    )


def retry_notification(notification_id: str, *, channels: ChannelRegistry | None = None) -> NotificationResult:
    """
    Re-deliver a failed notification using its stored content.

    Raises:
        NotificationError: unknown id, or the record is not in 'failed'.
    """
    record = db.session.get(NotificationRecord, notification_id)
    if record is None:
        raise NotificationError(f"Notification {notification_id} not found")
    if record.status != NotificationStatus.FAILED:
        raise NotificationError(
            f"Notification {notification_id} is '{record.status.value}', only failed notifications can be retried"
        )

    previous = NotificationDetails.from_json(record.details)
    outcome = _deliver(record, _resolve_channels(channels))
    _finalize(record, outcome, dict(previous.caller_context), previous.template_used)

    return NotificationResult(
        success=outcome.ok,
        message="Notification sent" if outcome.ok else f"Notification delivery failed: {outcome.error}",
        notification_id=record.id,
        delivery_method=record.delivery_method.value,
        notification_type=record.notification_type.value,
        error=None if outcome.ok else outcome.error,
    )


def list_failed_notifications(limit: int = 100) -> list[NotificationRecord]:
    return (
        db.session.query(NotificationRecord)
        .filter(NotificationRecord.status == NotificationStatus.FAILED)
        .order_by(NotificationRecord.created_at, NotificationRecord.id)
        .limit(limit)
        .all()
    )
