# Overview: Service-layer no-show processing; cancels overdue pickups, restores stock and notifies the customer.

"""
No-Show Processor

================================================================================
PURPOSE: Cancel orders whose pickup window (plus grace period) has passed
================================================================================

SEQUENCE (per order):
    1. Gate checks (read-only): order exists, has a pickup window, deadline
       has passed, status is confirmed/preparing/ready.
    2. NoShowRecord inserted as 'processing' and committed.
    3. Cancel (reason no_show_timeout) + release every line's stock,
       committed as ONE unit. The order is re-locked and its status
       re-validated inside that unit, so a concurrent run sees 'cancelled'
       and stops with no stock change.
    4. 'order_cancelled' notification. Failure is recorded, never fatal.
    5. Record finalized 'completed' with the per-item breakdown.

RECORD STATUS:
    processing -> stock_restored -> notification_sent -> completed
    (stock_restored only when every line was restored; notification_sent
    only when delivery succeeded; any abort -> failed)

Top-level success means the order was durably cancelled.
================================================================================
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Any

from ..extensions import db
from ..enums import (
    CancellationReason,
    NoShowStatus,
    NotificationType,
    OrderStatus,
    TransitionCause,
)
from ..models import NoShowRecord, Order
from ..record_metadata import NoShowDetails
from ..time_utils import normalize_utc, pickup_deadline, to_utc_z, utcnow
from .channels import ChannelRegistry
from .concurrency import run_with_retry
from .notification_service import send_notification
from .outcomes import ErrorKind, run_step
from .state_machine import CANCELLABLE_ORDER_STATUSES, cancel_order_with_restock
from .stock_service import RestorationReport

logger = logging.getLogger(__name__)

DEFAULT_GRACE_PERIOD_MINUTES = 30
DEFAULT_RESCHEDULE_WINDOW_MINUTES = 120


@dataclass(frozen=True)
class NoShowResult:
    success: bool
    order_id: str
    message: str
    grace_period_minutes: int
    no_show_id: str | None = None
    pickup_deadline: datetime | None = None
    detected_at: datetime | None = None
    stock_restored: bool = False
    notification_sent: bool = False
    error: str | None = None
    restoration: RestorationReport | None = None

    def to_dict(self) -> dict[str, Any]:
        data = {
            "success": self.success,
            "noShowId": self.no_show_id,
            "orderId": self.order_id,
            "pickupDeadline": to_utc_z(self.pickup_deadline),
            "detectedAt": to_utc_z(self.detected_at),
            "stockRestored": self.stock_restored,
            "notificationSent": self.notification_sent,
            "message": self.message,
            "gracePeriodMinutes": self.grace_period_minutes,
        }
        if self.error:
            data["error"] = self.error
        if self.restoration is not None:
            data["stockRestoration"] = self.restoration.to_dict()
        return data


# =============================================================================
# READ-ONLY CHECKS
# =============================================================================

def _order_deadline(order: Order, grace_period_minutes: int) -> datetime | None:
    if order.pickup_date is None or order.pickup_time is None:
        return None
    return pickup_deadline(order.pickup_date, order.pickup_time, grace_period_minutes)


def is_order_no_show(
    order_id: str,
    grace_period_minutes: int = DEFAULT_GRACE_PERIOD_MINUTES,
    *,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Whether the order is currently a no-show, and by how many minutes."""
    now = normalize_utc(now) or utcnow()
    order = db.session.get(Order, order_id)
    if order is None or order.pickup_date is None or order.pickup_time is None:
        return {"isNoShow": False}

    pickup_at = datetime.combine(order.pickup_date, order.pickup_time)
    deadline = _order_deadline(order, grace_period_minutes)
    is_no_show = OrderStatus(order.status) in CANCELLABLE_ORDER_STATUSES and now > deadline

    result: dict[str, Any] = {
        "isNoShow": is_no_show,
        "pickupWindow": f"{order.pickup_date.isoformat()} {order.pickup_time.strftime('%H:%M')}",
        "pickupDeadline": to_utc_z(deadline),
        "status": OrderStatus(order.status).value,
    }
    if is_no_show:
        result["minutesOverdue"] = int((now - pickup_at).total_seconds() // 60)
    return result


def find_no_show_candidates(
    grace_period_minutes: int = DEFAULT_GRACE_PERIOD_MINUTES,
    *,
    now: datetime | None = None,
    reschedule_window_minutes: int = DEFAULT_RESCHEDULE_WINDOW_MINUTES,
) -> list[Order]:
    """
    Open orders past their pickup deadline.

    Orders whose pickup was rescheduled within ``reschedule_window_minutes``
    are skipped until the window has passed.
    """
    now = normalize_utc(now) or utcnow()
    rows = (
        db.session.query(Order)
        .filter(
            Order.status.in_(list(CANCELLABLE_ORDER_STATUSES)),
            Order.pickup_date.isnot(None),
            Order.pickup_time.isnot(None),
            Order.pickup_date <= now.date(),
        )
        .order_by(Order.pickup_date, Order.pickup_time, Order.id)
        .all()
    )

    recent_cutoff = now - timedelta(minutes=reschedule_window_minutes)
    candidates = []
    for order in rows:
        if now <= _order_deadline(order, grace_period_minutes):
            continue
        rescheduled_at = normalize_utc(order.pickup_rescheduled_at)
        if rescheduled_at is not None and rescheduled_at > recent_cutoff:
            logger.info("Order %s was rescheduled at %s, skipping no-show detection", order.id, rescheduled_at)
            continue
        candidates.append(order)
    return candidates


# =============================================================================
# PROCESSING
# =============================================================================

def _save_record(record: NoShowRecord, details: NoShowDetails, **fields) -> None:
    for key, value in fields.items():
        setattr(record, key, value)
    record.details = details.to_json()
    db.session.commit()


def _cancel_and_restore(order_id: str, batch_id: str) -> RestorationReport:
    def _op():
        report = cancel_order_with_restock(
            order_id,
            CancellationReason.NO_SHOW_TIMEOUT,
            TransitionCause.NO_SHOW,
            batch_id=batch_id,
        )
        db.session.commit()
        return report

    try:
        return run_with_retry(_op)
    except Exception:
        db.session.rollback()
        raise


def process_no_show(
    order_id: str,
    grace_period_minutes: int = DEFAULT_GRACE_PERIOD_MINUTES,
    *,
    now: datetime | None = None,
    channels: ChannelRegistry | None = None,
) -> NoShowResult:
    """
    Process one order as a no-show if (and only if) it is one.

    Never raises; every outcome is a NoShowResult.
    """
    now = normalize_utc(now) or utcnow()
    base = NoShowResult(
        success=False,
        order_id=order_id,
        message="",
        grace_period_minutes=grace_period_minutes,
    )
    record: NoShowRecord | None = None
    record_id: str | None = None
    details = NoShowDetails()

    try:
        order = db.session.get(Order, order_id)
        if order is None:
            return replace(base, message=f"Order {order_id} not found", error="order_not_found")

        deadline = _order_deadline(order, grace_period_minutes)
        if deadline is None:
            return replace(
                base,
                message=f"Order {order_id} has no pickup window",
                error="missing_pickup_window",
            )
        base = replace(base, pickup_deadline=deadline)

        if now <= deadline:
            return replace(base, message=f"Order {order_id} is not yet due (deadline {to_utc_z(deadline)})")

        status = OrderStatus(order.status)
        if status not in CANCELLABLE_ORDER_STATUSES:
            return replace(base, message=f"Cannot process order {order_id} with status '{status.value}'")

        # 1. audit record first
        details = NoShowDetails(
            pickup_deadline=to_utc_z(deadline),
            cancellation_reason=CancellationReason.NO_SHOW_TIMEOUT.value,
        )
        record = NoShowRecord(
            order_id=order.id,
            user_id=order.user_id,
            original_pickup_date=order.pickup_date,
            original_pickup_time=order.pickup_time,
            grace_period_minutes=grace_period_minutes,
            detected_at=now,
            processing_status=NoShowStatus.PROCESSING,
        )
        db.session.add(record)
        _save_record(record, details)
        record_id = record.id
        base = replace(base, no_show_id=record.id, detected_at=now)
        user_id = order.user_id
        logger.info("No-show detected for order %s (record %s)", order_id, record.id)

        # 2. cancellation + stock restoration (one unit)
        cancel = run_step("cancel_and_restore", _cancel_and_restore, order_id, f"noshow-{record.id}")
        if not cancel.ok:
            details = replace(details, error=cancel.message)
            _save_record(
                record,
                details,
                processing_status=NoShowStatus.FAILED,
                completed_at=utcnow(),
            )
            if cancel.error_kind == ErrorKind.INVALID_TRANSITION:
                # Another run moved the order after the gate; same answer as the gate.
                current = OrderStatus(db.session.get(Order, order_id).status)
                return replace(base, message=f"Cannot process order {order_id} with status '{current.value}'")
            return replace(
                base,
                message=f"No-show cancellation failed for order {order_id}",
                error=cancel.error_kind.value,
            )

        report: RestorationReport = cancel.value
        details = replace(
            details,
            restored_items=tuple(report.restored_items),
            failed_items=tuple(report.failed_items),
        )
        _save_record(
            record,
            details,
            stock_restoration_applied=report.all_restored,
            processing_status=(
                NoShowStatus.STOCK_RESTORED if report.all_restored else NoShowStatus.PROCESSING
            ),
        )

        # 3. customer notification (non-fatal)
        notify = run_step(
            "notify_customer",
            send_notification,
            NotificationType.ORDER_CANCELLED,
            user_id,
            order_id=order_id,
            metadata={"noShowId": record.id, "reason": CancellationReason.NO_SHOW_TIMEOUT.value},
            channels=channels,
        )
        notified = bool(notify.ok and notify.value.success)
        if notify.ok:
            details = replace(
                details,
                notification_id=notify.value.notification_id,
                notification_error=notify.value.error,
            )
        else:
            details = replace(details, notification_error=notify.message)
        if notified:
            _save_record(record, details, notification_sent=True, processing_status=NoShowStatus.NOTIFICATION_SENT)

        # 4. finalize
        _save_record(
            record,
            details,
            notification_sent=notified,
            processing_status=NoShowStatus.COMPLETED,
            completed_at=utcnow(),
        )

        parts = [f"Order {order_id} cancelled as no-show"]
        if not report.all_restored:
            parts.append(f"{len(report.failed_items)} item(s) could not be restocked")
        if not notified:
            parts.append("customer notification failed")
        return replace(
            base,
            success=True,
            message="; ".join(parts),
            stock_restored=report.all_restored,
            notification_sent=notified,
            restoration=report,
        )

    except Exception as exc:
        db.session.rollback()
        logger.exception("No-show processing failed for order %s", order_id)
        if record_id is not None:
            _mark_failed(record_id, details, str(exc))
        return replace(base, message="No-show processing failed", error=str(exc))


def _mark_failed(record_id: str, details: NoShowDetails, error: str) -> None:
    """Best-effort finalization of a record after an unexpected failure."""
    try:
        record = db.session.get(NoShowRecord, record_id)
        if record is None or record.processing_status == NoShowStatus.COMPLETED:
            return
        _save_record(
            record,
            replace(details, error=error),
            processing_status=NoShowStatus.FAILED,
            completed_at=utcnow(),
        )
    except Exception:
        db.session.rollback()
        logger.exception("Could not mark no-show record %s as failed", record_id)


def process_due_no_shows(
    grace_period_minutes: int = DEFAULT_GRACE_PERIOD_MINUTES,
    *,
    now: datetime | None = None,
    channels: ChannelRegistry | None = None,
    reschedule_window_minutes: int = DEFAULT_RESCHEDULE_WINDOW_MINUTES,
) -> dict[str, Any]:
    """
    One scan pass: process every current candidate.

    One order's failure never stops the batch.
    """
    now = normalize_utc(now) or utcnow()
    try:
        candidate_ids = [
            o.id for o in find_no_show_candidates(
                grace_period_minutes,
                now=now,
                reschedule_window_minutes=reschedule_window_minutes,
            )
        ]
    except Exception as exc:
        db.session.rollback()
        logger.exception("No-show scan failed")
        return {
            "success": False,
            "processedOrders": [],
            "errors": [{"orderId": "system", "error": str(exc)}],
            "message": "No-show processing failed",
        }

    if not candidate_ids:
        return {"success": True, "processedOrders": [], "errors": [], "message": "No no-show orders found"}

    processed: list[dict] = []
    errors: list[dict] = []
    for order_id in candidate_ids:
        result = process_no_show(order_id, grace_period_minutes, now=now, channels=channels)
        if result.success:
            processed.append(result.to_dict())
        else:
            errors.append({"orderId": order_id, "error": result.error or result.message})

    message = f"Processed {len(processed)} no-show orders, {len(errors)} errors"
    logger.info(message)
    return {"success": True, "processedOrders": processed, "errors": errors, "message": message}
