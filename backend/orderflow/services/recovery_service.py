# Overview: Service-layer error recovery; maps failure types to compensating actions and records every attempt.

"""
Error Recovery Coordinator

STRATEGIES (deterministic by error_type):
    payment_failed        -> retry
    stock_update_failed   -> compensate
    order_creation_failed -> rollback
    notification_failed   -> retry
    database_error        -> retry
    network_error         -> retry
    anything else         -> manual_intervention

RULES:
- An ErrorRecoveryRecord is committed as 'processing' before the strategy
  runs and finalized exactly once ('completed' or 'failed').
- compensate: cancel (reason automatic_recovery) + release stock, one unit.
  Cancellation legality is checked first, so an order that cannot be
  cancelled keeps its stock untouched.
- rollback: destructive undo, allowed ONLY for orders nobody else has seen:
  status 'pending' and no linked payment beyond 'pending'. Reserved stock is
  released before the order is deleted.
- retry / manual_intervention never mutate domain rows.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Any

from ..extensions import db
from ..enums import (
    CancellationReason,
    OrderStatus,
    PaymentStatus,
    RecoveryStatus,
    RecoveryStrategy,
    TransitionCause,
)
from ..models import ErrorRecoveryRecord, Order, OrderItem, Payment
from ..record_metadata import RecoveryDetails
from ..time_utils import utcnow
from .audit_service import append_audit_event
from .concurrency import lock_for_update
from .outcomes import run_step
from .state_machine import cancel_order_with_restock
from .stock_service import RestorationReport, restore_order_stock

logger = logging.getLogger(__name__)

DEFAULT_MAX_RETRY_ATTEMPTS = 3


class RecoveryError(ValueError):
    """Invalid recovery request, or a strategy precondition that does not hold."""
    pass


STRATEGY_MAP: dict[str, RecoveryStrategy] = {
    "payment_failed": RecoveryStrategy.RETRY,
    "stock_update_failed": RecoveryStrategy.COMPENSATE,
    "order_creation_failed": RecoveryStrategy.ROLLBACK,
    "notification_failed": RecoveryStrategy.RETRY,
    "database_error": RecoveryStrategy.RETRY,
    "network_error": RecoveryStrategy.RETRY,
}


def determine_strategy(error_type: str) -> RecoveryStrategy:
    return STRATEGY_MAP.get(error_type, RecoveryStrategy.MANUAL_INTERVENTION)


@dataclass(frozen=True)
class RecoveryResult:
    success: bool
    action: RecoveryStrategy
    message: str
    recovery_id: str | None = None
    attempts: int = 0
    recovered: bool = False
    compensation_applied: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "recoveryId": self.recovery_id,
            "action": self.action.value,
            "attempts": self.attempts,
            "recovered": self.recovered,
            "compensationApplied": self.compensation_applied,
            "message": self.message,
        }


# =============================================================================
# STRATEGIES
# =============================================================================

def _compensate(order_id: str, batch_id: str) -> RestorationReport:
    try:
        report = cancel_order_with_restock(
            order_id,
            CancellationReason.AUTOMATIC_RECOVERY,
            TransitionCause.RECOVERY,
            batch_id=batch_id,
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    return report


def _rollback_order(order_id: str, batch_id: str) -> tuple[RestorationReport, int]:
    try:
        order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()
        if order is None:
            raise RecoveryError(f"Order {order_id} not found")

        status = OrderStatus(order.status)
        if status != OrderStatus.PENDING:
            raise RecoveryError(
                f"Refusing to roll back order {order_id}: status is '{status.value}'"
            )
        payments = db.session.query(Payment).filter_by(order_id=order_id).all()
        seen = [p for p in payments if PaymentStatus(p.status) != PaymentStatus.PENDING]
        if seen:
            raise RecoveryError(
                f"Refusing to roll back order {order_id}: payment {seen[0].id} is "
                f"'{PaymentStatus(seen[0].status).value}'"
            )

        report = restore_order_stock(order_id, reason="order rolled back", batch_id=batch_id)
        for payment in payments:
            payment.order = None

        items = db.session.query(OrderItem).filter_by(order_id=order_id).all()
        for item in items:
            db.session.delete(item)
        deleted = len(items)
        db.session.flush()
        db.session.delete(order)
        append_audit_event(
            action="order_rolled_back",
            order_id=order_id,
            cause=TransitionCause.RECOVERY,
            from_status=status.value,
            payload={"deleted_items": deleted, **report.to_dict()},
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    return report, deleted


# =============================================================================
# ENTRY POINT
# =============================================================================

def _finalize(
    record: ErrorRecoveryRecord,
    result: RecoveryResult,
    details: RecoveryDetails,
    *,
    failed: bool,
) -> RecoveryResult:
    record.status = RecoveryStatus.FAILED if failed else RecoveryStatus.COMPLETED
    record.attempts_made = result.attempts
    record.compensation_applied = result.compensation_applied
    record.result_message = result.message
    record.details = details.to_json()
    record.completed_at = utcnow()
    db.session.commit()
    return replace(result, recovery_id=record.id)


def recover_from_error(
    error_type: str,
    *,
    operation: str,
    original_error: str | None,
    order_id: str | None = None,
    user_id: str | None = None,
    retry_count: int = 0,
    metadata: dict[str, Any] | None = None,
    max_retry_attempts: int = DEFAULT_MAX_RETRY_ATTEMPTS,
) -> RecoveryResult:
    """
    Record and execute one recovery attempt.

    Raises:
        RecoveryError: only for malformed requests (nothing is recorded).
    Every other outcome, including unexpected failures, is returned.
    """
    if not error_type:
        raise RecoveryError("errorType is required")
    if not operation:
        raise RecoveryError("operation is required")
    if retry_count < 0:
        raise RecoveryError("retryCount must be non-negative")

    strategy = determine_strategy(error_type)
    details = RecoveryDetails(caller_context=dict(metadata or {}))
    base = RecoveryResult(success=False, action=strategy, message="", attempts=1)

    record = ErrorRecoveryRecord(
        error_type=error_type,
        order_id=order_id,
        user_id=user_id,
        operation=operation,
        original_error=original_error,
        recovery_strategy=strategy,
        retry_count=retry_count,
        status=RecoveryStatus.PROCESSING,
        details=details.to_json(),
    )

    try:
        db.session.add(record)
        db.session.commit()
    except Exception as exc:
        db.session.rollback()
        logger.exception("Could not record recovery for %s", error_type)
        return replace(base, message=f"Recovery could not be recorded: {exc}")
    record_id = record.id
    logger.info("Recovery %s: %s -> %s (order %s)", record_id, error_type, strategy.value, order_id)

    try:
        if strategy == RecoveryStrategy.RETRY:
            attempts = retry_count + 1
            if retry_count < max_retry_attempts:
                result = replace(
                    base,
                    success=True,
                    attempts=attempts,
                    message=f"Retry {operation} (attempt {attempts} of {max_retry_attempts})",
                )
                return _finalize(record, result, details, failed=False)
            details = replace(details, retry_budget_exhausted=True)
            result = replace(
                base,
                attempts=attempts,
                message=f"Retry budget exhausted for {operation} after {retry_count} attempts; manual intervention required",
            )
            return _finalize(record, result, details, failed=True)

        if strategy == RecoveryStrategy.MANUAL_INTERVENTION:
            result = replace(base, success=True, message=f"Manual intervention required for {operation}")
            return _finalize(record, result, details, failed=False)

        if not order_id:
            result = replace(base, message=f"{strategy.value} requires an orderId")
            return _finalize(record, result, details, failed=True)

        batch_id = f"recovery-{record_id}"
        if strategy == RecoveryStrategy.COMPENSATE:
            step = run_step("compensate", _compensate, order_id, batch_id)
            if not step.ok:
                result = replace(base, message=f"Compensation for {error_type} failed: {step.message}")
                return _finalize(record, result, details, failed=True)
            report: RestorationReport = step.value
            details = replace(
                details,
                restored_items=tuple(report.restored_items),
                failed_items=tuple(report.failed_items),
            )
            message = f"Successfully compensated for {error_type}"
            if not report.all_restored:
                message += f"; {len(report.failed_items)} item(s) could not be restocked"
            result = replace(base, success=True, recovered=True, compensation_applied=True, message=message)
            return _finalize(record, result, details, failed=False)

        # ROLLBACK
        step = run_step("rollback", _rollback_order, order_id, batch_id)
        if not step.ok:
            result = replace(base, message=f"Failed to rollback {operation}: {step.message}")
            return _finalize(record, result, details, failed=True)
        report, deleted = step.value
        details = replace(
            details,
            restored_items=tuple(report.restored_items),
            failed_items=tuple(report.failed_items),
            deleted_order_items=deleted,
        )
        result = replace(
            base,
            success=True,
            recovered=True,
            compensation_applied=True,
            message=f"Successfully rolled back {operation}",
        )
        return _finalize(record, result, details, failed=False)

    except Exception as exc:
        db.session.rollback()
        logger.exception("Recovery %s failed unexpectedly", record_id)
        _mark_failed(record_id, str(exc))
        return replace(base, recovery_id=record_id, message=f"Recovery process failed: {exc}")


def _mark_failed(record_id: str, error: str) -> None:
    try:
        record = db.session.get(ErrorRecoveryRecord, record_id)
        if record is None or record.status != RecoveryStatus.PROCESSING:
            return
        record.status = RecoveryStatus.FAILED
        record.result_message = f"Recovery process failed: {error}"
        record.completed_at = utcnow()
        db.session.commit()
    except Exception:
        db.session.rollback()
        logger.exception("Could not mark recovery record %s as failed", record_id)


def get_recovery_record(recovery_id: str) -> ErrorRecoveryRecord | None:
    return db.session.get(ErrorRecoveryRecord, recovery_id)


def list_recovery_records(status: RecoveryStatus | str | None = None, limit: int = 50) -> list[ErrorRecoveryRecord]:
    q = db.session.query(ErrorRecoveryRecord)
    if status is not None:
        q = q.filter(ErrorRecoveryRecord.status == RecoveryStatus(status))
    return q.order_by(ErrorRecoveryRecord.created_at.desc(), ErrorRecoveryRecord.id).limit(limit).all()
