"""
Error recovery coordinator tests.

Verifies:
- Strategy is a pure function of error type
- retry honours the attempt budget, manual_intervention touches nothing
- compensate cancels and releases stock; illegal cancels leave stock untouched
- rollback only deletes orders nobody has acted on
- Every accepted request leaves exactly one finalized record
"""

import pytest
from sqlalchemy.exc import SQLAlchemyError

from orderflow.enums import (
    CancellationReason,
    OrderStatus,
    PaymentStatus,
    RecoveryStatus,
    RecoveryStrategy,
)
from orderflow.extensions import db
from orderflow.models import ErrorRecoveryRecord, InventoryItem, Order, OrderItem, Payment
from orderflow.services.recovery_service import (
    RecoveryError,
    determine_strategy,
    list_recovery_records,
    recover_from_error,
)


@pytest.mark.parametrize("error_type,strategy", [
    ("payment_failed", RecoveryStrategy.RETRY),
    ("stock_update_failed", RecoveryStrategy.COMPENSATE),
    ("order_creation_failed", RecoveryStrategy.ROLLBACK),
    ("notification_failed", RecoveryStrategy.RETRY),
    ("database_error", RecoveryStrategy.RETRY),
    ("network_error", RecoveryStrategy.RETRY),
    ("cosmic_ray", RecoveryStrategy.MANUAL_INTERVENTION),
])
def test_strategy_mapping(error_type, strategy):
    assert determine_strategy(error_type) == strategy


def _record(db_session, result):
    return db_session.get(ErrorRecoveryRecord, result.recovery_id)


# =============================================================================
# NON-MUTATING STRATEGIES
# =============================================================================

class TestRetryAndManual:

    def test_retry_within_budget(self, db_session):
        result = recover_from_error(
            "payment_failed", operation="capture_payment", original_error="timeout", retry_count=1
        )

        assert result.success is True
        assert result.action == RecoveryStrategy.RETRY
        assert result.attempts == 2
        assert result.message == "Retry capture_payment (attempt 2 of 3)"
        record = _record(db_session, result)
        assert record.status == RecoveryStatus.COMPLETED
        assert record.completed_at is not None

    def test_retry_budget_exhausted(self, db_session):
        result = recover_from_error(
            "network_error", operation="send_sms", original_error="refused", retry_count=3
        )

        assert result.success is False
        assert "manual intervention required" in result.message
        record = _record(db_session, result)
        assert record.status == RecoveryStatus.FAILED
        assert record.parsed_details.retry_budget_exhausted is True

    def test_manual_intervention(self, db_session, make_item, make_order):
        order = make_order([(make_item(stock=5), 2)])
        result = recover_from_error(
            "unheard_of", operation="mystery", original_error="?", order_id=order.id
        )

        assert result.success is True
        assert result.action == RecoveryStrategy.MANUAL_INTERVENTION
        assert db_session.get(Order, order.id).status == OrderStatus.CONFIRMED

    @pytest.mark.parametrize("kwargs", [
        {"error_type": "", "operation": "x"},
        {"error_type": "payment_failed", "operation": ""},
        {"error_type": "payment_failed", "operation": "x", "retry_count": -1},
    ])
    def test_invalid_request_records_nothing(self, db_session, kwargs):
        kwargs = dict(kwargs)
        error_type = kwargs.pop("error_type")
        with pytest.raises(RecoveryError):
            recover_from_error(error_type, original_error=None, **kwargs)
        assert db_session.query(ErrorRecoveryRecord).count() == 0

    def test_unrecordable_request_reports_failure(self, db_session, monkeypatch):
        def refuse_commit():
            raise SQLAlchemyError("disk full")

        monkeypatch.setattr(db.session, "commit", refuse_commit)
        result = recover_from_error("payment_failed", operation="charge", original_error="declined")
        monkeypatch.undo()

        assert result.success is False
        assert result.recovery_id is None
        assert "disk full" in result.message
        assert db_session.query(ErrorRecoveryRecord).count() == 0


# =============================================================================
# COMPENSATE
# =============================================================================

class TestCompensate:

    def test_cancels_and_restores(self, db_session, make_item, make_order):
        item = make_item(stock=10)
        order = make_order([(item, 4)], status=OrderStatus.PREPARING)
        item_id, order_id = item.id, order.id

        result = recover_from_error(
            "stock_update_failed", operation="update_stock", original_error="boom", order_id=order_id
        )

        assert result.success is True
        assert result.compensation_applied is True
        db_session.expire_all()
        order = db_session.get(Order, order_id)
        assert order.status == OrderStatus.CANCELLED
        assert order.cancellation_reason == CancellationReason.AUTOMATIC_RECOVERY
        assert db_session.get(InventoryItem, item_id).current_stock == 10
        assert len(_record(db_session, result).parsed_details.restored_items) == 1

    def test_completed_order_untouched(self, db_session, make_item, make_order):
        item = make_item(stock=10)
        order = make_order([(item, 4)], status=OrderStatus.COMPLETED)
        item_id, order_id = item.id, order.id

        result = recover_from_error(
            "stock_update_failed", operation="update_stock", original_error="boom", order_id=order_id
        )

        assert result.success is False
        assert "Compensation for stock_update_failed failed" in result.message
        db_session.expire_all()
        assert db_session.get(Order, order_id).status == OrderStatus.COMPLETED
        assert db_session.get(InventoryItem, item_id).current_stock == 6
        assert _record(db_session, result).status == RecoveryStatus.FAILED

    def test_missing_order_id(self, db_session):
        result = recover_from_error("stock_update_failed", operation="update_stock", original_error="boom")
        assert result.success is False
        assert "requires an orderId" in result.message
        assert _record(db_session, result).status == RecoveryStatus.FAILED


# =============================================================================
# ROLLBACK
# =============================================================================

class TestRollback:

    def test_pending_order_deleted_and_stock_released(self, db_session, make_item, make_order):
        item = make_item(stock=10)
        order = make_order([(item, 3)], status=OrderStatus.PENDING)
        item_id, order_id = item.id, order.id

        result = recover_from_error(
            "order_creation_failed", operation="create_order", original_error="boom", order_id=order_id
        )

        assert result.success is True
        db_session.expire_all()
        assert db_session.get(Order, order_id) is None
        assert db_session.query(OrderItem).filter_by(order_id=order_id).count() == 0
        assert db_session.get(InventoryItem, item_id).current_stock == 10
        assert _record(db_session, result).parsed_details.deleted_order_items == 1

    def test_pending_payment_detached(self, db_session, make_item, make_order):
        order = make_order([(make_item(), 1)], status=OrderStatus.PENDING)
        payment = Payment(payment_intent_id="pi_pending", user_id="user_1", order=order)
        db_session.add(payment)
        db_session.commit()
        payment_id, order_id = payment.id, order.id

        result = recover_from_error(
            "order_creation_failed", operation="create_order", original_error="boom", order_id=order_id
        )

        assert result.success is True
        db_session.expire_all()
        assert db_session.get(Payment, payment_id).order_id is None

    def test_confirmed_order_refused(self, db_session, make_item, make_order):
        order = make_order([(make_item(), 1)], status=OrderStatus.CONFIRMED)

        result = recover_from_error(
            "order_creation_failed", operation="create_order", original_error="boom", order_id=order.id
        )

        assert result.success is False
        assert "Refusing to roll back" in result.message
        db_session.expire_all()
        assert db_session.get(Order, order.id) is not None

    def test_processing_payment_refused(self, db_session, make_item, make_order):
        order = make_order([(make_item(), 1)], status=OrderStatus.PENDING)
        db_session.add(Payment(
            payment_intent_id="pi_busy", user_id="user_1", order=order, status=PaymentStatus.PROCESSING
        ))
        db_session.commit()
        order_id = order.id

        result = recover_from_error(
            "order_creation_failed", operation="create_order", original_error="boom", order_id=order_id
        )

        assert result.success is False
        db_session.expire_all()
        assert db_session.get(Order, order_id).status == OrderStatus.PENDING
        assert _record(db_session, result).status == RecoveryStatus.FAILED


def test_list_recovery_records_filters_by_status(db_session):
    recover_from_error("payment_failed", operation="a", original_error=None)
    recover_from_error("payment_failed", operation="b", original_error=None, retry_count=5)

    assert [r.operation for r in list_recovery_records(RecoveryStatus.FAILED)] == ["b"]
    assert len(list_recovery_records()) == 2
