"""
No-show processor tests.

Verifies:
- Orders are only processed strictly after pickup time + grace period
- Only confirmed / preparing / ready orders are cancelled
- Successful run cancels, restores every line, notifies and completes the record
- Partial stock restoration and notification failures do not abort the run
- A second run on the same order changes nothing
- Scan skips recently rescheduled orders and isolates per-order failures
"""

from datetime import date, datetime, time

import pytest

from orderflow.enums import (
    CancellationReason,
    NoShowStatus,
    NotificationStatus,
    OrderStatus,
)
from orderflow.models import InventoryItem, NoShowRecord, NotificationRecord, Order, StockMovement
from orderflow.services import noshow_service, order_service
from orderflow.services.noshow_service import (
    find_no_show_candidates,
    is_order_no_show,
    process_due_no_shows,
    process_no_show,
)


# pickup 2024-01-01 10:00 + 30 minutes grace
DEADLINE = datetime(2024, 1, 1, 10, 30)
AFTER_DEADLINE = datetime(2024, 1, 1, 10, 31)


# =============================================================================
# GATES
# =============================================================================

class TestGates:

    @pytest.mark.parametrize("now", [datetime(2024, 1, 1, 10, 29), DEADLINE])
    def test_not_due_until_after_deadline(self, db_session, channels, make_item, make_order, now):
        order = make_order([(make_item(), 1)])
        result = process_no_show(order.id, 30, now=now, channels=channels)

        assert result.success is False
        assert "not yet due" in result.message
        assert db_session.query(NoShowRecord).count() == 0
        assert db_session.get(Order, order.id).status == OrderStatus.CONFIRMED

    def test_unknown_order(self, db_session, channels):
        result = process_no_show("order_missing", 30, now=AFTER_DEADLINE, channels=channels)
        assert result.success is False
        assert result.error == "order_not_found"

    def test_missing_pickup_window(self, db_session, channels, make_item, make_order):
        order = make_order([(make_item(), 1)], pickup_date=None, pickup_time=None)
        result = process_no_show(order.id, 30, now=AFTER_DEADLINE, channels=channels)
        assert result.error == "missing_pickup_window"

    @pytest.mark.parametrize("status", [OrderStatus.PENDING, OrderStatus.COMPLETED, OrderStatus.CANCELLED])
    def test_wrong_status_not_processed(self, db_session, channels, make_item, make_order, status):
        order = make_order([(make_item(), 1)], status=status)
        result = process_no_show(order.id, 30, now=AFTER_DEADLINE, channels=channels)

        assert result.success is False
        assert "Cannot process order" in result.message
        assert db_session.query(NoShowRecord).count() == 0


# =============================================================================
# PROCESSING
# =============================================================================

class TestProcessNoShow:

    def test_full_success(self, db_session, channels, fake_channel, make_item, make_order):
        apples, pears = make_item(stock=10), make_item(stock=5)
        order = make_order([(apples, 2), (pears, 1)], status=OrderStatus.READY)
        apples_id, pears_id, order_id = apples.id, pears.id, order.id

        result = process_no_show(order_id, 30, now=AFTER_DEADLINE, channels=channels)

        assert result.success is True
        assert result.stock_restored is True
        assert result.notification_sent is True

        db_session.expire_all()
        order = db_session.get(Order, order_id)
        assert order.status == OrderStatus.CANCELLED
        assert order.cancellation_reason == CancellationReason.NO_SHOW_TIMEOUT
        assert db_session.get(InventoryItem, apples_id).current_stock == 10
        assert db_session.get(InventoryItem, pears_id).current_stock == 5

        record = db_session.get(NoShowRecord, result.no_show_id)
        assert record.processing_status == NoShowStatus.COMPLETED
        assert record.stock_restoration_applied is True
        assert record.notification_sent is True
        assert record.completed_at is not None
        assert len(record.parsed_details.restored_items) == 2

        notification = db_session.query(NotificationRecord).one()
        assert notification.order_id == order_id
        assert notification.status == NotificationStatus.SENT
        assert fake_channel.delivered == [notification.id]

        data = result.to_dict()
        assert data["pickupDeadline"] == "2024-01-01T10:30:00Z"
        assert data["stockRestoration"]["allRestored"] is True

    def test_partial_restoration_still_cancels(self, db_session, channels, make_item, make_order):
        keep, gone = make_item(stock=10), make_item(stock=10)
        order = make_order([(keep, 3), (gone, 1)])
        keep_id, gone_id, order_id = keep.id, gone.id, order.id
        db_session.execute(InventoryItem.__table__.delete().where(InventoryItem.id == gone_id))
        db_session.commit()

        result = process_no_show(order_id, 30, now=AFTER_DEADLINE, channels=channels)

        assert result.success is True
        assert result.stock_restored is False
        assert "could not be restocked" in result.message
        assert [i.inventory_item_id for i in result.restoration.failed_items] == [gone_id]

        db_session.expire_all()
        assert db_session.get(Order, order_id).status == OrderStatus.CANCELLED
        assert db_session.get(InventoryItem, keep_id).current_stock == 10
        record = db_session.get(NoShowRecord, result.no_show_id)
        assert record.processing_status == NoShowStatus.COMPLETED
        assert record.stock_restoration_applied is False

    def test_notification_failure_is_not_fatal(self, db_session, channels, fake_channel, make_item, make_order):
        fake_channel.fail = True
        order = make_order([(make_item(), 1)])

        result = process_no_show(order.id, 30, now=AFTER_DEADLINE, channels=channels)

        assert result.success is True
        assert result.notification_sent is False
        assert "customer notification failed" in result.message
        record = db_session.get(NoShowRecord, result.no_show_id)
        assert record.processing_status == NoShowStatus.COMPLETED
        assert record.parsed_details.notification_error == "simulated outage"
        assert db_session.query(NotificationRecord).one().status == NotificationStatus.FAILED

    def test_second_run_changes_nothing(self, db_session, channels, make_item, make_order):
        item = make_item(stock=10)
        order = make_order([(item, 4)])
        item_id, order_id = item.id, order.id

        first = process_no_show(order_id, 30, now=AFTER_DEADLINE, channels=channels)
        movements = db_session.query(StockMovement).count()
        second = process_no_show(order_id, 30, now=AFTER_DEADLINE, channels=channels)

        assert first.success is True
        assert second.success is False
        assert "Cannot process order" in second.message
        assert db_session.query(NoShowRecord).count() == 1
        assert db_session.query(StockMovement).count() == movements
        assert db_session.get(InventoryItem, item_id).current_stock == 10

    def test_order_cancelled_after_gate_gets_wrong_status_result(
        self, db_session, channels, monkeypatch, make_item, make_order
    ):
        item = make_item(stock=10)
        order = make_order([(item, 4)])
        item_id, order_id = item.id, order.id
        real_cancel = noshow_service.cancel_order_with_restock

        def cancelled_by_staff_first(target_id, *args, **kwargs):
            order_service.cancel_order(target_id, CancellationReason.STAFF)
            return real_cancel(target_id, *args, **kwargs)

        monkeypatch.setattr(noshow_service, "cancel_order_with_restock", cancelled_by_staff_first)

        result = process_no_show(order_id, 30, now=AFTER_DEADLINE, channels=channels)

        assert result.success is False
        assert result.error is None
        assert result.message == f"Cannot process order {order_id} with status 'cancelled'"
        db_session.expire_all()
        order = db_session.get(Order, order_id)
        assert order.cancellation_reason == CancellationReason.STAFF
        assert db_session.get(InventoryItem, item_id).current_stock == 10
        record = db_session.query(NoShowRecord).one()
        assert record.processing_status == NoShowStatus.FAILED
        assert db_session.query(NotificationRecord).count() == 0


# =============================================================================
# DETECTION / BATCH
# =============================================================================

class TestDetection:

    def test_is_order_no_show(self, db_session, make_item, make_order):
        order = make_order([(make_item(), 1)])

        before = is_order_no_show(order.id, 30, now=DEADLINE)
        after = is_order_no_show(order.id, 30, now=datetime(2024, 1, 1, 10, 45))

        assert before["isNoShow"] is False
        assert after["isNoShow"] is True
        assert after["minutesOverdue"] == 45
        assert after["pickupWindow"] == "2024-01-01 10:00"
        assert is_order_no_show("order_missing", 30) == {"isNoShow": False}

    def test_recently_rescheduled_orders_skipped(self, db_session, make_item, make_order):
        moved = make_order([(make_item(), 1)])
        stale = make_order([(make_item(), 1)])
        order_service.reschedule_pickup(
            moved.id, date(2024, 1, 1), time(10, 0), now=datetime(2024, 1, 1, 10, 40)
        )

        now = datetime(2024, 1, 1, 11, 0)
        assert [o.id for o in find_no_show_candidates(30, now=now)] == [stale.id]
        later = datetime(2024, 1, 1, 13, 0)
        assert {o.id for o in find_no_show_candidates(30, now=later)} == {moved.id, stale.id}

    def test_batch_processes_every_candidate(self, db_session, channels, make_item, make_order):
        first = make_order([(make_item(), 1)])
        second = make_order([(make_item(), 1)], status=OrderStatus.PREPARING)
        make_order([(make_item(), 1)], pickup_date=date(2024, 1, 2))

        summary = process_due_no_shows(30, now=AFTER_DEADLINE, channels=channels)

        assert summary["success"] is True
        assert summary["errors"] == []
        assert {p["orderId"] for p in summary["processedOrders"]} == {first.id, second.id}
        assert summary["message"] == "Processed 2 no-show orders, 0 errors"

    def test_batch_with_nothing_due(self, db_session, channels):
        summary = process_due_no_shows(30, now=AFTER_DEADLINE, channels=channels)
        assert summary["message"] == "No no-show orders found"
        assert summary["processedOrders"] == []
