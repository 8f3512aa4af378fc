"""
Stock reconciler tests.

Verifies:
- Rejected deltas (zero, unknown item, negative result) change nothing
- Every change appends a balanced StockMovement
- Reservation is all-or-nothing
- Reserve + cancel conserves stock
- One bad line never blocks the others on restore
"""

import pytest

from orderflow.enums import CancellationReason, MovementType, OrderStatus
from orderflow.models import InventoryItem, Order, StockMovement
from orderflow.services import order_service, stock_service
from orderflow.services.stock_service import StockError


class TestApplyStockDelta:

    def test_movement_balances(self, db_session, make_item):
        item = make_item(stock=4)
        movement = stock_service.apply_stock_delta(item.id, 3, MovementType.RESTOCK, reason="delivery")
        db_session.commit()

        assert (movement.previous_stock, movement.quantity_change, movement.new_stock) == (4, 3, 7)
        assert db_session.get(InventoryItem, item.id).current_stock == 7

    @pytest.mark.parametrize("delta", [0, -5])
    def test_rejected_delta_changes_nothing(self, db_session, make_item, delta):
        item = make_item(stock=4)
        with pytest.raises(StockError):
            stock_service.apply_stock_delta(item.id, delta, MovementType.ADJUSTMENT)
        db_session.commit()

        assert db_session.get(InventoryItem, item.id).current_stock == 4
        assert db_session.query(StockMovement).count() == 0

    def test_unknown_item(self, db_session):
        with pytest.raises(StockError):
            stock_service.apply_stock_delta("item_missing", 1, MovementType.RESTOCK)


class TestReservation:

    def test_create_order_reserves(self, db_session, make_item, make_order):
        item = make_item(stock=10)
        order = make_order([(item, 4)], status=OrderStatus.PENDING)

        assert db_session.get(InventoryItem, item.id).current_stock == 6
        movement = db_session.query(StockMovement).filter_by(reference_order_id=order.id).one()
        assert movement.movement_type == MovementType.RESERVATION
        assert movement.quantity_change == -4

    def test_short_stock_creates_nothing(self, db_session, make_item):
        plenty, scarce = make_item(stock=10), make_item(stock=1)
        with pytest.raises(StockError):
            order_service.create_order(
                user_id="user_1",
                lines=[
                    {"inventory_item_id": plenty.id, "quantity": 2},
                    {"inventory_item_id": scarce.id, "quantity": 2},
                ],
            )

        assert db_session.get(InventoryItem, plenty.id).current_stock == 10
        assert db_session.query(Order).count() == 0
        assert db_session.query(StockMovement).count() == 0


class TestRestore:

    def test_reserve_then_cancel_conserves_stock(self, db_session, make_item, make_order):
        a, b = make_item(stock=8), make_item(stock=3)
        order = make_order([(a, 5), (b, 3), (a, 1)], status=OrderStatus.CONFIRMED)
        assert db_session.get(InventoryItem, a.id).current_stock == 2
        assert db_session.get(InventoryItem, b.id).current_stock == 0

        order_service.cancel_order(order.id, CancellationReason.CUSTOMER_REQUEST)

        assert db_session.get(InventoryItem, a.id).current_stock == 8
        assert db_session.get(InventoryItem, b.id).current_stock == 3
        net = sum(m.quantity_change for m in db_session.query(StockMovement).filter_by(reference_order_id=order.id))
        assert net == 0

    def test_missing_item_reported_others_restored(self, db_session, make_item, make_order):
        keep, gone = make_item(stock=5), make_item(stock=5)
        order = make_order([(keep, 2), (gone, 1)], status=OrderStatus.CONFIRMED)
        keep_id, gone_id, order_id = keep.id, gone.id, order.id
        db_session.execute(InventoryItem.__table__.delete().where(InventoryItem.id == gone_id))
        db_session.commit()
        db_session.expire_all()

        report = stock_service.restore_order_stock(order_id, reason="test")
        db_session.commit()

        assert [o.inventory_item_id for o in report.restored_items] == [keep_id]
        assert [o.inventory_item_id for o in report.failed_items] == [gone_id]
        assert not report.all_restored
        assert db_session.get(InventoryItem, keep_id).current_stock == 5
        data = report.to_dict()
        assert data["failedItems"][0]["error"]


def test_restock_item_commits(db_session, make_item):
    item = make_item(stock=0)
    stock_service.restock_item(item.id, 12, reason="harvest", performed_by="alice")
    db_session.expire_all()

    assert db_session.get(InventoryItem, item.id).current_stock == 12
    movements = stock_service.get_item_movements(item.id)
    assert movements[0].performed_by == "alice"

    with pytest.raises(StockError):
        stock_service.restock_item(item.id, 0)
