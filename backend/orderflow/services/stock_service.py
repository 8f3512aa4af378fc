# Overview: Service-layer operations for stock levels; every change is paired with a StockMovement row.

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field

from ..extensions import db
from ..enums import MovementType
from ..ids import new_id
from ..models import InventoryItem, OrderItem, StockMovement
from ..record_metadata import ItemOutcome
from .concurrency import lock_for_update, run_with_retry
"""
orderflow Stock Invariants (authoritative)

- current_stock >= 0 at all times.
- Every change to current_stock appends exactly one StockMovement with
  new_stock = previous_stock + quantity_change, in the same DB transaction.
- StockMovement rows are append-only.
- Validation happens before mutation: a rejected change leaves the session
  untouched, so one bad line never poisons the caller's unit of work.
- Reservation at order creation and release on cancellation are symmetric,
  so reserve + release over the same order leaves stock unchanged.
"""

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = "system"


class StockError(ValueError):
    """Rejected stock change (unknown item, zero delta, or negative result)."""
    pass


@dataclass
class RestorationReport:
    """Per-line result of returning an order's quantities to stock."""
    order_id: str
    batch_id: str
    restored_items: list[ItemOutcome] = field(default_factory=list)
    failed_items: list[ItemOutcome] = field(default_factory=list)

    @property
    def all_restored(self) -> bool:
        return not self.failed_items

    def to_dict(self) -> dict:
        return {
            "orderId": self.order_id,
            "batchId": self.batch_id,
            "restoredItems": [_outcome_to_dict(o) for o in self.restored_items],
            "failedItems": [_outcome_to_dict(o) for o in self.failed_items],
            "allRestored": self.all_restored,
        }


def _outcome_to_dict(outcome: ItemOutcome) -> dict:
    data = {
        "inventoryItemId": outcome.inventory_item_id,
        "productName": outcome.product_name,
        "quantity": outcome.quantity,
    }
    if outcome.ok:
        data["newStock"] = outcome.new_stock
    else:
        data["error"] = outcome.error
    return data


def _get_item(item_id: str, *, lock: bool = False) -> InventoryItem:
    query = db.session.query(InventoryItem).filter_by(id=item_id)
    if lock:
        query = lock_for_update(query)
    item = query.first()
    if item is None:
        raise StockError(f"Inventory item {item_id} not found")
    return item


def apply_stock_delta(
    item_id: str,
    delta: int,
    movement_type: MovementType,
    *,
    reason: str | None = None,
    performed_by: str | None = SYSTEM_ACTOR,
    reference_order_id: str | None = None,
    batch_id: str | None = None,
) -> StockMovement:
    """
    Atomic read-modify-write of one item's stock (row locked).

    Does NOT commit.

    Raises:
        StockError: delta == 0, unknown item, or resulting stock < 0.
    """
    if not isinstance(delta, int) or isinstance(delta, bool):
        raise StockError("delta must be an integer")
    if delta == 0:
        raise StockError("delta must be non-zero")

    item = _get_item(item_id, lock=True)
    previous = item.current_stock
    new_stock = previous + delta
    if new_stock < 0:
        raise StockError(
            f"Insufficient stock for {item.sku}: have {previous}, change {delta}"
        )

    item.current_stock = new_stock
    movement = StockMovement(
        inventory_item_id=item.id,
        movement_type=MovementType(movement_type),
        quantity_change=delta,
        previous_stock=previous,
        new_stock=new_stock,
        reason=reason,
        performed_by=performed_by,
        reference_order_id=reference_order_id,
        batch_id=batch_id,
    )
    db.session.add(movement)
    db.session.flush()
    return movement


def restore_order_stock(
    order_id: str,
    *,
    reason: str,
    batch_id: str | None = None,
    performed_by: str | None = SYSTEM_ACTOR,
) -> RestorationReport:
    """
    Release every line of an order back into stock.

    Items are attempted independently: a StockError on one line is recorded
    in ``failed_items`` and the remaining lines still run. Storage errors
    propagate and abort the caller's unit.

    Does NOT commit.
    """
    report = RestorationReport(order_id=order_id, batch_id=batch_id or new_id("batch"))
    lines = (
        db.session.query(OrderItem)
        .filter_by(order_id=order_id)
        .order_by(OrderItem.id)
        .all()
    )

    for line in lines:
        try:
            movement = apply_stock_delta(
                line.inventory_item_id,
                line.quantity,
                MovementType.RELEASE,
                reason=reason,
                performed_by=performed_by,
                reference_order_id=order_id,
                batch_id=report.batch_id,
            )
        except StockError as exc:
            logger.warning("Stock restore failed for order %s item %s: %s", order_id, line.inventory_item_id, exc)
            report.failed_items.append(ItemOutcome(
                inventory_item_id=line.inventory_item_id,
                quantity=line.quantity,
                product_name=line.product_name,
                error=str(exc),
            ))
            continue
        report.restored_items.append(ItemOutcome(
            inventory_item_id=line.inventory_item_id,
            quantity=line.quantity,
            product_name=line.product_name,
            new_stock=movement.new_stock,
        ))

    logger.info(
        "Restored stock for order %s: %s restored, %s failed",
        order_id, len(report.restored_items), len(report.failed_items),
    )
    return report


def reserve_order_stock(order_id: str, *, performed_by: str | None = SYSTEM_ACTOR) -> list[StockMovement]:
    """
    Take every line of a new order out of stock, all-or-nothing.

    All lines are checked (summed per item) before any row is changed.
    Does NOT commit.

    Raises:
        StockError: any item unknown, inactive, or short.
    """
    lines = db.session.query(OrderItem).filter_by(order_id=order_id).order_by(OrderItem.id).all()

    needed: dict[str, int] = defaultdict(int)
    for line in lines:
        needed[line.inventory_item_id] += line.quantity

    for item_id, qty in sorted(needed.items()):
        item = _get_item(item_id, lock=True)
        if not item.is_active:
            raise StockError(f"Inventory item {item.sku} is inactive")
        if item.current_stock < qty:
            raise StockError(
                f"Insufficient stock for {item.sku}: have {item.current_stock}, need {qty}"
            )

    batch_id = new_id("batch")
    return [
        apply_stock_delta(
            line.inventory_item_id,
            -line.quantity,
            MovementType.RESERVATION,
            reason="order placed",
            performed_by=performed_by,
            reference_order_id=order_id,
            batch_id=batch_id,
        )
        for line in lines
    ]


def restock_item(
    item_id: str,
    quantity: int,
    *,
    reason: str | None = None,
    performed_by: str | None = None,
    movement_type: MovementType = MovementType.RESTOCK,
) -> StockMovement:
    """
    Operator restock (or signed adjustment) of one item, committed.

    Retries on lock/optimistic-version conflicts.
    """
    if movement_type == MovementType.RESTOCK and quantity <= 0:
        raise StockError("restock quantity must be positive")

    def _op():
        movement = apply_stock_delta(
            item_id,
            quantity,
            movement_type,
            reason=reason,
            performed_by=performed_by,
        )
        db.session.commit()
        return movement

    return run_with_retry(_op)


def get_item_movements(item_id: str, limit: int = 100) -> list[StockMovement]:
    _get_item(item_id)
    return (
        db.session.query(StockMovement)
        .filter_by(inventory_item_id=item_id)
        .order_by(StockMovement.created_at.desc(), StockMovement.id.desc())
        .limit(limit)
        .all()
    )
