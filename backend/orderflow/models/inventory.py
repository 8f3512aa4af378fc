from __future__ import annotations

from ..extensions import db
from ..enums import MovementType, enum_column_type
from ..ids import new_id
from orderflow.time_utils import to_utc_z


class InventoryItem(db.Model):
    """
    Stock-tracked product.

    current_stock is the available quantity; every change to it is paired with
    an appended StockMovement row in the same transaction.
    """
    __tablename__ = "inventory_items"
    __table_args__ = (
        db.UniqueConstraint("sku", name="uq_inventory_items_sku"),
        db.CheckConstraint("current_stock >= 0", name="ck_inventory_items_stock_nonneg"),
    )

    id = db.Column(db.String(64), primary_key=True, default=lambda: new_id("item"))
    sku = db.Column(db.String(64), nullable=False)
    name = db.Column(db.String(255), nullable=False)

    current_stock = db.Column(db.Integer, nullable=False, default=0)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<InventoryItem id={self.id} sku={self.sku!r} stock={self.current_stock}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sku": self.sku,
            "name": self.name,
            "current_stock": self.current_stock,
            "is_active": self.is_active,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class StockMovement(db.Model):
    """
    Append-only stock ledger.

    INVARIANTS (DB-enforced):
    - new_stock = previous_stock + quantity_change
    - previous_stock >= 0 and new_stock >= 0
    - quantity_change != 0
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.CheckConstraint("quantity_change <> 0", name="ck_stock_movements_nonzero"),
        db.CheckConstraint("previous_stock >= 0", name="ck_stock_movements_prev_nonneg"),
        db.CheckConstraint("new_stock >= 0", name="ck_stock_movements_new_nonneg"),
        db.CheckConstraint(
            "new_stock = previous_stock + quantity_change",
            name="ck_stock_movements_balance",
        ),
        db.Index("ix_stock_movements_item_created", "inventory_item_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    inventory_item_id = db.Column(db.String(64), db.ForeignKey("inventory_items.id"), nullable=False, index=True)

    movement_type = db.Column(enum_column_type(MovementType, length=16), nullable=False, index=True)
    quantity_change = db.Column(db.Integer, nullable=False)
    previous_stock = db.Column(db.Integer, nullable=False)
    new_stock = db.Column(db.Integer, nullable=False)

    reason = db.Column(db.String(255), nullable=True)
    performed_by = db.Column(db.String(64), nullable=True)
    reference_order_id = db.Column(db.String(64), nullable=True, index=True)
    batch_id = db.Column(db.String(64), nullable=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "inventory_item_id": self.inventory_item_id,
            "movement_type": self.movement_type.value if self.movement_type else None,
            "quantity_change": self.quantity_change,
            "previous_stock": self.previous_stock,
            "new_stock": self.new_stock,
            "reason": self.reason,
            "performed_by": self.performed_by,
            "reference_order_id": self.reference_order_id,
            "batch_id": self.batch_id,
            "created_at": to_utc_z(self.created_at),
        }
