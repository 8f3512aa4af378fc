from __future__ import annotations

from ..extensions import db
from ..enums import (
    CancellationReason,
    OrderPaymentStatus,
    OrderStatus,
    TransitionCause,
    enum_column_type,
)
from ..ids import new_id
from orderflow.time_utils import to_utc_z


class Order(db.Model):
    """
    Customer pickup order.

    STATUS: written only by services.state_machine (pending -> confirmed ->
    preparing -> ready -> completed, cancelled from confirmed/preparing/ready).

    INVARIANT: cancellation_reason IS NOT NULL iff status = 'cancelled'.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.Index("ix_orders_status_pickup", "status", "pickup_date", "pickup_time"),
        db.CheckConstraint("total_amount_cents >= 0", name="ck_orders_total_nonneg"),
    )

    id = db.Column(db.String(64), primary_key=True, default=lambda: new_id("order"))
    user_id = db.Column(db.String(64), nullable=False, index=True)

    status = db.Column(enum_column_type(OrderStatus), nullable=False, default=OrderStatus.PENDING, index=True)
    payment_status = db.Column(
        enum_column_type(OrderPaymentStatus),
        nullable=False,
        default=OrderPaymentStatus.UNPAID,
        index=True,
    )
    payment_intent_id = db.Column(db.String(255), nullable=True, index=True)

    # Authoritative storage in cents
    total_amount_cents = db.Column(db.Integer, nullable=False, default=0)

    # Customer contact (kept on the order for notifications)
    customer_name = db.Column(db.String(255), nullable=True)
    customer_email = db.Column(db.String(255), nullable=True)
    customer_phone = db.Column(db.String(32), nullable=True)

    pickup_date = db.Column(db.Date, nullable=True)
    pickup_time = db.Column(db.Time, nullable=True)
    pickup_rescheduled_at = db.Column(db.DateTime(timezone=True), nullable=True)

    cancellation_reason = db.Column(enum_column_type(CancellationReason), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    items = db.relationship(
        "OrderItem",
        backref=db.backref("order", lazy=True),
        lazy=True,
        order_by="OrderItem.id",
    )

    def __repr__(self) -> str:
        return f"<Order id={self.id} status={self.status.value if self.status else None}>"

    def to_dict(self, include_items: bool = False) -> dict:
        data = {
            "id": self.id,
            "user_id": self.user_id,
            "status": self.status.value if self.status else None,
            "payment_status": self.payment_status.value if self.payment_status else None,
            "payment_intent_id": self.payment_intent_id,
            "total_amount_cents": self.total_amount_cents,
            "customer_name": self.customer_name,
            "customer_email": self.customer_email,
            "customer_phone": self.customer_phone,
            "pickup_date": self.pickup_date.isoformat() if self.pickup_date else None,
            "pickup_time": self.pickup_time.strftime("%H:%M") if self.pickup_time else None,
            "pickup_rescheduled_at": to_utc_z(self.pickup_rescheduled_at),
            "cancellation_reason": self.cancellation_reason.value if self.cancellation_reason else None,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class OrderItem(db.Model):
    __tablename__ = "order_items"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_order_items_quantity_positive"),
        db.CheckConstraint("unit_price_cents >= 0", name="ck_order_items_price_nonneg"),
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.String(64), db.ForeignKey("orders.id"), nullable=False, index=True)
    inventory_item_id = db.Column(db.String(64), db.ForeignKey("inventory_items.id"), nullable=False, index=True)

    # Name kept for history even if the catalog entry changes
    product_name = db.Column(db.String(255), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "inventory_item_id": self.inventory_item_id,
            "product_name": self.product_name,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "line_total_cents": self.quantity * self.unit_price_cents,
        }


class OrderAuditEvent(db.Model):
    """
    Append-only audit trail for order/payment state changes.

    Written inside the same DB transaction as the change it records.
    No updates/deletes.
    """
    __tablename__ = "order_audit_events"
    __table_args__ = (
        db.Index("ix_order_audit_order_occurred", "order_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    # Plain columns (no FK): rows must outlive a rolled-back order
    order_id = db.Column(db.String(64), nullable=True, index=True)
    payment_id = db.Column(db.String(64), nullable=True, index=True)

    action = db.Column(db.String(64), nullable=False, index=True)
    cause = db.Column(enum_column_type(TransitionCause), nullable=True)
    from_status = db.Column(db.String(32), nullable=True)
    to_status = db.Column(db.String(32), nullable=True)
    note = db.Column(db.String(255), nullable=True)
    payload = db.Column(db.JSON, nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "payment_id": self.payment_id,
            "action": self.action,
            "cause": self.cause.value if self.cause else None,
            "from_status": self.from_status,
            "to_status": self.to_status,
            "note": self.note,
            "payload": self.payload,
            "occurred_at": to_utc_z(self.occurred_at),
        }
