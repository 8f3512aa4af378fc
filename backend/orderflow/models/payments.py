from __future__ import annotations

from ..extensions import db
from ..enums import PaymentStatus, enum_column_type
from ..ids import new_id
from orderflow.time_utils import to_utc_z


class Payment(db.Model):
    """
    Provider payment intent mirrored locally.

    INVARIANT: at most one row per payment_intent_id (unique constraint).
    Amounts are integer minor units (cents).
    """
    __tablename__ = "payments"
    __table_args__ = (
        db.UniqueConstraint("payment_intent_id", name="uq_payments_intent"),
        db.CheckConstraint("amount_cents >= 0", name="ck_payments_amount_nonneg"),
        db.Index("ix_payments_user_status", "user_id", "status"),
    )

    id = db.Column(db.String(64), primary_key=True, default=lambda: new_id("payment"))
    payment_intent_id = db.Column(db.String(255), nullable=False)

    user_id = db.Column(db.String(64), nullable=False, index=True)
    order_id = db.Column(db.String(64), db.ForeignKey("orders.id", ondelete="SET NULL"), nullable=True, index=True)

    amount_cents = db.Column(db.Integer, nullable=False, default=0)
    currency = db.Column(db.String(3), nullable=False, default="usd")
    status = db.Column(enum_column_type(PaymentStatus), nullable=False, default=PaymentStatus.PENDING, index=True)

    payment_method_id = db.Column(db.String(255), nullable=True)

    # Provider-shaped metadata copied from the intent (orderId, userId, ...)
    provider_metadata = db.Column("metadata", db.JSON, nullable=True)
    # DisputeDetails variant, set once a chargeback is opened
    dispute_details = db.Column(db.JSON, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    order = db.relationship("Order", backref=db.backref("payments", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "payment_intent_id": self.payment_intent_id,
            "user_id": self.user_id,
            "order_id": self.order_id,
            "amount_cents": self.amount_cents,
            "currency": self.currency,
            "status": self.status.value if self.status else None,
            "payment_method_id": self.payment_method_id,
            "metadata": self.provider_metadata or {},
            "dispute": self.dispute_details,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class PaymentMethod(db.Model):
    """Saved customer payment method, recorded from payment_method.attached events."""
    __tablename__ = "payment_methods"
    __table_args__ = (
        db.CheckConstraint(
            "card_last4 IS NULL OR length(card_last4) = 4",
            name="ck_payment_methods_last4",
        ),
    )

    id = db.Column(db.String(255), primary_key=True)
    user_id = db.Column(db.String(64), nullable=False, index=True)

    type = db.Column(db.String(32), nullable=False)
    customer_id = db.Column(db.String(255), nullable=True, index=True)
    is_default = db.Column(db.Boolean, nullable=False, default=False)

    card_brand = db.Column(db.String(32), nullable=True)
    card_last4 = db.Column(db.String(4), nullable=True)
    card_exp_month = db.Column(db.Integer, nullable=True)
    card_exp_year = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "type": self.type,
            "customer_id": self.customer_id,
            "is_default": self.is_default,
            "card_brand": self.card_brand,
            "card_last4": self.card_last4,
            "card_exp_month": self.card_exp_month,
            "card_exp_year": self.card_exp_year,
            "created_at": to_utc_z(self.created_at),
        }


class WebhookEventLog(db.Model):
    """
    One row per provider event id.

    The unique constraint on event_id is the ONLY deduplication mechanism:
    the row is inserted (and committed) before any handler runs, so a second
    delivery of the same id fails the insert and is acknowledged as a no-op.
    After insertion only the outcome columns are written.
    """
    __tablename__ = "webhook_event_logs"
    __table_args__ = (
        db.UniqueConstraint("event_id", name="uq_webhook_event_logs_event_id"),
        db.Index("ix_webhook_logs_failed", "processed_successfully", "processed_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    event_id = db.Column(db.String(255), nullable=False)
    event_type = db.Column(db.String(128), nullable=False, index=True)

    processed_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    processed_successfully = db.Column(db.Boolean, nullable=False, default=False)
    error_message = db.Column(db.Text, nullable=True)

    # Full event snapshot for replay/debugging
    event_payload = db.Column(db.JSON, nullable=True)

    def to_dict(self, include_payload: bool = False) -> dict:
        data = {
            "id": self.id,
            "event_id": self.event_id,
            "event_type": self.event_type,
            "processed_at": to_utc_z(self.processed_at),
            "processed_successfully": self.processed_successfully,
            "error_message": self.error_message,
        }
        if include_payload:
            data["event_payload"] = self.event_payload
        return data
