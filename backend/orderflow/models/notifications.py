from __future__ import annotations

from ..extensions import db
from ..enums import (
    DeliveryMethod,
    NotificationStatus,
    NotificationType,
    enum_column_type,
)
from ..ids import new_id
from orderflow.time_utils import to_utc_z


class NotificationRecord(db.Model):
    """
    Customer notification and its delivery outcome.

    Inserted 'pending' before delivery is attempted, then updated once to
    'sent' or 'failed' (retry_count incremented on each failure).
    """
    __tablename__ = "notification_records"
    __table_args__ = (
        db.Index("ix_notification_records_status_created", "status", "created_at"),
    )

    id = db.Column(db.String(64), primary_key=True, default=lambda: new_id("notif"))
    notification_type = db.Column(enum_column_type(NotificationType), nullable=False, index=True)

    user_id = db.Column(db.String(64), nullable=False, index=True)
    order_id = db.Column(db.String(64), nullable=True, index=True)

    customer_name = db.Column(db.String(255), nullable=True)
    customer_email = db.Column(db.String(255), nullable=True)
    customer_phone = db.Column(db.String(32), nullable=True)

    title = db.Column(db.String(255), nullable=False)
    message_content = db.Column(db.Text, nullable=False)
    delivery_method = db.Column(enum_column_type(DeliveryMethod, length=16), nullable=False)

    status = db.Column(
        enum_column_type(NotificationStatus, length=16),
        nullable=False,
        default=NotificationStatus.PENDING,
    )
    error_message = db.Column(db.Text, nullable=True)
    retry_count = db.Column(db.Integer, nullable=False, default=0)

    details = db.Column("metadata", db.JSON, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    sent_at = db.Column(db.DateTime(timezone=True), nullable=True)
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "notification_type": self.notification_type.value,
            "user_id": self.user_id,
            "order_id": self.order_id,
            "customer_name": self.customer_name,
            "customer_email": self.customer_email,
            "customer_phone": self.customer_phone,
            "title": self.title,
            "message_content": self.message_content,
            "delivery_method": self.delivery_method.value,
            "status": self.status.value,
            "error_message": self.error_message,
            "retry_count": self.retry_count,
            "metadata": self.details,
            "created_at": to_utc_z(self.created_at),
            "sent_at": to_utc_z(self.sent_at),
            "updated_at": to_utc_z(self.updated_at),
        }
