"""
Closed status and reason vocabularies for orders, payments and the audit tables.

Every column that holds one of these is declared with ``db.Enum(..., native_enum=False)``
so the database only ever sees the string values listed here, and every
transition table in ``services.state_machine`` enumerates all members. Adding a
member therefore fails loudly until each consumer handles it.
"""

from __future__ import annotations

import enum


class OrderStatus(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PREPARING = "preparing"
    READY = "ready"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class OrderPaymentStatus(str, enum.Enum):
    UNPAID = "unpaid"
    PAID = "paid"
    FAILED = "failed"
    CANCELED = "canceled"
    DISPUTED = "disputed"


class CancellationReason(str, enum.Enum):
    NO_SHOW_TIMEOUT = "no_show_timeout"
    AUTOMATIC_RECOVERY = "automatic_recovery"
    PAYMENT_CANCELED = "payment_canceled"
    CUSTOMER_REQUEST = "customer_request"
    STAFF = "staff"


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    REQUIRES_ACTION = "requires_action"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELED = "canceled"
    DISPUTED = "disputed"


class TransitionCause(str, enum.Enum):
    WEBHOOK = "webhook"
    NO_SHOW = "no_show"
    RECOVERY = "recovery"
    MANUAL = "manual"


class MovementType(str, enum.Enum):
    RESTOCK = "restock"
    SALE = "sale"
    ADJUSTMENT = "adjustment"
    RESERVATION = "reservation"
    RELEASE = "release"


class NoShowStatus(str, enum.Enum):
    PROCESSING = "processing"
    STOCK_RESTORED = "stock_restored"
    NOTIFICATION_SENT = "notification_sent"
    COMPLETED = "completed"
    FAILED = "failed"


class RecoveryStrategy(str, enum.Enum):
    RETRY = "retry"
    COMPENSATE = "compensate"
    ROLLBACK = "rollback"
    MANUAL_INTERVENTION = "manual_intervention"


class RecoveryStatus(str, enum.Enum):
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class NotificationType(str, enum.Enum):
    ORDER_CONFIRMATION = "order_confirmation"
    PICKUP_READY = "pickup_ready"
    PICKUP_REMINDER = "pickup_reminder"
    ORDER_CANCELLED = "order_cancelled"
    PAYMENT_FAILED = "payment_failed"
    GENERIC = "generic"

    @classmethod
    def parse(cls, value: str | None) -> "NotificationType":
        """Unknown notification types fall back to the generic template."""
        try:
            return cls(value)
        except ValueError:
            return cls.GENERIC


class DeliveryMethod(str, enum.Enum):
    IN_APP = "in_app"
    EMAIL = "email"
    SMS = "sms"
    PUSH = "push"


class NotificationStatus(str, enum.Enum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


def enum_column_type(enum_cls: type[enum.Enum], length: int = 32):
    """Column type storing the member *values* as VARCHAR (no native DB enum)."""
    from .extensions import db

    return db.Enum(
        enum_cls,
        native_enum=False,
        create_constraint=False,
        length=length,
        values_callable=lambda members: [m.value for m in members],
        validate_strings=True,
    )
