from __future__ import annotations

from ..extensions import db
from ..enums import (
    NoShowStatus,
    RecoveryStatus,
    RecoveryStrategy,
    enum_column_type,
)
from ..ids import new_id
from ..record_metadata import NoShowDetails, RecoveryDetails
from orderflow.time_utils import to_utc_z


class NoShowRecord(db.Model):
    """
    Audit record of one no-show detection.

    Created when the no-show is first detected, mutated only by the no-show
    processor, never deleted. ``details`` holds a NoShowDetails payload.
    """
    __tablename__ = "no_show_records"

    id = db.Column(db.String(64), primary_key=True, default=lambda: new_id("noshow"))
    # Plain column (no FK): the audit row must survive any later order cleanup
    order_id = db.Column(db.String(64), nullable=False, index=True)
    user_id = db.Column(db.String(64), nullable=False, index=True)

    original_pickup_date = db.Column(db.Date, nullable=False)
    original_pickup_time = db.Column(db.Time, nullable=False)
    grace_period_minutes = db.Column(db.Integer, nullable=False, default=30)

    detected_at = db.Column(db.DateTime(timezone=True), nullable=False)
    processing_status = db.Column(
        enum_column_type(NoShowStatus),
        nullable=False,
        default=NoShowStatus.PROCESSING,
        index=True,
    )
    stock_restoration_applied = db.Column(db.Boolean, nullable=False, default=False)
    notification_sent = db.Column(db.Boolean, nullable=False, default=False)

    details = db.Column("metadata", db.JSON, nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    @property
    def parsed_details(self) -> NoShowDetails:
        return NoShowDetails.from_json(self.details)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "user_id": self.user_id,
            "original_pickup_date": self.original_pickup_date.isoformat(),
            "original_pickup_time": self.original_pickup_time.strftime("%H:%M"),
            "grace_period_minutes": self.grace_period_minutes,
            "detected_at": to_utc_z(self.detected_at),
            "processing_status": self.processing_status.value,
            "stock_restoration_applied": self.stock_restoration_applied,
            "notification_sent": self.notification_sent,
            "metadata": self.details,
            "completed_at": to_utc_z(self.completed_at),
        }


class ErrorRecoveryRecord(db.Model):
    """
    One row per recovery attempt.

    Inserted in 'processing' before the strategy runs; finalized exactly once
    to 'completed' or 'failed'. ``details`` holds a RecoveryDetails payload.
    """
    __tablename__ = "error_recovery_records"

    id = db.Column(db.String(64), primary_key=True, default=lambda: new_id("recovery"))
    error_type = db.Column(db.String(64), nullable=False, index=True)

    order_id = db.Column(db.String(64), nullable=True, index=True)
    user_id = db.Column(db.String(64), nullable=True, index=True)

    operation = db.Column(db.String(128), nullable=False)
    original_error = db.Column(db.Text, nullable=True)
    recovery_strategy = db.Column(enum_column_type(RecoveryStrategy), nullable=False)

    retry_count = db.Column(db.Integer, nullable=False, default=0)
    attempts_made = db.Column(db.Integer, nullable=False, default=0)
    compensation_applied = db.Column(db.Boolean, nullable=False, default=False)

    details = db.Column("metadata", db.JSON, nullable=True)
    status = db.Column(
        enum_column_type(RecoveryStatus),
        nullable=False,
        default=RecoveryStatus.PROCESSING,
        index=True,
    )
    result_message = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    @property
    def parsed_details(self) -> RecoveryDetails:
        return RecoveryDetails.from_json(self.details)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "error_type": self.error_type,
            "order_id": self.order_id,
            "user_id": self.user_id,
            "operation": self.operation,
            "original_error": self.original_error,
            "recovery_strategy": self.recovery_strategy.value,
            "retry_count": self.retry_count,
            "attempts_made": self.attempts_made,
            "compensation_applied": self.compensation_applied,
            "metadata": self.details,
            "status": self.status.value,
            "result_message": self.result_message,
            "created_at": to_utc_z(self.created_at),
            "completed_at": to_utc_z(self.completed_at),
        }
