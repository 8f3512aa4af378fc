# backend/orderflow/routes/system.py
"""
System health endpoint.

Checks database connectivity and reports the webhook/notification backlog
that operators may need to replay.
"""

import time
from flask import Blueprint, current_app
from sqlalchemy import text

from ..extensions import db
from ..enums import NotificationStatus
from ..models import NotificationRecord, WebhookEventLog
from ..time_utils import utcnow, to_utc_z

system_bp = Blueprint("system", __name__, url_prefix="/api")


def check_database_health() -> dict:
    """
    Check database connectivity and basic operations.

    Returns dict with status and details.
    """
    start_time = time.time()
    try:
        db.session.execute(text("SELECT 1"))

        failed_events = db.session.query(WebhookEventLog).filter(
            WebhookEventLog.processed_successfully.is_(False)
        ).count()
        failed_notifications = db.session.query(NotificationRecord).filter(
            NotificationRecord.status == NotificationStatus.FAILED
        ).count()

        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "failed_webhook_events": failed_events,
                "failed_notifications": failed_notifications,
            },
        }
    except Exception:
        db.session.rollback()
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error",
        }


@system_bp.get("/health")
def health():
    """
    Returns:
    - 200: database reachable
    - 503: database unreachable
    """
    database_health = check_database_health()
    healthy = database_health["status"] == "healthy"

    verifier = current_app.extensions["orderflow"]["verifier"]
    response = {
        "status": "healthy" if healthy else "unhealthy",
        "timestamp": to_utc_z(utcnow()),
        "checks": {
            "database": database_health,
            "webhook_secret_configured": verifier.configured,
        },
    }
    return response, 200 if healthy else 503
