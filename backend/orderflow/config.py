# backend/orderflow/config.py
from __future__ import annotations
import os


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    return int(raw) if raw not in (None, "") else default


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    return float(raw) if raw not in (None, "") else default


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/orderflow.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///orderflow.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Payment provider webhook signing secret (whsec_...). Missing -> 500 on ingress.
    WEBHOOK_SECRET = os.environ.get("PAYMENT_WEBHOOK_SECRET")
    WEBHOOK_TOLERANCE_SECONDS = _env_int("PAYMENT_WEBHOOK_TOLERANCE_SECONDS", 300)

    # No-show detection
    NO_SHOW_GRACE_PERIOD_MINUTES = _env_int("NO_SHOW_GRACE_PERIOD_MINUTES", 30)
    NO_SHOW_CHECK_INTERVAL_MINUTES = _env_int("NO_SHOW_CHECK_INTERVAL_MINUTES", 15)
    NO_SHOW_RESCHEDULE_WINDOW_MINUTES = _env_int("NO_SHOW_RESCHEDULE_WINDOW_MINUTES", 120)

    # Error recovery
    RECOVERY_MAX_RETRY_ATTEMPTS = _env_int("RECOVERY_MAX_RETRY_ATTEMPTS", 3)

    # External notification gateway (email/sms/push). in_app needs nothing.
    NOTIFICATION_GATEWAY_URL = os.environ.get("NOTIFICATION_GATEWAY_URL")
    NOTIFICATION_TIMEOUT_SECONDS = _env_float("NOTIFICATION_TIMEOUT_SECONDS", 5.0)

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
