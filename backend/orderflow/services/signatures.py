# Overview: HMAC verification of payment-provider webhook signatures.

"""
Header format: "t=<unix ts>,v1=<hex>[,v1=<hex>...]"

Expected signature = HMAC-SHA256(secret, f"{t}.{raw_body}"), hex encoded.
Any matching v1 entry is accepted (providers send several while rotating
secrets). Comparison is constant-time. Timestamps outside the tolerance
window are rejected to limit replay.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import time

logger = logging.getLogger(__name__)

DEFAULT_TOLERANCE_SECONDS = 300


class WebhookConfigurationError(Exception):
    """No signing secret configured; every request is rejected."""
    code = "CONFIGURATION_ERROR"


class WebhookSignatureError(ValueError):
    def __init__(self, message: str, code: str = "INVALID_SIGNATURE"):
        super().__init__(message)
        self.code = code


def _parse_header(header: str) -> tuple[int | None, list[str]]:
    timestamp = None
    signatures = []
    for part in header.split(","):
        key, sep, value = part.strip().partition("=")
        if not sep:
            continue
        if key == "t":
            try:
                timestamp = int(value)
            except ValueError:
                return None, []
        elif key == "v1":
            signatures.append(value)
    return timestamp, signatures


class WebhookVerifier:
    """Verifies provider webhook signatures against one signing secret."""

    def __init__(self, secret: str | None, *, tolerance_seconds: int = DEFAULT_TOLERANCE_SECONDS):
        self.secret = secret
        self.tolerance_seconds = tolerance_seconds

    @property
    def configured(self) -> bool:
        return bool(self.secret)

    def compute_signature(self, timestamp: int, raw_body: bytes) -> str:
        signed = f"{timestamp}.".encode() + raw_body
        return hmac.new(self.secret.encode(), signed, hashlib.sha256).hexdigest()

    def sign(self, raw_body: bytes, timestamp: int | None = None) -> str:
        """Build a header value for ``raw_body`` (used by tests and local tooling)."""
        ts = int(time.time()) if timestamp is None else timestamp
        return f"t={ts},v1={self.compute_signature(ts, raw_body)}"

    def verify(self, raw_body: bytes, header: str | None, *, now: float | None = None) -> None:
        """
        Raises:
            WebhookConfigurationError: no secret configured.
            WebhookSignatureError: header missing (MISSING_SIGNATURE) or
                malformed/stale/mismatched (INVALID_SIGNATURE).
        """
        if not self.configured:
            raise WebhookConfigurationError("Webhook signing secret is not configured")
        if not header:
            raise WebhookSignatureError("Missing webhook signature header", code="MISSING_SIGNATURE")

        timestamp, candidates = _parse_header(header)
        if timestamp is None or not candidates:
            logger.warning("Webhook signature header malformed")
            raise WebhookSignatureError("Malformed webhook signature header")

        current = time.time() if now is None else now
        if abs(current - timestamp) > self.tolerance_seconds:
            logger.warning("Webhook signature timestamp outside tolerance (%ss)", self.tolerance_seconds)
            raise WebhookSignatureError("Webhook timestamp outside tolerance window")

        expected = self.compute_signature(timestamp, raw_body)
        if not any(hmac.compare_digest(expected, candidate) for candidate in candidates):
            logger.warning("Webhook signature mismatch")
            raise WebhookSignatureError("Webhook signature verification failed")
