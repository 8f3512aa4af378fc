# Overview: Flask API route for payment-provider webhooks; verifies and acknowledges events.

# backend/orderflow/routes/webhooks.py
"""
Payment Webhook Route

DESIGN:
- Raw body is passed through untouched (signature covers the exact bytes)
- 200 for every verified event, including duplicates and handler failures
  (the provider must not redeliver an event we already logged)
- 400 for bad signatures / payloads, 500 when no secret is configured
"""

from flask import Blueprint, request, jsonify, current_app

from ..services.signatures import WebhookConfigurationError, WebhookSignatureError
from ..services.webhook_service import WebhookPayloadError, handle_webhook
from ..time_utils import utcnow, to_utc_z
from ._helpers import shared


webhooks_bp = Blueprint("webhooks", __name__, url_prefix="/api/webhooks")

SIGNATURE_HEADERS = ("Stripe-Signature", "Webhook-Signature")


def _error(code: str, message: str, status: int):
    return jsonify({
        "error": {
            "code": code,
            "message": message,
            "timestamp": to_utc_z(utcnow()),
        }
    }), status


@webhooks_bp.post("/payments")
def payment_webhook_route():
    """
    Returns:
        200: {received, eventId, eventType, processed, timestamp[, duplicate]}
        400: {error: {code, message, timestamp}}
        500: signing secret not configured
    """
    raw_body = request.get_data(cache=False)
    header = next((request.headers.get(h) for h in SIGNATURE_HEADERS if request.headers.get(h)), None)

    try:
        ack = handle_webhook(raw_body, header, shared("verifier"), shared("channels"))
        return jsonify(ack), 200

    except WebhookConfigurationError as e:
        current_app.logger.error("Webhook rejected: %s", e)
        return _error(e.code, str(e), 500)
    except WebhookSignatureError as e:
        return _error(e.code, str(e), 400)
    except WebhookPayloadError as e:
        return _error(e.code, str(e), 400)
    except Exception:
        current_app.logger.exception("Failed to process payment webhook")
        return jsonify({"error": "Internal server error"}), 500
