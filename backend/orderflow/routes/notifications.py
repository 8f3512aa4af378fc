# Overview: Flask API routes for customer notifications; parses input and returns JSON responses.

# backend/orderflow/routes/notifications.py

from flask import Blueprint, request, jsonify, current_app

from ..enums import DeliveryMethod
from ..services import notification_service
from ..services.notification_service import NotificationError
from ._helpers import require_str, shared


notifications_bp = Blueprint("notifications", __name__, url_prefix="/api/notifications")


@notifications_bp.post("")
def send_notification_route():
    """
    Request body:
    {
        "notificationType": "pickup_ready",
        "userId": "user_...",
        "orderId": "order_...",        (optional)
        "customerName": "...",         (optional)
        "customerEmail": "...",        (optional)
        "customerPhone": "...",        (optional)
        "messageContent": "...",       (optional, overrides template)
        "deliveryMethod": "in_app",    (in_app | email | sms | push)
        "metadata": {}                 (optional)
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        notification_type = require_str(data, "notificationType")
        user_id = require_str(data, "userId")
        delivery_method = DeliveryMethod(data.get("deliveryMethod") or DeliveryMethod.IN_APP.value)
        metadata = data.get("metadata") or {}
        if not isinstance(metadata, dict):
            raise ValueError("metadata must be an object")
    except ValueError as e:
        return jsonify({"error": str(e)}), 400

    try:
        result = notification_service.send_notification(
            notification_type,
            user_id,
            order_id=data.get("orderId"),
            customer_name=data.get("customerName"),
            customer_email=data.get("customerEmail"),
            customer_phone=data.get("customerPhone"),
            message_content=data.get("messageContent"),
            delivery_method=delivery_method,
            metadata=metadata,
            channels=shared("channels"),
        )
        return jsonify(result.to_dict()), 200
    except Exception:
        current_app.logger.exception("Failed to send notification")
        return jsonify({"error": "Internal server error"}), 500


@notifications_bp.post("/<notification_id>/retry")
def retry_notification_route(notification_id: str):
    try:
        result = notification_service.retry_notification(notification_id, channels=shared("channels"))
        return jsonify(result.to_dict()), 200
    except NotificationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to retry notification")
        return jsonify({"error": "Internal server error"}), 500
