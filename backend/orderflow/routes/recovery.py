# Overview: Flask API routes for error recovery; parses input and returns JSON responses.

# backend/orderflow/routes/recovery.py

from flask import Blueprint, request, jsonify, current_app

from ..services import recovery_service
from ..services.recovery_service import RecoveryError
from ._helpers import parse_int, require_str


recovery_bp = Blueprint("recovery", __name__, url_prefix="/api/recovery")


@recovery_bp.post("")
def recover_route():
    """
    Request body:
    {
        "errorType": "stock_update_failed",
        "operation": "order_fulfilment",
        "originalError": "...",
        "orderId": "order_...",   (optional)
        "userId": "user_...",     (optional)
        "retryCount": 0,          (optional)
        "metadata": {}            (optional)
    }

    Returns:
        200: {success, recoveryId, action, attempts, recovered, compensationApplied, message}
        400: invalid input
    """
    try:
        data = request.get_json(silent=True) or {}
        error_type = require_str(data, "errorType")
        operation = require_str(data, "operation")
        retry_count = parse_int(data.get("retryCount"), "retryCount", default=0)
        metadata = data.get("metadata") or {}
        if not isinstance(metadata, dict):
            raise ValueError("metadata must be an object")
    except ValueError as e:
        return jsonify({"error": str(e)}), 400

    original_error = data.get("originalError")
    if original_error is not None and not isinstance(original_error, str):
        original_error = str(original_error)

    try:
        result = recovery_service.recover_from_error(
            error_type,
            operation=operation,
            original_error=original_error,
            order_id=data.get("orderId"),
            user_id=data.get("userId"),
            retry_count=retry_count,
            metadata=metadata,
            max_retry_attempts=int(current_app.config.get("RECOVERY_MAX_RETRY_ATTEMPTS", 3)),
        )
        return jsonify(result.to_dict()), 200
    except RecoveryError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to run error recovery")
        return jsonify({"error": "Internal server error"}), 500


@recovery_bp.get("/<recovery_id>")
def get_recovery_route(recovery_id: str):
    try:
        record = recovery_service.get_recovery_record(recovery_id)
        if record is None:
            return jsonify({"error": "Recovery record not found"}), 404
        return jsonify({"recovery": record.to_dict()}), 200
    except Exception:
        current_app.logger.exception("Failed to load recovery record")
        return jsonify({"error": "Internal server error"}), 500
