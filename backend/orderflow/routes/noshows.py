# Overview: Flask API routes for no-show processing; parses input and returns JSON responses.

# backend/orderflow/routes/noshows.py
"""
No-Show API Routes

- POST /api/no-shows/process           process one order
- GET  /api/no-shows/<order_id>/status read-only check
- POST /api/no-shows/scan              process every overdue order

Negative outcomes (not found, not yet due, wrong status) are 200 with
success=false; only malformed input is 400.
"""

from flask import Blueprint, request, jsonify, current_app

from ..services import noshow_service
from ._helpers import parse_int, require_str, shared


noshows_bp = Blueprint("noshows", __name__, url_prefix="/api/no-shows")


def _default_grace() -> int:
    return int(current_app.config.get("NO_SHOW_GRACE_PERIOD_MINUTES", 30))


@noshows_bp.post("/process")
def process_no_show_route():
    """
    Request body:
    {
        "orderId": "order_...",
        "gracePeriodMinutes": 30  (optional)
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        order_id = require_str(data, "orderId")
        grace = parse_int(data.get("gracePeriodMinutes"), "gracePeriodMinutes", default=_default_grace())
    except ValueError as e:
        return jsonify({"error": str(e)}), 400

    try:
        result = noshow_service.process_no_show(order_id, grace, channels=shared("channels"))
        return jsonify(result.to_dict()), 200
    except Exception:
        current_app.logger.exception("Failed to process no-show")
        return jsonify({"error": "Internal server error"}), 500


@noshows_bp.get("/<order_id>/status")
def no_show_status_route(order_id: str):
    try:
        grace = parse_int(request.args.get("grace"), "grace", default=_default_grace())
    except ValueError as e:
        return jsonify({"error": str(e)}), 400

    try:
        return jsonify(noshow_service.is_order_no_show(order_id, grace)), 200
    except Exception:
        current_app.logger.exception("Failed to check no-show status")
        return jsonify({"error": "Internal server error"}), 500


@noshows_bp.post("/scan")
def scan_no_shows_route():
    try:
        data = request.get_json(silent=True) or {}
        grace = parse_int(data.get("gracePeriodMinutes"), "gracePeriodMinutes", default=_default_grace())
    except ValueError as e:
        return jsonify({"error": str(e)}), 400

    try:
        result = noshow_service.process_due_no_shows(
            grace,
            channels=shared("channels"),
            reschedule_window_minutes=int(current_app.config.get("NO_SHOW_RESCHEDULE_WINDOW_MINUTES", 120)),
        )
        return jsonify(result), 200
    except Exception:
        current_app.logger.exception("Failed to scan for no-shows")
        return jsonify({"error": "Internal server error"}), 500
