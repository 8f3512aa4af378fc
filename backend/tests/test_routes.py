"""
HTTP API tests.

Verifies:
- Input validation returns 400 with an error message
- Negative domain outcomes are 200 with success=false
- Webhook endpoint maps signature/config/payload errors to structured errors
"""

import json

from orderflow import create_app
from orderflow.enums import OrderStatus
from orderflow.models import ErrorRecoveryRecord, Order, WebhookEventLog


def _post_webhook(client, app, event, header=None):
    body = json.dumps(event).encode()
    if header is None:
        header = app.extensions["orderflow"]["verifier"].sign(body)
    headers = {"Content-Type": "application/json"}
    if header:
        headers["Stripe-Signature"] = header
    return client.post("/api/webhooks/payments", data=body, headers=headers)


def test_health(client, db_session):
    response = client.get("/api/health")
    assert response.status_code == 200
    data = response.get_json()
    assert data["status"] == "healthy"
    assert data["checks"]["webhook_secret_configured"] is True
    assert data["checks"]["database"]["details"]["failed_webhook_events"] == 0


# =============================================================================
# WEBHOOKS
# =============================================================================

class TestWebhookRoute:

    def test_valid_event_acknowledged(self, client, app, db_session):
        response = _post_webhook(client, app, {"id": "evt_r1", "type": "invoice.paid", "data": {"object": {}}})

        assert response.status_code == 200
        data = response.get_json()
        assert data["received"] is True
        assert data["eventId"] == "evt_r1"
        assert data["processed"] is True

    def test_duplicate_flagged(self, client, app, db_session):
        event = {"id": "evt_r2", "type": "invoice.paid", "data": {"object": {}}}
        _post_webhook(client, app, event)
        response = _post_webhook(client, app, event)

        assert response.status_code == 200
        assert response.get_json()["duplicate"] is True
        assert db_session.query(WebhookEventLog).count() == 1

    def test_missing_signature(self, client, app, db_session):
        response = _post_webhook(client, app, {"id": "evt_r3"}, header="")
        assert response.status_code == 400
        assert response.get_json()["error"]["code"] == "MISSING_SIGNATURE"
        assert db_session.query(WebhookEventLog).count() == 0

    def test_invalid_signature(self, client, app, db_session):
        response = _post_webhook(client, app, {"id": "evt_r3"}, header="t=1,v1=deadbeef")
        assert response.status_code == 400
        assert response.get_json()["error"]["code"] == "INVALID_SIGNATURE"

    def test_invalid_payload(self, client, app, db_session):
        response = _post_webhook(client, app, {"type": "invoice.paid"})
        assert response.status_code == 400
        assert response.get_json()["error"]["code"] == "INVALID_PAYLOAD"

    def test_unconfigured_secret(self):
        bare = create_app({
            "TESTING": True,
            "SQLALCHEMY_DATABASE_URI": "sqlite:///:memory:",
            "WEBHOOK_SECRET": None,
        })
        response = bare.test_client().post(
            "/api/webhooks/payments", data=b"{}", headers={"Stripe-Signature": "t=1,v1=00"}
        )
        assert response.status_code == 500
        assert response.get_json()["error"]["code"] == "CONFIGURATION_ERROR"


# =============================================================================
# NO-SHOWS
# =============================================================================

class TestNoShowRoutes:

    def test_process_requires_order_id(self, client, db_session):
        response = client.post("/api/no-shows/process", json={})
        assert response.status_code == 400
        assert "orderId" in response.get_json()["error"]

    def test_process_rejects_negative_grace(self, client, db_session):
        response = client.post("/api/no-shows/process", json={"orderId": "order_1", "gracePeriodMinutes": -5})
        assert response.status_code == 400

    def test_process_unknown_order(self, client, db_session):
        response = client.post("/api/no-shows/process", json={"orderId": "order_missing"})
        assert response.status_code == 200
        data = response.get_json()
        assert data["success"] is False
        assert data["error"] == "order_not_found"

    def test_process_overdue_order(self, client, db_session, make_item, make_order):
        order_id = make_order([(make_item(), 1)]).id

        response = client.post("/api/no-shows/process", json={"orderId": order_id, "gracePeriodMinutes": 30})

        assert response.status_code == 200
        data = response.get_json()
        assert data["success"] is True
        assert data["gracePeriodMinutes"] == 30
        assert data["stockRestoration"]["allRestored"] is True
        db_session.expire_all()
        assert db_session.get(Order, order_id).status == OrderStatus.CANCELLED

    def test_status(self, client, db_session, make_item, make_order):
        order_id = make_order([(make_item(), 1)]).id
        response = client.get(f"/api/no-shows/{order_id}/status?grace=15")
        assert response.status_code == 200
        assert response.get_json()["isNoShow"] is True

    def test_status_bad_grace(self, client, db_session):
        response = client.get("/api/no-shows/order_1/status?grace=soon")
        assert response.status_code == 400


# =============================================================================
# RECOVERY
# =============================================================================

class TestRecoveryRoutes:

    def test_recover_and_fetch(self, client, db_session):
        response = client.post("/api/recovery", json={
            "errorType": "network_error",
            "operation": "send_email",
            "originalError": "timeout",
        })

        assert response.status_code == 200
        data = response.get_json()
        assert data["success"] is True
        assert data["action"] == "retry"

        fetched = client.get(f"/api/recovery/{data['recoveryId']}")
        assert fetched.status_code == 200
        assert fetched.get_json()["recovery"]["status"] == "completed"

    def test_missing_fields(self, client, db_session):
        response = client.post("/api/recovery", json={"errorType": "network_error"})
        assert response.status_code == 400
        assert db_session.query(ErrorRecoveryRecord).count() == 0

    def test_unknown_record(self, client, db_session):
        assert client.get("/api/recovery/recovery_missing").status_code == 404


# =============================================================================
# NOTIFICATIONS
# =============================================================================

class TestNotificationRoutes:

    def test_send_in_app(self, client, db_session):
        response = client.post("/api/notifications", json={
            "notificationType": "pickup_reminder",
            "userId": "user_1",
            "customerName": "Dana",
        })

        assert response.status_code == 200
        data = response.get_json()
        assert data["success"] is True
        assert data["deliveryMethod"] == "in_app"

    def test_unconfigured_gateway_reports_failure(self, client, db_session):
        response = client.post("/api/notifications", json={
            "notificationType": "generic",
            "userId": "user_1",
            "deliveryMethod": "email",
        })

        assert response.status_code == 200
        data = response.get_json()
        assert data["success"] is False
        assert data["error"] == "notification gateway not configured"

        retried = client.post(f"/api/notifications/{data['notificationId']}/retry")
        assert retried.status_code == 200
        assert retried.get_json()["success"] is False

    def test_bad_delivery_method(self, client, db_session):
        response = client.post("/api/notifications", json={
            "notificationType": "generic",
            "userId": "user_1",
            "deliveryMethod": "pigeon",
        })
        assert response.status_code == 400

    def test_missing_user(self, client, db_session):
        response = client.post("/api/notifications", json={"notificationType": "generic"})
        assert response.status_code == 400

    def test_retry_unknown(self, client, db_session):
        assert client.post("/api/notifications/notif_missing/retry").status_code == 400
