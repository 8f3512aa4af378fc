"""
Notification dispatcher tests.

Verifies:
- Templates exist for every type and are filled from the order
- Record is persisted and finalized as sent / failed
- Channel failures and exceptions become results, never raise
- Failed notifications can be retried
- HTTP gateway channel maps transport results to outcomes
"""

import httpx
import pytest

from orderflow.enums import DeliveryMethod, NotificationStatus, NotificationType, OrderStatus
from orderflow.models import NotificationRecord
from orderflow.services import notification_service
from orderflow.services.channels import HttpNotificationChannel
from orderflow.services.notification_service import (
    TEMPLATES,
    NotificationError,
    render_notification,
    retry_notification,
    send_notification,
)


def test_every_type_has_template():
    assert set(TEMPLATES) == set(NotificationType)


def test_render_fills_context():
    title, body = render_notification(
        NotificationType.PICKUP_READY,
        customer_name="Dana",
        order_id="order_1",
        pickup_window="on 2024-01-01 at 10:00",
    )
    assert title == "Order ready for pickup"
    assert "Dana" in body and "order_1" in body and "2024-01-01 at 10:00" in body


class TestSendNotification:

    def test_sent_record(self, db_session, channels, fake_channel, make_item, make_order):
        order = make_order([(make_item(), 1)], status=OrderStatus.READY)
        result = send_notification(
            NotificationType.PICKUP_REMINDER, order.user_id, order_id=order.id, channels=channels
        )

        assert result.success
        record = db_session.get(NotificationRecord, result.notification_id)
        assert record.status == NotificationStatus.SENT
        assert record.sent_at is not None
        assert record.customer_email == "dana@example.com"
        assert "2024-01-01 at 10:00" in record.message_content
        assert fake_channel.delivered == [record.id]
        assert result.to_dict()["deliveryMethod"] == "in_app"

    def test_explicit_message_overrides_template(self, db_session, channels):
        result = send_notification(
            "generic", "user_9", message_content="Custom text", channels=channels
        )
        record = db_session.get(NotificationRecord, result.notification_id)
        assert record.message_content == "Custom text"
        assert record.details["template_used"] is False

    def test_unknown_type_falls_back_to_generic(self, db_session, channels):
        result = send_notification("harvest_festival", "user_9", channels=channels)
        assert result.success
        assert result.notification_type == "generic"

    def test_channel_failure_recorded(self, db_session, channels, fake_channel):
        fake_channel.fail = True
        result = send_notification(
            NotificationType.GENERIC, "user_9", delivery_method="sms", channels=channels
        )

        assert result.success is False
        record = db_session.get(NotificationRecord, result.notification_id)
        assert record.status == NotificationStatus.FAILED
        assert record.retry_count == 1
        assert record.error_message == "simulated outage"

    def test_channel_exception_recorded(self, db_session, channels, fake_channel):
        fake_channel.explode = True
        result = send_notification(NotificationType.GENERIC, "user_9", channels=channels)

        assert result.success is False
        assert "channel crashed" in result.error
        record = db_session.get(NotificationRecord, result.notification_id)
        assert record.status == NotificationStatus.FAILED

    def test_invalid_delivery_method(self, db_session, channels):
        result = send_notification(NotificationType.GENERIC, "user_9", delivery_method="pigeon", channels=channels)
        assert result.success is False
        assert result.error == "invalid_delivery_method"
        assert db_session.query(NotificationRecord).count() == 0


class TestRetryNotification:

    def test_retry_failed_then_sent(self, db_session, channels, fake_channel):
        fake_channel.fail = True
        first = send_notification(NotificationType.GENERIC, "user_9", channels=channels)
        fake_channel.fail = False

        result = retry_notification(first.notification_id, channels=channels)

        assert result.success
        record = db_session.get(NotificationRecord, first.notification_id)
        assert record.status == NotificationStatus.SENT
        assert record.retry_count == 1

    def test_sent_notification_not_retried(self, db_session, channels):
        sent = send_notification(NotificationType.GENERIC, "user_9", channels=channels)
        with pytest.raises(NotificationError):
            retry_notification(sent.notification_id, channels=channels)

    def test_list_failed(self, db_session, channels, fake_channel):
        fake_channel.fail = True
        send_notification(NotificationType.GENERIC, "user_9", channels=channels)
        assert len(notification_service.list_failed_notifications()) == 1


# =============================================================================
# HTTP GATEWAY CHANNEL
# =============================================================================


def _record(db_session):
    record = NotificationRecord(
        notification_type=NotificationType.GENERIC,
        user_id="user_9",
        title="t",
        message_content="m",
        delivery_method=DeliveryMethod.EMAIL,
        customer_email="dana@example.com",
    )
    db_session.add(record)
    db_session.commit()
    return record


class TestHttpNotificationChannel:

    def test_success_uses_gateway_id(self, db_session):
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            return httpx.Response(202, json={"id": "gw_123"})

        channel = HttpNotificationChannel(
            "https://gateway.test/send", transport=httpx.MockTransport(handler)
        )
        outcome = channel.deliver(_record(db_session))

        assert outcome.ok
        assert outcome.reference == "gw_123"
        assert seen["url"] == "https://gateway.test/send"

    def test_http_error(self, db_session):
        channel = HttpNotificationChannel(
            "https://gateway.test/send",
            transport=httpx.MockTransport(lambda request: httpx.Response(503)),
        )
        outcome = channel.deliver(_record(db_session))
        assert not outcome.ok
        assert "503" in outcome.error

    def test_transport_error(self, db_session):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        channel = HttpNotificationChannel("https://gateway.test/send", transport=httpx.MockTransport(handler))
        outcome = channel.deliver(_record(db_session))
        assert not outcome.ok
        assert "ConnectError" in outcome.error

    def test_unconfigured_gateway(self, db_session):
        outcome = HttpNotificationChannel(None).deliver(_record(db_session))
        assert not outcome.ok
