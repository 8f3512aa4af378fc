# Overview: Delivery channels for customer notifications (in-app and an external HTTP gateway).

from __future__ import annotations

import logging
from dataclasses import dataclass

import httpx

from ..enums import DeliveryMethod
from ..models import NotificationRecord

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeliveryOutcome:
    ok: bool
    reference: str | None = None
    error: str | None = None


class NotificationChannel:
    """Base channel. ``deliver`` must not raise for ordinary delivery failures."""

    name = "base"

    def deliver(self, record: NotificationRecord) -> DeliveryOutcome:
        raise NotImplementedError


class InAppChannel(NotificationChannel):
    """In-app notifications are the stored record itself; delivery always succeeds."""

    name = "in_app"

    def deliver(self, record: NotificationRecord) -> DeliveryOutcome:
        return DeliveryOutcome(ok=True, reference=f"in_app:{record.id}")


class HttpNotificationChannel(NotificationChannel):
    """
    Email/SMS/push via an external notification gateway.

    POSTs one JSON document per notification; the gateway's ``id`` (if any)
    becomes the delivery reference. Every call is bounded by ``timeout``.
    """

    name = "http_gateway"

    def __init__(self, gateway_url: str | None, *, timeout: float = 5.0, transport: httpx.BaseTransport | None = None):
        self.gateway_url = gateway_url
        self.timeout = timeout
        self._transport = transport

    def _payload(self, record: NotificationRecord) -> dict:
        return {
            "notificationId": record.id,
            "channel": record.delivery_method.value,
            "type": record.notification_type.value,
            "userId": record.user_id,
            "to": {
                "name": record.customer_name,
                "email": record.customer_email,
                "phone": record.customer_phone,
            },
            "title": record.title,
            "message": record.message_content,
        }

    def deliver(self, record: NotificationRecord) -> DeliveryOutcome:
        if not self.gateway_url:
            return DeliveryOutcome(ok=False, error="notification gateway not configured")

        try:
            with httpx.Client(timeout=self.timeout, transport=self._transport) as client:
                response = client.post(self.gateway_url, json=self._payload(record))
                response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.warning("Gateway rejected notification %s: HTTP %s", record.id, e.response.status_code)
            return DeliveryOutcome(ok=False, error=f"gateway returned HTTP {e.response.status_code}")
        except httpx.RequestError as e:
            logger.warning("Gateway unreachable for notification %s: %s", record.id, e)
            return DeliveryOutcome(ok=False, error=f"gateway request failed: {e.__class__.__name__}")

        reference = None
        try:
            body = response.json()
            if isinstance(body, dict):
                reference = body.get("id")
        except ValueError:
            pass  # non-JSON 2xx is still a successful hand-off
        return DeliveryOutcome(ok=True, reference=reference)


class ChannelRegistry:
    """DeliveryMethod -> channel mapping, built once per app."""

    def __init__(self, channels: dict[DeliveryMethod, NotificationChannel] | None = None):
        self._channels: dict[DeliveryMethod, NotificationChannel] = dict(channels or {})

    def for_method(self, method: DeliveryMethod | str) -> NotificationChannel | None:
        return self._channels.get(DeliveryMethod(method))


def build_channels(config) -> ChannelRegistry:
    gateway = HttpNotificationChannel(
        config.get("NOTIFICATION_GATEWAY_URL"),
        timeout=float(config.get("NOTIFICATION_TIMEOUT_SECONDS", 5.0)),
    )
    return ChannelRegistry({
        DeliveryMethod.IN_APP: InAppChannel(),
        DeliveryMethod.EMAIL: gateway,
        DeliveryMethod.SMS: gateway,
        DeliveryMethod.PUSH: gateway,
    })
