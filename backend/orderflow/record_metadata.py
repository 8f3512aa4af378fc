"""
Versioned detail payloads stored in the JSON ``metadata`` columns.

Each audit table gets exactly one tagged variant. The stored JSON always carries
``kind`` and ``version``; loading a payload with a different kind or an unknown
version raises ``MetadataVersionError`` instead of silently reading stale keys.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from typing import Any, ClassVar


class MetadataVersionError(ValueError):
    """Stored payload does not match the expected kind/version."""


@dataclass(frozen=True)
class ItemOutcome:
    """Result of one stock change for one order line."""
    inventory_item_id: str
    quantity: int
    product_name: str | None = None
    new_stock: int | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def _items_from_json(rows: list[dict] | None) -> tuple[ItemOutcome, ...]:
    return tuple(ItemOutcome(**row) for row in (rows or []))


@dataclass(frozen=True)
class _Versioned:
    KIND: ClassVar[str] = ""
    VERSION: ClassVar[int] = 1

    def to_json(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["kind"] = self.KIND
        payload["version"] = self.VERSION
        return payload

    @classmethod
    def _check(cls, payload: dict[str, Any] | None) -> dict[str, Any]:
        if not payload:
            return {}
        if payload.get("kind") != cls.KIND or payload.get("version") != cls.VERSION:
            raise MetadataVersionError(
                f"expected {cls.KIND} v{cls.VERSION}, "
                f"got {payload.get('kind')} v{payload.get('version')}"
            )
        known = {f.name for f in fields(cls)}
        return {k: v for k, v in payload.items() if k in known}


@dataclass(frozen=True)
class NoShowDetails(_Versioned):
    KIND: ClassVar[str] = "no_show"

    pickup_deadline: str | None = None
    cancellation_reason: str | None = None
    restored_items: tuple[ItemOutcome, ...] = ()
    failed_items: tuple[ItemOutcome, ...] = ()
    notification_id: str | None = None
    notification_error: str | None = None
    error: str | None = None

    @classmethod
    def from_json(cls, payload: dict[str, Any] | None) -> "NoShowDetails":
        data = cls._check(payload)
        data["restored_items"] = _items_from_json(data.get("restored_items"))
        data["failed_items"] = _items_from_json(data.get("failed_items"))
        return cls(**data)


@dataclass(frozen=True)
class RecoveryDetails(_Versioned):
    KIND: ClassVar[str] = "error_recovery"

    caller_context: dict[str, Any] = field(default_factory=dict)
    restored_items: tuple[ItemOutcome, ...] = ()
    failed_items: tuple[ItemOutcome, ...] = ()
    deleted_order_items: int = 0
    retry_budget_exhausted: bool = False

    @classmethod
    def from_json(cls, payload: dict[str, Any] | None) -> "RecoveryDetails":
        data = cls._check(payload)
        data["restored_items"] = _items_from_json(data.get("restored_items"))
        data["failed_items"] = _items_from_json(data.get("failed_items"))
        return cls(**data)


@dataclass(frozen=True)
class NotificationDetails(_Versioned):
    KIND: ClassVar[str] = "notification"

    caller_context: dict[str, Any] = field(default_factory=dict)
    channel_reference: str | None = None
    template_used: bool = True

    @classmethod
    def from_json(cls, payload: dict[str, Any] | None) -> "NotificationDetails":
        return cls(**cls._check(payload))


@dataclass(frozen=True)
class DisputeDetails(_Versioned):
    KIND: ClassVar[str] = "dispute"

    dispute_id: str
    reason: str | None = None
    amount: int | None = None
    status: str | None = None

    @classmethod
    def from_json(cls, payload: dict[str, Any] | None) -> "DisputeDetails":
        return cls(**cls._check(payload))
