# Overview: Append-only audit trail for order/payment changes.

from __future__ import annotations

from typing import Any, Optional
from datetime import datetime

from ..extensions import db
from ..enums import TransitionCause
from ..models import OrderAuditEvent
"""
Order Audit Invariants (authoritative)

- Append-only: no updates/deletes of existing events.
- No domain/business logic in the audit trail itself.
- Events are written inside the same DB transaction as the change they record,
  so a rolled-back change leaves no audit row behind.
"""


def append_audit_event(
    *,
    action: str,
    order_id: str | None = None,
    payment_id: str | None = None,
    cause: TransitionCause | None = None,
    from_status: str | None = None,
    to_status: str | None = None,
    note: Optional[str] = None,
    payload: dict[str, Any] | None = None,
    occurred_at: Optional[datetime] = None,
) -> OrderAuditEvent:
    """
    Append an audit event to the current transaction (flush, no commit).

    occurred_at defaults to the DB clock.
    """
    ev = OrderAuditEvent(
        action=action,
        order_id=order_id,
        payment_id=payment_id,
        cause=cause,
        from_status=from_status,
        to_status=to_status,
        note=note[:255] if note else None,
        payload=payload,
    )
    if occurred_at is not None:
        ev.occurred_at = occurred_at
    db.session.add(ev)
    db.session.flush()  # ensures ev.id is assigned without committing
    return ev


def get_order_history(order_id: str) -> list[OrderAuditEvent]:
    """Audit events for an order, oldest first."""
    return (
        db.session.query(OrderAuditEvent)
        .filter_by(order_id=order_id)
        .order_by(OrderAuditEvent.occurred_at, OrderAuditEvent.id)
        .all()
    )
