# Overview: Flask CLI command groups for bootstrap, scheduled scans, and operator repair.

# backend/orderflow/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create all tables (dev/test; production uses `flask db upgrade`).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Orders and stock (staff operations):
# - python -m flask orders advance order_abc preparing
# - python -m flask orders cancel order_abc --reason customer_request
# - python -m flask orders reschedule order_abc 2024-01-02 14:30
# - python -m flask orders history order_abc
# - python -m flask stock restock item_abc 25 --by alice
# - python -m flask stock movements item_abc --limit 20
#
# No-show detection:
# - python -m flask noshow scan [--grace 30]
#   One pass over every overdue order.
# - python -m flask noshow check order_abc [--grace 30]
# - python -m flask noshow monitor [--interval 15]
#   Scheduler loop: scan every N minutes until interrupted.
#
# Webhooks / notifications / recovery:
# - python -m flask webhooks list-failed
# - python -m flask webhooks replay evt_123
# - python -m flask notifications retry-failed [--limit 50]
# - python -m flask recovery list [--status failed]

import json
import time

import click
from flask import current_app
from flask.cli import with_appcontext

from .extensions import db
from .enums import CancellationReason, OrderStatus, RecoveryStatus
from .services import noshow_service, notification_service, order_service, recovery_service, stock_service
from .services.audit_service import get_order_history
from .services.notification_service import NotificationError
from .services.order_service import OrderError
from .services.payment_service import list_order_payments
from .services.state_machine import InvalidTransition
from .services.stock_service import StockError
from .services.webhook_service import WebhookReplayError, list_failed_events, replay_webhook_event


def _channels():
    return current_app.extensions["orderflow"]["channels"]


def _grace(grace):
    return grace if grace is not None else int(current_app.config["NO_SHOW_GRACE_PERIOD_MINUTES"])


# =============================================================================
# SYSTEM
# =============================================================================

@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Tables created.")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    click.echo("PASS Database reset complete.")


# =============================================================================
# ORDERS / STOCK
# =============================================================================

@click.group('orders')
def orders_group():
    """Staff order operations."""


@orders_group.command('advance')
@click.argument('order_id')
@click.argument('status', type=click.Choice([s.value for s in OrderStatus if s != OrderStatus.CANCELLED]))
@with_appcontext
def advance_order_cli(order_id, status):
    """Move an order along the fulfilment path."""
    try:
        order = order_service.advance_order(order_id, status)
    except (OrderError, InvalidTransition) as e:
        raise click.ClickException(str(e))
    click.echo(f"PASS Order {order.id} is now {order.status.value}")


@orders_group.command('cancel')
@click.argument('order_id')
@click.option('--reason', type=click.Choice([r.value for r in CancellationReason]), default=CancellationReason.STAFF.value)
@with_appcontext
def cancel_order_cli(order_id, reason):
    """Cancel an order and return its items to stock."""
    try:
        report = order_service.cancel_order(order_id, reason)
    except (OrderError, InvalidTransition) as e:
        raise click.ClickException(str(e))
    click.echo(f"PASS Order {order_id} cancelled ({len(report.restored_items)} restocked, {len(report.failed_items)} failed)")
    for item in report.failed_items:
        click.echo(f"  FAIL {item.inventory_item_id} x{item.quantity}: {item.error}")


@orders_group.command('reschedule')
@click.argument('order_id')
@click.argument('pickup_date')
@click.argument('pickup_time')
@with_appcontext
def reschedule_order_cli(order_id, pickup_date, pickup_time):
    """Move an order's pickup window (YYYY-MM-DD HH:MM)."""
    try:
        order = order_service.reschedule_pickup(order_id, pickup_date, pickup_time)
    except OrderError as e:
        raise click.ClickException(str(e))
    click.echo(f"PASS Order {order.id} pickup moved to {order.pickup_date} {order.pickup_time:%H:%M}")


@orders_group.command('history')
@click.argument('order_id')
@with_appcontext
def order_history_cli(order_id):
    """Print an order's audit trail and linked payments."""
    try:
        order = order_service.get_order(order_id)
    except OrderError as e:
        raise click.ClickException(str(e))
    click.echo(f"{order.id}  {order.status.value}  payment={order.payment_status.value}")
    for ev in get_order_history(order_id):
        change = f"{ev.from_status or ''} -> {ev.to_status}" if ev.to_status else ""
        cause = ev.cause.value if ev.cause else ""
        click.echo(f"  {ev.occurred_at}  {ev.action:<24} {cause:<9} {change}  {ev.note or ''}")
    for payment in list_order_payments(order_id):
        click.echo(f"  payment {payment.payment_intent_id}  {payment.status.value}  {payment.amount_cents} {payment.currency}")


@click.group('stock')
def stock_group():
    """Stock inspection and restocking."""


@stock_group.command('restock')
@click.argument('item_id')
@click.argument('quantity', type=int)
@click.option('--reason', default=None, help='Free-text reason')
@click.option('--by', 'performed_by', default=None, help='Operator name')
@with_appcontext
def restock_cli(item_id, quantity, reason, performed_by):
    try:
        movement = stock_service.restock_item(item_id, quantity, reason=reason, performed_by=performed_by)
    except StockError as e:
        raise click.ClickException(str(e))
    click.echo(f"PASS {item_id}: {movement.previous_stock} -> {movement.new_stock}")


@stock_group.command('movements')
@click.argument('item_id')
@click.option('--limit', type=int, default=20)
@with_appcontext
def movements_cli(item_id, limit):
    try:
        movements = stock_service.get_item_movements(item_id, limit=limit)
    except StockError as e:
        raise click.ClickException(str(e))
    for m in movements:
        click.echo(
            f"{m.created_at}  {m.movement_type.value:<12} {m.quantity_change:+d}  "
            f"{m.previous_stock} -> {m.new_stock}  {m.reference_order_id or ''}"
        )


# =============================================================================
# NO-SHOWS
# =============================================================================

@click.group('noshow')
def noshow_group():
    """No-show detection and processing."""


def _run_scan(grace):
    result = noshow_service.process_due_no_shows(
        grace,
        channels=_channels(),
        reschedule_window_minutes=int(current_app.config["NO_SHOW_RESCHEDULE_WINDOW_MINUTES"]),
    )
    click.echo(result["message"])
    for item in result["errors"]:
        click.echo(f"  FAIL {item['orderId']}: {item['error']}")
    return result


@noshow_group.command('scan')
@click.option('--grace', type=int, default=None, help='Grace period in minutes')
@with_appcontext
def scan_cli(grace):
    """Process every order past its pickup deadline (one pass)."""
    _run_scan(_grace(grace))


@noshow_group.command('check')
@click.argument('order_id')
@click.option('--grace', type=int, default=None, help='Grace period in minutes')
@with_appcontext
def check_cli(order_id, grace):
    click.echo(json.dumps(noshow_service.is_order_no_show(order_id, _grace(grace)), indent=2))


@noshow_group.command('monitor')
@click.option('--interval', type=int, default=None, help='Minutes between scans')
@click.option('--grace', type=int, default=None, help='Grace period in minutes')
@click.option('--max-runs', type=int, default=0, help='Stop after N scans (0 = run until interrupted)')
@with_appcontext
def monitor_cli(interval, grace, max_runs):
    """Scheduler loop: scan for no-shows every --interval minutes."""
    minutes = interval if interval is not None else int(current_app.config["NO_SHOW_CHECK_INTERVAL_MINUTES"])
    if minutes <= 0:
        raise click.BadParameter("interval must be positive", param_hint="--interval")

    click.echo(f"Monitoring no-shows every {minutes} minute(s). Ctrl+C to stop.")
    runs = 0
    try:
        while True:
            _run_scan(_grace(grace))
            runs += 1
            if max_runs and runs >= max_runs:
                break
            time.sleep(minutes * 60)
    except KeyboardInterrupt:
        click.echo("Stopped.")


# =============================================================================
# WEBHOOKS / NOTIFICATIONS / RECOVERY
# =============================================================================

@click.group('webhooks')
def webhooks_group():
    """Webhook event inspection and replay."""


@webhooks_group.command('list-failed')
@click.option('--limit', type=int, default=50)
@with_appcontext
def list_failed_cli(limit):
    events = list_failed_events(limit=limit)
    if not events:
        click.echo("No failed webhook events.")
        return
    for ev in events:
        click.echo(f"{ev.event_id}  {ev.event_type:<32} {ev.processed_at}  {ev.error_message or ''}")


@webhooks_group.command('replay')
@click.argument('event_id')
@with_appcontext
def replay_cli(event_id):
    """Re-run a failed event from its stored payload."""
    try:
        ack = replay_webhook_event(event_id, channels=_channels())
    except WebhookReplayError as e:
        raise click.ClickException(str(e))
    if ack["processed"]:
        click.echo(f"PASS {event_id} processed")
    else:
        raise click.ClickException(f"{event_id} failed again: {ack.get('error')}")


@click.group('notifications')
def notifications_group():
    """Notification delivery repair."""


@notifications_group.command('retry-failed')
@click.option('--limit', type=int, default=50)
@with_appcontext
def retry_failed_cli(limit):
    records = notification_service.list_failed_notifications(limit=limit)
    sent = 0
    for record in records:
        try:
            result = notification_service.retry_notification(record.id, channels=_channels())
        except NotificationError as e:
            click.echo(f"  SKIP {record.id}: {e}")
            continue
        if result.success:
            sent += 1
        else:
            click.echo(f"  FAIL {record.id}: {result.error}")
    click.echo(f"Retried {len(records)} notification(s), {sent} sent.")


@click.group('recovery')
def recovery_group():
    """Error recovery records."""


@recovery_group.command('list')
@click.option('--status', type=click.Choice([s.value for s in RecoveryStatus]), default=None)
@click.option('--limit', type=int, default=50)
@with_appcontext
def list_recovery_cli(status, limit):
    for rec in recovery_service.list_recovery_records(status=status, limit=limit):
        click.echo(
            f"{rec.id}  {rec.error_type:<24} {rec.recovery_strategy.value:<20} "
            f"{rec.status.value:<10} {rec.result_message or ''}"
        )


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(orders_group)
    app.cli.add_command(stock_group)
    app.cli.add_command(noshow_group)
    app.cli.add_command(webhooks_group)
    app.cli.add_command(notifications_group)
    app.cli.add_command(recovery_group)
