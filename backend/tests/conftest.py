"""
Pytest fixtures for orderflow backend tests.

Provides test database setup, inventory/order factories, a recording
notification channel, and test client.
"""

from datetime import date, time

import pytest
from orderflow import create_app
from orderflow.extensions import db
from orderflow.enums import CancellationReason, DeliveryMethod, OrderStatus, TransitionCause
from orderflow.models import InventoryItem
from orderflow.services import order_service
from orderflow.services.channels import ChannelRegistry, DeliveryOutcome, NotificationChannel
from orderflow.services.state_machine import transition_order


WEBHOOK_SECRET = "whsec_test_secret"

# Fulfilment path used to walk a fresh (pending) order to a target status.
_PATH = [OrderStatus.CONFIRMED, OrderStatus.PREPARING, OrderStatus.READY, OrderStatus.COMPLETED]


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'WEBHOOK_SECRET': WEBHOOK_SECRET,
        'NOTIFICATION_GATEWAY_URL': None,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


class FakeChannel(NotificationChannel):
    """Records deliveries; set ``fail`` to simulate a delivery failure, ``explode`` to raise."""

    name = "fake"

    def __init__(self):
        self.delivered = []
        self.fail = False
        self.explode = False

    def deliver(self, record):
        if self.explode:
            raise RuntimeError("channel crashed")
        if self.fail:
            return DeliveryOutcome(ok=False, error="simulated outage")
        self.delivered.append(record.id)
        return DeliveryOutcome(ok=True, reference=f"fake:{record.id}")


@pytest.fixture(scope='function')
def fake_channel():
    return FakeChannel()


@pytest.fixture(scope='function')
def channels(fake_channel):
    """Registry routing every delivery method to the same FakeChannel."""
    return ChannelRegistry({method: fake_channel for method in DeliveryMethod})


@pytest.fixture(scope='function')
def make_item(db_session):
    """Factory: InventoryItem with the given stock."""
    counter = {"n": 0}

    def _make(stock: int = 10, name: str | None = None, sku: str | None = None):
        counter["n"] += 1
        item = InventoryItem(
            sku=sku or f"SKU-{counter['n']:03d}",
            name=name or f"Produce {counter['n']}",
            current_stock=stock,
        )
        db_session.add(item)
        db_session.commit()
        return item

    return _make


@pytest.fixture(scope='function')
def make_order(db_session):
    """
    Factory: order created through order_service (stock reserved), then
    walked to ``status`` with manual transitions.
    """

    def _make(
        lines,
        status: OrderStatus = OrderStatus.CONFIRMED,
        pickup_date: date | None = date(2024, 1, 1),
        pickup_time: time | None = time(10, 0),
        user_id: str = "user_1",
        payment_intent_id: str | None = None,
    ):
        order = order_service.create_order(
            user_id=user_id,
            lines=[
                {"inventory_item_id": item.id, "quantity": qty, "unit_price_cents": 250}
                for item, qty in lines
            ],
            pickup_date=pickup_date,
            pickup_time=pickup_time,
            customer_name="Dana Farmer",
            customer_email="dana@example.com",
            customer_phone="+15550100",
            payment_intent_id=payment_intent_id,
        )
        status = OrderStatus(status)
        if status == OrderStatus.CANCELLED:
            order_service.advance_order(order.id, OrderStatus.CONFIRMED)
            order_service.cancel_order(order.id, CancellationReason.STAFF)
        elif status != OrderStatus.PENDING:
            for step in _PATH[: _PATH.index(status) + 1]:
                transition_order(order, step, TransitionCause.MANUAL)
            db_session.commit()
        return db_session.get(type(order), order.id)

    return _make
