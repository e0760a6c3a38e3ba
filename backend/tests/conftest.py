"""
Pytest fixtures for minisuper backend tests.

Provides an in-memory database, users with bearer tokens, a cash register,
catalog rows and batches, and service wiring with a fixed exchange rate.
"""

from datetime import timedelta
from decimal import Decimal

import httpx
import pytest

from minisuper import create_app
from minisuper.extensions import db
from minisuper.models import CashRegister, ExchangeRate, InventoryBatch, Product
from minisuper.models.auth import ROLE_ADMIN, ROLE_CASHIER
from minisuper.services.auth_service import create_user
from minisuper.services.container import build_services
from minisuper.services.session_service import create_session
from minisuper.time_utils import local_today, utcnow


TEST_RATE = Decimal("36.0000")


def _rate_source_down(request):
    return httpx.Response(503, json={"error": "unavailable"})


class FixedRateProvider:
    """Currency provider that always answers the same rate."""

    def __init__(self, rate=TEST_RATE):
        self.rate = Decimal(rate)
        self.calls = 0

    def get_current_rate(self):
        self.calls += 1
        return self.rate


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'BCRYPT_ROUNDS': 4,
        'SALE_RETRY_ATTEMPTS': 2,
        # Never reach the real PyDolar API from tests
        'EXCHANGE_RATE_TRANSPORT': httpx.MockTransport(_rate_source_down),
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
        for table in reversed(db.metadata.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        db.session.rollback()


@pytest.fixture
def rate_provider():
    return FixedRateProvider()


@pytest.fixture
def services(app, db_session, rate_provider):
    return build_services(db_session, app.config, currency=rate_provider)


@pytest.fixture
def today_rate(db_session):
    """Today's stored BCV rate, so API calls never need the remote source."""
    row = ExchangeRate(rate_date=local_today(), bcv_rate=TEST_RATE, source="manual", created_at=utcnow())
    db_session.add(row)
    db_session.commit()
    return row


@pytest.fixture
def admin_user(db_session):
    return create_user(username="admin", password="admin123", full_name="Administrador", role=ROLE_ADMIN)


@pytest.fixture
def cashier_user(db_session):
    return create_user(username="cajero", password="cajero123", full_name="Cajero Uno", role=ROLE_CASHIER)


@pytest.fixture
def other_cashier(db_session):
    return create_user(username="cajero2", password="cajero123", full_name="Cajero Dos", role=ROLE_CASHIER)


@pytest.fixture
def register(db_session):
    reg = CashRegister(register_number=1, name="Caja Principal", is_active=True)
    db_session.add(reg)
    db_session.commit()
    return reg


@pytest.fixture
def second_register(db_session):
    reg = CashRegister(register_number=2, name="Caja 2", is_active=True)
    db_session.add(reg)
    db_session.commit()
    return reg


@pytest.fixture
def product(db_session):
    prod = Product(
        barcode="7591001000011",
        name="Harina PAN 1kg",
        sale_price_usd=Decimal("3.00"),
        cost_price_usd=Decimal("2.00"),
        min_stock=5,
        unit_of_measure="unidad",
        is_active=True,
    )
    db_session.add(prod)
    db_session.commit()
    return prod


@pytest.fixture
def make_batch(db_session):
    """Factory: make_batch(product, quantity, expires_in_days=None, unit_cost="2.00")."""
    def _make(product, quantity, expires_in_days=None, unit_cost="2.00", received_offset_minutes=0):
        batch = InventoryBatch(
            product_id=product.id,
            initial_quantity=quantity,
            current_quantity=quantity,
            unit_cost_usd=Decimal(unit_cost),
            intake_rate=TEST_RATE,
            expiry_date=local_today() + timedelta(days=expires_in_days) if expires_in_days is not None else None,
            received_at=utcnow() + timedelta(minutes=received_offset_minutes),
        )
        db_session.add(batch)
        db_session.commit()
        return batch

    return _make


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture
def admin_headers(admin_user):
    _, token = create_session(admin_user.id)
    return auth_headers(token)


@pytest.fixture
def cashier_headers(cashier_user):
    _, token = create_session(cashier_user.id)
    return auth_headers(token)
