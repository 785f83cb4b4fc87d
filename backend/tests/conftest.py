"""
Pytest fixtures for ParkTrack engine tests.

Provides the test application, a per-test clean database, registry seed
data and a fixed clock.
"""

from datetime import datetime, timedelta

import pytest
from parktrack import create_app
from parktrack.extensions import db
from parktrack.models import Payer, Vehicle, ParkingLot, RatePolicy
from parktrack.services import token_service


TEST_SECRET = "test-token-secret"
LOT_ID = "LOT-A"

# Fixed business clock: mid-month so sessions stay inside one invoice period
T0 = datetime(2025, 3, 10, 8, 0, 0)


def make_test_app(database_uri: str = "sqlite:///:memory:"):
    return create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': database_uri,
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'TOKEN_SECRET': TEST_SECRET,
        'LOG_LEVEL': 'DEBUG',
    })


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = make_test_app()

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


@pytest.fixture(scope='function')
def lot(db_session):
    lot = ParkingLot(id=LOT_ID, name="Central Lot", capacity=100, is_active=True)
    db_session.add(lot)
    db_session.commit()
    return lot


def _payer_with_vehicle(db_session, payer_id: str, tier: str, plate: str) -> Payer:
    payer = Payer(id=payer_id, name=payer_id.title(), email=f"{payer_id}@example.com", tier=tier, is_active=True)
    db_session.add(payer)
    db_session.add(Vehicle(id=plate, payer_id=payer_id, model="Civic", is_active=True))
    db_session.commit()
    return payer


@pytest.fixture(scope='function')
def normal_payer(db_session):
    """NORMAL-tier payer driving NRM001."""
    return _payer_with_vehicle(db_session, "drv-normal", "NORMAL", "NRM001")


@pytest.fixture(scope='function')
def gold_payer(db_session):
    """GOLD-tier payer driving GLD001."""
    return _payer_with_vehicle(db_session, "drv-gold", "GOLD", "GLD001")


@pytest.fixture(scope='function')
def platinum_payer(db_session):
    """PLATINUM-tier payer driving PLT001."""
    return _payer_with_vehicle(db_session, "drv-platinum", "PLATINUM", "PLT001")


@pytest.fixture(scope='function')
def normal_rate(db_session, lot):
    """NORMAL rate-type at LOT-A: 10.00/hour, capped at 50.00/day, gold override 8.00."""
    policy = RatePolicy(
        lot_id=lot.id,
        rate_type="NORMAL",
        base_price_per_hour_cents=1000,
        max_daily_price_cents=5000,
        normal_rate_cents=0,
        gold_rate_cents=800,
        platinum_rate_cents=0,
        is_active=True,
    )
    db_session.add(policy)
    db_session.commit()
    return policy


def issue_token(payer_id: str, vehicle_id: str, issued_at: datetime) -> str:
    """Token signed with the test secret."""
    return token_service.encode_token(payer_id, vehicle_id, issued_at, secret=TEST_SECRET)


def at(minutes: float) -> datetime:
    """T0 plus some minutes."""
    return T0 + timedelta(minutes=minutes)
