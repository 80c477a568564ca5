"""
Pytest fixtures for the auth core tests.

Provides an in-memory application, a per-test table wipe, a controllable
clock, tenancy and principal fixtures, and helpers for HTTP tests.
"""

from datetime import datetime, timedelta
from types import SimpleNamespace

import pytest

from authcore import create_app
from authcore.core import AuthCore, Credentials
from authcore.extensions import db
from authcore.models import Customer, Location, Retailer
from authcore.permissions import Role
from authcore.services import principal_service
from authcore.services.scope_service import system_scope, unbind

PASSWORD = "Password123!"
TEST_ROUNDS = 4


class FrozenClock:
    """Injectable clock: naive UTC, moves only when told to."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'BCRYPT_ROUNDS': TEST_ROUNDS,
        'AUTH_HASH_WORKERS': 2,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function', autouse=True)
def db_session(app):
    """Fresh data for each test, schema kept. Bypasses the ORM guards on purpose."""
    db.session.rollback()
    unbind(db.session)

    connection = db.session.connection()
    for table in reversed(db.metadata.sorted_tables):
        connection.execute(table.delete())
    db.session.commit()

    yield db.session

    db.session.rollback()
    unbind(db.session)


@pytest.fixture(scope='function')
def clock():
    """Monday 2026-03-02 14:00 UTC."""
    return FrozenClock(datetime(2026, 3, 2, 14, 0, 0))


@pytest.fixture(scope='function')
def core(app, clock, monkeypatch):
    """AuthCore on the frozen clock, installed as the app's core for HTTP tests."""
    instance = AuthCore.from_config(app.config, clock=clock)
    monkeypatch.setitem(app.extensions, "authcore", instance)
    return instance


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


# -- tenancy --

@pytest.fixture(scope='function')
def retailer_a(db_session):
    retailer = Retailer(name="Retailer A - Acme Pharmacy", code="ACME", is_active=True)
    db_session.add(retailer)
    db_session.commit()
    return retailer


@pytest.fixture(scope='function')
def retailer_b(db_session):
    retailer = Retailer(name="Retailer B - Beta Clinics", code="BETA", is_active=True)
    db_session.add(retailer)
    db_session.commit()
    return retailer


@pytest.fixture(scope='function')
def location_a1(db_session, retailer_a):
    location = Location(retailer_id=retailer_a.id, name="Acme Downtown", code="A1")
    db_session.add(location)
    db_session.commit()
    return location


@pytest.fixture(scope='function')
def location_a2(db_session, retailer_a):
    location = Location(retailer_id=retailer_a.id, name="Acme Uptown", code="A2")
    db_session.add(location)
    db_session.commit()
    return location


@pytest.fixture(scope='function')
def location_b1(db_session, retailer_b):
    location = Location(retailer_id=retailer_b.id, name="Beta Central", code="B1")
    db_session.add(location)
    db_session.commit()
    return location


# -- principals --

def make_principal(email, role, retailer=None, location=None, password=PASSWORD):
    return principal_service.create_principal(
        email=email,
        password=password,
        role=role,
        retailer_id=retailer.id if retailer is not None else None,
        location_id=location.id if location is not None else None,
        bcrypt_rounds=TEST_ROUNDS,
    )


@pytest.fixture(scope='function')
def owner(db_session):
    return make_principal("owner@example.com", Role.OWNER)


@pytest.fixture(scope='function')
def backoffice(db_session):
    return make_principal("backoffice@example.com", Role.BACKOFFICE)


@pytest.fixture(scope='function')
def retailer_user_a(db_session, retailer_a):
    return make_principal("manager@acme.example.com", Role.RETAILER, retailer_a)


@pytest.fixture(scope='function')
def retailer_user_b(db_session, retailer_b):
    return make_principal("manager@beta.example.com", Role.RETAILER, retailer_b)


@pytest.fixture(scope='function')
def location_user_a1(db_session, retailer_a, location_a1):
    return make_principal("clerk@acme.example.com", Role.LOCATION_USER, retailer_a, location_a1)


@pytest.fixture(scope='function')
def location_user_b1(db_session, retailer_b, location_b1):
    return make_principal("clerk@beta.example.com", Role.LOCATION_USER, retailer_b, location_b1)


# -- scoped business rows --

@pytest.fixture(scope='function')
def customers(db_session, retailer_a, retailer_b, location_a1, location_a2, location_b1):
    """One customer per location plus a retailer-wide one for A. Returns their ids."""
    with system_scope():
        rows = {
            "a1": Customer(name="Alice A1", retailer_id=retailer_a.id, location_id=location_a1.id),
            "a2": Customer(name="Arthur A2", retailer_id=retailer_a.id, location_id=location_a2.id),
            "a_wide": Customer(name="Agnes A", retailer_id=retailer_a.id, location_id=None),
            "b1": Customer(name="Bob B1", retailer_id=retailer_b.id, location_id=location_b1.id),
        }
        db_session.add_all(rows.values())
        db_session.commit()
        return SimpleNamespace(**{key: row.id for key, row in rows.items()})


# -- helpers --

def credentials(principal_or_email, password=PASSWORD, **kwargs) -> Credentials:
    email = getattr(principal_or_email, "email", principal_or_email)
    kwargs.setdefault("origin", "198.51.100.7")
    kwargs.setdefault("client_signature", "pytest")
    return Credentials(email=email, password=password, **kwargs)


def auth_headers(handle) -> dict:
    token = getattr(handle, "access_token", handle)
    return {"Authorization": f"Bearer {token}"}
