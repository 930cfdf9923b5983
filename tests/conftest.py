"""Shared test fixtures for clinicbook tests."""

import base64
import os

# Settings are read at import time, so they must be in place before clinicbook loads
os.environ["ENCRYPTION_KEY"] = base64.b64encode(b"0123456789abcdef0123456789abcdef").decode()
os.environ["SEARCH_PEPPER"] = base64.b64encode(b"test-search-pepper").decode()
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["STAFF_API_KEY"] = "test-staff-key"
os.environ["RATE_LIMIT_BACKEND"] = "database"
os.environ["DB_LOG_SLOW_QUERIES"] = "false"

from datetime import date, datetime, timedelta  # noqa: E402
from types import SimpleNamespace  # noqa: E402
from typing import Generator  # noqa: E402

import pytest  # noqa: E402
from sqlalchemy.orm import Session, sessionmaker  # noqa: E402

from clinicbook.crypto import reload_keys  # noqa: E402
from clinicbook.database import Base, create_db_engine  # noqa: E402
from clinicbook.models import (  # noqa: E402
    Provider,
    RateLimitRecord,
    Service,
    Tenant,
    generate_public_id,
)
from clinicbook.rate_limiter import DatabaseRateLimitStore  # noqa: E402

# Monday 2025-06-09, 08:00 local time
FIXED_NOW = datetime(2025, 6, 9, 8, 0)
TUESDAY = date(2025, 6, 10)

WEEKDAYS_9_TO_5 = {
    **{
        day: {"enabled": True, "startHour": 9, "endHour": 17}
        for day in ("monday", "tuesday", "wednesday", "thursday", "friday")
    },
    "saturday": {"enabled": False},
    "sunday": {"enabled": False},
}


@pytest.fixture(autouse=True)
def fresh_keys() -> Generator[None, None, None]:
    """Key material is cached per process; re-read it around every test."""
    reload_keys()
    yield
    reload_keys()


@pytest.fixture
def engine(tmp_path):
    """File-backed SQLite database so several sessions (and threads) can share it."""
    db_engine = create_db_engine(f"sqlite:///{tmp_path / 'clinicbook.db'}")
    Base.metadata.create_all(bind=db_engine)
    yield db_engine
    db_engine.dispose()


@pytest.fixture
def session_factory(engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory) -> Generator[Session, None, None]:
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def unreachable_db(tmp_path) -> Generator[Session, None, None]:
    """A session whose database file can never be opened; every statement fails."""
    dead_engine = create_db_engine(f"sqlite:///{tmp_path / 'missing' / 'clinicbook.db'}")
    session = sessionmaker(autocommit=False, autoflush=False, bind=dead_engine)()
    yield session
    session.close()
    dead_engine.dispose()


@pytest.fixture
def clinic(db) -> SimpleNamespace:
    """
    One practice open 09:00-17:00 on weekdays, two providers and a
    60 minute service.

    Ids are assigned up front so nothing is read back after the commit;
    a read would open a new (write-locking) SQLite transaction.
    """
    ids = SimpleNamespace(
        tenant_id=generate_public_id(),
        provider_id=generate_public_id(),
        other_provider_id=generate_public_id(),
        service_id=generate_public_id(),
        short_service_id=generate_public_id(),
    )
    db.add(
        Tenant(
            id=ids.tenant_id,
            slug="riverside-clinic",
            name="Riverside Clinic",
            operating_hours=WEEKDAYS_9_TO_5,
        )
    )
    db.add(Provider(id=ids.provider_id, tenant_id=ids.tenant_id, name="Dr. Ada Moreau"))
    db.add(Provider(id=ids.other_provider_id, tenant_id=ids.tenant_id, name="Dr. Ben Okafor"))
    db.add(
        Service(
            id=ids.service_id, tenant_id=ids.tenant_id, name="Consultation", duration_minutes=60
        )
    )
    db.add(
        Service(
            id=ids.short_service_id,
            tenant_id=ids.tenant_id,
            name="Follow-up",
            duration_minutes=20,
        )
    )
    db.commit()
    return ids


@pytest.fixture
def clock():
    return lambda: FIXED_NOW


@pytest.fixture
def rate_limit_store(tmp_path) -> Generator[DatabaseRateLimitStore, None, None]:
    """Counters in their own database so they never wait on a booking transaction."""
    store_engine = create_db_engine(f"sqlite:///{tmp_path / 'rate_limits.db'}")
    Base.metadata.create_all(bind=store_engine, tables=[RateLimitRecord.__table__])
    yield DatabaseRateLimitStore(sessionmaker(autocommit=False, autoflush=False, bind=store_engine))
    store_engine.dispose()


@pytest.fixture
def make_reservation(clinic):
    """Build a reservation payload; keyword arguments override the defaults."""

    def _make(**overrides) -> dict:
        payload = {
            "date": TUESDAY.isoformat(),
            "time": "10:00",
            "service_id": clinic.service_id,
            "provider_id": clinic.provider_id,
            "patient_name": "Jane Patient",
            "patient_email": "jane.patient@example.com",
            "patient_phone": "(555) 123-4567",
            "date_of_birth": "1985-04-12",
            "home_address": "12 Elm Street, Springfield",
            "insurance_provider": "Acme Health",
            "emergency_contact": "John Patient +15550001111",
            "reason_for_visit": "Persistent cough",
        }
        payload.update(overrides)
        return payload

    return _make


@pytest.fixture
def future_tuesday() -> date:
    """A Tuesday at least a week ahead of the real clock, for tests that use datetime.now."""
    day = date.today() + timedelta(days=7)
    while day.weekday() != 1:
        day += timedelta(days=1)
    return day
