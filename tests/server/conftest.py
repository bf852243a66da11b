"""
Shared fixtures for server tests.
"""

import os

# The engine is built at import time; keep tests off PostgreSQL.
os.environ.setdefault("DATABASE_URL", "sqlite://")

from datetime import datetime, time, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy.orm import sessionmaker

from garagedesk.models.database import TariffRule, build_engine, init_db
from garagedesk.models.domain import OperatorContext
from garagedesk.services.audit import AuditTrail
from garagedesk.services.pricing import PricingService
from garagedesk.services.retry import RetryQueue
from garagedesk.services.sessions import SessionManager
from garagedesk.services.shifts import ShiftLedger
from garagedesk.services.spaces import SpaceRegistry
from garagedesk.services.store import ParkingStore
from garagedesk.services.tariffs import TariffResolver

ALL_DAYS = [0, 1, 2, 3, 4, 5, 6]


class FixedClock:
    """Clock that only moves when told to."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)

    def set(self, now: datetime):
        self.now = now


class RecordingSink:
    """Audit sink that keeps events in memory."""

    def __init__(self):
        self.events = []

    def write(self, event):
        self.events.append(event)

    def actions(self):
        return [e.action for e in self.events]


def add_rule(store: ParkingStore, **overrides) -> TariffRule:
    values = dict(
        name="Standard",
        vehicle_class="car",
        start_time=time(0, 0),
        end_time=time(0, 0),
        weekdays=ALL_DAYS,
        first_hour_rate=Decimal("6.00"),
        additional_hour_rate=Decimal("3.00"),
        minimum_charge=Decimal("2.50"),
        maximum_charge=None,
        priority=1,
        active=True,
    )
    values.update(overrides)
    rule = TariffRule(**values)
    store.add(rule)
    store.commit()
    return rule


@pytest.fixture
def engine(tmp_path):
    """File-backed SQLite database, one per test."""
    engine = build_engine(f"sqlite:///{tmp_path / 'garagedesk.db'}")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def store(db):
    return ParkingStore(db)


@pytest.fixture
def clock():
    # Wednesday 2026-01-14 10:00 UTC
    return FixedClock(datetime(2026, 1, 14, 10, 0, tzinfo=timezone.utc))


@pytest.fixture
def ctx(clock):
    return OperatorContext(operator_id="op-1", clock=clock)


@pytest.fixture
def retry_queue():
    """Queue without a worker thread; tests call drain()."""
    return RetryQueue(name="test", max_attempts=3, backoff_seconds=0)


@pytest.fixture
def audit_sink():
    return RecordingSink()


@pytest.fixture
def audit(audit_sink, retry_queue, clock):
    return AuditTrail(audit_sink, retry_queue, clock=clock)


@pytest.fixture
def registry(store, audit):
    registry = SpaceRegistry(store, audit=audit)
    registry.provision(10, motorcycle_spaces=[9, 10])
    return registry


@pytest.fixture
def resolver(store):
    return TariffResolver(store, timezone.utc)


@pytest.fixture
def pricing(store, resolver, audit):
    return PricingService(
        store,
        resolver,
        default_grace_minutes=15,
        default_rounding_minutes=15,
        audit=audit
    )


@pytest.fixture
def car_rule(store):
    return add_rule(store)


@pytest.fixture
def motorcycle_rule(store):
    return add_rule(
        store,
        name="Motorcycle",
        vehicle_class="motorcycle",
        first_hour_rate=Decimal("3.00"),
        additional_hour_rate=Decimal("1.50"),
        minimum_charge=Decimal("1.00"),
    )


@pytest.fixture
def manager(store, registry, pricing, audit, retry_queue, session_factory):
    return SessionManager(
        store,
        registry,
        pricing,
        audit=audit,
        retry_queue=retry_queue,
        session_factory=session_factory,
        release_max_attempts=3
    )


@pytest.fixture
def ledger(store, audit):
    return ShiftLedger(store, audit=audit)
