"""
SQLAlchemy database models.
"""

from datetime import datetime, timezone

from sqlalchemy import (
    JSON, Boolean, Column, Date, DateTime, ForeignKey, Index, Integer,
    Numeric, String, Text, Time, create_engine, text
)
from sqlalchemy.orm import declarative_base, sessionmaker

from garagedesk.config import settings


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def build_engine(database_url: str, **kwargs):
    """Create an engine whose calls cannot hang indefinitely."""
    if database_url.startswith("sqlite"):
        kwargs.setdefault("connect_args", {"check_same_thread": False})
    else:
        kwargs.setdefault("pool_pre_ping", True)
        kwargs.setdefault("pool_timeout", settings.db_pool_timeout_s)
        kwargs.setdefault("connect_args", {
            "connect_timeout": int(settings.db_pool_timeout_s),
            "options": f"-c statement_timeout={settings.db_statement_timeout_ms}",
        })
    return create_engine(database_url, **kwargs)


engine = build_engine(settings.database_url)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()

MONEY = Numeric(10, 2)


class Space(Base):
    """One physical parking space."""
    __tablename__ = "spaces"

    number = Column(Integer, primary_key=True, autoincrement=False)
    kind = Column(String(20), nullable=False, default="mixed")  # car, motorcycle, mixed
    state = Column(String(20), nullable=False, default="available")  # available, occupied, maintenance
    car_hourly_rate = Column(MONEY, nullable=False)
    motorcycle_hourly_rate = Column(MONEY, nullable=False)
    last_occupied_at = Column(DateTime(timezone=True))
    maintenance_notes = Column(Text)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)


class ParkingSession(Base):
    """A vehicle's stay. Open while exit_at is NULL."""
    __tablename__ = "parking_sessions"

    id = Column(Integer, primary_key=True, index=True)
    plate = Column(String(16), nullable=False, index=True)
    vehicle_class = Column(String(20), nullable=False)
    space_number = Column(Integer, ForeignKey("spaces.number"), nullable=False, index=True)
    entry_at = Column(DateTime(timezone=True), nullable=False)
    exit_at = Column(DateTime(timezone=True), index=True)
    amount = Column(MONEY)
    payment_state = Column(String(20), nullable=False, default="pending")  # pending, paid
    payment_method = Column(String(20))
    entry_operator_id = Column(String(64))
    operator_id = Column(String(64), index=True)  # who processed it last
    created_at = Column(DateTime(timezone=True), default=_utcnow)

    __table_args__ = (
        Index(
            "uq_open_session_plate", "plate", unique=True,
            postgresql_where=text("exit_at IS NULL"),
            sqlite_where=text("exit_at IS NULL"),
        ),
        Index(
            "uq_open_session_space", "space_number", unique=True,
            postgresql_where=text("exit_at IS NULL"),
            sqlite_where=text("exit_at IS NULL"),
        ),
    )


class TariffRule(Base):
    """Time-windowed pricing rule for one vehicle class."""
    __tablename__ = "tariff_rules"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False)
    description = Column(Text)
    vehicle_class = Column(String(20), nullable=False, index=True)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    weekdays = Column(JSON, nullable=False)  # 0=Monday .. 6=Sunday
    first_hour_rate = Column(MONEY, nullable=False)
    additional_hour_rate = Column(MONEY, nullable=False)
    minimum_charge = Column(MONEY, nullable=False)
    maximum_charge = Column(MONEY)
    priority = Column(Integer, nullable=False, default=1)
    active = Column(Boolean, nullable=False, default=True)
    created_by = Column(String(64))
    last_modified_by = Column(String(64))
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)


class PricingConfig(Base):
    """Global pricing settings. Single row, id=1."""
    __tablename__ = "pricing_config"

    id = Column(Integer, primary_key=True, autoincrement=False)
    grace_minutes = Column(Integer, nullable=False)
    rounding_minutes = Column(Integer, nullable=False)
    night_rules_enabled = Column(Boolean, nullable=False, default=True)
    weekend_rules_enabled = Column(Boolean, nullable=False, default=True)
    version = Column(Integer, nullable=False, default=1)
    modified_by = Column(String(64))
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)


class Shift(Base):
    """One operator's till period."""
    __tablename__ = "shifts"

    id = Column(Integer, primary_key=True, index=True)
    operator_id = Column(String(64), nullable=False, index=True)
    shift_date = Column(Date, nullable=False)
    opening_cash = Column(MONEY, nullable=False)
    opened_at = Column(DateTime(timezone=True), nullable=False)
    closing_cash = Column(MONEY)
    closed_at = Column(DateTime(timezone=True))
    expected_cash = Column(MONEY)
    variance = Column(MONEY)
    state = Column(String(20), nullable=False, default="open")  # open, closed
    notes = Column(Text)

    __table_args__ = (
        Index(
            "uq_open_shift_operator", "operator_id", unique=True,
            postgresql_where=text("state = 'open'"),
            sqlite_where=text("state = 'open'"),
        ),
    )


class AuditLog(Base):
    """Append-only audit trail."""
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True)
    ts_utc = Column(DateTime(timezone=True), nullable=False, index=True)
    actor_id = Column(String(64), index=True)
    action = Column(String(50), nullable=False, index=True)
    entity_type = Column(String(50), nullable=False)
    entity_id = Column(String(64))
    amount = Column(MONEY)
    details = Column(JSON)


def init_db(bind=None):
    """Initialize database tables."""
    Base.metadata.create_all(bind=bind or engine)


def get_db():
    """Get database session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
