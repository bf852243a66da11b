"""
Dependency injection for FastAPI application.
"""

from typing import Callable, Optional
from zoneinfo import ZoneInfo

from fastapi import Depends, HTTPException, Header, Request
from sqlalchemy.orm import Session

from garagedesk.config import settings
from garagedesk.models.database import SessionLocal, get_db
from garagedesk.models.domain import Clock, OperatorContext, SystemClock
from garagedesk.services.audit import AuditTrail
from garagedesk.services.mqtt_publisher import MQTTPublisher
from garagedesk.services.pricing import PricingService
from garagedesk.services.retry import RetryQueue
from garagedesk.services.sessions import SessionManager
from garagedesk.services.shifts import ShiftLedger
from garagedesk.services.spaces import SpaceRegistry
from garagedesk.services.store import ParkingStore
from garagedesk.services.tariffs import TariffBook, TariffResolver


def verify_api_key(x_api_key: str = Header(..., alias="X-API-Key")) -> str:
    """Verify API key from request header."""
    if x_api_key != settings.api_key:
        raise HTTPException(
            status_code=401,
            detail="Invalid API key"
        )
    return x_api_key


def get_clock(request: Request) -> Clock:
    """Get clock from app state, wall clock by default."""
    return getattr(request.app.state, "clock", None) or SystemClock()


def get_operator_context(
    x_operator_id: str = Header(..., alias="X-Operator-Id"),
    clock: Clock = Depends(get_clock)
) -> OperatorContext:
    """Build the caller's context from the X-Operator-Id header."""
    operator_id = x_operator_id.strip()
    if not operator_id:
        raise HTTPException(status_code=400, detail="X-Operator-Id header is empty")
    return OperatorContext(operator_id=operator_id, clock=clock)


def get_session_factory(request: Request) -> Callable[[], Session]:
    """Session factory used by background jobs."""
    return getattr(request.app.state, "session_factory", None) or SessionLocal


def get_audit_trail(request: Request) -> Optional[AuditTrail]:
    """Get audit trail from app state."""
    return getattr(request.app.state, "audit_trail", None)


def get_retry_queue(request: Request) -> Optional[RetryQueue]:
    """Get background retry queue from app state."""
    return getattr(request.app.state, "retry_queue", None)


def get_mqtt_publisher(request: Request) -> Optional[MQTTPublisher]:
    """Get MQTT publisher from app state."""
    return getattr(request.app.state, "mqtt_publisher", None)


def get_store(db: Session = Depends(get_db)) -> ParkingStore:
    return ParkingStore(db)


def get_tariff_resolver(store: ParkingStore = Depends(get_store)) -> TariffResolver:
    return TariffResolver(store, ZoneInfo(settings.timezone))


def get_tariff_book(
    store: ParkingStore = Depends(get_store),
    audit: Optional[AuditTrail] = Depends(get_audit_trail)
) -> TariffBook:
    return TariffBook(store, audit=audit)


def get_pricing_service(
    store: ParkingStore = Depends(get_store),
    resolver: TariffResolver = Depends(get_tariff_resolver),
    audit: Optional[AuditTrail] = Depends(get_audit_trail)
) -> PricingService:
    return PricingService(
        store,
        resolver,
        default_grace_minutes=settings.default_grace_minutes,
        default_rounding_minutes=settings.default_rounding_minutes,
        audit=audit
    )


def get_space_registry(
    store: ParkingStore = Depends(get_store),
    audit: Optional[AuditTrail] = Depends(get_audit_trail),
    publisher: Optional[MQTTPublisher] = Depends(get_mqtt_publisher)
) -> SpaceRegistry:
    return SpaceRegistry(store, audit=audit, publisher=publisher)


def get_session_manager(
    store: ParkingStore = Depends(get_store),
    registry: SpaceRegistry = Depends(get_space_registry),
    pricing: PricingService = Depends(get_pricing_service),
    audit: Optional[AuditTrail] = Depends(get_audit_trail),
    retry_queue: Optional[RetryQueue] = Depends(get_retry_queue),
    session_factory: Callable[[], Session] = Depends(get_session_factory),
    publisher: Optional[MQTTPublisher] = Depends(get_mqtt_publisher)
) -> SessionManager:
    return SessionManager(
        store,
        registry,
        pricing,
        audit=audit,
        retry_queue=retry_queue,
        session_factory=session_factory,
        publisher=publisher,
        plate_pattern=settings.plate_pattern,
        release_max_attempts=settings.release_max_attempts
    )


def get_shift_ledger(
    store: ParkingStore = Depends(get_store),
    audit: Optional[AuditTrail] = Depends(get_audit_trail),
    publisher: Optional[MQTTPublisher] = Depends(get_mqtt_publisher)
) -> ShiftLedger:
    return ShiftLedger(store, ZoneInfo(settings.timezone), audit=audit, publisher=publisher)
