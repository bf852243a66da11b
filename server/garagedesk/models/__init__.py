"""
Database models, domain types and schemas.
"""

from .database import (
    Base,
    Space,
    ParkingSession,
    TariffRule,
    PricingConfig,
    Shift,
    AuditLog,
    init_db,
    get_db
)
from .domain import (
    VehicleClass,
    SpaceKind,
    SpaceState,
    PaymentMethod,
    ShiftState,
    AuditAction,
    OperatorContext,
    ActiveSession,
    ClosedSession
)

__all__ = [
    'Base',
    'Space',
    'ParkingSession',
    'TariffRule',
    'PricingConfig',
    'Shift',
    'AuditLog',
    'init_db',
    'get_db',
    'VehicleClass',
    'SpaceKind',
    'SpaceState',
    'PaymentMethod',
    'ShiftState',
    'AuditAction',
    'OperatorContext',
    'ActiveSession',
    'ClosedSession'
]
