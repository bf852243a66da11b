"""
GarageDesk Server Services.
"""

from .store import ParkingStore
from .tariffs import TariffBook, TariffDraft, TariffResolver
from .pricing import PricingService, calculate
from .spaces import SpaceRegistry
from .sessions import SessionManager, normalize_plate
from .shifts import ShiftLedger
from .retry import RetryQueue
from .audit import AuditTrail, DatabaseAuditSink, HttpAuditSink
from .mqtt_publisher import MQTTPublisher

__all__ = [
    'ParkingStore',
    'TariffBook',
    'TariffDraft',
    'TariffResolver',
    'PricingService',
    'calculate',
    'SpaceRegistry',
    'SessionManager',
    'normalize_plate',
    'ShiftLedger',
    'RetryQueue',
    'AuditTrail',
    'DatabaseAuditSink',
    'HttpAuditSink',
    'MQTTPublisher'
]
