"""
Domain types shared by the services.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Callable, Dict, Optional, Union


class VehicleClass(str, Enum):
    CAR = "car"
    MOTORCYCLE = "motorcycle"


class SpaceKind(str, Enum):
    CAR = "car"
    MOTORCYCLE = "motorcycle"
    MIXED = "mixed"

    def accepts(self, vehicle_class: VehicleClass) -> bool:
        return self is SpaceKind.MIXED or self.value == vehicle_class.value


class SpaceState(str, Enum):
    AVAILABLE = "available"
    OCCUPIED = "occupied"
    MAINTENANCE = "maintenance"


class PaymentState(str, Enum):
    PENDING = "pending"
    PAID = "paid"


class PaymentMethod(str, Enum):
    CASH = "cash"
    CARD = "card"
    YAPE = "yape"
    PLIN = "plin"


class ShiftState(str, Enum):
    OPEN = "open"
    CLOSED = "closed"


class AuditAction(str, Enum):
    VEHICLE_ENTRY = "vehicle_entry"
    VEHICLE_EXIT = "vehicle_exit"
    SHIFT_OPENED = "shift_opened"
    SHIFT_CLOSED = "shift_closed"
    TARIFF_MODIFIED = "tariff_modified"
    PRICING_CONFIG_CHANGED = "pricing_config_changed"
    SPACE_MAINTENANCE = "space_maintenance"
    TARIFF_MISSING = "tariff_missing"


Clock = Callable[[], datetime]


class SystemClock:
    """Wall clock in UTC."""

    def __call__(self) -> datetime:
        return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive timestamps read back from the database."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass(frozen=True)
class OperatorContext:
    """Request-scoped caller identity and time source."""
    operator_id: str
    clock: Clock = field(default_factory=SystemClock)

    def now(self) -> datetime:
        return self.clock()


@dataclass(frozen=True)
class ActiveSession:
    """A vehicle currently parked."""
    id: int
    plate: str
    vehicle_class: VehicleClass
    space_number: int
    entry_at: datetime
    operator_id: Optional[str]


@dataclass(frozen=True)
class ClosedSession:
    """A finished, paid session. Immutable history."""
    id: int
    plate: str
    vehicle_class: VehicleClass
    space_number: int
    entry_at: datetime
    operator_id: Optional[str]
    exit_at: datetime
    amount: Decimal
    payment_method: PaymentMethod


ParkingSessionRecord = Union[ActiveSession, ClosedSession]


@dataclass(frozen=True)
class CostBreakdown:
    """How an amount was derived, for receipts, audit and the simulator."""
    elapsed_minutes: int
    billable_minutes: int
    grace_minutes: int
    grace_applied: bool
    rounding_minutes: int
    rounding_applied: bool
    first_hour_charge: Decimal
    additional_hours_charge: Decimal
    subtotal: Decimal
    minimum_charge: Decimal
    minimum_applied: bool
    maximum_charge: Optional[Decimal]
    maximum_applied: bool
    tariff_id: Optional[int] = None
    tariff_name: Optional[str] = None


@dataclass(frozen=True)
class CostResult:
    amount: Decimal
    breakdown: CostBreakdown


@dataclass(frozen=True)
class ExitReceipt:
    session: ClosedSession
    breakdown: CostBreakdown
    space_released: bool


@dataclass(frozen=True)
class ShiftProjection:
    """Live view of an open shift for the dashboard."""
    shift_id: int
    operator_id: str
    opened_at: datetime
    opening_cash: Decimal
    collected: Decimal
    expected_cash: Decimal
    paid_sessions: int
    by_method: Dict[str, Decimal]


@dataclass(frozen=True)
class ShiftReport:
    """Reconciliation produced when a shift closes."""
    shift_id: int
    operator_id: str
    opened_at: datetime
    closed_at: datetime
    opening_cash: Decimal
    collected: Decimal
    expected_cash: Decimal
    counted_cash: Decimal
    variance: Decimal
    paid_sessions: int
    by_method: Dict[str, Decimal]


@dataclass(frozen=True)
class ExitPreview:
    """What a vehicle would pay if it left now."""
    session: ActiveSession
    amount: Decimal
    breakdown: CostBreakdown
