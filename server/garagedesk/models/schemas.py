"""
Pydantic schemas for request/response validation.
"""

from datetime import date, datetime, time
from decimal import Decimal
from typing import Dict, List, Optional

from pydantic import BaseModel

from garagedesk.models.domain import PaymentMethod, VehicleClass


# Spaces

class SpaceResponse(BaseModel):
    """Schema for a parking space."""
    number: int
    kind: str
    state: str
    car_hourly_rate: Decimal
    motorcycle_hourly_rate: Decimal
    last_occupied_at: Optional[datetime] = None
    maintenance_notes: Optional[str] = None

    class Config:
        from_attributes = True


class MaintenanceRequest(BaseModel):
    notes: Optional[str] = None


class SummaryResponse(BaseModel):
    """Schema for garage occupancy summary."""
    available: int
    occupied: int
    maintenance: int
    total: int
    ts_utc: str


# Sessions

class EntryRequest(BaseModel):
    """Schema for registering a vehicle entry."""
    plate: str
    vehicle_class: VehicleClass
    space_number: int


class ExitRequest(BaseModel):
    """Schema for registering a vehicle exit."""
    plate: str
    payment_method: PaymentMethod


class SessionResponse(BaseModel):
    """Schema for a parking session, active or closed."""
    id: int
    plate: str
    vehicle_class: VehicleClass
    space_number: int
    entry_at: datetime
    operator_id: Optional[str] = None
    exit_at: Optional[datetime] = None
    amount: Optional[Decimal] = None
    payment_method: Optional[PaymentMethod] = None

    class Config:
        from_attributes = True


class CostBreakdownResponse(BaseModel):
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
    maximum_charge: Optional[Decimal] = None
    maximum_applied: bool
    tariff_id: Optional[int] = None
    tariff_name: Optional[str] = None

    class Config:
        from_attributes = True


class ExitResponse(BaseModel):
    """Schema for an exit receipt."""
    session: SessionResponse
    breakdown: CostBreakdownResponse
    space_released: bool

    class Config:
        from_attributes = True


class ExitPreviewResponse(BaseModel):
    session: SessionResponse
    amount: Decimal
    breakdown: CostBreakdownResponse

    class Config:
        from_attributes = True


# Tariffs and pricing

class TariffRequest(BaseModel):
    """Schema for creating or updating a tariff rule."""
    name: str
    description: Optional[str] = None
    vehicle_class: VehicleClass
    start_time: str
    end_time: str
    weekdays: List[int]
    first_hour_rate: Decimal
    additional_hour_rate: Decimal
    minimum_charge: Decimal = Decimal("0.00")
    maximum_charge: Optional[Decimal] = None
    priority: int = 1
    active: bool = True


class TariffResponse(BaseModel):
    """Schema for a tariff rule."""
    id: int
    name: str
    description: Optional[str] = None
    vehicle_class: str
    start_time: time
    end_time: time
    weekdays: List[int]
    first_hour_rate: Decimal
    additional_hour_rate: Decimal
    minimum_charge: Decimal
    maximum_charge: Optional[Decimal] = None
    priority: int
    active: bool
    created_by: Optional[str] = None
    last_modified_by: Optional[str] = None

    class Config:
        from_attributes = True


class TariffUpsertResponse(BaseModel):
    tariff: TariffResponse
    conflicts: List[str]


class PricingConfigResponse(BaseModel):
    """Schema for the pricing configuration."""
    grace_minutes: int
    rounding_minutes: int
    night_rules_enabled: bool
    weekend_rules_enabled: bool
    version: int
    modified_by: Optional[str] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class PricingConfigUpdate(BaseModel):
    """Schema for editing the pricing configuration."""
    expected_version: int
    grace_minutes: Optional[int] = None
    rounding_minutes: Optional[int] = None
    night_rules_enabled: Optional[bool] = None
    weekend_rules_enabled: Optional[bool] = None


class SimulateRequest(BaseModel):
    """Schema for a cost simulation."""
    vehicle_class: VehicleClass
    duration_minutes: int
    reference: Optional[datetime] = None


class SimulateResponse(BaseModel):
    amount: Decimal
    breakdown: CostBreakdownResponse

    class Config:
        from_attributes = True


# Shifts

class OpenShiftRequest(BaseModel):
    opening_cash: Decimal
    notes: Optional[str] = None


class CloseShiftRequest(BaseModel):
    counted_cash: Decimal
    notes: Optional[str] = None


class ShiftResponse(BaseModel):
    """Schema for a shift record."""
    id: int
    operator_id: str
    shift_date: date
    opening_cash: Decimal
    opened_at: datetime
    closing_cash: Optional[Decimal] = None
    closed_at: Optional[datetime] = None
    expected_cash: Optional[Decimal] = None
    variance: Optional[Decimal] = None
    state: str
    notes: Optional[str] = None

    class Config:
        from_attributes = True


class ShiftProjectionResponse(BaseModel):
    """Schema for the live view of an open shift."""
    shift_id: int
    operator_id: str
    opened_at: datetime
    opening_cash: Decimal
    collected: Decimal
    expected_cash: Decimal
    paid_sessions: int
    by_method: Dict[str, Decimal]

    class Config:
        from_attributes = True


class ShiftReportResponse(BaseModel):
    """Schema for a shift reconciliation."""
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

    class Config:
        from_attributes = True


class ShiftHistoryResponse(BaseModel):
    shifts: List[ShiftResponse]
    count: int


class SpaceListResponse(BaseModel):
    spaces: List[SpaceResponse]
    count: int
