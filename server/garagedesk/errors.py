"""
Domain errors for GarageDesk.

Every error carries a stable code, an HTTP status, whether the client may
retry, and enough context (plate, space number, shift id) to be shown
without another lookup.
"""

from typing import Any, Dict, Optional


class GarageError(Exception):
    """Base class for all user-facing errors."""

    code = "garage_error"
    status_code = 400
    retryable = False

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context: Dict[str, Any] = context

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.code,
            "message": self.message,
            "retryable": self.retryable,
            "context": self.context,
        }


# Validation

class ValidationFailed(GarageError):
    code = "validation_failed"
    status_code = 422


class InvalidPlate(ValidationFailed):
    code = "invalid_plate"

    def __init__(self, plate: str):
        super().__init__(f"Plate '{plate}' is not a valid license plate", plate=plate)


class InvalidTimeWindow(ValidationFailed):
    code = "invalid_time_window"


class InvalidAmount(ValidationFailed):
    code = "invalid_amount"


class IncompatibleSpace(ValidationFailed):
    code = "incompatible_space"

    def __init__(self, space_number: int, vehicle_class: str):
        super().__init__(
            f"Space {space_number} does not accept {vehicle_class} vehicles",
            space_number=space_number,
            vehicle_class=vehicle_class,
        )


# Conflict

class ConflictError(GarageError):
    code = "conflict"
    status_code = 409
    retryable = True


class SpaceUnavailable(ConflictError):
    code = "space_unavailable"

    def __init__(self, space_number: int):
        super().__init__(
            f"Space {space_number} is no longer available, please pick another space",
            space_number=space_number,
        )


class SpaceOccupied(ConflictError):
    code = "space_occupied"

    def __init__(self, space_number: int):
        super().__init__(
            f"Space {space_number} is occupied and cannot be put in maintenance",
            space_number=space_number,
        )


class VehicleAlreadyParked(ConflictError):
    code = "vehicle_already_parked"

    def __init__(self, plate: str, space_number: Optional[int] = None):
        super().__init__(
            f"Vehicle {plate} is already parked",
            plate=plate,
            space_number=space_number,
        )


class ShiftAlreadyOpen(ConflictError):
    code = "shift_already_open"

    def __init__(self, operator_id: str, shift_id: Optional[int] = None):
        super().__init__(
            f"Operator {operator_id} already has an open shift",
            operator_id=operator_id,
            shift_id=shift_id,
        )


class ShiftAlreadyClosed(ConflictError):
    code = "shift_already_closed"

    def __init__(self, shift_id: int):
        super().__init__(f"Shift {shift_id} is already closed", shift_id=shift_id)


class PricingConfigStale(ConflictError):
    code = "pricing_config_stale"

    def __init__(self, expected_version: int, current_version: int):
        super().__init__(
            "Pricing configuration was changed by someone else, reload and retry",
            expected_version=expected_version,
            current_version=current_version,
        )


# Not found

class NotFoundError(GarageError):
    code = "not_found"
    status_code = 404


class VehicleNotParked(NotFoundError):
    code = "vehicle_not_parked"

    def __init__(self, plate: str):
        super().__init__(f"No active parking session for vehicle {plate}", plate=plate)


class SpaceNotFound(NotFoundError):
    code = "space_not_found"

    def __init__(self, space_number: int):
        super().__init__(f"Space {space_number} does not exist", space_number=space_number)


class ShiftNotFound(NotFoundError):
    code = "shift_not_found"

    def __init__(self, shift_id: int):
        super().__init__(f"Shift {shift_id} not found", shift_id=shift_id)


class TariffNotFound(NotFoundError):
    code = "tariff_not_found"

    def __init__(self, tariff_id: int):
        super().__init__(f"Tariff {tariff_id} not found", tariff_id=tariff_id)


# Configuration

class NoTariffConfigured(GarageError):
    code = "no_tariff_configured"
    status_code = 500

    def __init__(self, vehicle_class: str, plate: Optional[str] = None):
        super().__init__(
            f"No active tariff configured for {vehicle_class}, payment cannot be processed",
            vehicle_class=vehicle_class,
            plate=plate,
        )


# Transient

class BackendUnavailable(GarageError):
    code = "backend_unavailable"
    status_code = 503
    retryable = True
