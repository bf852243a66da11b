"""
Vehicle entry and exit.

A plate goes NONE -> ACTIVE -> CLOSED. Entry reserves the space and opens
the session in one transaction; exit closes the session first and frees
the space afterwards, deferring the release to the retry queue if the
store is momentarily unavailable.
"""

import logging
import re
from typing import Callable, List, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from garagedesk.errors import (
    BackendUnavailable,
    GarageError,
    IncompatibleSpace,
    InvalidPlate,
    NoTariffConfigured,
    SpaceUnavailable,
    ValidationFailed,
    VehicleAlreadyParked,
    VehicleNotParked,
)
from garagedesk.models.database import ParkingSession
from garagedesk.models.domain import (
    ActiveSession,
    AuditAction,
    ClosedSession,
    ExitPreview,
    ExitReceipt,
    OperatorContext,
    ParkingSessionRecord,
    PaymentMethod,
    PaymentState,
    SpaceKind,
    SpaceState,
    VehicleClass,
    as_utc,
)
from garagedesk.services.pricing import PricingService
from garagedesk.services.spaces import SpaceRegistry
from garagedesk.services.store import ParkingStore

logger = logging.getLogger(__name__)

DEFAULT_PLATE_PATTERN = r"^[A-Z0-9-]{5,10}$"


def normalize_plate(raw: Optional[str], pattern: str = DEFAULT_PLATE_PATTERN) -> str:
    """Uppercase, strip all whitespace and check the plate format."""
    plate = re.sub(r"\s+", "", raw or "").upper()
    if not plate or not re.match(pattern, plate):
        raise InvalidPlate(raw or "")
    return plate


def to_record(row: ParkingSession) -> ParkingSessionRecord:
    """Convert a session row into its active or closed variant."""
    if row.exit_at is None:
        return ActiveSession(
            id=row.id,
            plate=row.plate,
            vehicle_class=VehicleClass(row.vehicle_class),
            space_number=row.space_number,
            entry_at=as_utc(row.entry_at),
            operator_id=row.entry_operator_id,
        )
    return ClosedSession(
        id=row.id,
        plate=row.plate,
        vehicle_class=VehicleClass(row.vehicle_class),
        space_number=row.space_number,
        entry_at=as_utc(row.entry_at),
        operator_id=row.operator_id,
        exit_at=as_utc(row.exit_at),
        amount=row.amount,
        payment_method=PaymentMethod(row.payment_method),
    )


def _parse_enum(enum_cls, value, field_name: str):
    try:
        return enum_cls(value)
    except ValueError:
        allowed = [member.value for member in enum_cls]
        raise ValidationFailed(f"{field_name} must be one of {allowed}", **{field_name: value})


class SessionManager:
    """Registers entries and exits against the space registry and pricing."""

    def __init__(
        self,
        store: ParkingStore,
        registry: SpaceRegistry,
        pricing: PricingService,
        audit=None,
        retry_queue=None,
        session_factory: Optional[Callable] = None,
        publisher=None,
        plate_pattern: str = DEFAULT_PLATE_PATTERN,
        release_max_attempts: int = 5
    ):
        self.store = store
        self.registry = registry
        self.pricing = pricing
        self.audit = audit
        self.retry_queue = retry_queue
        self.session_factory = session_factory
        self.publisher = publisher
        self.plate_pattern = plate_pattern
        self.release_max_attempts = release_max_attempts

    def normalize_plate(self, raw: Optional[str]) -> str:
        return normalize_plate(raw, self.plate_pattern)

    def register_entry(
        self,
        ctx: OperatorContext,
        plate: str,
        vehicle_class: VehicleClass,
        space_number: int
    ) -> ActiveSession:
        """
        Park a vehicle in a space.

        Raises:
            InvalidPlate: Plate does not match the configured format
            IncompatibleSpace: Space kind does not accept the vehicle class
            VehicleAlreadyParked: Plate already has an open session
            SpaceUnavailable: Space is occupied or in maintenance
        """
        plate = self.normalize_plate(plate)
        vehicle_class = _parse_enum(VehicleClass, vehicle_class, "vehicle_class")

        space = self.registry.get_space(space_number)
        if not SpaceKind(space.kind).accepts(vehicle_class):
            raise IncompatibleSpace(space_number, vehicle_class.value)

        existing = self.store.find_open_session(plate)
        if existing is not None:
            raise VehicleAlreadyParked(plate, existing.space_number)

        now = ctx.now()
        row = ParkingSession(
            plate=plate,
            vehicle_class=vehicle_class.value,
            space_number=space_number,
            entry_at=now,
            payment_state=PaymentState.PENDING.value,
            entry_operator_id=ctx.operator_id,
            operator_id=ctx.operator_id,
        )

        try:
            self.registry.reserve(space_number, now)
            self.store.add(row)
            self.store.commit()
        except IntegrityError:
            # Lost a race to the partial unique indexes.
            self.store.rollback()
            other = self.store.find_open_session(plate)
            if other is not None:
                raise VehicleAlreadyParked(plate, other.space_number)
            raise SpaceUnavailable(space_number)
        except GarageError:
            self.store.rollback()
            raise

        session = to_record(row)
        logger.info(
            f"Entry: {plate} ({vehicle_class.value}) parked in space {space_number} "
            f"by {ctx.operator_id}"
        )

        if self.audit is not None:
            self.audit.append(
                ctx.operator_id,
                AuditAction.VEHICLE_ENTRY,
                "parking_sessions",
                session.id,
                details={
                    "plate": plate,
                    "vehicle_class": vehicle_class.value,
                    "space_number": space_number,
                },
            )
        if self.publisher is not None:
            self.publisher.publish_space_state({
                "space_number": space_number,
                "state": SpaceState.OCCUPIED.value,
                "plate": plate,
                "vehicle_class": vehicle_class.value,
                "entry_at": session.entry_at.isoformat(),
            })
        return session

    def register_exit(
        self,
        ctx: OperatorContext,
        plate: str,
        payment_method: PaymentMethod
    ) -> ExitReceipt:
        """
        Charge and close a vehicle's session, then free its space.

        The tariff is resolved at the entry instant and the stay is priced up
        to ctx.now().

        Raises:
            VehicleNotParked: No open session for the plate
            NoTariffConfigured: No active tariff for the vehicle class
        """
        plate = self.normalize_plate(plate)
        payment_method = _parse_enum(PaymentMethod, payment_method, "payment_method")

        row = self.store.find_open_session(plate)
        if row is None:
            raise VehicleNotParked(plate)

        vehicle_class = VehicleClass(row.vehicle_class)
        entry_at = as_utc(row.entry_at)
        exit_at = ctx.now()

        try:
            cost = self.pricing.quote(vehicle_class, entry_at, exit_at)
        except NoTariffConfigured:
            self._report_missing_tariff(ctx, vehicle_class, plate, row.id)
            raise NoTariffConfigured(vehicle_class.value, plate=plate)

        closed = self.store.close_session(
            row.id, exit_at, cost.amount, payment_method.value, ctx.operator_id
        )
        if not closed:
            self.store.rollback()
            raise VehicleNotParked(plate)
        self.store.commit()
        self.store.db.refresh(row)

        session = to_record(row)
        logger.info(
            f"Exit: {plate} left space {row.space_number} after "
            f"{cost.breakdown.elapsed_minutes} min, paid {cost.amount} by {payment_method.value}"
        )

        released = self._release_space(row.space_number)

        if self.audit is not None:
            self.audit.append(
                ctx.operator_id,
                AuditAction.VEHICLE_EXIT,
                "parking_sessions",
                session.id,
                amount=cost.amount,
                details={
                    "plate": plate,
                    "space_number": row.space_number,
                    "payment_method": payment_method.value,
                    "elapsed_minutes": cost.breakdown.elapsed_minutes,
                    "tariff_id": cost.breakdown.tariff_id,
                },
            )
        return ExitReceipt(session=session, breakdown=cost.breakdown, space_released=released)

    def preview_exit(self, ctx: OperatorContext, plate: str) -> ExitPreview:
        """Estimate the charge if the vehicle left now. Changes nothing."""
        session = self.get_active_session(plate)
        cost = self.pricing.quote(session.vehicle_class, session.entry_at, ctx.now())
        return ExitPreview(session=session, amount=cost.amount, breakdown=cost.breakdown)

    def get_active_session(self, plate: str) -> ActiveSession:
        plate = self.normalize_plate(plate)
        row = self.store.find_open_session(plate)
        if row is None:
            raise VehicleNotParked(plate)
        return to_record(row)

    def list_active_sessions(self) -> List[ActiveSession]:
        return [to_record(row) for row in self.store.list_open_sessions()]

    def _release_space(self, space_number: int) -> bool:
        try:
            return self.registry.release(space_number)
        except (BackendUnavailable, SQLAlchemyError) as e:
            self.store.rollback()
            logger.warning(f"Release of space {space_number} deferred: {e}")
            self._schedule_release(space_number)
            return False

    def _schedule_release(self, space_number: int):
        if self.retry_queue is None or self.session_factory is None:
            logger.error(f"Space {space_number} left occupied, no retry queue configured")
            return

        def release():
            db = self.session_factory()
            try:
                SpaceRegistry(ParkingStore(db), publisher=self.publisher).release(space_number)
            finally:
                db.close()

        self.retry_queue.submit(
            release,
            name=f"release-space-{space_number}",
            max_attempts=self.release_max_attempts,
        )

    def _report_missing_tariff(
        self,
        ctx: OperatorContext,
        vehicle_class: VehicleClass,
        plate: str,
        session_id: int
    ):
        logger.critical(
            f"No active {vehicle_class.value} tariff configured, exit of {plate} cannot be charged"
        )
        if self.audit is not None:
            self.audit.append(
                ctx.operator_id,
                AuditAction.TARIFF_MISSING,
                "parking_sessions",
                session_id,
                details={"plate": plate, "vehicle_class": vehicle_class.value},
            )
        if self.publisher is not None:
            self.publisher.publish_alert({
                "type": "tariff_missing",
                "vehicle_class": vehicle_class.value,
                "plate": plate,
            })
