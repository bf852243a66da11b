"""
Persistence interface over the parking tables.

All state transitions that can race go through compare-and-swap methods
that return whether a row was actually changed. Driver faults are turned
into BackendUnavailable so callers can retry.
"""

import functools
import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Iterable, List, Optional

from sqlalchemy import exists, select, update
from sqlalchemy.exc import (
    DisconnectionError,
    OperationalError,
    TimeoutError as PoolTimeoutError,
)
from sqlalchemy.orm import Session

from garagedesk.errors import BackendUnavailable
from garagedesk.models.database import (
    AuditLog,
    ParkingSession,
    PricingConfig,
    Shift,
    Space,
    TariffRule,
)
from garagedesk.models.domain import PaymentState, ShiftState, SpaceState

logger = logging.getLogger(__name__)

PRICING_CONFIG_ID = 1

_TRANSIENT_ERRORS = (OperationalError, PoolTimeoutError, DisconnectionError)


def _guarded(method):
    """Translate driver faults into BackendUnavailable."""

    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        try:
            return method(self, *args, **kwargs)
        except _TRANSIENT_ERRORS as e:
            logger.warning(f"Data store call {method.__name__} failed: {e}")
            self.db.rollback()
            raise BackendUnavailable(
                "Data store is temporarily unavailable, please retry",
                operation=method.__name__,
            ) from e

    return wrapper


class ParkingStore:
    """Request-scoped data access bound to one SQLAlchemy session."""

    def __init__(self, db: Session):
        self.db = db

    @_guarded
    def commit(self):
        self.db.commit()

    def rollback(self):
        self.db.rollback()

    @_guarded
    def ping(self) -> bool:
        self.db.execute(select(1))
        return True

    # Spaces

    @_guarded
    def get_space(self, number: int) -> Optional[Space]:
        return self.db.get(Space, number)

    @_guarded
    def list_spaces(
        self,
        state: Optional[SpaceState] = None,
        kinds: Optional[Iterable[str]] = None
    ) -> List[Space]:
        query = select(Space).order_by(Space.number)
        if state is not None:
            query = query.where(Space.state == state.value)
        if kinds is not None:
            query = query.where(Space.kind.in_(list(kinds)))
        return list(self.db.scalars(query))

    @_guarded
    def existing_space_numbers(self) -> List[int]:
        return list(self.db.scalars(select(Space.number)))

    def add(self, row: Any):
        self.db.add(row)

    @_guarded
    def flush(self):
        self.db.flush()

    @_guarded
    def compare_and_swap_space(
        self,
        number: int,
        expected: SpaceState,
        new: SpaceState,
        vacant_only: bool = False,
        **values: Any
    ) -> bool:
        """
        Move a space from expected to new state. False if it was not in expected.

        With vacant_only the swap also requires that no open session holds the space.
        """
        query = update(Space).where(Space.number == number, Space.state == expected.value)
        if vacant_only:
            query = query.where(~exists().where(
                ParkingSession.space_number == number,
                ParkingSession.exit_at.is_(None),
            ))
        result = self.db.execute(query.values(state=new.value, **values))
        return result.rowcount == 1

    # Parking sessions

    @_guarded
    def find_open_session(self, plate: str) -> Optional[ParkingSession]:
        return self.db.scalars(
            select(ParkingSession).where(
                ParkingSession.plate == plate,
                ParkingSession.exit_at.is_(None)
            )
        ).first()

    @_guarded
    def find_open_session_for_space(self, space_number: int) -> Optional[ParkingSession]:
        return self.db.scalars(
            select(ParkingSession).where(
                ParkingSession.space_number == space_number,
                ParkingSession.exit_at.is_(None)
            )
        ).first()

    @_guarded
    def list_open_sessions(self) -> List[ParkingSession]:
        return list(self.db.scalars(
            select(ParkingSession)
            .where(ParkingSession.exit_at.is_(None))
            .order_by(ParkingSession.entry_at)
        ))

    @_guarded
    def get_session(self, session_id: int) -> Optional[ParkingSession]:
        return self.db.get(ParkingSession, session_id)

    @_guarded
    def close_session(
        self,
        session_id: int,
        exit_at: datetime,
        amount: Decimal,
        payment_method: str,
        operator_id: str
    ) -> bool:
        """Record exit and payment. False if the session was already closed."""
        result = self.db.execute(
            update(ParkingSession)
            .where(ParkingSession.id == session_id, ParkingSession.exit_at.is_(None))
            .values(
                exit_at=exit_at,
                amount=amount,
                payment_state=PaymentState.PAID.value,
                payment_method=payment_method,
                operator_id=operator_id,
            )
        )
        return result.rowcount == 1

    @_guarded
    def paid_sessions_between(
        self,
        operator_id: str,
        start: datetime,
        end: datetime
    ) -> List[ParkingSession]:
        """Paid sessions closed by the operator in the window (start, end]."""
        return list(self.db.scalars(
            select(ParkingSession).where(
                ParkingSession.operator_id == operator_id,
                ParkingSession.payment_state == PaymentState.PAID.value,
                ParkingSession.exit_at > start,
                ParkingSession.exit_at <= end,
            ).order_by(ParkingSession.exit_at)
        ))

    # Tariff rules

    @_guarded
    def list_tariffs(
        self,
        vehicle_class: Optional[str] = None,
        active_only: bool = False
    ) -> List[TariffRule]:
        """Rules ordered by priority, highest first, then insertion order."""
        query = select(TariffRule).order_by(TariffRule.priority.desc(), TariffRule.id.asc())
        if vehicle_class is not None:
            query = query.where(TariffRule.vehicle_class == vehicle_class)
        if active_only:
            query = query.where(TariffRule.active.is_(True))
        return list(self.db.scalars(query))

    @_guarded
    def get_tariff(self, tariff_id: int) -> Optional[TariffRule]:
        return self.db.get(TariffRule, tariff_id)

    # Pricing config

    @_guarded
    def get_pricing_config(self) -> Optional[PricingConfig]:
        return self.db.get(PricingConfig, PRICING_CONFIG_ID)

    @_guarded
    def compare_and_swap_pricing_config(self, expected_version: int, **values: Any) -> bool:
        result = self.db.execute(
            update(PricingConfig)
            .where(
                PricingConfig.id == PRICING_CONFIG_ID,
                PricingConfig.version == expected_version
            )
            .values(version=expected_version + 1, **values)
        )
        return result.rowcount == 1

    # Shifts

    @_guarded
    def get_shift(self, shift_id: int) -> Optional[Shift]:
        return self.db.get(Shift, shift_id)

    @_guarded
    def find_open_shift(self, operator_id: str) -> Optional[Shift]:
        return self.db.scalars(
            select(Shift).where(
                Shift.operator_id == operator_id,
                Shift.state == ShiftState.OPEN.value
            )
        ).first()

    @_guarded
    def close_shift(
        self,
        shift_id: int,
        closed_at: datetime,
        closing_cash: Decimal,
        expected_cash: Decimal,
        variance: Decimal,
        notes: Optional[str]
    ) -> bool:
        """Close an open shift. False if it was not open."""
        values = dict(
            state=ShiftState.CLOSED.value,
            closed_at=closed_at,
            closing_cash=closing_cash,
            expected_cash=expected_cash,
            variance=variance,
        )
        if notes is not None:
            values["notes"] = notes
        result = self.db.execute(
            update(Shift)
            .where(Shift.id == shift_id, Shift.state == ShiftState.OPEN.value)
            .values(**values)
        )
        return result.rowcount == 1

    @_guarded
    def list_shifts(self, operator_id: str, limit: int = 30) -> List[Shift]:
        return list(self.db.scalars(
            select(Shift)
            .where(Shift.operator_id == operator_id)
            .order_by(Shift.shift_date.desc(), Shift.opened_at.desc())
            .limit(limit)
        ))

    # Audit

    @_guarded
    def insert_audit(self, row: AuditLog):
        self.db.add(row)
        self.db.commit()
