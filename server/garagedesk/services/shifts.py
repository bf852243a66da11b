"""
Shift ledger: opening and closing the cash till.
"""

import logging
from collections import defaultdict
from datetime import datetime, timezone, tzinfo
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, List, Optional, Tuple

from sqlalchemy.exc import IntegrityError

from garagedesk.errors import (
    InvalidAmount,
    ShiftAlreadyClosed,
    ShiftAlreadyOpen,
    ShiftNotFound,
)
from garagedesk.models.database import Shift
from garagedesk.models.domain import (
    AuditAction,
    OperatorContext,
    ShiftProjection,
    ShiftReport,
    ShiftState,
    as_utc,
)
from garagedesk.services.store import ParkingStore

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


def _money(value) -> Decimal:
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


class ShiftLedger:
    """Opens, projects and reconciles operator shifts."""

    def __init__(self, store: ParkingStore, tz: tzinfo = timezone.utc, audit=None, publisher=None):
        self.store = store
        self.tz = tz
        self.audit = audit
        self.publisher = publisher

    def open_shift(
        self,
        ctx: OperatorContext,
        opening_cash: Decimal,
        notes: Optional[str] = None
    ) -> Shift:
        opening_cash = _money(opening_cash)
        if opening_cash < 0:
            raise InvalidAmount("Opening cash cannot be negative", opening_cash=str(opening_cash))

        current = self.store.find_open_shift(ctx.operator_id)
        if current is not None:
            raise ShiftAlreadyOpen(ctx.operator_id, current.id)

        now = ctx.now()
        shift = Shift(
            operator_id=ctx.operator_id,
            shift_date=now.astimezone(self.tz).date(),
            opening_cash=opening_cash,
            opened_at=now,
            state=ShiftState.OPEN.value,
            notes=notes,
        )
        try:
            self.store.add(shift)
            self.store.commit()
        except IntegrityError:
            self.store.rollback()
            current = self.store.find_open_shift(ctx.operator_id)
            raise ShiftAlreadyOpen(ctx.operator_id, current.id if current else None)

        logger.info(f"Shift {shift.id} opened by {ctx.operator_id} with {opening_cash}")
        if self.audit is not None:
            self.audit.append(
                ctx.operator_id,
                AuditAction.SHIFT_OPENED,
                "shifts",
                shift.id,
                amount=opening_cash,
            )
        self._publish(shift.id, ctx.operator_id, ShiftState.OPEN)
        return shift

    def close_shift(
        self,
        ctx: OperatorContext,
        shift_id: int,
        counted_cash: Decimal,
        notes: Optional[str] = None
    ) -> ShiftReport:
        """
        Reconcile and close a shift.

        Expected cash is the opening cash plus every session the shift's
        operator charged between opening and now. A variance is recorded,
        never rejected.

        Raises:
            ShiftNotFound: No such shift
            ShiftAlreadyClosed: Shift was closed before, possibly concurrently
        """
        counted_cash = _money(counted_cash)
        if counted_cash < 0:
            raise InvalidAmount("Counted cash cannot be negative", counted_cash=str(counted_cash))

        shift = self.store.get_shift(shift_id)
        if shift is None:
            raise ShiftNotFound(shift_id)
        if shift.state != ShiftState.OPEN.value:
            raise ShiftAlreadyClosed(shift_id)

        closed_at = ctx.now()
        opened_at = as_utc(shift.opened_at)
        opening_cash = _money(shift.opening_cash)
        collected, count, by_method = self._collected(shift.operator_id, opened_at, closed_at)
        expected = opening_cash + collected
        variance = counted_cash - expected

        if not self.store.close_shift(shift_id, closed_at, counted_cash, expected, variance, notes):
            self.store.rollback()
            raise ShiftAlreadyClosed(shift_id)
        self.store.commit()

        if variance != 0:
            logger.warning(
                f"Shift {shift_id} closed by {ctx.operator_id} with variance {variance} "
                f"(expected {expected}, counted {counted_cash})"
            )
        else:
            logger.info(f"Shift {shift_id} closed by {ctx.operator_id}, cash matches")

        report = ShiftReport(
            shift_id=shift_id,
            operator_id=shift.operator_id,
            opened_at=opened_at,
            closed_at=closed_at,
            opening_cash=opening_cash,
            collected=collected,
            expected_cash=expected,
            counted_cash=counted_cash,
            variance=variance,
            paid_sessions=count,
            by_method=by_method,
        )
        if self.audit is not None:
            self.audit.append(
                ctx.operator_id,
                AuditAction.SHIFT_CLOSED,
                "shifts",
                shift_id,
                amount=counted_cash,
                details={
                    "expected_cash": str(expected),
                    "variance": str(variance),
                    "paid_sessions": count,
                },
            )
        self._publish(shift_id, shift.operator_id, ShiftState.CLOSED)
        return report

    def get_open_shift(self, ctx: OperatorContext) -> Optional[ShiftProjection]:
        """Live expected cash of the caller's open shift, if any."""
        shift = self.store.find_open_shift(ctx.operator_id)
        if shift is None:
            return None

        opened_at = as_utc(shift.opened_at)
        opening_cash = _money(shift.opening_cash)
        collected, count, by_method = self._collected(shift.operator_id, opened_at, ctx.now())
        return ShiftProjection(
            shift_id=shift.id,
            operator_id=shift.operator_id,
            opened_at=opened_at,
            opening_cash=opening_cash,
            collected=collected,
            expected_cash=opening_cash + collected,
            paid_sessions=count,
            by_method=by_method,
        )

    def list_shifts(self, operator_id: str, limit: int = 30) -> List[Shift]:
        return self.store.list_shifts(operator_id, limit=limit)

    def _collected(
        self,
        operator_id: str,
        start: datetime,
        end: datetime
    ) -> Tuple[Decimal, int, Dict[str, Decimal]]:
        sessions = self.store.paid_sessions_between(operator_id, start, end)
        by_method: Dict[str, Decimal] = defaultdict(lambda: Decimal("0.00"))
        for session in sessions:
            by_method[session.payment_method] += _money(session.amount or 0)
        total = sum(by_method.values(), Decimal("0.00"))
        return _money(total), len(sessions), dict(by_method)

    def _publish(self, shift_id: int, operator_id: str, state: ShiftState):
        if self.publisher is None:
            return
        self.publisher.publish_shift_status({
            "shift_id": shift_id,
            "operator_id": operator_id,
            "state": state.value,
        })
