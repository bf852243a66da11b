"""
Unit tests for the shift ledger.
"""

import pytest
from datetime import datetime, timezone
from decimal import Decimal
from zoneinfo import ZoneInfo

from garagedesk.errors import (
    InvalidAmount,
    ShiftAlreadyClosed,
    ShiftAlreadyOpen,
    ShiftNotFound,
)
from garagedesk.models.domain import OperatorContext
from garagedesk.services.shifts import ShiftLedger


def park_and_pay(manager, ctx, clock, plate, space, minutes, method="cash"):
    manager.register_entry(ctx, plate, "car", space)
    clock.advance(minutes=minutes)
    return manager.register_exit(ctx, plate, method)


def test_open_shift(ledger, ctx, clock, retry_queue, audit_sink):
    shift = ledger.open_shift(ctx, Decimal("100.00"), notes="Morning")

    assert shift.id is not None
    assert shift.state == "open"
    assert shift.opening_cash == Decimal("100.00")
    assert shift.shift_date == clock().date()

    retry_queue.drain()
    assert audit_sink.actions() == ["shift_opened"]


def test_open_shift_twice(ledger, ctx):
    first = ledger.open_shift(ctx, Decimal("50.00"))

    with pytest.raises(ShiftAlreadyOpen) as exc_info:
        ledger.open_shift(ctx, Decimal("50.00"))

    assert exc_info.value.context["shift_id"] == first.id


def test_open_shift_per_operator(ledger, ctx, clock):
    ledger.open_shift(ctx, Decimal("50.00"))
    other = ledger.open_shift(OperatorContext(operator_id="op-2", clock=clock), Decimal("20.00"))

    assert other.operator_id == "op-2"


def test_negative_opening_cash(ledger, ctx):
    with pytest.raises(InvalidAmount):
        ledger.open_shift(ctx, Decimal("-1.00"))


def test_close_shift_variance(ledger, manager, ctx, clock, car_rule):
    shift = ledger.open_shift(ctx, Decimal("100.00"))
    park_and_pay(manager, ctx, clock, "ABC-123", 1, 20)              # 3.00
    park_and_pay(manager, ctx, clock, "XYZ-789", 2, 185, "card")     # 12.75
    clock.advance(minutes=5)

    report = ledger.close_shift(ctx, shift.id, Decimal("114.50"))

    assert report.collected == Decimal("15.75")
    assert report.expected_cash == Decimal("115.75")
    assert report.variance == Decimal("-1.25")
    assert report.variance == report.counted_cash - (report.opening_cash + report.collected)
    assert report.paid_sessions == 2
    assert report.by_method == {"cash": Decimal("3.00"), "card": Decimal("12.75")}


def test_close_shift_ignores_other_operators(ledger, manager, ctx, clock, car_rule):
    shift = ledger.open_shift(ctx, Decimal("10.00"))
    other = OperatorContext(operator_id="op-2", clock=clock)
    park_and_pay(manager, other, clock, "ABC-123", 1, 60)
    park_and_pay(manager, ctx, clock, "XYZ-789", 2, 60)

    report = ledger.close_shift(ctx, shift.id, Decimal("16.00"))

    assert report.expected_cash == Decimal("16.00")
    assert report.variance == Decimal("0.00")


def test_close_shift_ignores_payments_before_opening(ledger, manager, ctx, clock, car_rule):
    park_and_pay(manager, ctx, clock, "ABC-123", 1, 60)
    clock.advance(minutes=1)
    shift = ledger.open_shift(ctx, Decimal("0.00"))

    report = ledger.close_shift(ctx, shift.id, Decimal("0.00"))

    assert report.paid_sessions == 0
    assert report.expected_cash == Decimal("0.00")


def test_close_shift_persists_result(ledger, store, ctx, clock):
    shift = ledger.open_shift(ctx, Decimal("40.00"))
    clock.advance(hours=8)

    ledger.close_shift(ctx, shift.id, Decimal("45.00"), notes="Found a tip")

    stored = store.get_shift(shift.id)
    assert stored.state == "closed"
    assert stored.closing_cash == Decimal("45.00")
    assert stored.expected_cash == Decimal("40.00")
    assert stored.variance == Decimal("5.00")
    assert stored.notes == "Found a tip"


def test_close_shift_twice(ledger, ctx):
    shift = ledger.open_shift(ctx, Decimal("40.00"))
    ledger.close_shift(ctx, shift.id, Decimal("40.00"))

    with pytest.raises(ShiftAlreadyClosed):
        ledger.close_shift(ctx, shift.id, Decimal("40.00"))


def test_close_missing_shift(ledger, ctx):
    with pytest.raises(ShiftNotFound):
        ledger.close_shift(ctx, 404, Decimal("0.00"))


def test_reopen_after_close(ledger, ctx):
    shift = ledger.open_shift(ctx, Decimal("40.00"))
    ledger.close_shift(ctx, shift.id, Decimal("40.00"))

    assert ledger.open_shift(ctx, Decimal("30.00")).id != shift.id


def test_open_shift_projection(ledger, manager, ctx, clock, car_rule):
    assert ledger.get_open_shift(ctx) is None

    ledger.open_shift(ctx, Decimal("100.00"))
    park_and_pay(manager, ctx, clock, "ABC-123", 1, 20, "plin")

    projection = ledger.get_open_shift(ctx)

    assert projection.expected_cash == Decimal("103.00")
    assert projection.paid_sessions == 1
    assert projection.by_method == {"plin": Decimal("3.00")}


def test_list_shifts_newest_first(ledger, ctx, clock):
    first = ledger.open_shift(ctx, Decimal("10.00"))
    ledger.close_shift(ctx, first.id, Decimal("10.00"))
    clock.advance(days=1)
    second = ledger.open_shift(ctx, Decimal("20.00"))

    shifts = ledger.list_shifts("op-1")

    assert [s.id for s in shifts] == [second.id, first.id]
    assert ledger.list_shifts("op-2") == []


def test_shift_date_uses_garage_day(store, ctx, clock):
    # 01:00 UTC on the 15th is still the evening of the 14th in Lima
    clock.set(datetime(2026, 1, 15, 1, 0, tzinfo=timezone.utc))
    ledger = ShiftLedger(store, ZoneInfo("America/Lima"))

    shift = ledger.open_shift(ctx, Decimal("50.00"))

    assert shift.shift_date.isoformat() == "2026-01-14"


def test_payment_at_handover_counted_once(ledger, manager, ctx, clock, car_rule):
    first = ledger.open_shift(ctx, Decimal("0.00"))
    park_and_pay(manager, ctx, clock, "ABC-123", 1, 60)

    # Close and reopen at the same instant as the payment
    first_report = ledger.close_shift(ctx, first.id, Decimal("6.00"))
    second = ledger.open_shift(ctx, Decimal("0.00"))
    clock.advance(hours=1)
    second_report = ledger.close_shift(ctx, second.id, Decimal("0.00"))

    assert first_report.paid_sessions == 1
    assert first_report.variance == Decimal("0.00")
    assert second_report.paid_sessions == 0
    assert second_report.variance == Decimal("0.00")
