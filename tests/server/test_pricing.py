"""
Unit tests for cost calculation and pricing configuration.
"""

import pytest
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from types import SimpleNamespace

from garagedesk.errors import NoTariffConfigured, PricingConfigStale, ValidationFailed
from garagedesk.models.domain import OperatorContext, VehicleClass
from garagedesk.services.pricing import calculate, round_up_minutes

ENTRY = datetime(2026, 1, 14, 10, 0, tzinfo=timezone.utc)


def make_rule(**overrides):
    values = dict(
        id=1,
        name="Standard",
        first_hour_rate=Decimal("6.00"),
        additional_hour_rate=Decimal("3.00"),
        minimum_charge=Decimal("2.50"),
        maximum_charge=None,
    )
    values.update(overrides)
    return SimpleNamespace(**values)


def make_config(grace=15, rounding=15):
    return SimpleNamespace(grace_minutes=grace, rounding_minutes=rounding)


def cost(minutes, rule=None, config=None):
    return calculate(
        rule or make_rule(),
        ENTRY,
        ENTRY + timedelta(minutes=minutes),
        config or make_config()
    )


def test_twenty_minutes_rounds_to_half_hour():
    """10:00 -> 10:20 bills 30 minutes of the first hour."""
    result = cost(20)

    assert result.amount == Decimal("3.00")
    assert result.breakdown.elapsed_minutes == 20
    assert result.breakdown.billable_minutes == 30
    assert result.breakdown.rounding_applied is True
    assert result.breakdown.minimum_applied is False


def test_inside_grace_is_free():
    """10:00 -> 10:10 is inside the 15 minute grace period."""
    result = cost(10)

    assert result.amount == Decimal("0.00")
    assert result.breakdown.grace_applied is True
    assert result.breakdown.billable_minutes == 0


def test_grace_boundary_is_free():
    assert cost(15).amount == Decimal("0.00")
    assert cost(16).amount > Decimal("0.00")


def test_three_hours_five_minutes():
    """08:00 -> 11:05 is 185 minutes, billed as 195."""
    entry = datetime(2026, 1, 14, 8, 0, tzinfo=timezone.utc)
    exit_at = datetime(2026, 1, 14, 11, 5, tzinfo=timezone.utc)

    result = calculate(make_rule(), entry, exit_at, make_config())

    assert result.breakdown.elapsed_minutes == 185
    assert result.breakdown.billable_minutes == 195
    assert result.breakdown.first_hour_charge == Decimal("6.00")
    assert result.breakdown.additional_hours_charge == Decimal("6.75")
    assert result.amount == Decimal("12.75")


def test_minimum_charge_applies():
    rule = make_rule(minimum_charge=Decimal("5.00"))
    result = cost(20, rule=rule)

    assert result.amount == Decimal("5.00")
    assert result.breakdown.minimum_applied is True


def test_maximum_charge_caps_amount():
    rule = make_rule(maximum_charge=Decimal("20.00"))
    result = cost(24 * 60, rule=rule)

    assert result.amount == Decimal("20.00")
    assert result.breakdown.maximum_applied is True


def test_amount_is_monotonic_and_bounded():
    rule = make_rule(maximum_charge=Decimal("25.00"))
    previous = Decimal("0.00")

    for minutes in range(0, 12 * 60, 7):
        result = cost(minutes, rule=rule)
        assert result.amount >= previous
        assert result.amount <= rule.maximum_charge
        if minutes > 15:
            assert result.amount >= rule.minimum_charge
        previous = result.amount


def test_rounding_is_always_ceiling():
    for minutes in range(16, 400, 11):
        result = cost(minutes)
        assert result.breakdown.billable_minutes >= result.breakdown.elapsed_minutes
        assert result.breakdown.billable_minutes % 15 == 0


def test_rounding_of_one_minute_is_a_no_op():
    assert round_up_minutes(37, 1) == 37
    assert round_up_minutes(37, 0) == 37
    assert round_up_minutes(45, 15) == 45
    assert round_up_minutes(46, 15) == 60


def test_negative_duration_clamps_to_zero():
    result = calculate(make_rule(), ENTRY, ENTRY - timedelta(minutes=30), make_config())

    assert result.breakdown.elapsed_minutes == 0
    assert result.amount == Decimal("0.00")


def test_half_up_rounding_to_cents():
    # 31 minutes at 1.00/h without rounding is 0.51666...
    rule = make_rule(first_hour_rate=Decimal("1.00"), minimum_charge=Decimal("0.00"))
    result = cost(31, rule=rule, config=make_config(grace=0, rounding=1))

    assert result.amount == Decimal("0.52")


def test_seconds_are_floored():
    result = calculate(
        make_rule(),
        ENTRY,
        ENTRY + timedelta(minutes=15, seconds=59),
        make_config()
    )
    assert result.breakdown.elapsed_minutes == 15
    assert result.amount == Decimal("0.00")


# Pricing configuration

def test_config_seeded_from_defaults(pricing):
    config = pricing.get_pricing_config()

    assert config.grace_minutes == 15
    assert config.rounding_minutes == 15
    assert config.night_rules_enabled is True
    assert config.version == 1


def test_update_config_bumps_version(pricing, ctx, retry_queue, audit_sink):
    pricing.get_pricing_config()

    config = pricing.update_pricing_config(ctx, {"grace_minutes": 10}, expected_version=1)

    assert config.grace_minutes == 10
    assert config.version == 2
    assert config.modified_by == "op-1"

    retry_queue.drain()
    assert "pricing_config_changed" in audit_sink.actions()


def test_update_config_with_stale_version(pricing, ctx):
    pricing.get_pricing_config()
    pricing.update_pricing_config(ctx, {"grace_minutes": 10}, expected_version=1)

    with pytest.raises(PricingConfigStale) as exc_info:
        pricing.update_pricing_config(ctx, {"grace_minutes": 5}, expected_version=1)

    assert exc_info.value.context["current_version"] == 2
    assert pricing.get_pricing_config().grace_minutes == 10


@pytest.mark.parametrize("changes", [
    {"grace_minutes": -1},
    {"rounding_minutes": 0},
    {"hourly_rate": 5},
])
def test_update_config_validation(pricing, ctx, changes):
    pricing.get_pricing_config()

    with pytest.raises(ValidationFailed):
        pricing.update_pricing_config(ctx, changes, expected_version=1)


def test_simulate_cost(pricing, car_rule):
    result = pricing.simulate_cost(VehicleClass.CAR, 185, ENTRY)

    assert result.amount == Decimal("12.75")
    assert result.breakdown.tariff_id == car_rule.id


def test_simulate_cost_without_tariff(pricing):
    with pytest.raises(NoTariffConfigured):
        pricing.simulate_cost(VehicleClass.MOTORCYCLE, 60, ENTRY)


def test_simulate_negative_duration(pricing, car_rule):
    with pytest.raises(ValidationFailed):
        pricing.simulate_cost(VehicleClass.CAR, -5, ENTRY)


def test_simulate_uses_config_grace(pricing, car_rule):
    ctx = OperatorContext(operator_id="admin")
    pricing.get_pricing_config()
    pricing.update_pricing_config(ctx, {"grace_minutes": 0, "rounding_minutes": 1}, expected_version=1)

    result = pricing.simulate_cost(VehicleClass.CAR, 10, ENTRY)

    assert result.amount == Decimal("2.50")
    assert result.breakdown.minimum_applied is True
