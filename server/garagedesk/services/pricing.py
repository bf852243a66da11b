"""
Parking cost calculation and pricing configuration.
"""

import logging
from datetime import datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict

from sqlalchemy.exc import IntegrityError

from garagedesk.errors import PricingConfigStale, ValidationFailed
from garagedesk.models.database import PricingConfig
from garagedesk.models.domain import (
    AuditAction,
    CostBreakdown,
    CostResult,
    OperatorContext,
    VehicleClass,
)
from garagedesk.services.store import PRICING_CONFIG_ID, ParkingStore
from garagedesk.services.tariffs import TariffResolver

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
ZERO = Decimal("0.00")
SIXTY = Decimal(60)

EDITABLE_FIELDS = {
    "grace_minutes",
    "rounding_minutes",
    "night_rules_enabled",
    "weekend_rules_enabled",
}


def elapsed_minutes(entry_at: datetime, exit_at: datetime) -> int:
    """Whole minutes between entry and exit, never negative."""
    seconds = (exit_at - entry_at).total_seconds()
    return max(0, int(seconds // 60))


def round_up_minutes(minutes: int, increment: int) -> int:
    """Ceiling to the next multiple of increment. No rounding below 2."""
    if increment <= 1 or minutes % increment == 0:
        return minutes
    return (minutes // increment + 1) * increment


def calculate(rule, entry_at: datetime, exit_at: datetime, config) -> CostResult:
    """
    Compute the amount owed for a stay.

    Args:
        rule: Tariff rule with first/additional hour rates and min/max charge
        entry_at: Session entry instant
        exit_at: Session exit instant
        config: Pricing config with grace_minutes and rounding_minutes

    Returns:
        CostResult with the amount rounded half-up to cents and its breakdown
    """
    elapsed = elapsed_minutes(entry_at, exit_at)
    grace = int(config.grace_minutes or 0)
    rounding = int(config.rounding_minutes or 0)
    minimum = Decimal(rule.minimum_charge)
    maximum = Decimal(rule.maximum_charge) if rule.maximum_charge is not None else None

    if elapsed <= grace:
        return CostResult(
            amount=ZERO,
            breakdown=CostBreakdown(
                elapsed_minutes=elapsed,
                billable_minutes=0,
                grace_minutes=grace,
                grace_applied=True,
                rounding_minutes=rounding,
                rounding_applied=False,
                first_hour_charge=ZERO,
                additional_hours_charge=ZERO,
                subtotal=ZERO,
                minimum_charge=minimum,
                minimum_applied=False,
                maximum_charge=maximum,
                maximum_applied=False,
                tariff_id=rule.id,
                tariff_name=rule.name,
            ),
        )

    billable = round_up_minutes(elapsed, rounding)

    first_hour = Decimal(min(billable, 60)) / SIXTY * Decimal(rule.first_hour_rate)
    additional = Decimal(max(billable - 60, 0)) / SIXTY * Decimal(rule.additional_hour_rate)
    subtotal = first_hour + additional

    amount = subtotal
    minimum_applied = amount < minimum
    if minimum_applied:
        amount = minimum
    maximum_applied = maximum is not None and amount > maximum
    if maximum_applied:
        amount = maximum

    return CostResult(
        amount=amount.quantize(CENT, rounding=ROUND_HALF_UP),
        breakdown=CostBreakdown(
            elapsed_minutes=elapsed,
            billable_minutes=billable,
            grace_minutes=grace,
            grace_applied=False,
            rounding_minutes=rounding,
            rounding_applied=billable != elapsed,
            first_hour_charge=first_hour.quantize(CENT, rounding=ROUND_HALF_UP),
            additional_hours_charge=additional.quantize(CENT, rounding=ROUND_HALF_UP),
            subtotal=subtotal.quantize(CENT, rounding=ROUND_HALF_UP),
            minimum_charge=minimum,
            minimum_applied=minimum_applied,
            maximum_charge=maximum,
            maximum_applied=maximum_applied,
            tariff_id=rule.id,
            tariff_name=rule.name,
        ),
    )


class PricingService:
    """Pricing configuration singleton and the cost simulator."""

    def __init__(
        self,
        store: ParkingStore,
        resolver: TariffResolver,
        default_grace_minutes: int = 15,
        default_rounding_minutes: int = 15,
        audit=None
    ):
        self.store = store
        self.resolver = resolver
        self.default_grace_minutes = default_grace_minutes
        self.default_rounding_minutes = default_rounding_minutes
        self.audit = audit

    def get_pricing_config(self) -> PricingConfig:
        """Read the config row, seeding it from defaults on first use."""
        config = self.store.get_pricing_config()
        if config is None:
            config = PricingConfig(
                id=PRICING_CONFIG_ID,
                grace_minutes=self.default_grace_minutes,
                rounding_minutes=self.default_rounding_minutes,
                night_rules_enabled=True,
                weekend_rules_enabled=True,
                version=1,
            )
            try:
                self.store.add(config)
                self.store.commit()
            except IntegrityError:
                # Seeded concurrently by another request.
                self.store.rollback()
                return self.store.get_pricing_config()
            self.store.db.refresh(config)
            logger.info("Pricing configuration seeded with defaults")
        return config

    def update_pricing_config(
        self,
        ctx: OperatorContext,
        changes: Dict[str, Any],
        expected_version: int
    ) -> PricingConfig:
        """
        Apply changes if nobody saved the config since expected_version was read.

        Raises:
            PricingConfigStale: The stored version moved on
        """
        unknown = set(changes) - EDITABLE_FIELDS
        if unknown:
            raise ValidationFailed("Unknown pricing settings", fields=sorted(unknown))
        changes = {key: value for key, value in changes.items() if value is not None}

        grace_minutes = changes.get("grace_minutes")
        rounding_minutes = changes.get("rounding_minutes")
        if grace_minutes is not None and grace_minutes < 0:
            raise ValidationFailed("Grace period cannot be negative", grace_minutes=grace_minutes)
        if rounding_minutes is not None and rounding_minutes < 1:
            raise ValidationFailed("Rounding increment must be at least 1 minute",
                                   rounding_minutes=rounding_minutes)

        current = self.get_pricing_config()
        if not self.store.compare_and_swap_pricing_config(
            expected_version, modified_by=ctx.operator_id, **changes
        ):
            self.store.rollback()
            raise PricingConfigStale(expected_version, current.version)
        self.store.commit()
        self.store.db.refresh(current)
        logger.info(f"Pricing configuration v{current.version} saved by {ctx.operator_id}: {changes}")

        if self.audit is not None:
            self.audit.append(
                ctx.operator_id,
                AuditAction.PRICING_CONFIG_CHANGED,
                "pricing_config",
                PRICING_CONFIG_ID,
                details={"version": current.version, "changes": changes},
            )
        return current

    def quote(self, vehicle_class: VehicleClass, entry_at: datetime, exit_at: datetime) -> CostResult:
        """Resolve the tariff at entry and price the stay."""
        config = self.get_pricing_config()
        rule = self.resolver.resolve(
            vehicle_class,
            entry_at,
            night_rules_enabled=config.night_rules_enabled,
            weekend_rules_enabled=config.weekend_rules_enabled,
        )
        return calculate(rule, entry_at, exit_at, config)

    def simulate_cost(
        self,
        vehicle_class: VehicleClass,
        duration_minutes: int,
        reference: datetime
    ) -> CostResult:
        """Preview the price of a stay starting at reference."""
        if duration_minutes < 0:
            raise ValidationFailed("Duration cannot be negative", duration_minutes=duration_minutes)
        return self.quote(vehicle_class, reference, reference + timedelta(minutes=duration_minutes))
