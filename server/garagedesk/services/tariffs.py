"""
Tariff rule store and resolver.

Windows are half-open [start, end) in the garage's local time. A window
whose start is after its end wraps past midnight, and start == end covers
the whole day. Weekdays follow Python's convention, 0=Monday .. 6=Sunday.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, time, tzinfo
from decimal import Decimal
from typing import List, Optional, Sequence, Tuple, Union

from garagedesk.errors import (
    InvalidAmount,
    InvalidTimeWindow,
    NoTariffConfigured,
    TariffNotFound,
    ValidationFailed,
)
from garagedesk.models.database import TariffRule
from garagedesk.models.domain import AuditAction, OperatorContext, VehicleClass
from garagedesk.services.store import ParkingStore

logger = logging.getLogger(__name__)

WEEKEND = {5, 6}
MINUTES_PER_DAY = 24 * 60


def parse_time(value: Union[str, time], field_name: str = "time") -> time:
    """Parse an HH:MM string."""
    if isinstance(value, time):
        return value.replace(second=0, microsecond=0)
    try:
        hours, minutes = str(value).strip().split(":")[:2]
        return time(int(hours), int(minutes))
    except (ValueError, TypeError):
        raise InvalidTimeWindow(f"{field_name} must be HH:MM, got '{value}'", **{field_name: value})


def _minute_of_day(t: time) -> int:
    return t.hour * 60 + t.minute


def window_contains(start: time, end: time, moment: time) -> bool:
    """Whether moment falls inside the [start, end) window."""
    if start == end:
        return True
    if start < end:
        return start <= moment < end
    return moment >= start or moment < end


def _window_spans(start: time, end: time) -> List[Tuple[int, int]]:
    s, e = _minute_of_day(start), _minute_of_day(end)
    if s == e:
        return [(0, MINUTES_PER_DAY)]
    if s < e:
        return [(s, e)]
    return [(s, MINUTES_PER_DAY), (0, e)]


def windows_overlap(a_start: time, a_end: time, b_start: time, b_end: time) -> bool:
    for s1, e1 in _window_spans(a_start, a_end):
        for s2, e2 in _window_spans(b_start, b_end):
            if s1 < e2 and s2 < e1:
                return True
    return False


def is_night_rule(rule) -> bool:
    """Rules whose window wraps past midnight."""
    return rule.start_time > rule.end_time


def is_weekend_rule(rule) -> bool:
    days = set(rule.weekdays or [])
    return bool(days) and days <= WEEKEND


class TariffResolver:
    """Selects the rule that governs a vehicle class at a given instant."""

    def __init__(self, store: ParkingStore, tz: tzinfo):
        self.store = store
        self.tz = tz

    def resolve(
        self,
        vehicle_class: VehicleClass,
        reference: datetime,
        night_rules_enabled: bool = True,
        weekend_rules_enabled: bool = True
    ) -> TariffRule:
        vehicle_class = VehicleClass(vehicle_class)
        rules = self.store.list_tariffs(vehicle_class.value, active_only=True)
        if not rules:
            raise NoTariffConfigured(vehicle_class.value)

        local = reference.astimezone(self.tz)
        weekday = local.weekday()
        moment = local.time().replace(second=0, microsecond=0)

        for rule in rules:
            if not night_rules_enabled and is_night_rule(rule):
                continue
            if not weekend_rules_enabled and is_weekend_rule(rule):
                continue
            if weekday in (rule.weekdays or []) and window_contains(
                rule.start_time, rule.end_time, moment
            ):
                return rule

        # No window matched: price with the highest-priority active rule.
        fallback = rules[0]
        logger.warning(
            f"No {vehicle_class.value} tariff window matches {local.isoformat()}, "
            f"falling back to '{fallback.name}' (priority {fallback.priority})"
        )
        return fallback


@dataclass
class TariffDraft:
    """Administrator input for creating or editing a rule."""
    name: str
    vehicle_class: VehicleClass
    start_time: Union[str, time]
    end_time: Union[str, time]
    weekdays: Sequence[int]
    first_hour_rate: Decimal
    additional_hour_rate: Decimal
    minimum_charge: Decimal
    maximum_charge: Optional[Decimal] = None
    priority: int = 1
    active: bool = True
    description: Optional[str] = None

    def validate(self):
        if not self.name or not self.name.strip():
            raise ValidationFailed("Tariff name is required", field="name")
        self.name = self.name.strip()
        self.vehicle_class = VehicleClass(self.vehicle_class)
        self.start_time = parse_time(self.start_time, "start_time")
        self.end_time = parse_time(self.end_time, "end_time")

        days = sorted(set(int(d) for d in self.weekdays or []))
        if not days:
            raise ValidationFailed("At least one weekday must be selected", field="weekdays")
        if any(d < 0 or d > 6 for d in days):
            raise ValidationFailed("Weekdays must be between 0 (Monday) and 6 (Sunday)",
                                   field="weekdays", weekdays=days)
        self.weekdays = days

        self.first_hour_rate = Decimal(self.first_hour_rate)
        self.additional_hour_rate = Decimal(self.additional_hour_rate)
        self.minimum_charge = Decimal(self.minimum_charge)
        if self.first_hour_rate <= 0 or self.additional_hour_rate <= 0:
            raise InvalidAmount("Hourly rates must be greater than zero",
                                first_hour_rate=str(self.first_hour_rate),
                                additional_hour_rate=str(self.additional_hour_rate))
        if self.minimum_charge < 0:
            raise InvalidAmount("Minimum charge cannot be negative",
                                minimum_charge=str(self.minimum_charge))
        if self.maximum_charge is not None:
            self.maximum_charge = Decimal(self.maximum_charge)
            if self.maximum_charge < self.minimum_charge:
                raise InvalidAmount("Maximum charge cannot be below the minimum charge",
                                    minimum_charge=str(self.minimum_charge),
                                    maximum_charge=str(self.maximum_charge))
        return self


class TariffBook:
    """Administrator-facing access to tariff rules. Rules are never deleted."""

    def __init__(self, store: ParkingStore, audit=None):
        self.store = store
        self.audit = audit

    def list_tariffs(
        self,
        vehicle_class: Optional[VehicleClass] = None,
        active_only: bool = False
    ) -> List[TariffRule]:
        cls = VehicleClass(vehicle_class).value if vehicle_class else None
        return self.store.list_tariffs(cls, active_only=active_only)

    def find_conflicts(self, draft: TariffDraft, exclude_id: Optional[int] = None) -> List[str]:
        """Active rules that overlap the draft with the same priority."""
        conflicts = []
        if not draft.active:
            return conflicts
        for other in self.store.list_tariffs(draft.vehicle_class.value, active_only=True):
            if other.id == exclude_id or other.priority != draft.priority:
                continue
            if not set(other.weekdays or []) & set(draft.weekdays):
                continue
            if windows_overlap(draft.start_time, draft.end_time, other.start_time, other.end_time):
                conflicts.append(
                    f"Overlaps '{other.name}' (id {other.id}) with the same priority {other.priority}"
                )
        return conflicts

    def upsert_tariff(
        self,
        ctx: OperatorContext,
        draft: TariffDraft,
        tariff_id: Optional[int] = None
    ) -> Tuple[TariffRule, List[str]]:
        draft.validate()
        conflicts = self.find_conflicts(draft, exclude_id=tariff_id)

        values = dict(
            name=draft.name,
            description=draft.description,
            vehicle_class=draft.vehicle_class.value,
            start_time=draft.start_time,
            end_time=draft.end_time,
            weekdays=list(draft.weekdays),
            first_hour_rate=draft.first_hour_rate,
            additional_hour_rate=draft.additional_hour_rate,
            minimum_charge=draft.minimum_charge,
            maximum_charge=draft.maximum_charge,
            priority=draft.priority,
            active=draft.active,
            last_modified_by=ctx.operator_id,
        )

        if tariff_id is None:
            rule = TariffRule(created_by=ctx.operator_id, **values)
            self.store.add(rule)
            action = "create"
        else:
            rule = self.store.get_tariff(tariff_id)
            if rule is None:
                raise TariffNotFound(tariff_id)
            for key, value in values.items():
                setattr(rule, key, value)
            action = "update"

        self.store.commit()
        logger.info(f"Tariff {rule.id} '{rule.name}' {action}d by {ctx.operator_id}")
        for conflict in conflicts:
            logger.warning(f"Tariff {rule.id} conflict: {conflict}")

        if self.audit is not None:
            self.audit.append(
                ctx.operator_id,
                AuditAction.TARIFF_MODIFIED,
                "tariff_rules",
                rule.id,
                details={
                    "action": action,
                    "name": rule.name,
                    "vehicle_class": rule.vehicle_class,
                    "first_hour_rate": str(rule.first_hour_rate),
                    "additional_hour_rate": str(rule.additional_hour_rate),
                    "active": rule.active,
                    "conflicts": conflicts,
                },
            )
        return rule, conflicts
