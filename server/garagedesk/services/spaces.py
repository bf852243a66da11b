"""
Space registry: the static inventory and its occupancy state.

Every state change is a conditional update so two desks racing for the
same space cannot both win.
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Dict, Iterable, List, Optional

from garagedesk.errors import SpaceNotFound, SpaceOccupied, SpaceUnavailable
from garagedesk.models.database import Space
from garagedesk.models.domain import (
    AuditAction,
    OperatorContext,
    SpaceKind,
    SpaceState,
    VehicleClass,
)
from garagedesk.services.store import ParkingStore

logger = logging.getLogger(__name__)


class SpaceRegistry:
    """Reads and transitions parking spaces."""

    def __init__(self, store: ParkingStore, audit=None, publisher=None):
        self.store = store
        self.audit = audit
        self.publisher = publisher

    def provision(
        self,
        capacity: int,
        motorcycle_spaces: Iterable[int] = (),
        car_rate: Decimal = Decimal("6.00"),
        motorcycle_rate: Decimal = Decimal("3.00")
    ) -> int:
        """
        Create spaces 1..capacity that do not exist yet.

        Existing spaces are left untouched and nothing is ever deleted.

        Returns:
            Number of spaces created
        """
        existing = set(self.store.existing_space_numbers())
        motorcycle_spaces = set(motorcycle_spaces)
        created = 0

        for number in range(1, capacity + 1):
            if number in existing:
                continue
            kind = SpaceKind.MOTORCYCLE if number in motorcycle_spaces else SpaceKind.CAR
            self.store.add(Space(
                number=number,
                kind=kind.value,
                state=SpaceState.AVAILABLE.value,
                car_hourly_rate=car_rate,
                motorcycle_hourly_rate=motorcycle_rate,
            ))
            created += 1

        if created:
            self.store.commit()
            logger.info(f"Provisioned {created} parking spaces (capacity {capacity})")
        return created

    def get_space(self, number: int) -> Space:
        space = self.store.get_space(number)
        if space is None:
            raise SpaceNotFound(number)
        return space

    def list_spaces(self, state: Optional[SpaceState] = None) -> List[Space]:
        return self.store.list_spaces(state=SpaceState(state) if state else None)

    def list_available(self, vehicle_class: Optional[VehicleClass] = None) -> List[Space]:
        """Available spaces, optionally only those that accept vehicle_class."""
        kinds = None
        if vehicle_class is not None:
            kinds = [kind.value for kind in SpaceKind if kind.accepts(VehicleClass(vehicle_class))]
        return self.store.list_spaces(state=SpaceState.AVAILABLE, kinds=kinds)

    def reserve(self, number: int, at: datetime):
        """
        Mark a space occupied inside the caller's transaction.

        The caller commits. Raises SpaceUnavailable when another desk got
        there first or the space is in maintenance.
        """
        swapped = self.store.compare_and_swap_space(
            number, SpaceState.AVAILABLE, SpaceState.OCCUPIED, last_occupied_at=at
        )
        if not swapped:
            self.get_space(number)
            raise SpaceUnavailable(number)

    def release(self, number: int) -> bool:
        """
        Free an occupied space and commit.

        A space that still holds an open session is left occupied.

        Returns:
            True if the space moved to available, False if it was not
            occupied or is still in use
        """
        swapped = self.store.compare_and_swap_space(
            number, SpaceState.OCCUPIED, SpaceState.AVAILABLE, vacant_only=True
        )
        self.store.commit()
        if not swapped:
            space = self.get_space(number)
            logger.info(f"Release of space {number} skipped, state is {space.state}")
            return False

        logger.info(f"Space {number} released")
        self._publish_state(number, SpaceState.AVAILABLE)
        return True

    def set_maintenance(self, ctx: OperatorContext, number: int, notes: Optional[str] = None) -> Space:
        space = self.get_space(number)
        if space.state == SpaceState.MAINTENANCE.value:
            return space

        swapped = self.store.compare_and_swap_space(
            number, SpaceState.AVAILABLE, SpaceState.MAINTENANCE, maintenance_notes=notes
        )
        if not swapped:
            self.store.rollback()
            raise SpaceOccupied(number)
        self.store.commit()
        self.store.db.refresh(space)

        logger.info(f"Space {number} put in maintenance by {ctx.operator_id}")
        self._record_maintenance(ctx, number, True, notes)
        self._publish_state(number, SpaceState.MAINTENANCE)
        return space

    def clear_maintenance(self, ctx: OperatorContext, number: int) -> Space:
        space = self.get_space(number)
        swapped = self.store.compare_and_swap_space(
            number, SpaceState.MAINTENANCE, SpaceState.AVAILABLE, maintenance_notes=None
        )
        self.store.commit()
        self.store.db.refresh(space)
        if not swapped:
            return space

        logger.info(f"Space {number} back in service by {ctx.operator_id}")
        self._record_maintenance(ctx, number, False, None)
        self._publish_state(number, SpaceState.AVAILABLE)
        return space

    def occupancy_summary(self) -> Dict[str, int]:
        """Space counts per state plus the total."""
        summary = {state.value: 0 for state in SpaceState}
        spaces = self.store.list_spaces()
        for space in spaces:
            summary[space.state] = summary.get(space.state, 0) + 1
        summary["total"] = len(spaces)
        return summary

    def _record_maintenance(self, ctx: OperatorContext, number: int, enabled: bool, notes: Optional[str]):
        if self.audit is None:
            return
        self.audit.append(
            ctx.operator_id,
            AuditAction.SPACE_MAINTENANCE,
            "spaces",
            number,
            details={"maintenance": enabled, "notes": notes},
        )

    def _publish_state(self, number: int, state: SpaceState):
        if self.publisher is None:
            return
        self.publisher.publish_space_state({"space_number": number, "state": state.value})
