"""
Parking space endpoints.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends

from garagedesk.dependencies import (
    get_clock,
    get_mqtt_publisher,
    get_operator_context,
    get_space_registry,
    verify_api_key,
)
from garagedesk.models.domain import Clock, OperatorContext, SpaceState, VehicleClass
from garagedesk.models.schemas import (
    MaintenanceRequest,
    SpaceListResponse,
    SpaceResponse,
    SummaryResponse,
)
from garagedesk.services.spaces import SpaceRegistry

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("", response_model=SpaceListResponse)
async def list_spaces(
    state: Optional[SpaceState] = None,
    registry: SpaceRegistry = Depends(get_space_registry)
):
    """List all spaces, optionally filtered by state."""
    spaces = registry.list_spaces(state)
    return {
        "spaces": [SpaceResponse.model_validate(s) for s in spaces],
        "count": len(spaces)
    }


@router.get("/available", response_model=SpaceListResponse)
async def list_available_spaces(
    vehicle_class: Optional[VehicleClass] = None,
    registry: SpaceRegistry = Depends(get_space_registry)
):
    """List available spaces that accept the given vehicle class."""
    spaces = registry.list_available(vehicle_class)
    return {
        "spaces": [SpaceResponse.model_validate(s) for s in spaces],
        "count": len(spaces)
    }


@router.get("/summary", response_model=SummaryResponse)
async def get_summary(
    registry: SpaceRegistry = Depends(get_space_registry),
    clock: Clock = Depends(get_clock),
    publisher=Depends(get_mqtt_publisher)
):
    """Get occupancy counts for the dashboard."""
    summary = {
        **registry.occupancy_summary(),
        "ts_utc": clock().isoformat()
    }
    if publisher is not None:
        publisher.publish_summary(summary)
    return summary


@router.put("/{number}/maintenance", response_model=SpaceResponse)
async def set_maintenance(
    number: int,
    data: MaintenanceRequest,
    ctx: OperatorContext = Depends(get_operator_context),
    registry: SpaceRegistry = Depends(get_space_registry),
    api_key: str = Depends(verify_api_key)
):
    """Take a space out of service."""
    return registry.set_maintenance(ctx, number, data.notes)


@router.delete("/{number}/maintenance", response_model=SpaceResponse)
async def clear_maintenance(
    number: int,
    ctx: OperatorContext = Depends(get_operator_context),
    registry: SpaceRegistry = Depends(get_space_registry),
    api_key: str = Depends(verify_api_key)
):
    """Put a space back in service."""
    return registry.clear_maintenance(ctx, number)
