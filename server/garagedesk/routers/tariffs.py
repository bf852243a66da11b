"""
Tariff rule and pricing configuration endpoints.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends

from garagedesk.dependencies import (
    get_operator_context,
    get_pricing_service,
    get_tariff_book,
    verify_api_key,
)
from garagedesk.models.domain import OperatorContext, VehicleClass, as_utc
from garagedesk.models.schemas import (
    PricingConfigResponse,
    PricingConfigUpdate,
    SimulateRequest,
    SimulateResponse,
    TariffRequest,
    TariffResponse,
    TariffUpsertResponse,
)
from garagedesk.services.pricing import PricingService
from garagedesk.services.tariffs import TariffBook, TariffDraft

logger = logging.getLogger(__name__)

router = APIRouter()


def _draft(data: TariffRequest) -> TariffDraft:
    return TariffDraft(**data.model_dump())


@router.get("/tariffs")
async def list_tariffs(
    vehicle_class: Optional[VehicleClass] = None,
    active_only: bool = False,
    book: TariffBook = Depends(get_tariff_book)
):
    """List tariff rules, highest priority first."""
    rules = book.list_tariffs(vehicle_class, active_only=active_only)
    return {
        "tariffs": [TariffResponse.model_validate(r) for r in rules],
        "count": len(rules)
    }


@router.post("/tariffs", response_model=TariffUpsertResponse)
async def create_tariff(
    data: TariffRequest,
    ctx: OperatorContext = Depends(get_operator_context),
    book: TariffBook = Depends(get_tariff_book),
    api_key: str = Depends(verify_api_key)
):
    """Create a tariff rule. Same-priority overlaps are returned as warnings."""
    rule, conflicts = book.upsert_tariff(ctx, _draft(data))
    return {"tariff": TariffResponse.model_validate(rule), "conflicts": conflicts}


@router.put("/tariffs/{tariff_id}", response_model=TariffUpsertResponse)
async def update_tariff(
    tariff_id: int,
    data: TariffRequest,
    ctx: OperatorContext = Depends(get_operator_context),
    book: TariffBook = Depends(get_tariff_book),
    api_key: str = Depends(verify_api_key)
):
    """Replace a tariff rule. Set active=false to retire it."""
    rule, conflicts = book.upsert_tariff(ctx, _draft(data), tariff_id=tariff_id)
    return {"tariff": TariffResponse.model_validate(rule), "conflicts": conflicts}


@router.get("/pricing/config", response_model=PricingConfigResponse)
async def get_pricing_config(pricing: PricingService = Depends(get_pricing_service)):
    """Get grace period, rounding and rule toggles."""
    return pricing.get_pricing_config()


@router.put("/pricing/config", response_model=PricingConfigResponse)
async def update_pricing_config(
    data: PricingConfigUpdate,
    ctx: OperatorContext = Depends(get_operator_context),
    pricing: PricingService = Depends(get_pricing_service),
    api_key: str = Depends(verify_api_key)
):
    """Save pricing settings if nobody else changed them meanwhile."""
    changes = data.model_dump(exclude={"expected_version"}, exclude_none=True)
    return pricing.update_pricing_config(ctx, changes, data.expected_version)


@router.post("/pricing/simulate", response_model=SimulateResponse)
async def simulate_cost(
    data: SimulateRequest,
    ctx: OperatorContext = Depends(get_operator_context),
    pricing: PricingService = Depends(get_pricing_service)
):
    """Preview what a stay would cost."""
    reference = as_utc(data.reference) if data.reference else ctx.now()
    result = pricing.simulate_cost(data.vehicle_class, data.duration_minutes, reference)
    return SimulateResponse.model_validate(result)
