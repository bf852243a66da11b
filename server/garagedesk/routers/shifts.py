"""
Shift (cash till) endpoints.
"""

import logging

from fastapi import APIRouter, Depends, Query

from garagedesk.dependencies import get_operator_context, get_shift_ledger, verify_api_key
from garagedesk.models.domain import OperatorContext
from garagedesk.models.schemas import (
    CloseShiftRequest,
    OpenShiftRequest,
    ShiftHistoryResponse,
    ShiftProjectionResponse,
    ShiftReportResponse,
    ShiftResponse,
)
from garagedesk.services.shifts import ShiftLedger

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("", response_model=ShiftResponse)
async def open_shift(
    data: OpenShiftRequest,
    ctx: OperatorContext = Depends(get_operator_context),
    ledger: ShiftLedger = Depends(get_shift_ledger),
    api_key: str = Depends(verify_api_key)
):
    """Open the caller's shift with the starting cash."""
    return ledger.open_shift(ctx, data.opening_cash, data.notes)


@router.post("/{shift_id}/close", response_model=ShiftReportResponse)
async def close_shift(
    shift_id: int,
    data: CloseShiftRequest,
    ctx: OperatorContext = Depends(get_operator_context),
    ledger: ShiftLedger = Depends(get_shift_ledger),
    api_key: str = Depends(verify_api_key)
):
    """Close a shift and report the cash variance."""
    report = ledger.close_shift(ctx, shift_id, data.counted_cash, data.notes)
    return ShiftReportResponse.model_validate(report)


@router.get("/open")
async def get_open_shift(
    ctx: OperatorContext = Depends(get_operator_context),
    ledger: ShiftLedger = Depends(get_shift_ledger)
):
    """Live expected cash of the caller's open shift."""
    projection = ledger.get_open_shift(ctx)
    return {
        "shift": ShiftProjectionResponse.model_validate(projection) if projection else None
    }


@router.get("/history", response_model=ShiftHistoryResponse)
async def get_shift_history(
    limit: int = Query(30, ge=1, le=365),
    ctx: OperatorContext = Depends(get_operator_context),
    ledger: ShiftLedger = Depends(get_shift_ledger)
):
    """The caller's past shifts, newest first."""
    shifts = ledger.list_shifts(ctx.operator_id, limit=limit)
    return {
        "shifts": [ShiftResponse.model_validate(s) for s in shifts],
        "count": len(shifts)
    }
