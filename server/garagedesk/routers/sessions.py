"""
Vehicle entry and exit endpoints.
"""

import logging

from fastapi import APIRouter, Depends

from garagedesk.dependencies import get_operator_context, get_session_manager, verify_api_key
from garagedesk.models.domain import OperatorContext
from garagedesk.models.schemas import (
    EntryRequest,
    ExitPreviewResponse,
    ExitRequest,
    ExitResponse,
    SessionResponse,
)
from garagedesk.services.sessions import SessionManager

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/entry", response_model=SessionResponse)
async def register_entry(
    data: EntryRequest,
    ctx: OperatorContext = Depends(get_operator_context),
    manager: SessionManager = Depends(get_session_manager),
    api_key: str = Depends(verify_api_key)
):
    """Park a vehicle in a space."""
    session = manager.register_entry(ctx, data.plate, data.vehicle_class, data.space_number)
    return SessionResponse.model_validate(session)


@router.post("/exit", response_model=ExitResponse)
async def register_exit(
    data: ExitRequest,
    ctx: OperatorContext = Depends(get_operator_context),
    manager: SessionManager = Depends(get_session_manager),
    api_key: str = Depends(verify_api_key)
):
    """Charge a vehicle and free its space."""
    receipt = manager.register_exit(ctx, data.plate, data.payment_method)
    return ExitResponse.model_validate(receipt)


@router.get("/active")
async def list_active_sessions(manager: SessionManager = Depends(get_session_manager)):
    """List vehicles currently parked."""
    sessions = manager.list_active_sessions()
    return {
        "sessions": [SessionResponse.model_validate(s) for s in sessions],
        "count": len(sessions)
    }


@router.get("/active/{plate}", response_model=ExitPreviewResponse)
async def get_active_session(
    plate: str,
    ctx: OperatorContext = Depends(get_operator_context),
    manager: SessionManager = Depends(get_session_manager)
):
    """Look up a parked vehicle with its cost so far."""
    preview = manager.preview_exit(ctx, plate)
    return ExitPreviewResponse.model_validate(preview)
