"""
Health check endpoint.
"""

import logging

from fastapi import APIRouter, Depends, Request

from garagedesk.dependencies import get_clock, get_store
from garagedesk.errors import BackendUnavailable
from garagedesk.models.domain import Clock
from garagedesk.services.store import ParkingStore

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/")
async def health_check(
    request: Request,
    store: ParkingStore = Depends(get_store),
    clock: Clock = Depends(get_clock)
):
    """Database reachability, MQTT link and background queue depth."""
    try:
        database_ok = store.ping()
    except BackendUnavailable:
        database_ok = False

    publisher = getattr(request.app.state, "mqtt_publisher", None)
    retry_queue = getattr(request.app.state, "retry_queue", None)

    return {
        "status": "healthy" if database_ok else "degraded",
        "service": "GarageDesk API",
        "database": "ok" if database_ok else "unavailable",
        "mqtt_connected": bool(publisher and publisher.connected),
        "retry_queue": retry_queue.get_stats() if retry_queue else None,
        "timestamp": clock().isoformat()
    }
