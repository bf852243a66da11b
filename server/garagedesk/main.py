"""
FastAPI application for GarageDesk server.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from garagedesk.config import settings
from garagedesk.errors import GarageError
from garagedesk.models.database import SessionLocal, init_db
from garagedesk.routers import health, sessions, shifts, spaces, tariffs
from garagedesk.services.audit import AuditTrail, DatabaseAuditSink, HttpAuditSink
from garagedesk.services.mqtt_publisher import MQTTPublisher
from garagedesk.services.retry import RetryQueue
from garagedesk.services.spaces import SpaceRegistry
from garagedesk.services.store import ParkingStore

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def build_audit_sink():
    """Create the configured audit sink."""
    if settings.audit_sink == "http":
        return HttpAuditSink(
            url=settings.audit_url,
            api_key=settings.api_key,
            timeout=settings.audit_timeout_s
        )
    return DatabaseAuditSink(SessionLocal)


def provision_spaces():
    """Create the static space inventory."""
    db = SessionLocal()
    try:
        SpaceRegistry(ParkingStore(db)).provision(
            settings.garage_capacity,
            settings.motorcycle_spaces,
            car_rate=settings.default_car_rate,
            motorcycle_rate=settings.default_motorcycle_rate
        )
    finally:
        db.close()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan management."""
    # Startup
    logger.info("Starting GarageDesk Server...")

    # Initialize database
    init_db()
    provision_spaces()
    app.state.session_factory = SessionLocal

    # Background queue for audit writes and deferred space releases
    app.state.retry_queue = RetryQueue(
        name="garagedesk",
        max_attempts=settings.audit_max_attempts,
        backoff_seconds=settings.retry_backoff_s,
        maxsize=settings.retry_queue_size
    )
    app.state.retry_queue.start()
    app.state.audit_trail = AuditTrail(
        build_audit_sink(),
        app.state.retry_queue,
        max_attempts=settings.audit_max_attempts
    )

    # Initialize MQTT publisher
    app.state.mqtt_publisher = MQTTPublisher(
        host=settings.mqtt_host,
        port=settings.mqtt_port,
        topic_prefix=settings.mqtt_topic_prefix
    )
    app.state.mqtt_publisher.connect()

    logger.info("GarageDesk Server started successfully")

    yield

    # Shutdown
    logger.info("Shutting down GarageDesk Server...")
    app.state.retry_queue.stop()
    app.state.mqtt_publisher.disconnect()


app = FastAPI(
    title="GarageDesk API",
    description="Parking garage front desk: entries, exits, tariffs and cash control",
    version="1.0.0",
    lifespan=lifespan
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(GarageError)
async def garage_error_handler(request: Request, exc: GarageError):
    """Render domain errors with their code and context."""
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(exc.to_dict()))


# Include routers
app.include_router(spaces.router, prefix="/api/v1/spaces", tags=["spaces"])
app.include_router(sessions.router, prefix="/api/v1/sessions", tags=["sessions"])
app.include_router(tariffs.router, prefix="/api/v1", tags=["tariffs"])
app.include_router(shifts.router, prefix="/api/v1/shifts", tags=["shifts"])
app.include_router(health.router, prefix="/api/v1/health", tags=["health"])


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "service": "GarageDesk API",
        "version": "1.0.0",
        "status": "running"
    }
