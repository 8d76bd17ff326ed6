"""
FastAPI application entry point.

Run with:
    uvicorn safety_backend.app.main:app --reload --port 3000

Or, bound to HOST/PORT from the settings:
    python -m safety_backend.app.main

``create_app`` builds an independent broker, marker store and SOS
dispatcher per application instance; tests inject their own.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse

# ── Core infrastructure ──
from safety_backend.app.core.config import Settings, settings as default_settings
from safety_backend.app.core.database import Database
from safety_backend.app.core.logging_config import setup_logging, get_logger
from safety_backend.app.core.errors import ConfigurationError, register_error_handlers
from safety_backend.app.core.middleware import RequestLoggingMiddleware
from safety_backend.app.core.health import HealthStatus, run_health_check

# ── Domain components ──
from safety_backend.app.alerts.channels.sms_gateway import build_sms_channel
from safety_backend.app.alerts.dispatcher import NotificationDispatcher
from safety_backend.app.markers.coordinator import MarkerChangeCoordinator
from safety_backend.app.markers.store import (
    InMemoryMarkerStore,
    MarkerStore,
    SqlMarkerStore,
)
from safety_backend.app.realtime.broker import EventBroker

# ── API routers ──
from safety_backend.app.api.v1.markers import router as marker_router
from safety_backend.app.api.v1.events import router as events_router
from safety_backend.app.api.v1.sos import router as sos_router

logger = get_logger(__name__)


def build_store(config: Settings) -> MarkerStore:
    """Marker store selected by ``MARKER_STORE``."""
    backend = config.MARKER_STORE.lower()
    if backend == "memory":
        return InMemoryMarkerStore()
    if backend == "sql":
        return SqlMarkerStore(Database(config.DATABASE_URL, echo=config.DATABASE_ECHO))
    raise ConfigurationError(
        f"Unknown marker store: {config.MARKER_STORE}",
        setting="MARKER_STORE",
    )


def create_app(
    config: Optional[Settings] = None,
    *,
    store: Optional[MarkerStore] = None,
    broker: Optional[EventBroker] = None,
    dispatcher: Optional[NotificationDispatcher] = None,
) -> FastAPI:
    """Assemble the application and its components."""
    config = config or default_settings

    store = store or build_store(config)
    broker = broker or EventBroker(
        queue_size=config.EVENT_QUEUE_SIZE,
        max_observers=config.MAX_OBSERVERS,
    )
    dispatcher = dispatcher or NotificationDispatcher(
        build_sms_channel(config),
        config.EMERGENCY_CONTACTS,
        send_timeout=config.SMS_SEND_TIMEOUT_SECONDS,
    )
    coordinator = MarkerChangeCoordinator(
        store, broker, dispatcher,
        match_tolerance=config.MATCH_TOLERANCE_DEG,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Manage startup and shutdown events."""
        logger.info(
            "Starting %s v%s [%s] store=%s sms=%s contacts=%d",
            config.APP_NAME, config.APP_VERSION, config.ENVIRONMENT,
            store.name, dispatcher.channel.provider, len(dispatcher.roster),
        )
        logger.info("SMS channel: %s", dispatcher.channel.describe())
        if isinstance(store, SqlMarkerStore):
            await store.database.init_models()
        yield
        broker.close()
        await store.close()
        logger.info("Shutting down %s", config.APP_NAME)

    app = FastAPI(
        title=config.APP_NAME,
        description=(
            "Shared safety map: pin and remove unsafe locations, watch "
            "changes live over Server-Sent Events, and send an SOS text "
            "with your location to a fixed list of emergency contacts."
        ),
        version=config.APP_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    app.state.settings = config
    app.state.store = store
    app.state.broker = broker
    app.state.dispatcher = dispatcher
    app.state.coordinator = coordinator

    # ── Middleware stack (order matters — outermost first) ──
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.CORS_ORIGINS if not config.CORS_ALLOW_ALL else ["*"],
        allow_methods=["GET", "POST", "DELETE"],
        allow_headers=["Content-Type"],
    )
    app.add_middleware(RequestLoggingMiddleware)

    # ── Error handlers ──
    register_error_handlers(app)

    # ── Register routers ──
    app.include_router(marker_router)
    app.include_router(events_router)
    app.include_router(sos_router)

    # ── Root & health endpoints ──

    @app.get("/", tags=["root"], response_class=PlainTextResponse)
    async def root():
        return f"{config.APP_NAME} is running"

    @app.get("/health", tags=["health"])
    async def health_check():
        """Deep health probe — checks all subsystems."""
        report = await run_health_check(store, broker, dispatcher, config)
        return report.to_dict()

    @app.get("/health/live", tags=["health"])
    async def liveness():
        """Kubernetes liveness probe — is the process alive?"""
        return {"status": "alive"}

    @app.get("/health/ready", tags=["health"])
    async def readiness():
        """Readiness probe — can we serve marker traffic?"""
        report = await run_health_check(store, broker, dispatcher, config)
        store_health = report.components[0]
        if store_health.status is HealthStatus.UNHEALTHY:
            return JSONResponse(status_code=503, content=report.to_dict())
        return report.to_dict()

    return app


# ── Initialise logging and the default application ──
setup_logging()
app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=default_settings.HOST, port=default_settings.PORT)
