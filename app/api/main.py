"""
FastAPI application exposing relay status.

This module builds the HTTP surface of a relay process: health and relay
status endpoints, model record endpoints whose writes the server relay
broadcasts, Prometheus metrics, and request-scoped actor binding. The
relays named in settings are started with the application.
"""

import logging
from collections import Counter
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Dict, Optional

from fastapi import Depends, FastAPI, Request, status
from fastapi.responses import JSONResponse
from prometheus_client import make_asgi_app

from app.api import model_routes, relay_routes
from app.api.dependencies import get_relay_registry
from app.api.models import HealthResponse
from app.config import Settings, get_settings, settings
from app.logging_config import configure_structured_logging
from app.middleware.actor import ActorContextMiddleware
from app.relay.boot import start_relays
from app.relay.models import EventCallback
from app.relay.registry import RelayRegistry, get_relay_registry as get_default_registry
from core.exceptions import ConfigurationError, RelayNotFoundError
from infrastructure.repositories.model_store import ModelStore, RecordNotFoundError

# Configure logging (structured JSON or standard format)
configure_structured_logging(
    level=settings.LOG_LEVEL,
    enable_json=settings.LOG_JSON_FORMAT,
)
logger = logging.getLogger(__name__)

# API Version
API_VERSION = "1.0.0"


def create_app(
    registry: Optional[RelayRegistry] = None,
    model_store: Optional[ModelStore] = None,
    event_fn: Optional[EventCallback] = None,
    app_settings: Optional[Settings] = None,
) -> FastAPI:
    """
    Build the relay API.

    At startup the relays named in settings (``RELAY_SERVICE_NAME``,
    ``RELAY_CLIENT_SERVICE_NAME``) are created against ``model_store``
    with ``RELAY_PROJECT_ID``. At shutdown every transport is closed.

    Args:
        registry: Registry to expose; the process default when omitted
        model_store: Store served under /v1/models and broadcast by the
            server relay; an empty store when omitted
        event_fn: Callback of the client relay; logs each change when omitted
        app_settings: Settings driving startup wiring; the global settings
            when omitted

    Returns:
        Configured FastAPI application.
    """
    config = app_settings if app_settings is not None else get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        logger.info(f"Relay API starting in environment {config.ENVIRONMENT}")
        active = app.state.relay_registry
        if active is None:
            active = get_default_registry()
        await start_relays(active, app.state.model_store, config, event_fn=event_fn)
        yield
        await active.close()
        logger.info("Relay API stopped")

    app = FastAPI(
        title="Change Relay API",
        description="Status of change-data-capture relays in this process and the models they broadcast",
        version=API_VERSION,
        docs_url="/docs" if config.ENABLE_DOCS else None,
        redoc_url="/redoc" if config.ENABLE_DOCS else None,
        lifespan=lifespan,
    )
    app.state.relay_registry = registry
    app.state.model_store = model_store if model_store is not None else ModelStore()

    # ============================================================
    # Middleware Configuration
    # ============================================================

    app.add_middleware(ActorContextMiddleware, header_name=config.ACTOR_HEADER)
    logger.info(f"Actor binding enabled from header {config.ACTOR_HEADER}")

    # Expose /metrics endpoint
    # Prometheus will scrape this endpoint to collect metrics
    app.mount("/metrics", make_asgi_app())

    # Exception Handlers

    @app.exception_handler(RelayNotFoundError)
    async def relay_not_found_handler(
        request: Request, exc: RelayNotFoundError
    ) -> JSONResponse:
        return JSONResponse(
            status_code=status.HTTP_404_NOT_FOUND,
            content={
                "error": "Relay not found",
                "detail": str(exc),
                "error_type": "RelayNotFoundError",
            },
        )

    @app.exception_handler(RecordNotFoundError)
    async def record_not_found_handler(
        request: Request, exc: RecordNotFoundError
    ) -> JSONResponse:
        return JSONResponse(
            status_code=status.HTTP_404_NOT_FOUND,
            content={
                "error": "Record not found",
                "detail": str(exc),
                "error_type": "RecordNotFoundError",
            },
        )

    @app.exception_handler(ConfigurationError)
    async def configuration_error_handler(
        request: Request, exc: ConfigurationError
    ) -> JSONResponse:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={
                "error": "Invalid relay configuration",
                "detail": str(exc),
                "error_type": "ConfigurationError",
            },
        )

    # Health Check

    @app.get(
        "/health",
        response_model=HealthResponse,
        tags=["Health"],
        summary="Basic health check",
    )
    async def health_check(
        registry: RelayRegistry = Depends(get_relay_registry),
    ) -> HealthResponse:
        """
        Basic health check - returns 200 if the API is running.

        Also reports how many relays are registered per role.
        """
        roles = Counter(relay.role.value for relay in registry.list())
        return HealthResponse(
            status="healthy",
            version=API_VERSION,
            timestamp=datetime.now(timezone.utc),
            relays=dict(roles),
        )

    app.include_router(relay_routes.router)
    app.include_router(model_routes.router)

    @app.get("/", tags=["Root"])
    def root() -> Dict[str, Any]:
        """
        Root endpoint with API information.
        """
        return {
            "name": "Change Relay API",
            "version": API_VERSION,
            "environment": config.ENVIRONMENT,
            "documentation": "/docs" if config.ENABLE_DOCS else None,
            "health_check": "/health",
            "relays": "/v1/relays",
            "models": "/v1/models",
        }

    return app


app = create_app()
