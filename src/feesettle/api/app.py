"""FastAPI application factory for the fee settlement API."""

from __future__ import annotations

from typing import Any

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from feesettle.api import routes
from feesettle.api.errors import register_error_handlers
from feesettle.api.middleware import register_request_logging
from feesettle.config import AppSettings
from feesettle.settlement.coordinator import SettlementCoordinator


def create_app(
    coordinator: SettlementCoordinator,
    settings: AppSettings,
    lifespan: Any = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        coordinator: Settlement coordinator serving every route.
        settings: Application settings (API prefix/version, CORS, environment).
        lifespan: Optional async context manager for startup/shutdown.
                  Used by main.py to resume and close the coordinator.

    Returns:
        Configured FastAPI application with routes under ``/{prefix}/{version}``.
    """
    app = FastAPI(title="Fee Settlement API", lifespan=lifespan)

    app.state.coordinator = coordinator
    app.state.settings = settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.api.cors_origins,
        allow_credentials=settings.api.cors_credentials,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    register_request_logging(app)
    register_error_handlers(app, settings.environment)

    app.include_router(routes.router, prefix=settings.api.base_path)

    return app
