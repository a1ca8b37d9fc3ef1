"""FastAPI application factory."""

from __future__ import annotations

import uuid
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from upgrader.api.routes_health import router as health_router
from upgrader.api.routes_upgrades import router as upgrades_router
from upgrader.core.config import get_settings
from upgrader.core.exceptions import UpgradeError, VersionNotFound
from upgrader.core.logging import get_logger, setup_logging
from upgrader.db.session import init_db
from upgrader.steps.catalog import load_default_registry

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Startup / shutdown lifecycle hook."""
    settings = get_settings()
    setup_logging(settings.log_level)
    init_db()
    registry = load_default_registry()
    logger.info("app_started", version=settings.app_version, steps=len(registry.versions()))
    yield
    logger.info("app_shutdown")


class RequestIdMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):  # type: ignore[override]
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
        request.state.request_id = request_id
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response


async def upgrade_error_handler(request: Request, exc: UpgradeError) -> JSONResponse:
    """Map runner errors that escape a route to JSON responses."""
    status = 404 if isinstance(exc, VersionNotFound) else 500
    return JSONResponse(
        status_code=status,
        content={"error": {"type": type(exc).__name__, "message": str(exc)}},
    )


def create_app() -> FastAPI:
    """Build and return the FastAPI application."""
    app = FastAPI(
        title="Schema Upgrader",
        version=get_settings().app_version,
        lifespan=lifespan,
    )

    app.add_middleware(RequestIdMiddleware)
    app.add_exception_handler(UpgradeError, upgrade_error_handler)

    app.include_router(health_router)
    app.include_router(upgrades_router)

    return app


app = create_app()
