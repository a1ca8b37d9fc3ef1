"""Health and metrics endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Response
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
from sqlalchemy import text

from upgrader.core.config import get_settings
from upgrader.db.session import get_engine

router = APIRouter()


@router.get("/health")
def health() -> dict:
    """Liveness and readiness check, including database reachability."""
    try:
        with get_engine().connect() as conn:
            conn.execute(text("SELECT 1"))
        database = "ok"
    except Exception:
        database = "unavailable"
    return {
        "status": "ok" if database == "ok" else "degraded",
        "database": database,
        "version": get_settings().app_version,
    }


@router.get("/metrics")
def metrics() -> Response:
    """Prometheus text exposition endpoint."""
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST,
    )
