"""Health check and metrics endpoints."""

import time
from datetime import UTC, datetime
from typing import Annotated

from fastapi import APIRouter, Depends, Response
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from prescreen.api.dependencies import get_db
from prescreen.api.schemas.health import (
    ComponentHealth,
    HealthDetailResponse,
    HealthResponse,
    HealthStatus,
)
from prescreen.observability import CONTENT_TYPE_LATEST, get_metrics

router = APIRouter(tags=["health"])

APP_VERSION = "0.1.0"


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Basic health check",
    description="Returns basic liveness status. No authentication required.",
)
async def health_check() -> HealthResponse:
    return HealthResponse(
        status=HealthStatus.HEALTHY,
        version=APP_VERSION,
        timestamp=datetime.now(UTC),
    )


@router.get(
    "/health/db",
    response_model=HealthDetailResponse,
    summary="Database health check",
    description="Checks database connectivity. No authentication required.",
)
async def health_db(
    db: Annotated[AsyncSession, Depends(get_db)],
    response: Response,
) -> HealthDetailResponse:
    """Database connectivity check.

    Executes a simple query and reports its latency. Responds 503 when the
    database cannot be reached.
    """
    db_health = await _check_database(db)
    if db_health.status != HealthStatus.HEALTHY:
        response.status_code = 503

    return HealthDetailResponse(
        status=db_health.status,
        version=APP_VERSION,
        timestamp=datetime.now(UTC),
        database=db_health,
    )


@router.get("/metrics", include_in_schema=False)
async def metrics() -> Response:
    """Prometheus exposition. No authentication required."""
    return Response(content=get_metrics(), media_type=CONTENT_TYPE_LATEST)


async def _check_database(db: AsyncSession) -> ComponentHealth:
    start = time.perf_counter()
    try:
        await db.execute(text("SELECT 1"))
        latency_ms = (time.perf_counter() - start) * 1000
        return ComponentHealth(
            status=HealthStatus.HEALTHY,
            message="Database connection successful",
            latency_ms=round(latency_ms, 2),
        )
    except Exception as e:
        latency_ms = (time.perf_counter() - start) * 1000
        return ComponentHealth(
            status=HealthStatus.UNHEALTHY,
            message=f"Database connection failed: {type(e).__name__}",
            latency_ms=round(latency_ms, 2),
        )
