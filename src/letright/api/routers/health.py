"""Health check endpoints."""

import time
from datetime import UTC, datetime
from typing import Annotated

from fastapi import APIRouter, Depends

from letright import __version__
from letright.api.dependencies import get_components
from letright.api.schemas.health import (
    ComponentHealth,
    HealthResponse,
    HealthStatus,
    ReadinessResponse,
)
from letright.erasure.factory import ErasureComponents

router = APIRouter(tags=["health"])


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Basic health check",
    description="Returns basic liveness status. No authentication required.",
)
async def health_check() -> HealthResponse:
    """Basic liveness check endpoint.

    Returns 200 if the application is running, regardless of
    dependency health. Use /health/ready for the store check.
    """
    return HealthResponse(
        status=HealthStatus.HEALTHY,
        version=__version__,
        timestamp=datetime.now(UTC),
    )


@router.get(
    "/health/ready",
    response_model=ReadinessResponse,
    summary="Readiness check",
    description="Checks that the deletion request store answers. No authentication required.",
)
async def health_ready(
    components: Annotated[ErasureComponents, Depends(get_components)],
) -> ReadinessResponse:
    """Full readiness check endpoint."""
    store_health = await _check_store(components)

    return ReadinessResponse(
        status=store_health.status,
        version=__version__,
        timestamp=datetime.now(UTC),
        store=store_health,
        backend=components.settings.ERASURE_BACKEND.value,
        job_running=components.runner.running,
    )


async def _check_store(components: ErasureComponents) -> ComponentHealth:
    """Run a bounded, read-only store query."""
    start = time.perf_counter()
    try:
        await components.store.list_due(datetime.fromtimestamp(0, UTC), 1)
        latency_ms = (time.perf_counter() - start) * 1000
        return ComponentHealth(
            status=HealthStatus.HEALTHY,
            message="Request store reachable",
            latency_ms=round(latency_ms, 2),
        )
    except Exception as e:
        latency_ms = (time.perf_counter() - start) * 1000
        return ComponentHealth(
            status=HealthStatus.UNHEALTHY,
            message=f"Request store check failed: {str(e)[:100]}",
            latency_ms=round(latency_ms, 2),
        )
