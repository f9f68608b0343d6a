"""Health check endpoints for the Strata API.

This module provides endpoints for monitoring application health,
readiness, and liveness.
"""

from enum import Enum

import structlog
from fastapi import APIRouter, status
from pydantic import BaseModel, Field

from api.dependencies import GraphConnectionDep, IngestionPipelineDep, SettingsDep

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/health", tags=["Health"])


class HealthStatus(str, Enum):
    """Health check status values."""

    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"


class HealthResponse(BaseModel):
    """Response model for health check endpoints."""

    status: HealthStatus = Field(..., description="Health status")
    message: str | None = Field(None, description="Optional status message")


class ReadinessResponse(BaseModel):
    """Response model for readiness check.

    Attributes:
        status: Overall readiness status.
        checks: Individual service check results.
    """

    status: HealthStatus = Field(..., description="Overall readiness status")
    checks: dict[str, dict[str, str]] = Field(
        default_factory=dict,
        description="Individual service check results",
    )


@router.get(
    "",
    response_model=HealthResponse,
    summary="Basic health check",
)
async def health_check() -> HealthResponse:
    """Report that the process is serving requests."""
    return HealthResponse(status=HealthStatus.HEALTHY, message="Strata API is running")


@router.get(
    "/ready",
    response_model=ReadinessResponse,
    summary="Readiness check",
    responses={status.HTTP_200_OK: {"description": "Readiness report"}},
)
async def readiness_check(
    settings: SettingsDep,
    graph_connection: GraphConnectionDep,
    pipeline: IngestionPipelineDep,
) -> ReadinessResponse:
    """Check the record store backend and report registered pipeline functions.

    Args:
        settings: Application settings.
        graph_connection: Neo4j connection, None for the in-memory backend.
        pipeline: The ingestion pipeline.

    Returns:
        ReadinessResponse with check results for each service.
    """
    checks: dict[str, dict[str, str]] = {}
    overall_healthy = True

    if graph_connection is None:
        checks["store"] = {"status": "healthy", "backend": settings.store_backend}
    else:
        try:
            neo4j_health = await graph_connection.health_check()
        except Exception as e:
            logger.warning("Neo4j health check failed", error=str(e))
            neo4j_health = {"status": "unhealthy", "message": str(e)}

        if neo4j_health.get("status") == "healthy":
            checks["neo4j"] = {"status": "healthy", "uri": settings.neo4j_uri}
        else:
            checks["neo4j"] = {
                "status": "unhealthy",
                "message": str(neo4j_health.get("message", "Unknown error")),
            }
            overall_healthy = False

    checks["pipeline"] = {
        "status": "healthy",
        "functions": ",".join(spec.id for spec in pipeline.bus.functions),
    }

    return ReadinessResponse(
        status=HealthStatus.HEALTHY if overall_healthy else HealthStatus.UNHEALTHY,
        checks=checks,
    )


@router.get("/live", response_model=HealthResponse, summary="Liveness check")
async def liveness_check() -> HealthResponse:
    """Liveness probe."""
    return HealthResponse(status=HealthStatus.HEALTHY)
