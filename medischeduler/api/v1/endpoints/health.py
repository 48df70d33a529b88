"""Health check endpoints."""

from fastapi import APIRouter, status
from pydantic import BaseModel

from medischeduler.config import settings
from medischeduler.core.redis_client import check_redis_connection, redis_enabled
from medischeduler.database import check_database_connection

router = APIRouter()


class HealthResponse(BaseModel):
    """Health check response model."""

    status: str
    version: str
    environment: str


class DetailedHealthResponse(HealthResponse):
    """Health check including dependency status."""

    database: str
    redis: str
    scheduling_timezone: str


@router.get(
    "/health",
    response_model=HealthResponse,
    status_code=status.HTTP_200_OK,
    tags=["Health"],
    summary="Basic health check",
)
async def health_check() -> HealthResponse:
    """Basic health check endpoint."""
    return HealthResponse(
        status="healthy",
        version=settings.app_version,
        environment=settings.environment,
    )


@router.get(
    "/health/detailed",
    response_model=DetailedHealthResponse,
    status_code=status.HTTP_200_OK,
    tags=["Health"],
    summary="Detailed health check",
)
async def detailed_health_check() -> DetailedHealthResponse:
    """
    Detailed health check with database and Redis status.

    Redis is optional; when no host is configured it reports ``disabled``
    and does not degrade the overall status.

    Returns:
        Detailed health status including dependencies
    """
    db_healthy = await check_database_connection()

    if redis_enabled():
        redis_state = "healthy" if await check_redis_connection() else "unhealthy"
    else:
        redis_state = "disabled"

    healthy = db_healthy and redis_state != "unhealthy"
    return DetailedHealthResponse(
        status="healthy" if healthy else "degraded",
        version=settings.app_version,
        environment=settings.environment,
        database="healthy" if db_healthy else "unhealthy",
        redis=redis_state,
        scheduling_timezone=settings.scheduling_timezone,
    )


@router.get(
    "/ping",
    status_code=status.HTTP_200_OK,
    tags=["Health"],
    summary="Simple ping",
)
async def ping() -> dict[str, str]:
    """Simple ping endpoint."""
    return {"message": "pong"}
