"""Health check endpoints."""

from fastapi import APIRouter, status
from pydantic import BaseModel

from ugc_engine import __version__
from ugc_engine.config import settings
from ugc_engine.db.session import init_db
from ugc_engine.jobs.tasks import get_generation_queue
from ugc_engine.logging import get_logger
from ugc_engine.services.providers import get_render_provider, get_script_generator

router = APIRouter(tags=["Health"])
logger = get_logger(__name__)


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    components: dict[str, bool] | None = None


class ReadinessResponse(BaseModel):
    """Readiness check response."""

    ready: bool
    database: bool
    redis: bool
    components: dict[str, bool] | None = None


@router.get(
    "/health",
    response_model=HealthResponse,
    status_code=status.HTTP_200_OK,
    summary="Health check",
    description="Basic health check endpoint that verifies the API is running.",
)
async def health_check() -> HealthResponse:
    """Basic health check - is the API up?

    Reports which providers are configured with a real backend.
    """
    components = {
        "script": settings.script_provider,
        "render": settings.render_provider,
    }
    configured = {k: v.lower() != "stub" for k, v in components.items()}
    configured["assets"] = settings.asset_store.lower() != "local"

    return HealthResponse(status="healthy", version=__version__, components=configured)


@router.get(
    "/health/ready",
    response_model=ReadinessResponse,
    summary="Readiness check",
    description="Comprehensive readiness check that verifies all dependencies.",
)
async def readiness_check() -> ReadinessResponse:
    """Comprehensive readiness check including dependencies."""
    # Check database
    database_ok = False
    try:
        init_db()
        database_ok = True
    except Exception as e:
        logger.error("database_health_check_failed", error=str(e))

    # Check Redis
    redis_ok = get_generation_queue().ping()
    if not redis_ok:
        logger.error("redis_health_check_failed")

    # Check providers
    components = {
        "script": await get_script_generator().health_check(),
        "render": await get_render_provider().health_check(),
    }

    ready = database_ok and redis_ok and all(components.values())

    return ReadinessResponse(
        ready=ready,
        database=database_ok,
        redis=redis_ok,
        components=components,
    )


@router.get(
    "/health/live",
    status_code=status.HTTP_200_OK,
    summary="Liveness check",
    description="Simple liveness check for Kubernetes.",
)
async def liveness_check() -> dict[str, str]:
    """Kubernetes liveness check - is the process alive?"""
    return {"status": "alive"}
