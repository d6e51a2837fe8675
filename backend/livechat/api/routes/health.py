"""
Health check API routes.
"""
from fastapi import APIRouter, Request
import logging

from ...config import settings
from ...models.chat import utc_now
from ...models.schemas import HealthResponse

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("", response_model=HealthResponse)
async def health_check():
    """
    Basic health check endpoint.

    Returns:
        System health status
    """
    return HealthResponse(
        status="healthy",
        timestamp=utc_now(),
        version=settings.app_version,
        services={}
    )


@router.get("/ready", response_model=HealthResponse)
async def readiness_check(request: Request):
    """
    Readiness check for the session store and push hub.

    Returns:
        Detailed service health status
    """
    services = {}
    overall_status = "healthy"

    store = getattr(request.app.state, "store", None)
    if store is None:
        services["session_store"] = "not_initialized"
        overall_status = "unhealthy"
    else:
        try:
            result = await store.health_check()
            if result.get("healthy"):
                services["session_store"] = "healthy"
            else:
                services["session_store"] = "unhealthy"
                overall_status = "degraded"
        except Exception as e:
            logger.error(f"Session store health check failed: {e}")
            services["session_store"] = "unhealthy"
            overall_status = "degraded"

    connections = getattr(request.app.state, "connections", None)
    if connections is not None:
        stats = connections.get_stats()
        services["push_hub"] = "healthy"
        services["admin_connections"] = str(stats.get("admin_connections", 0))
    else:
        services["push_hub"] = "not_initialized"
        overall_status = "unhealthy"

    return HealthResponse(
        status=overall_status,
        timestamp=utc_now(),
        version=settings.app_version,
        services=services
    )


@router.get("/live")
async def liveness_check():
    """
    Simple liveness check.

    Returns:
        Basic alive status
    """
    return {"status": "alive", "timestamp": utc_now().isoformat()}
