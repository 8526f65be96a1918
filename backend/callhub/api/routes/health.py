"""
Health check API routes.
"""
from fastapi import APIRouter, Request
from datetime import datetime
import logging

from ...models.schemas import HealthResponse

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("", response_model=HealthResponse)
async def health_check(request: Request):
    """
    Basic health check endpoint.

    Returns:
        System health status
    """
    return HealthResponse(
        status="healthy",
        timestamp=datetime.utcnow(),
        version=request.app.state.settings.app_version,
        services={}
    )


@router.get("/ready", response_model=HealthResponse)
async def readiness_check(request: Request):
    """
    Readiness check for all services.

    Returns:
        Detailed service health status
    """
    state = request.app.state
    services = {}
    overall_status = "healthy"

    # Check call store
    store = getattr(state, "store", None)
    if store is None:
        services["store"] = "not_initialized"
        overall_status = "unhealthy"
    else:
        health = await store.health_check()
        if health.get("healthy"):
            services["store"] = "healthy"
        else:
            logger.error(f"Call store health check failed: {health.get('error')}")
            services["store"] = "unhealthy"
            overall_status = "unhealthy"

    # Check Redis
    redis_client = getattr(state, "redis", None)
    if redis_client is None:
        services["redis"] = "not_configured"
    else:
        try:
            await redis_client.ping()
            services["redis"] = "healthy"
        except Exception as e:
            logger.error(f"Redis health check failed: {e}")
            services["redis"] = "unhealthy"
            overall_status = "degraded" if overall_status == "healthy" else overall_status

    presence = getattr(state, "presence", None)
    if presence is not None:
        services["online_users"] = str(presence.count())
        services["connections"] = str(presence.connection_count())

    return HealthResponse(
        status=overall_status,
        timestamp=datetime.utcnow(),
        version=state.settings.app_version,
        services=services
    )


@router.get("/live")
async def liveness_check():
    """
    Simple liveness check.

    Returns:
        Basic alive status
    """
    return {"status": "alive", "timestamp": datetime.utcnow().isoformat()}
