"""
Health and Monitoring Router.

Public, unauthenticated endpoints for load balancers and uptime checks.

Endpoints Provided:
- `/healthcheck`: lightweight liveness check.
- `/monitoring/detailed`: component status for the database, the cache and
  the storage account pool.

Graceful Degradation: a failing cache or an exhausted storage pool reports
the service as "degraded"; only a failing database makes it "unhealthy".
"""

from typing import Any, Dict

from fastapi import APIRouter, Depends

from core.exceptions import VideoAPIException
from core.logging_config import get_logger
from core.models import utcnow

from .dependencies import ServiceContainer, get_container

logger = get_logger(__name__)

SERVICE_NAME = "Video Feed API"
SERVICE_VERSION = "1.0.0"

health_router = APIRouter(tags=["Health & Monitoring"])
monitoring_router = APIRouter(prefix="/monitoring", tags=["Health & Monitoring"])


@health_router.get("/healthcheck")
async def health_check() -> Dict[str, Any]:
    """Basic health check endpoint (no authentication required)"""
    logger.debug("Health check requested")

    return {
        "status": "healthy",
        "timestamp": utcnow().isoformat(),
        "version": SERVICE_VERSION,
        "service": SERVICE_NAME,
    }


@monitoring_router.get("/detailed")
async def detailed_health_check(
    container: ServiceContainer = Depends(get_container),
) -> Dict[str, Any]:
    """Detailed health check with component status"""
    logger.info("Detailed health check requested")

    health_status: Dict[str, Any] = {
        "status": "healthy",
        "timestamp": utcnow().isoformat(),
        "version": SERVICE_VERSION,
        "service": SERVICE_NAME,
        "components": {},
    }

    db_health = await container.database.health_check()
    health_status["components"]["database"] = db_health
    if db_health.get("status") != "healthy":
        health_status["status"] = "unhealthy"

    cache_health = await container.cache.health_check()
    health_status["components"]["cache"] = cache_health
    if cache_health.get("status") != "healthy" and health_status["status"] == "healthy":
        health_status["status"] = "degraded"

    try:
        accounts = await container.video_service.list_storage_accounts()
        active = [account for account in accounts if account.is_active]
        health_status["components"]["storage"] = {
            "status": "healthy" if active else "unavailable",
            "active_accounts": len(active),
            "available_gb": round(sum(account.available_gb for account in active), 3),
        }
        if not active and health_status["status"] == "healthy":
            health_status["status"] = "degraded"
    except VideoAPIException as e:
        logger.warning(f"Storage health check failed: {e.message}")
        health_status["components"]["storage"] = {"status": "unavailable", "error": e.message}
        if health_status["status"] == "healthy":
            health_status["status"] = "degraded"

    return health_status
