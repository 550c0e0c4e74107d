"""
Health Check Endpoints.

- GET /healthz: Liveness probe (API running)
- GET /readyz: Readiness probe (document store + Redis reachable)
"""

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from apps.ops_api.deps import get_redis_client, get_settings, get_store
from ops_config.settings import Settings
from ops_memory.stores import DocumentStore
from ops_obs.logging import get_logger

router = APIRouter()
logger = get_logger(__name__)


@router.get("/healthz")
async def healthz():
    """Liveness probe - is the API process running?"""
    return {"status": "healthy", "service": "ops-control-plane"}


@router.get("/readyz")
async def readyz(
    store: DocumentStore = Depends(get_store),
    settings: Settings = Depends(get_settings),
):
    """
    Readiness probe - is the API ready to serve traffic?

    The document store is required. Redis only backs rate limiting (which
    fails open), so an unreachable Redis is reported but does not fail
    readiness.

    Returns:
        200 OK if the document store answers
        503 Service Unavailable otherwise
    """
    checks = {"store": "ok", "redis": "disabled"}

    try:
        if not await store.ping():
            checks["store"] = "failed"
    except Exception as e:
        logger.warning("readiness_store_failed", backend=settings.STORE_BACKEND, error=str(e))
        checks["store"] = "failed"

    redis = get_redis_client()
    if redis is not None:
        try:
            await redis.ping()
            checks["redis"] = "ok"
        except Exception as e:
            logger.warning("readiness_redis_failed", error=str(e))
            checks["redis"] = "degraded"

    if checks["store"] != "ok":
        return JSONResponse(status_code=503, content={"status": "unhealthy", "checks": checks})
    return {"status": "ready", "backend": settings.STORE_BACKEND, "checks": checks}
