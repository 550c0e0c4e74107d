"""
Ops Control Plane FastAPI Application Entry Point.

This module initializes the FastAPI application with:
- CORS middleware
- OpenTelemetry instrumentation
- Rate limiting middleware
- Request ID injection
- Lifespan context management (document store, control plane, Redis, TTL sweep)
- Router mounting
"""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from apps import __version__
from apps.ops_api.deps import close_redis, init_redis, settings
from apps.ops_api.errors import ApiError
from apps.ops_api.middleware import RateLimitMiddleware, RequestIDMiddleware, RequestLoggingMiddleware
from apps.ops_api.routers import auth, execute, health, logs, metrics, requests, tools
from ops_memory.stores import DocumentStore, create_document_store
from ops_obs.logging import get_logger, setup_logging
from ops_obs.tracing import setup_tracing
from ops_tools.catalog import build_control_plane
from ops_tools.exceptions import ErrorCode

# Setup logging
setup_logging(settings)
logger = get_logger(__name__)


async def purge_expired_loop(store: DocumentStore, interval_seconds: int) -> None:
    """Delete rows whose expires_at has passed, every ``interval_seconds``."""
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            purged = await store.purge_expired()
            if purged:
                logger.info("store_ttl_purged", rows=purged)
        except Exception as e:
            logger.error("store_ttl_purge_failed", error=str(e), exc_info=True)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan context manager.

    Handles:
    - Document store + control plane (registry, executor, workflow)
    - Redis connection (rate limiting; optional)
    - Periodic TTL sweep of the document store
    - Graceful shutdown
    """
    logger.info(
        "ops_api_starting",
        environment=settings.ENVIRONMENT,
        store_backend=settings.STORE_BACKEND,
        redis=settings.REDIS_URL,
    )

    store = create_document_store(settings)
    app.state.store = store
    app.state.control_plane = build_control_plane(settings, store)

    try:
        await init_redis()
        logger.info("redis_initialized")
    except Exception as e:
        logger.warning("redis_unavailable", error=str(e), detail="rate limiting disabled")

    purge_task = None
    if settings.STORE_PURGE_INTERVAL_SECONDS > 0:
        purge_task = asyncio.create_task(purge_expired_loop(store, settings.STORE_PURGE_INTERVAL_SECONDS))

    logger.info("ops_api_ready", tools=app.state.control_plane.registry.names())

    yield

    logger.info("ops_api_shutting_down")

    if purge_task is not None:
        purge_task.cancel()
        try:
            await purge_task
        except asyncio.CancelledError:
            pass

    await app.state.control_plane.close()
    await close_redis()

    if settings.STORE_BACKEND == "postgres":
        from ops_memory.database import close_db_connections

        await close_db_connections()

    logger.info("ops_api_shutdown_complete")


# Initialize FastAPI application
app = FastAPI(
    title="Ops Control Plane API",
    description="Tool execution, approval workflow and event log for tenant operations",
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    lifespan=lifespan,
)

# Setup OpenTelemetry tracing (instruments the app when enabled)
setup_tracing(settings, app)

# ============================================================================
# MIDDLEWARE
# ============================================================================

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.API_CORS_ORIGINS.split(",") if settings.API_CORS_ORIGINS else ["*"],
    allow_credentials=settings.API_CORS_ALLOW_CREDENTIALS,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Request-ID", "X-RateLimit-Remaining"],
)

# Last added runs first: request id -> logging -> rate limit
app.add_middleware(RateLimitMiddleware)
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(RequestIDMiddleware)

# ============================================================================
# EXCEPTION HANDLERS
# ============================================================================


@app.exception_handler(ApiError)
async def api_error_handler(request: Request, exc: ApiError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_body(), headers=exc.headers)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = [
        {"path": ".".join(str(p) for p in err["loc"]), "message": err["msg"]}
        for err in exc.errors()
    ]
    return JSONResponse(
        status_code=400,
        content={
            "ok": False,
            "error": {
                "code": ErrorCode.VALIDATION_ERROR.value,
                "message": "Request validation failed",
                "errors": errors,
            },
        },
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Unhandled exceptions: log with context, never leak internals."""
    request_id = getattr(request.state, "request_id", None)
    logger.exception("unhandled_exception", path=request.url.path, request_id=request_id)

    return JSONResponse(
        status_code=500,
        content={
            "ok": False,
            "error": {
                "code": ErrorCode.INTERNAL_ERROR.value,
                "message": "An unexpected error occurred. Please contact support.",
                "requestId": request_id,
            },
        },
    )


# ============================================================================
# ROUTERS
# ============================================================================

app.include_router(auth.router, prefix="/auth", tags=["auth"])
app.include_router(execute.router, prefix="", tags=["execution"])
app.include_router(tools.router, prefix="", tags=["tools"])
app.include_router(requests.router, prefix="", tags=["approvals"])
app.include_router(logs.router, prefix="", tags=["logs"])
app.include_router(health.router, prefix="", tags=["health"])
app.include_router(metrics.router, prefix="", tags=["metrics"])


# ============================================================================
# ROOT ENDPOINT
# ============================================================================


@app.get("/", tags=["root"])
async def root():
    """
    Root endpoint - API information.

    Returns:
        API metadata and available endpoints
    """
    return {
        "name": "Ops Control Plane API",
        "version": __version__,
        "docs": "/docs",
        "health": "/healthz",
        "metrics": "/metrics",
        "endpoints": {
            "execute": "POST /ops/execute",
            "execution": "GET /ops/executions/{requestId}",
            "tools": "GET /ops/tools",
            "requests": "GET|POST /ops/requests",
            "request_actions": "POST /ops/requests/{id}/approve|reject|execute",
            "logs": "GET /ops/logs",
            "stats": "GET /ops/logs/stats",
        },
    }


# ============================================================================
# DEVELOPMENT HELPERS
# ============================================================================

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "apps.ops_api.main:app",
        host=settings.API_HOST,
        port=settings.API_PORT,
        reload=settings.ENVIRONMENT == "development",
        log_level=settings.LOG_LEVEL.lower(),
    )
