"""
Custom FastAPI Middleware.

Implements:
- Request ID injection (bound into structlog context)
- Rate limiting per API key (Redis sliding window)
- Request/response logging
"""

import json
import time
import uuid
from typing import Callable

import structlog
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from apps.ops_api.auth import API_KEY_HEADER, key_kind
from apps.ops_api.deps import get_redis_client, get_settings
from ops_obs.logging import get_logger
from ops_obs.metrics import rate_limited_total
from ops_obs.redaction import key_fingerprint
from ops_tools.exceptions import ErrorCode

logger = get_logger(__name__)


class RequestIDMiddleware(BaseHTTPMiddleware):
    """
    Inject unique request ID into each request.

    Adds X-Request-ID header to response.
    Stores request_id in request.state and the structlog context.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
        request.state.request_id = request_id

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(http_request_id=request_id)

        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    Rate limiting middleware using Redis sliding window.

    Limits requests per API key per window. Admin and n8n keys get their
    own limits; anything else (JWT operators, unauthenticated calls) is
    keyed by client IP with the default limit.

    Features:
    - Redis-backed sliding window algorithm
    - Fails open when Redis is unavailable
    - Rate limit headers in response
    - Exempts health check and metrics endpoints
    """

    def __init__(self, app, redis_getter=None):
        super().__init__(app)
        self.redis_getter = redis_getter
        self.exempted_paths = {"/", "/healthz", "/readyz", "/metrics"}

    def limit_for(self, request: Request) -> tuple[str, int, str]:
        """(rate limit key, limit, key kind) for this request."""
        settings = get_settings()
        api_key = request.headers.get(API_KEY_HEADER)
        kind = key_kind(api_key, settings)

        if kind in ("admin", "internal"):
            return f"rate_limit:key:{key_fingerprint(api_key)}", settings.RATE_LIMIT_ADMIN, kind
        if kind == "n8n":
            return f"rate_limit:key:{key_fingerprint(api_key)}", settings.RATE_LIMIT_N8N, kind

        client_ip = request.client.host if request.client else "unknown"
        return f"rate_limit:ip:{client_ip}", settings.RATE_LIMIT_DEFAULT, "default"

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        settings = get_settings()
        if not settings.RATE_LIMIT_ENABLED or request.url.path in self.exempted_paths:
            return await call_next(request)

        redis = self.redis_getter() if self.redis_getter else get_redis_client()
        if not redis:
            # Fail open
            logger.warning("rate_limit_unavailable", reason="redis_not_initialized")
            return await call_next(request)

        rate_limit_key, limit, kind = self.limit_for(request)
        now = time.time()
        window = settings.REDIS_RATE_LIMIT_WINDOW

        try:
            await redis.zremrangebyscore(rate_limit_key, 0, now - window)
            current_count = await redis.zcard(rate_limit_key)

            if current_count >= limit:
                oldest = await redis.zrange(rate_limit_key, 0, 0, withscores=True)
                if oldest:
                    retry_after = int(window - (now - oldest[0][1])) + 1
                else:
                    retry_after = window

                rate_limited_total.labels(key_kind=kind).inc()
                logger.warning("rate_limit_exceeded", key_kind=kind, limit=limit, path=request.url.path)

                body = {
                    "ok": False,
                    "error": {
                        "code": ErrorCode.RATE_LIMITED.value,
                        "message": "Too many requests",
                        "retryAfter": retry_after,
                    },
                }
                response = Response(content=json.dumps(body), status_code=429, media_type="application/json")
                response.headers["Retry-After"] = str(retry_after)
                response.headers["X-RateLimit-Limit"] = str(limit)
                response.headers["X-RateLimit-Remaining"] = "0"
                response.headers["X-RateLimit-Reset"] = str(int(now + retry_after))
                return response

            await redis.zadd(rate_limit_key, {str(uuid.uuid4()): now})
            await redis.expire(rate_limit_key, window + 10)
        except Exception as e:
            # Fail open
            logger.error("rate_limit_error", error=str(e), exc_info=True)
            return await call_next(request)

        response = await call_next(request)

        remaining = max(0, limit - current_count - 1)
        response.headers["X-RateLimit-Limit"] = str(limit)
        response.headers["X-RateLimit-Remaining"] = str(remaining)
        response.headers["X-RateLimit-Reset"] = str(int(now + window))
        return response


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Log all incoming requests and responses.

    Includes:
    - Request method, path
    - Response status, duration
    - Request ID correlation
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        start_time = time.time()
        request_id = getattr(request.state, "request_id", "unknown")

        logger.info(
            "http_request_start",
            method=request.method,
            path=request.url.path,
            request_id=request_id,
        )

        response = await call_next(request)

        duration_ms = int((time.time() - start_time) * 1000)
        logger.info(
            "http_request_complete",
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            duration_ms=duration_ms,
            request_id=request_id,
        )

        response.headers["X-Response-Time"] = f"{duration_ms}ms"
        return response
