"""
FastAPI Dependency Injection.

Provides:
- Settings
- Redis connection (rate limiting)
- Control plane services stored on app.state by the lifespan
"""

from fastapi import Request
from redis.asyncio import Redis

from ops_config.settings import Settings
from ops_memory.stores import DocumentStore
from ops_tools.catalog import ControlPlane

# Initialize settings
settings = Settings()


# ============================================================================
# SETTINGS DEPENDENCY
# ============================================================================


def get_settings() -> Settings:
    """Dependency: Application settings."""
    return settings


# ============================================================================
# REDIS DEPENDENCIES
# ============================================================================


_redis_client: Redis | None = None


async def init_redis() -> None:
    """Initialize Redis connection pool."""
    global _redis_client
    _redis_client = Redis.from_url(settings.REDIS_URL, decode_responses=True)


async def close_redis() -> None:
    """Close Redis connection."""
    global _redis_client
    if _redis_client:
        await _redis_client.aclose()
        _redis_client = None


def get_redis_client() -> Redis | None:
    """Get Redis client (for use in middleware)."""
    return _redis_client


# ============================================================================
# CONTROL PLANE DEPENDENCIES
# ============================================================================


def get_control_plane(request: Request) -> ControlPlane:
    """Dependency: registry, executor and stores built at startup."""
    return request.app.state.control_plane


def get_store(request: Request) -> DocumentStore:
    """Dependency: Document store."""
    return request.app.state.store
