"""Pytest fixtures.

Environment is pinned before any application module is imported:
in-memory document store, known API keys, rate limiting off.
"""

import os

os.environ.update(
    {
        "ENVIRONMENT": "test",
        "STORE_BACKEND": "memory",
        "STORE_PURGE_INTERVAL_SECONDS": "0",
        "RATE_LIMIT_ENABLED": "false",
        "OTEL_TRACES_ENABLED": "false",
        "LOG_LEVEL": "WARNING",
        "OPS_KEY_N8N": "test-n8n-key",
        "OPS_KEY_ADMIN": "test-admin-key",
        "OPS_INTERNAL_SECRET": "test-internal-secret",
        "JWT_SECRET_KEY": "test_jwt_secret_key_with_at_least_32_chars",
        "BASE_URL": "https://app.example.test",
        "STRIPE_SECRET_KEY": "",
        "OPENAI_API_KEY": "",
        "ELEVENLABS_API_KEY": "",
    }
)

from unittest.mock import AsyncMock, patch  # noqa: E402

import httpx  # noqa: E402
import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from apps.ops_api.deps import get_control_plane, get_store  # noqa: E402
from apps.ops_api.main import app  # noqa: E402
from ops_config.settings import Settings  # noqa: E402
from ops_memory.stores import MemoryDocumentStore  # noqa: E402
from ops_tools.adapters.probe import ProbeClient  # noqa: E402
from ops_tools.catalog import build_control_plane  # noqa: E402
from ops_tools.tools.common import EVENT_TYPES_COLLECTION, USERS_COLLECTION  # noqa: E402

N8N_KEY = "test-n8n-key"
ADMIN_KEY = "test-admin-key"


# ============================================================================
# CORE FIXTURES
# ============================================================================


@pytest.fixture
def settings():
    """Settings loaded from the pinned test environment."""
    return Settings()


@pytest.fixture
def store():
    """Fresh in-memory document store."""
    return MemoryDocumentStore()


@pytest.fixture
def probe_handler():
    """Default probe transport: every endpoint answers 200."""

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"status": "ok"})

    return handler


@pytest.fixture
def probe(probe_handler):
    """ProbeClient backed by httpx.MockTransport."""
    return ProbeClient(timeout=1.0, transport=httpx.MockTransport(probe_handler))


@pytest.fixture
def plane(settings, store, probe):
    """Fully wired control plane over the in-memory store."""
    return build_control_plane(settings, store, probe=probe)


@pytest.fixture
def seed_tenant(store):
    """Insert a tenant (fully provisioned unless overridden)."""

    async def _seed(business_id: str = "acme-plumbing", provisioned: bool = True, **overrides):
        user = {"id": business_id, "email": f"owner@{business_id}.test", "name": "Acme Plumbing"}
        if provisioned:
            user.update(
                {
                    "subscription": {
                        "status": "active",
                        "stripeCustomerId": "cus_123",
                        "stripeSubscriptionId": "sub_123",
                        "stripeCallMinutesItemId": "si_123",
                        "stripePriceId": "price_growth",
                    },
                    "google": {"connected": True, "selectedCalendarIds": ["primary"]},
                    "scheduling": {"handle": business_id, "availability": {"mon": ["09:00-17:00"]}},
                    "phoneAgents": [{"id": "agent_1"}],
                }
            )
            await store.insert_one(
                EVENT_TYPES_COLLECTION, f"{business_id}-intro", {"userId": business_id, "name": "Intro call"}
            )
        user.update(overrides)
        await store.insert_one(USERS_COLLECTION, business_id, user)
        return user

    return _seed


# ============================================================================
# HTTP FIXTURES
# ============================================================================


@pytest.fixture
def mock_redis():
    """Mock Redis client for testing."""
    mock = AsyncMock()
    mock.ping = AsyncMock(return_value=True)
    mock.zremrangebyscore = AsyncMock()
    mock.zcard = AsyncMock(return_value=0)
    mock.zrange = AsyncMock(return_value=[])
    mock.zadd = AsyncMock()
    mock.expire = AsyncMock()
    return mock


@pytest.fixture(autouse=True)
def mock_redis_client(mock_redis):
    """Auto-mock Redis client for all tests."""
    with patch("apps.ops_api.main.init_redis", new=AsyncMock()):
        with patch("apps.ops_api.middleware.get_redis_client", return_value=mock_redis):
            with patch("apps.ops_api.routers.health.get_redis_client", return_value=mock_redis):
                yield mock_redis


@pytest.fixture
def client(plane, store):
    """FastAPI test client wired to the test control plane."""
    app.dependency_overrides[get_control_plane] = lambda: plane
    app.dependency_overrides[get_store] = lambda: store
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def n8n_headers():
    return {"X-Ops-Api-Key": N8N_KEY}


@pytest.fixture
def admin_headers():
    return {"X-Ops-Api-Key": ADMIN_KEY}
