"""billing.validateStripeConfig and billing.syncPrices Tests (Stripe via httpx.MockTransport)."""

from urllib.parse import parse_qs

import httpx
import pytest

from ops_config.settings import Settings
from ops_tools.adapters.stripe import StripeClient, StripeNotFoundError
from ops_tools.adapters.stripe.client import encode_form
from ops_tools.tools.billing_sync_prices import SyncPricesTool, compare_prices
from ops_tools.tools.billing_validate_stripe_config import ValidateStripeConfigTool

CTX = {"request_id": "req_billing", "actor": "api", "mode": "execute", "dry_run": False}


@pytest.fixture
def stripe_settings():
    return Settings(
        STRIPE_SECRET_KEY="sk_test_123",
        STRIPE_PUBLISHABLE_KEY="pk_test_123",
        STRIPE_WEBHOOK_SECRET="whsec_123",
        STRIPE_PRICE_STARTER="price_starter",
        STRIPE_PRICE_GROWTH="price_growth",
        STRIPE_PRICE_ENTERPRISE="price_enterprise",
        STRIPE_PRICE_CALL_MINUTE_METERED="price_gone",
        STRIPE_PRODUCT_ID="prod_test",
    )


def not_found(message: str) -> httpx.Response:
    return httpx.Response(404, json={"error": {"code": "resource_missing", "message": message, "type": "invalid_request_error"}})


class FakeStripe:
    """Minimal Stripe prices/products API."""

    def __init__(self, prices=None, product_exists=False):
        self.prices = prices or []
        self.product_exists = product_exists
        self.posts = []
        self.created = 0

    def __call__(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path.removeprefix("/v1")
        if request.method == "GET" and path == "/prices":
            return httpx.Response(200, json={"data": self.prices})
        if request.method == "GET" and path.startswith("/products/"):
            if self.product_exists:
                return httpx.Response(200, json={"id": path.split("/")[-1]})
            return not_found("No such product")
        if request.method == "POST":
            self.posts.append((path, parse_qs(request.content.decode())))
            if path == "/prices":
                self.created += 1
                return httpx.Response(200, json={"id": f"price_new_{self.created}"})
            return httpx.Response(200, json={"id": path.split("/")[-1]})
        return not_found("Unknown route")


# ============================================================================
# STRIPE CLIENT
# ============================================================================


def test_encode_form_flattens_nested_params():
    pairs = encode_form({"product": "prod", "recurring": {"interval": "month"}, "expand": ["product"], "active": False, "skip": None})

    assert pairs == [
        ("product", "prod"),
        ("recurring[interval]", "month"),
        ("expand[]", "product"),
        ("active", "false"),
    ]


def test_stripe_mode_from_key():
    assert StripeClient("sk_test_x").mode == "test"
    assert StripeClient("sk_live_x").mode == "live"
    assert StripeClient("rk_x").mode == "unknown"


@pytest.mark.asyncio
async def test_stripe_not_found_mapping():
    client = StripeClient("sk_test_x", transport=httpx.MockTransport(lambda request: not_found("No such price")))

    with pytest.raises(StripeNotFoundError) as exc_info:
        await client.retrieve_price("price_missing")

    assert exc_info.value.message == "No such price"
    assert exc_info.value.status_code == 404
    await client.close()


# ============================================================================
# billing.validateStripeConfig
# ============================================================================


@pytest.mark.asyncio
async def test_validate_unconfigured(settings):
    result = await ValidateStripeConfigTool(settings).execute(CTX, {"businessId": "acme"})

    assert result["ok"] is False
    assert result["stripeConfigured"] is False
    assert result["stripeMode"] == "unknown"
    assert [c["ok"] for c in result["checks"]] == [False, False, False]


@pytest.mark.asyncio
async def test_validate_prices(stripe_settings):
    def handler(request: httpx.Request) -> httpx.Response:
        price_id = request.url.path.split("/")[-1]
        if price_id == "price_gone":
            return not_found("No such price: 'price_gone'")
        return httpx.Response(
            200,
            json={
                "id": price_id,
                "active": price_id != "price_enterprise",
                "currency": "usd",
                "unit_amount": 2900,
                "product": {"id": "prod_test", "name": "Book8 Services"},
                "recurring": {"interval": "month", "usage_type": "licensed"},
            },
        )

    tool = ValidateStripeConfigTool(stripe_settings, transport=httpx.MockTransport(handler))
    result = await tool.execute(CTX, {"businessId": "acme"})

    assert result["stripeConfigured"] is True
    assert result["stripeMode"] == "test"
    assert result["ok"] is False
    assert result["issues"] == [
        "enterprise: Price exists but is not active",
        "callMinuteMetered: No such price: 'price_gone'",
    ]
    assert result["prices"]["starter"]["productName"] == "Book8 Services"
    assert result["prices"]["growth"]["recurring"] == {"interval": "month", "usageType": "licensed"}
    assert result["allPricesValid"] is False


# ============================================================================
# billing.syncPrices
# ============================================================================


def test_compare_prices():
    desired = {"unitAmount": 2900, "currency": "usd", "recurring": {"interval": "month", "intervalCount": 1}}
    same = {"unit_amount": 2900, "currency": "usd", "recurring": {"interval": "month", "interval_count": 1}}

    assert compare_prices(desired, None) == "create"
    assert compare_prices(desired, same) == "noop"
    assert compare_prices(desired, {**same, "unit_amount": 3900}) == "update"
    assert compare_prices(desired, {**same, "recurring": None}) == "update"
    assert compare_prices({"unitAmount": 15, "currency": "usd"}, {"unit_amount": 15, "currency": "usd"}) == "noop"


@pytest.mark.asyncio
async def test_sync_requires_secret_key(settings):
    result = await SyncPricesTool(settings).execute(CTX, {"businessId": "acme", "mode": "plan"})

    assert result["ok"] is False
    assert result["error"]["code"] == "STRIPE_NOT_CONFIGURED"


EXISTING_PRICES = [
    {
        "id": "price_old_starter",
        "nickname": "Starter Plan",
        "unit_amount": 2900,
        "currency": "usd",
        "recurring": {"interval": "month", "interval_count": 1},
    },
    {
        "id": "price_old_pro",
        "nickname": "Professional Plan",
        "unit_amount": 6900,
        "currency": "usd",
        "recurring": {"interval": "month", "interval_count": 1},
    },
]


@pytest.mark.asyncio
async def test_sync_plan(stripe_settings):
    stripe = FakeStripe(prices=EXISTING_PRICES)
    tool = SyncPricesTool(stripe_settings, transport=httpx.MockTransport(stripe))

    result = await tool.execute(CTX, {"businessId": "acme", "mode": "plan"})

    assert result["mode"] == "plan"
    assert result["executed"] is False
    assert {p["key"]: p["action"] for p in result["plan"]} == {
        "starter": "noop",
        "professional": "update",
        "enterprise": "create",
        "call_minutes": "create",
    }
    assert result["summary"] == {"toCreate": 2, "toUpdate": 1, "noChange": 1, "total": 4}
    assert stripe.posts == []


@pytest.mark.asyncio
async def test_sync_dry_run_never_writes(stripe_settings):
    stripe = FakeStripe(prices=EXISTING_PRICES)
    tool = SyncPricesTool(stripe_settings, transport=httpx.MockTransport(stripe))

    result = await tool.execute({**CTX, "dry_run": True}, {"businessId": "acme", "mode": "execute"})

    assert result["mode"] == "plan"
    assert stripe.posts == []


@pytest.mark.asyncio
async def test_sync_execute(stripe_settings):
    stripe = FakeStripe(prices=EXISTING_PRICES)
    tool = SyncPricesTool(stripe_settings, transport=httpx.MockTransport(stripe))

    result = await tool.execute(CTX, {"businessId": "acme", "mode": "execute"})

    assert result["ok"] is True
    assert result["executed"] is True
    assert result["summary"] == {"created": 2, "updated": 1, "noChange": 1, "errors": 0}
    assert result["updated"] == [{"key": "professional", "oldPriceId": "price_old_pro", "newPriceId": "price_new_1"}]

    paths = [path for path, _ in stripe.posts]
    assert paths[0] == "/products"
    assert "/prices/price_old_pro" in paths

    archive = dict(stripe.posts)["/prices/price_old_pro"]
    assert archive == {"active": ["false"]}

    created = [form for path, form in stripe.posts if path == "/prices"]
    assert created[0]["recurring[interval]"] == ["month"]
    assert created[0]["metadata[key]"] == ["professional"]
    assert created[0]["product"] == ["prod_test"]


@pytest.mark.asyncio
async def test_sync_stripe_failure(stripe_settings):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, json={"error": {"message": "Stripe is down", "type": "api_error"}})

    result = await SyncPricesTool(stripe_settings, transport=httpx.MockTransport(handler)).execute(
        CTX, {"businessId": "acme", "mode": "plan"}
    )

    assert result["ok"] is False
    assert result["error"] == {"code": "STRIPE_ERROR", "message": "Stripe is down", "type": "api_error"}
