"""Stripe REST API client wrapper.

Thin httpx wrapper over the handful of Stripe endpoints the billing tools
use (prices and products), with error mapping to adapter exceptions.
"""

from typing import Any

import httpx

from .exceptions import (
    StripeAuthError,
    StripeError,
    StripeNotFoundError,
    StripeRateLimitError,
)


def encode_form(data: dict[str, Any], prefix: str = "") -> list[tuple[str, str]]:
    """Flatten nested params into Stripe's bracketed form encoding."""
    pairs: list[tuple[str, str]] = []
    for key, value in data.items():
        name = f"{prefix}[{key}]" if prefix else key
        if value is None:
            continue
        if isinstance(value, dict):
            pairs.extend(encode_form(value, name))
        elif isinstance(value, (list, tuple)):
            for item in value:
                pairs.append((f"{name}[]", str(item)))
        elif isinstance(value, bool):
            pairs.append((name, "true" if value else "false"))
        else:
            pairs.append((name, str(value)))
    return pairs


class StripeClient:
    """Stripe API client.

    Provides:
    - Price retrieve/list/create/update
    - Product retrieve/create
    - Exception mapping (auth, not found, rate limit)
    """

    BASE_URL = "https://api.stripe.com/v1"

    def __init__(
        self,
        secret_key: str,
        base_url: str | None = None,
        timeout_seconds: float = 20.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize Stripe client.

        Args:
            secret_key: Stripe secret key (sk_test_... / sk_live_...)
            base_url: API base URL override
            timeout_seconds: Request timeout
            transport: Optional transport (tests use httpx.MockTransport)
        """
        self.secret_key = secret_key
        self.base_url = (base_url or self.BASE_URL).rstrip("/")
        self.client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout_seconds,
            transport=transport,
            headers={"Authorization": f"Bearer {secret_key}"},
        )

    @classmethod
    def from_settings(cls, settings, transport: httpx.AsyncBaseTransport | None = None) -> "StripeClient":
        """Build a client from STRIPE_* settings."""
        return cls(
            secret_key=settings.STRIPE_SECRET_KEY,
            base_url=settings.STRIPE_API_BASE,
            timeout_seconds=settings.STRIPE_TIMEOUT_SECONDS,
            transport=transport,
        )

    @property
    def mode(self) -> str:
        if self.secret_key.startswith("sk_test_"):
            return "test"
        if self.secret_key.startswith("sk_live_"):
            return "live"
        return "unknown"

    def _handle_error(self, response: httpx.Response) -> None:
        """Map Stripe API errors to custom exceptions."""
        status = response.status_code

        try:
            error = response.json().get("error", {})
        except ValueError:
            error = {}
        message = error.get("message") or response.text or f"HTTP {status}"
        code = error.get("code")
        error_type = error.get("type")

        if status == 401:
            raise StripeAuthError(message, code, error_type, status)
        if status == 404 or code == "resource_missing":
            raise StripeNotFoundError(message, code or "resource_missing", error_type, status)
        if status == 429:
            raise StripeRateLimitError(message, code, error_type, status)
        raise StripeError(message, code, error_type, status)

    async def _request(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        data: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        try:
            response = await self.client.request(
                method,
                path,
                params=encode_form(params) if params else None,
                data=dict(encode_form(data)) if data else None,
            )
        except httpx.TimeoutException as e:
            raise StripeError("Stripe request timed out", error_type="api_connection_error") from e
        except httpx.HTTPError as e:
            raise StripeError(f"Stripe connection error: {e}", error_type="api_connection_error") from e

        if response.status_code >= 400:
            self._handle_error(response)
        return response.json()

    async def retrieve_price(self, price_id: str, expand_product: bool = True) -> dict[str, Any]:
        params = {"expand": ["product"]} if expand_product else None
        return await self._request("GET", f"/prices/{price_id}", params=params)

    async def list_prices(self, product: str, active: bool = True, limit: int = 100) -> list[dict[str, Any]]:
        result = await self._request(
            "GET", "/prices", params={"product": product, "active": active, "limit": limit}
        )
        return result.get("data", [])

    async def create_price(self, params: dict[str, Any]) -> dict[str, Any]:
        return await self._request("POST", "/prices", data=params)

    async def update_price(self, price_id: str, params: dict[str, Any]) -> dict[str, Any]:
        return await self._request("POST", f"/prices/{price_id}", data=params)

    async def retrieve_product(self, product_id: str) -> dict[str, Any]:
        return await self._request("GET", f"/products/{product_id}")

    async def create_product(self, params: dict[str, Any]) -> dict[str, Any]:
        return await self._request("POST", "/products", data=params)

    async def close(self):
        """Close HTTP client."""
        await self.client.aclose()
