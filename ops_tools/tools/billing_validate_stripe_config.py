"""billing.validateStripeConfig Tool.

Checks Stripe key presence, key mode, and that each configured plan price
exists and is active.
"""

import asyncio
from typing import Any

import httpx

from ops_config.settings import Settings
from ops_obs.logging import get_logger
from ops_tools.adapters.stripe import StripeClient, StripeError
from ops_tools.base import ToolDescriptor

logger = get_logger(__name__)


async def validate_price(stripe: StripeClient, price_id: str, label: str) -> dict[str, Any]:
    """Retrieve one price; failures become ``valid: False`` entries."""
    if not price_id:
        return {
            "label": label,
            "priceId": None,
            "valid": False,
            "error": "Price ID not configured in environment",
        }

    try:
        price = await stripe.retrieve_price(price_id)
    except StripeError as e:
        return {"label": label, "priceId": price_id, "valid": False, "error": e.message}

    product = price.get("product")
    recurring = price.get("recurring")
    return {
        "label": label,
        "priceId": price.get("id"),
        "valid": True,
        "active": price.get("active"),
        "currency": price.get("currency"),
        "unitAmount": price.get("unit_amount"),
        "productId": product.get("id") if isinstance(product, dict) else product,
        "productName": product.get("name") if isinstance(product, dict) else None,
        "recurring": {"interval": recurring.get("interval"), "usageType": recurring.get("usage_type")}
        if recurring
        else None,
    }


class ValidateStripeConfigTool:
    """Validate Stripe environment configuration."""

    descriptor = ToolDescriptor(
        name="billing.validateStripeConfig",
        description="DEPRECATED: Validate Stripe environment configuration. Use tenant.bootstrap instead.",
        category="billing",
        deprecated=True,
        deprecated_reason="Use tenant.bootstrap for complete onboarding",
        replaced_by="tenant.bootstrap",
        input_schema={
            "type": "object",
            "required": ["businessId"],
            "properties": {"businessId": {"type": "string", "description": "Business identifier for context"}},
        },
        output_schema={
            "type": "object",
            "properties": {
                "stripeConfigured": {"type": "boolean"},
                "stripeMode": {"type": "string", "enum": ["test", "live", "unknown"]},
                "checks": {"type": "array"},
            },
        },
    )

    def __init__(self, settings: Settings, transport: httpx.AsyncBaseTransport | None = None):
        self.settings = settings
        self.transport = transport

    def price_ids(self) -> dict[str, str]:
        return {
            "starter": self.settings.STRIPE_PRICE_STARTER,
            "growth": self.settings.STRIPE_PRICE_GROWTH,
            "enterprise": self.settings.STRIPE_PRICE_ENTERPRISE,
            "callMinuteMetered": self.settings.STRIPE_PRICE_CALL_MINUTE_METERED,
        }

    async def execute(self, ctx: dict[str, Any], args: dict[str, Any]) -> dict[str, Any]:
        business_id = args["businessId"]
        s = self.settings
        checks: list[dict[str, Any]] = []
        issues: list[str] = []

        for name, label, present in (
            ("stripe_secret_key", "Secret key", bool(s.STRIPE_SECRET_KEY)),
            ("stripe_publishable_key", "Publishable key", bool(s.STRIPE_PUBLISHABLE_KEY)),
            ("stripe_webhook_secret", "Webhook secret", bool(s.STRIPE_WEBHOOK_SECRET)),
        ):
            checks.append(
                {"name": name, "ok": present, "message": f"{label} {'configured' if present else 'missing'}"}
            )

        if not all(c["ok"] for c in checks):
            issues.append("Stripe is not fully configured. Check environment variables.")
            return {
                "ok": False,
                "businessId": business_id,
                "stripeConfigured": False,
                "stripeMode": "unknown",
                "checks": checks,
                "issues": issues,
                "prices": None,
                "summary": "Stripe configuration incomplete",
            }

        stripe = StripeClient.from_settings(s, transport=self.transport)
        try:
            checks.append(
                {"name": "stripe_mode", "ok": stripe.mode != "unknown", "message": f"Stripe mode: {stripe.mode}"}
            )
            validations = await asyncio.gather(
                *(validate_price(stripe, price_id, label) for label, price_id in self.price_ids().items())
            )
        finally:
            await stripe.close()

        prices = {}
        for v in validations:
            label = v["label"]
            prices[label] = v
            usable = v["valid"] and v.get("active") is not False
            if not v["valid"]:
                message = f"{label} price invalid: {v['error']}"
                issues.append(f"{label}: {v['error']}")
            elif not v.get("active"):
                message = f"{label} price exists but inactive"
                issues.append(f"{label}: Price exists but is not active")
            else:
                message = f"{label} price valid and active"
            checks.append({"name": f"price_{label}", "ok": usable, "message": message})

        logger.info(
            "stripe_config_validated",
            business_id=business_id,
            request_id=ctx.get("request_id"),
            issues=len(issues),
        )

        return {
            "ok": not issues,
            "businessId": business_id,
            "stripeConfigured": True,
            "stripeMode": stripe.mode,
            "checks": checks,
            "issues": issues or None,
            "prices": prices,
            "allPricesValid": all(v["valid"] and v.get("active") is not False for v in validations),
            "summary": "Stripe configuration valid" if not issues else f"Found {len(issues)} issue(s)",
        }
