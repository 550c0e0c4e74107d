"""billing.syncPrices Tool.

Compares desired prices with the active prices on the Stripe product and
plans create/update/noop actions. Execute mode applies the plan; Stripe
prices are immutable, so an update archives the old price and creates a
replacement.
"""

from typing import Any

import httpx

from ops_config.settings import Settings
from ops_obs.logging import get_logger
from ops_obs.redaction import redact_sensitive
from ops_tools.adapters.stripe import StripeClient, StripeError, StripeNotFoundError
from ops_tools.base import ToolDescriptor, ToolExample
from ops_tools.exceptions import ErrorCode

logger = get_logger(__name__)

PRODUCT_NAME = "Book8 Services"
PRODUCT_DESCRIPTION = "Book8 subscription and usage-based services"


def default_price_config() -> dict[str, dict[str, Any]]:
    return {
        "starter": {
            "unitAmount": 2900,
            "nickname": "Starter Plan",
            "recurring": {"interval": "month", "intervalCount": 1},
            "metadata": {"tier": "starter", "features": "basic"},
        },
        "professional": {
            "unitAmount": 7900,
            "nickname": "Professional Plan",
            "recurring": {"interval": "month", "intervalCount": 1},
            "metadata": {"tier": "professional", "features": "advanced"},
        },
        "enterprise": {
            "unitAmount": 19900,
            "nickname": "Enterprise Plan",
            "recurring": {"interval": "month", "intervalCount": 1},
            "metadata": {"tier": "enterprise", "features": "all"},
        },
        "call_minutes": {
            "unitAmount": 15,
            "nickname": "Call Minutes (per minute)",
            "metadata": {"type": "metered", "unit": "minute"},
        },
    }


def compare_prices(desired: dict[str, Any], existing: dict[str, Any] | None) -> str:
    """Return the action needed to reach ``desired``: create, update or noop."""
    if not existing:
        return "create"

    recurring = desired.get("recurring")
    existing_recurring = existing.get("recurring") or {}
    recurring_match = not recurring or (
        bool(existing.get("recurring"))
        and existing_recurring.get("interval") == recurring.get("interval")
        and existing_recurring.get("interval_count") == recurring.get("intervalCount", 1)
    )

    if (
        existing.get("unit_amount") == desired.get("unitAmount")
        and existing.get("currency") == desired.get("currency")
        and recurring_match
    ):
        return "noop"
    return "update"


def price_params(product_id: str, item: dict[str, Any]) -> dict[str, Any]:
    desired = item["desired"]
    params: dict[str, Any] = {
        "product": product_id,
        "unit_amount": desired["unitAmount"],
        "currency": desired["currency"],
        "nickname": desired["nickname"],
        "metadata": {**(desired.get("metadata") or {}), "key": item["key"]},
    }
    if desired.get("recurring"):
        params["recurring"] = {
            "interval": desired["recurring"]["interval"],
            "interval_count": desired["recurring"].get("intervalCount", 1),
        }
    return params


class SyncPricesTool:
    """Sync Stripe prices; plan previews, execute applies."""

    descriptor = ToolDescriptor(
        name="billing.syncPrices",
        description="Sync Stripe prices for a tenant - supports plan mode for preview, requires approval for execution",
        category="billing",
        mutates=True,
        risk="medium",
        dry_run_supported=True,
        requires_approval=True,
        input_schema={
            "type": "object",
            "required": ["businessId"],
            "properties": {
                "businessId": {"type": "string", "description": "Business identifier for context", "minLength": 1},
                "mode": {
                    "type": "string",
                    "enum": ["plan", "execute"],
                    "description": "plan = preview changes, execute = apply changes",
                },
                "currency": {
                    "type": "string",
                    "minLength": 3,
                    "maxLength": 3,
                    "default": "usd",
                    "description": "Currency code (lowercase)",
                },
                "priceMap": {
                    "type": "object",
                    "description": "Map of price key to price config. If not provided, syncs from defaults.",
                },
            },
        },
        output_schema={
            "type": "object",
            "required": ["ok", "businessId", "mode", "executed"],
            "properties": {
                "ok": {"type": "boolean"},
                "businessId": {"type": "string"},
                "mode": {"type": "string", "enum": ["plan", "execute"]},
                "executed": {"type": "boolean"},
                "plan": {"type": "array"},
                "summary": {"type": "object"},
            },
        },
        examples=(
            ToolExample(
                name="Plan price sync",
                input={"businessId": "biz_abc123", "mode": "plan"},
                description="Preview price changes without applying",
            ),
            ToolExample(
                name="Execute price sync",
                input={"businessId": "biz_abc123", "mode": "execute"},
                description="Apply price changes (requires approval)",
            ),
        ),
    )

    def __init__(self, settings: Settings, transport: httpx.AsyncBaseTransport | None = None):
        self.settings = settings
        self.transport = transport

    async def execute(self, ctx: dict[str, Any], args: dict[str, Any]) -> dict[str, Any]:
        business_id = args["businessId"]
        # An explicit mode argument wins over the envelope mode
        mode = args.get("mode") or ctx.get("mode") or "plan"
        currency = args.get("currency") or "usd"
        request_id = ctx.get("request_id")

        if not self.settings.STRIPE_SECRET_KEY:
            return {
                "ok": False,
                "businessId": business_id,
                "error": {
                    "code": ErrorCode.STRIPE_NOT_CONFIGURED.value,
                    "message": "STRIPE_SECRET_KEY not configured",
                },
            }

        logger.info(
            "billing_sync_started",
            request_id=request_id,
            business_id=business_id,
            mode=mode,
            stripe=redact_sensitive({"secret_key": self.settings.STRIPE_SECRET_KEY}),
        )

        prices_to_sync = args.get("priceMap") or default_price_config()
        product_id = self.settings.STRIPE_PRODUCT_ID

        stripe = StripeClient.from_settings(self.settings, transport=self.transport)
        try:
            return await self._sync(
                stripe, ctx, business_id, mode, currency, prices_to_sync, product_id
            )
        except StripeError as e:
            logger.warning("billing_sync_failed", request_id=request_id, error=e.message)
            return {
                "ok": False,
                "businessId": business_id,
                "mode": mode,
                "executed": False,
                "error": {"code": ErrorCode.STRIPE_ERROR.value, "message": e.message, "type": e.error_type},
            }
        finally:
            await stripe.close()

    async def _sync(
        self,
        stripe: StripeClient,
        ctx: dict[str, Any],
        business_id: str,
        mode: str,
        currency: str,
        prices_to_sync: dict[str, dict[str, Any]],
        product_id: str,
    ) -> dict[str, Any]:
        request_id = ctx.get("request_id")

        try:
            existing_prices = await stripe.list_prices(product_id)
        except StripeNotFoundError:
            existing_prices = []

        existing_by_key = {}
        for price in existing_prices:
            key = price.get("nickname") or (price.get("metadata") or {}).get("key") or price.get("id")
            existing_by_key[key] = price

        plan = []
        actions: dict[str, list[str]] = {"create": [], "update": [], "noop": []}
        for key, config in prices_to_sync.items():
            existing = existing_by_key.get(key) or existing_by_key.get(config.get("nickname"))
            action = compare_prices({**config, "currency": currency}, existing)
            plan.append(
                {
                    "key": key,
                    "action": action,
                    "desired": {
                        "unitAmount": config.get("unitAmount"),
                        "currency": currency,
                        "nickname": config.get("nickname") or key,
                        "recurring": config.get("recurring"),
                        "metadata": config.get("metadata"),
                    },
                    "existing": {
                        "id": existing.get("id"),
                        "unitAmount": existing.get("unit_amount"),
                        "currency": existing.get("currency"),
                        "nickname": existing.get("nickname"),
                    }
                    if existing
                    else None,
                }
            )
            actions[action].append(key)

        if mode == "plan" or ctx.get("dry_run"):
            changes = len(actions["create"]) + len(actions["update"])
            logger.info(
                "billing_sync_planned",
                request_id=request_id,
                create=len(actions["create"]),
                update=len(actions["update"]),
                noop=len(actions["noop"]),
            )
            return {
                "ok": True,
                "businessId": business_id,
                "mode": "plan",
                "executed": False,
                "plan": plan,
                "summary": {
                    "toCreate": len(actions["create"]),
                    "toUpdate": len(actions["update"]),
                    "noChange": len(actions["noop"]),
                    "total": len(plan),
                },
                "nextStep": 'Submit with mode="execute" to apply changes (requires approval)'
                if changes
                else "No changes needed",
            }

        try:
            await stripe.retrieve_product(product_id)
        except StripeNotFoundError:
            await stripe.create_product(
                {"id": product_id, "name": PRODUCT_NAME, "description": PRODUCT_DESCRIPTION}
            )
            logger.info("stripe_product_created", request_id=request_id, product_id=product_id)

        created, updated, errors = [], [], []
        for item in plan:
            if item["action"] == "noop":
                continue
            try:
                if item["action"] == "create":
                    new_price = await stripe.create_price(price_params(product_id, item))
                    created.append({"key": item["key"], "priceId": new_price["id"]})
                else:
                    old_id = (item["existing"] or {}).get("id")
                    if old_id:
                        await stripe.update_price(old_id, {"active": False})
                    new_price = await stripe.create_price(price_params(product_id, item))
                    updated.append({"key": item["key"], "oldPriceId": old_id, "newPriceId": new_price["id"]})
            except StripeError as e:
                errors.append({"key": item["key"], "action": item["action"], "error": e.message})
                logger.warning(
                    "billing_sync_item_failed", request_id=request_id, key=item["key"], error=e.message
                )

        result: dict[str, Any] = {
            "ok": not errors,
            "businessId": business_id,
            "mode": "execute",
            "executed": True,
            "plan": plan,
            "created": created,
            "updated": updated,
            "noop": actions["noop"],
            "summary": {
                "created": len(created),
                "updated": len(updated),
                "noChange": len(actions["noop"]),
                "errors": len(errors),
            },
        }
        if errors:
            result["errors"] = errors
        return result
