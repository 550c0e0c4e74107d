"""tenant.status Tool.

Read-only status checks with recommendations.
"""

from typing import Any

from ops_obs.logging import get_logger
from ops_tools.base import ToolDescriptor, ToolExample
from ops_tools.tools.common import BUSINESS_ID_SCHEMA, load_tenant

logger = get_logger(__name__)


class TenantStatusTool:
    """Comprehensive tenant status without mutation."""

    descriptor = ToolDescriptor(
        name="tenant.status",
        description="Read-only tenant status check - returns comprehensive status without mutation",
        category="tenant",
        allowed_callers=("n8n", "human", "api", "mcp"),
        input_schema={
            "type": "object",
            "required": ["businessId"],
            "properties": {"businessId": BUSINESS_ID_SCHEMA},
        },
        output_schema={
            "type": "object",
            "required": ["ok", "businessId", "summary", "checks"],
            "properties": {
                "ok": {"type": "boolean"},
                "businessId": {"type": "string"},
                "summary": {"type": "object"},
                "checks": {"type": "array"},
                "recommendations": {"type": "array"},
            },
        },
        examples=(
            ToolExample(
                name="Check tenant status",
                input={"businessId": "biz_abc123"},
                description="Get comprehensive status check for a tenant",
            ),
        ),
    )

    async def execute(self, ctx: dict[str, Any], args: dict[str, Any]) -> dict[str, Any]:
        business_id = args["businessId"]
        checks: list[dict[str, str]] = []
        recommendations: list[str] = []

        def check(item: str, status: str, details: str) -> None:
            checks.append({"item": item, "status": status, "details": details})

        user, p = await load_tenant(ctx["db"], business_id)
        if user is None:
            check("business_exists", "failed", f"Business '{business_id}' not found in database")
            return {
                "ok": True,
                "businessId": business_id,
                "summary": {"ready": False, "readyMessage": "Business not found"},
                "checks": checks,
                "recommendations": ["Create the business using tenant.bootstrap"],
            }

        check("business_exists", "passed", f"Found business: {user.get('email') or business_id}")

        subscription = p["subscription"]
        if p["subscription_active"]:
            check(
                "subscription_active",
                "passed",
                f"Status: {subscription.get('status')}, Plan: {subscription.get('stripePriceId') or 'unknown'}",
            )
        else:
            check("subscription_active", "warning", f"Status: {subscription.get('status') or 'none'}")
            recommendations.append("Activate subscription via billing portal")

        if p["has_customer"] and p["has_subscription"]:
            check("stripe_integration", "passed", "Stripe customer and subscription configured")
        else:
            check(
                "stripe_integration",
                "warning" if p["has_customer"] else "failed",
                f"Customer: {'yes' if p['has_customer'] else 'no'}, "
                f"Subscription: {'yes' if p['has_subscription'] else 'no'}",
            )
            if not p["has_customer"]:
                recommendations.append("Set up Stripe customer via checkout")

        if p["has_call_minutes_item"]:
            check("call_minutes_metering", "passed", "Call minutes metering configured")
        elif p["subscription_active"]:
            check("call_minutes_metering", "warning", "Call minutes metering not configured")
            recommendations.append("Configure call minutes metering item")

        if p["calendar_connected"]:
            check("calendar_connected", "passed", f"{len(p['selected_calendars'])} calendar(s) selected")
        else:
            check("calendar_connected", "warning", "Google Calendar not connected")
            recommendations.append("Connect Google Calendar for scheduling")

        handle = p["handle"]
        if handle and p["has_availability"]:
            check("scheduling_configured", "passed", f"Handle: {handle}, Availability: configured")
        else:
            check(
                "scheduling_configured",
                "warning",
                f"Handle: {handle or 'not set'}, Availability: {'set' if p['has_availability'] else 'not set'}",
            )
            if not handle:
                recommendations.append("Set scheduling handle")
            if not p["has_availability"]:
                recommendations.append("Configure availability hours")

        if p["voice_agent_count"]:
            check("voice_agents", "passed", f"{p['voice_agent_count']} voice agent(s) configured")
        else:
            check("voice_agents", "info", "No voice agents configured (optional)")

        if p["event_type_count"]:
            check("event_types", "passed", f"{p['event_type_count']} event type(s) created")
        else:
            check("event_types", "warning", "No event types created")
            recommendations.append("Create at least one event type")

        passed = sum(1 for c in checks if c["status"] == "passed")
        failed = sum(1 for c in checks if c["status"] == "failed")
        ready = failed == 0 and p["subscription_active"] and p["has_customer"]

        if ready:
            ready_message = f"Tenant fully operational ({passed}/{len(checks)} checks passed)"
        elif failed:
            ready_message = f"{failed} critical issue(s) found"
        else:
            ready_message = "Tenant needs configuration"

        logger.info(
            "tenant_status_checked",
            business_id=business_id,
            request_id=ctx.get("request_id"),
            ready=ready,
        )

        result: dict[str, Any] = {
            "ok": True,
            "businessId": business_id,
            "summary": {"ready": ready, "readyMessage": ready_message},
            "checks": checks,
        }
        if recommendations:
            result["recommendations"] = recommendations
        return result
