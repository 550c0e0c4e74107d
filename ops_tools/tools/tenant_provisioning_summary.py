"""tenant.provisioningSummary Tool.

Nine-item provisioning checklist with a percentage score.
"""

from typing import Any

from ops_tools.base import ToolDescriptor
from ops_tools.exceptions import ErrorCode
from ops_tools.tools.common import load_tenant


class ProvisioningSummaryTool:
    """Report how far a tenant is through provisioning."""

    descriptor = ToolDescriptor(
        name="tenant.provisioningSummary",
        description="DEPRECATED: Get complete tenant provisioning state. Use tenant.bootstrap instead.",
        category="tenant",
        deprecated=True,
        deprecated_reason="Use tenant.bootstrap for complete onboarding",
        replaced_by="tenant.bootstrap",
        input_schema={
            "type": "object",
            "required": ["businessId"],
            "properties": {"businessId": {"type": "string", "description": "Business identifier"}},
        },
        output_schema={
            "type": "object",
            "properties": {
                "exists": {"type": "boolean"},
                "provisioningScore": {"type": "number"},
                "subscription": {"type": "object"},
                "calendar": {"type": "object"},
                "scheduling": {"type": "object"},
                "voice": {"type": "object"},
            },
        },
    )

    async def execute(self, ctx: dict[str, Any], args: dict[str, Any]) -> dict[str, Any]:
        business_id = args["businessId"]
        user, p = await load_tenant(ctx["db"], business_id)

        if user is None:
            return {
                "ok": False,
                "businessId": business_id,
                "exists": False,
                "summary": "Business not found",
                "error": {
                    "code": ErrorCode.BUSINESS_NOT_FOUND.value,
                    "message": f"No business found with ID: {business_id}",
                },
            }

        subscription = p["subscription"]

        def present(flag: bool) -> str:
            return "present" if flag else "missing"

        checklist = [
            {
                "item": "subscription_active",
                "ok": p["subscription_active"],
                "details": subscription.get("status") or "none",
            },
            {"item": "stripe_customer_id", "ok": p["has_customer"], "details": present(p["has_customer"])},
            {
                "item": "stripe_subscription_id",
                "ok": p["has_subscription"],
                "details": present(p["has_subscription"]),
            },
            {
                "item": "stripe_call_minutes_item",
                "ok": p["has_call_minutes_item"],
                "details": present(p["has_call_minutes_item"]),
            },
            {
                "item": "calendar_connected",
                "ok": p["calendar_connected"],
                "details": f"{len(p['selected_calendars'])} calendars selected"
                if p["calendar_connected"]
                else "not connected",
            },
            {"item": "scheduling_handle", "ok": bool(p["handle"]), "details": p["handle"] or "not set"},
            {
                "item": "availability_configured",
                "ok": p["has_availability"],
                "details": "configured" if p["has_availability"] else "not configured",
            },
            {
                "item": "voice_agents",
                "ok": p["voice_agent_count"] > 0,
                "details": f"{p['voice_agent_count']} agent(s)",
            },
            {
                "item": "event_types",
                "ok": p["event_type_count"] > 0,
                "details": f"{p['event_type_count']} event type(s)",
            },
        ]

        completed = sum(1 for c in checklist if c["ok"])
        score = round(completed / len(checklist) * 100)

        return {
            "ok": True,
            "businessId": business_id,
            "exists": True,
            "email": user.get("email"),
            "name": user.get("name"),
            "createdAt": user.get("createdAt"),
            "subscription": {
                "active": p["subscription_active"],
                "status": subscription.get("status"),
                "stripeCustomerId": subscription.get("stripeCustomerId"),
                "stripeSubscriptionId": subscription.get("stripeSubscriptionId"),
                "stripeCallMinutesItemId": subscription.get("stripeCallMinutesItemId"),
                "stripePriceId": subscription.get("stripePriceId"),
                "currentPeriodEnd": subscription.get("currentPeriodEnd"),
            },
            "calendar": {
                "connected": p["calendar_connected"],
                "selectedCalendarCount": len(p["selected_calendars"]),
            },
            "scheduling": {"handle": p["handle"], "hasAvailability": p["has_availability"]},
            "voice": {"configured": p["voice_agent_count"] > 0, "agentCount": p["voice_agent_count"]},
            "eventTypes": {"count": p["event_type_count"]},
            "checklist": checklist,
            "provisioningScore": score,
            "summary": f"Provisioning {score}% complete ({completed}/{len(checklist)} items)",
        }
