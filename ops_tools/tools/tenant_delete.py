"""tenant.delete Tool.

High risk: removes the tenant record and its event types. Execution is
gated behind an approval request, and the caller must repeat the
businessId as confirmationCode.
"""

from typing import Any

from ops_memory.timestamps import format_timestamp, utcnow
from ops_obs.logging import get_logger
from ops_tools.base import ToolDescriptor, is_dry_run
from ops_tools.exceptions import ErrorCode, error_result
from ops_tools.tools.common import BUSINESS_ID_SCHEMA, EVENT_TYPES_COLLECTION, USERS_COLLECTION

logger = get_logger(__name__)


class TenantDeleteTool:
    """Delete a tenant and its event types."""

    descriptor = ToolDescriptor(
        name="tenant.delete",
        description="Delete a tenant and all associated data (HIGH RISK - requires approval)",
        category="tenant",
        mutates=True,
        risk="high",
        dry_run_supported=True,
        allowed_callers=("human", "api"),
        requires_approval=True,
        input_schema={
            "type": "object",
            "required": ["businessId", "confirmationCode"],
            "properties": {
                "businessId": BUSINESS_ID_SCHEMA,
                "confirmationCode": {
                    "type": "string",
                    "description": "Must match businessId to confirm deletion",
                },
                "reason": {"type": "string", "description": "Reason for deletion (for audit)"},
            },
        },
        output_schema={
            "type": "object",
            "required": ["ok", "businessId"],
            "properties": {
                "ok": {"type": "boolean"},
                "businessId": {"type": "string"},
                "deleted": {"type": "boolean"},
                "deletedAt": {"type": "string"},
                "affectedRecords": {"type": "object"},
            },
        },
    )

    async def execute(self, ctx: dict[str, Any], args: dict[str, Any]) -> dict[str, Any]:
        business_id = args["businessId"]
        db = ctx["db"]

        if args.get("confirmationCode") != business_id:
            return {
                **error_result(ErrorCode.CONFIRMATION_MISMATCH, "confirmationCode must match businessId"),
                "businessId": business_id,
            }

        if not await db.get(USERS_COLLECTION, business_id):
            return {
                **error_result(ErrorCode.BUSINESS_NOT_FOUND, f"Business '{business_id}' not found"),
                "businessId": business_id,
            }

        event_types = await db.count(EVENT_TYPES_COLLECTION, {"userId": business_id})

        if is_dry_run(ctx):
            return {
                "ok": True,
                "businessId": business_id,
                "deleted": False,
                "dryRunPlan": {
                    "action": "delete_business",
                    "businessId": business_id,
                    "wouldDelete": {"users": 1, "eventTypes": event_types},
                },
                "summary": f"[DRY RUN] Would delete business {business_id} and {event_types} event type(s)",
            }

        removed_types = await db.delete_many(EVENT_TYPES_COLLECTION, {"userId": business_id})
        removed_user = await db.delete_one(USERS_COLLECTION, business_id)

        logger.warning(
            "tenant_deleted",
            business_id=business_id,
            request_id=ctx.get("request_id"),
            approved_by=ctx.get("approved_by"),
            reason=args.get("reason"),
            event_types=removed_types,
        )

        return {
            "ok": True,
            "businessId": business_id,
            "deleted": removed_user,
            "deletedAt": format_timestamp(utcnow()),
            "affectedRecords": {"users": int(removed_user), "eventTypes": removed_types},
            "summary": f"Deleted business {business_id}",
        }
