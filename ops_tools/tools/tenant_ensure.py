"""tenant.ensure Tool.

Create the tenant record when it does not exist yet.
"""

from typing import Any

from ops_memory.exceptions import DuplicateKeyError
from ops_memory.timestamps import format_timestamp, utcnow
from ops_obs.logging import get_logger
from ops_tools.base import ToolDescriptor
from ops_tools.tools.common import USERS_COLLECTION

logger = get_logger(__name__)


class TenantEnsureTool:
    """Create or verify a business record."""

    descriptor = ToolDescriptor(
        name="tenant.ensure",
        description="DEPRECATED: Create or verify a business record exists. Use tenant.bootstrap instead.",
        category="tenant",
        mutates=True,
        risk="low",
        dry_run_supported=True,
        deprecated=True,
        deprecated_reason="Use tenant.bootstrap for complete onboarding",
        replaced_by="tenant.bootstrap",
        input_schema={
            "type": "object",
            "required": ["businessId"],
            "properties": {
                "businessId": {"type": "string", "description": "Unique business identifier"},
                "name": {"type": "string", "description": "Business display name"},
            },
        },
        output_schema={
            "type": "object",
            "properties": {
                "businessId": {"type": "string"},
                "existed": {"type": "boolean"},
                "created": {"type": "boolean"},
            },
        },
    )

    async def execute(self, ctx: dict[str, Any], args: dict[str, Any]) -> dict[str, Any]:
        business_id = args["businessId"]
        db = ctx["db"]

        if await db.get(USERS_COLLECTION, business_id):
            return {
                "ok": True,
                "businessId": business_id,
                "existed": True,
                "created": False,
                "summary": f"Business {business_id} already exists",
            }

        if ctx.get("dry_run"):
            return {
                "ok": True,
                "businessId": business_id,
                "existed": False,
                "created": False,
                "dryRunPlan": {
                    "action": "create_business",
                    "businessId": business_id,
                    "fields": ["id", "email", "createdAt", "subscription"],
                },
                "summary": f"[DRY RUN] Would create business {business_id}",
            }

        now = format_timestamp(utcnow())
        business = {
            "id": business_id,
            "email": f"{business_id}@placeholder.book8.ai",
            "name": args.get("name") or f"Business {business_id}",
            "createdAt": now,
            "updatedAt": now,
            "subscription": {},
            "scheduling": {},
            "createdByOps": True,
            "opsRequestId": ctx.get("request_id"),
        }

        try:
            await db.insert_one(USERS_COLLECTION, business_id, business)
        except DuplicateKeyError:
            # Created concurrently between the lookup and the insert
            return {
                "ok": True,
                "businessId": business_id,
                "existed": True,
                "created": False,
                "summary": f"Business {business_id} already exists",
            }

        logger.info("tenant_created", business_id=business_id, request_id=ctx.get("request_id"))
        return {
            "ok": True,
            "businessId": business_id,
            "existed": False,
            "created": True,
            "summary": f"Created business {business_id}",
        }
