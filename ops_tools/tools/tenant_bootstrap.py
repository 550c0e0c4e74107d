"""tenant.bootstrap Tool.

Canonical onboarding path. Runs the sibling tools directly, in order:

    1. tenant.ensure                 (failed blocks readiness)
    2. voice.smokeTest               (warning on failure, skippable)
    3. billing.validateStripeConfig  (warning on failure, skippable)
    4. tenant.provisioningSummary    (in_progress below 100%, failed if missing)

Optional integrations degrade to ``warning``; only a ``failed`` step makes
the tenant not ready.
"""

import time
from typing import Any

from ops_obs.logging import get_logger
from ops_tools.base import ToolDescriptor, ToolExample
from ops_tools.exceptions import ErrorCode
from ops_tools.tools.billing_validate_stripe_config import ValidateStripeConfigTool
from ops_tools.tools.common import BUSINESS_ID_SCHEMA, elapsed_ms
from ops_tools.tools.tenant_ensure import TenantEnsureTool
from ops_tools.tools.tenant_provisioning_summary import ProvisioningSummaryTool
from ops_tools.tools.voice_smoke_test import VoiceSmokeTestTool

logger = get_logger(__name__)

CHECKLIST_STATUSES = ("done", "warning", "in_progress", "skipped", "failed")
READY_STATUSES = ("done", "skipped", "warning", "in_progress")

VOICE_WARNING = "Some voice checks failed - this may affect AI calling features"
BILLING_WARNING = "Stripe configuration has issues - billing features may not work"


def is_ready(checklist: list[dict[str, Any]]) -> bool:
    """True unless some checklist entry is outside READY_STATUSES."""
    return all(entry["status"] in READY_STATUSES for entry in checklist)


def checklist_stats(checklist: list[dict[str, Any]]) -> dict[str, int]:
    return {
        "totalSteps": len(checklist),
        "completed": sum(1 for c in checklist if c["status"] == "done"),
        "warnings": sum(1 for c in checklist if c["status"] == "warning"),
        "skipped": sum(1 for c in checklist if c["status"] == "skipped"),
        "failed": sum(1 for c in checklist if c["status"] == "failed"),
    }


def build_recommendations(details: dict[str, Any]) -> list[dict[str, str]]:
    """Recommendations in priority order: high, medium, low."""
    provisioning = details.get("provisioning") or {}
    recommendations = []

    if provisioning.get("exists") is not False:
        if not (provisioning.get("subscription") or {}).get("active"):
            recommendations.append(
                {"priority": "high", "item": "subscription", "message": "Activate subscription to unlock all features"}
            )
        if not (provisioning.get("calendar") or {}).get("connected"):
            recommendations.append(
                {"priority": "medium", "item": "calendar", "message": "Connect Google Calendar for availability sync"}
            )
        if not (provisioning.get("scheduling") or {}).get("hasAvailability"):
            recommendations.append(
                {"priority": "medium", "item": "availability", "message": "Configure availability hours"}
            )

    billing_warning = (details.get("billing") or {}).get("warning")
    if billing_warning:
        recommendations.append({"priority": "medium", "item": "billing", "message": billing_warning})

    voice_warning = (details.get("voice") or {}).get("warning")
    if voice_warning:
        recommendations.append({"priority": "low", "item": "voice", "message": voice_warning})

    order = {"high": 0, "medium": 1, "low": 2}
    return sorted(recommendations, key=lambda r: order[r["priority"]])


class TenantBootstrapTool:
    """Complete tenant onboarding in one call."""

    descriptor = ToolDescriptor(
        name="tenant.bootstrap",
        description=(
            "Complete tenant onboarding - THE canonical path for creating and validating tenants. "
            "Orchestrates tenant creation, billing validation, voice testing, and provisioning summary."
        ),
        category="tenant",
        mutates=True,
        risk="medium",
        dry_run_supported=True,
        allowed_callers=("n8n", "human", "api", "mcp"),
        canonical_for="tenant-onboarding",
        replaces=(
            "tenant.ensure",
            "billing.validateStripeConfig",
            "voice.smokeTest",
            "tenant.provisioningSummary",
        ),
        input_schema={
            "type": "object",
            "required": ["businessId"],
            "properties": {
                "businessId": BUSINESS_ID_SCHEMA,
                "name": {"type": "string", "description": "Business display name (used if creating new tenant)"},
                "skipVoiceTest": {
                    "type": "boolean",
                    "default": False,
                    "description": "Skip voice smoke test for faster execution",
                },
                "skipBillingCheck": {"type": "boolean", "default": False, "description": "Skip Stripe validation"},
            },
        },
        output_schema={
            "type": "object",
            "required": ["ok", "ready"],
            "properties": {
                "ok": {"type": "boolean"},
                "ready": {"type": "boolean"},
                "readyMessage": {"type": "string"},
                "checklist": {"type": "array"},
                "recommendations": {"type": "array"},
                "stats": {"type": "object"},
            },
        },
        examples=(
            ToolExample(
                name="Basic bootstrap",
                input={"businessId": "biz_abc123"},
                description="Run full bootstrap with all checks",
            ),
            ToolExample(
                name="Fast bootstrap",
                input={"businessId": "biz_abc123", "skipVoiceTest": True, "skipBillingCheck": True},
                description="Quick bootstrap skipping optional checks",
            ),
        ),
        documentation="/docs/tenant-bootstrap-canonical.md",
    )

    def __init__(
        self,
        ensure: TenantEnsureTool,
        smoke_test: VoiceSmokeTestTool,
        stripe_config: ValidateStripeConfigTool,
        provisioning: ProvisioningSummaryTool,
    ):
        self.ensure = ensure
        self.smoke_test = smoke_test
        self.stripe_config = stripe_config
        self.provisioning = provisioning

    async def execute(self, ctx: dict[str, Any], args: dict[str, Any]) -> dict[str, Any]:
        business_id = args["businessId"]
        dry_run = bool(ctx.get("dry_run"))
        started = time.monotonic()
        checklist: list[dict[str, Any]] = []
        details: dict[str, Any] = {}

        def record(item: str, tool: str, status: str, detail: str, step_started: float) -> None:
            checklist.append(
                {
                    "step": len(checklist) + 1,
                    "item": item,
                    "tool": tool,
                    "status": status,
                    "details": detail,
                    "durationMs": elapsed_ms(step_started),
                }
            )

        try:
            # Step 1: tenant record
            step_started = time.monotonic()
            ensure_args = {"businessId": business_id}
            if args.get("name"):
                ensure_args["name"] = args["name"]
            ensured = await self.ensure.execute(ctx, ensure_args)
            if ensured.get("existed"):
                detail = "Already exists"
            elif ensured.get("created"):
                detail = "Created"
            else:
                detail = "Would be created" if dry_run else "Checked"
            record(
                "Tenant Record",
                "tenant.ensure",
                "failed" if ensured.get("ok") is False else "done",
                detail,
                step_started,
            )
            details["tenant"] = {
                "businessId": business_id,
                "existed": ensured.get("existed"),
                "created": ensured.get("created"),
            }

            # Step 2: voice services
            step_started = time.monotonic()
            if args.get("skipVoiceTest"):
                record("Voice Services", "voice.smokeTest", "skipped", "Skipped by request", step_started)
                details["voice"] = {"skipped": True}
            else:
                voice = await self.smoke_test.execute(ctx, {"businessId": business_id})
                passed = voice.get("ok") is not False and voice.get("passed") == voice.get("total")
                record(
                    "Voice Services",
                    "voice.smokeTest",
                    "done" if passed else "warning",
                    f"{voice.get('passed') or 0}/{voice.get('total') or 0} checks passed",
                    step_started,
                )
                details["voice"] = {
                    "passed": voice.get("passed"),
                    "total": voice.get("total"),
                    "checks": voice.get("checks"),
                }
                if not passed:
                    details["voice"]["warning"] = VOICE_WARNING

            # Step 3: billing configuration
            step_started = time.monotonic()
            if args.get("skipBillingCheck"):
                record("Billing Configuration", "billing.validateStripeConfig", "skipped", "Skipped by request", step_started)
                details["billing"] = {"skipped": True}
            else:
                billing = await self.stripe_config.execute(ctx, {"businessId": business_id})
                valid = billing.get("ok") is not False
                record(
                    "Billing Configuration",
                    "billing.validateStripeConfig",
                    "done" if valid else "warning",
                    billing.get("summary") or ("Stripe configuration valid" if valid else "Stripe issues found"),
                    step_started,
                )
                details["billing"] = {
                    "stripeConfigured": billing.get("stripeConfigured"),
                    "stripeMode": billing.get("stripeMode"),
                    "issues": billing.get("issues"),
                }
                if not valid:
                    details["billing"]["warning"] = BILLING_WARNING

            # Step 4: provisioning summary
            step_started = time.monotonic()
            summary = await self.provisioning.execute(ctx, {"businessId": business_id})
            if summary.get("exists"):
                score = summary.get("provisioningScore", 0)
                status = "done" if score >= 100 else "in_progress"
                detail = f"{score}% complete"
            elif dry_run and not ensured.get("existed"):
                status, detail = "skipped", "Tenant will be created on execute"
            else:
                status, detail = "failed", "Tenant not found"
            record("Provisioning", "tenant.provisioningSummary", status, detail, step_started)
            details["provisioning"] = {
                "exists": summary.get("exists"),
                "score": summary.get("provisioningScore"),
                "subscription": summary.get("subscription"),
                "calendar": summary.get("calendar"),
                "scheduling": summary.get("scheduling"),
                "voice": summary.get("voice"),
                "eventTypes": summary.get("eventTypes"),
                "checklist": summary.get("checklist"),
            }

        except Exception as e:
            logger.exception(
                "tenant_bootstrap_failed",
                business_id=business_id,
                request_id=ctx.get("request_id"),
                step=len(checklist) + 1,
            )
            return {
                "ok": False,
                "businessId": business_id,
                "ready": False,
                "error": {
                    "code": ErrorCode.BOOTSTRAP_ERROR.value,
                    "message": str(e),
                    "step": len(checklist) + 1,
                },
                "checklist": checklist,
                "details": details,
                "summary": f"Bootstrap failed: {e}",
            }

        ready = is_ready(checklist)
        recommendations = build_recommendations(details)

        return {
            "ok": True,
            "businessId": business_id,
            "ready": ready,
            "readyMessage": "Tenant is fully bootstrapped and ready"
            if ready
            else f"Tenant requires attention ({len(recommendations)} recommendations)",
            "checklist": checklist,
            "recommendations": recommendations,
            "stats": checklist_stats(checklist),
            "details": details,
            "dryRun": dry_run,
            "durationMs": elapsed_ms(started),
            "summary": f"[DRY RUN] Would bootstrap tenant {business_id}"
            if dry_run
            else f"Bootstrapped tenant {business_id} - {'Ready' if ready else 'Needs attention'}",
        }
