"""tenant.recovery Tool.

Diagnose an unhealthy tenant: status checks, voice diagnostics and
billing validation, aggregated into a recoveryStatus. autoFix only
plans a billing price sync; it never applies changes.
"""

from typing import Any

from ops_obs.logging import get_logger
from ops_tools.base import ToolDescriptor, ToolExample
from ops_tools.exceptions import ErrorCode, error_result
from ops_tools.tools.billing_sync_prices import SyncPricesTool
from ops_tools.tools.billing_validate_stripe_config import ValidateStripeConfigTool
from ops_tools.tools.common import BUSINESS_ID_SCHEMA
from ops_tools.tools.tenant_status import TenantStatusTool
from ops_tools.tools.voice_diagnostics import VoiceDiagnosticsTool

logger = get_logger(__name__)

RECOVERY_STATUSES = ("healthy", "recovered", "needs_attention", "failed")
UNHEALTHY_TARGET_STATUSES = ("unhealthy", "error", "timeout", "unreachable")


def dedupe(items: list[str]) -> list[str]:
    return list(dict.fromkeys(items))


class TenantRecoveryTool:
    """Diagnose and recover unhealthy tenants."""

    descriptor = ToolDescriptor(
        name="tenant.recovery",
        description=(
            "Diagnose and recover unhealthy tenants by re-validating voice configuration, billing status, "
            "and re-running provisioning checks. Use this when a tenant reports issues or after "
            "infrastructure changes."
        ),
        category="tenant",
        mutates=False,
        risk="medium",
        dry_run_supported=True,
        allowed_callers=("n8n", "ops_console", "human", "api"),
        input_schema={
            "type": "object",
            "required": ["businessId"],
            "properties": {
                "businessId": BUSINESS_ID_SCHEMA,
                "runVoiceTest": {"type": "boolean", "default": True, "description": "Run voice diagnostics"},
                "recheckBilling": {
                    "type": "boolean",
                    "default": True,
                    "description": "Re-check billing/Stripe status",
                },
                "autoFix": {
                    "type": "boolean",
                    "default": False,
                    "description": "If true, attempt to fix issues found",
                },
            },
        },
        output_schema={
            "type": "object",
            "required": ["ok", "businessId"],
            "properties": {
                "ok": {"type": "boolean"},
                "businessId": {"type": "string"},
                "recoveryStatus": {"type": "string", "enum": list(RECOVERY_STATUSES)},
                "issuesFound": {"type": "number"},
                "issuesFixed": {"type": "number"},
                "checks": {"type": "object"},
                "actions": {"type": "array"},
                "recommendations": {"type": "array"},
            },
        },
        examples=(
            ToolExample(
                name="Plan recovery",
                input={"businessId": "biz_abc123"},
                description="Preview what recovery checks would run (use mode: plan)",
            ),
            ToolExample(
                name="Recovery with auto-fix",
                input={"businessId": "biz_abc123", "autoFix": True},
                description="Run diagnostics and attempt to fix issues",
            ),
            ToolExample(
                name="Quick check (skip voice)",
                input={"businessId": "biz_abc123", "runVoiceTest": False, "recheckBilling": True},
                description="Fast recovery check without voice latency tests",
            ),
        ),
        documentation="/docs/tenant-recovery-golden-workflow.md",
    )

    def __init__(
        self,
        status: TenantStatusTool,
        diagnostics: VoiceDiagnosticsTool,
        stripe_config: ValidateStripeConfigTool,
        sync_prices: SyncPricesTool,
    ):
        self.status = status
        self.diagnostics = diagnostics
        self.stripe_config = stripe_config
        self.sync_prices = sync_prices

    @staticmethod
    def options(args: dict[str, Any]) -> tuple[bool, bool, bool]:
        return (
            args.get("runVoiceTest", True) is not False,
            args.get("recheckBilling", True) is not False,
            bool(args.get("autoFix", False)),
        )

    async def execute(self, ctx: dict[str, Any], args: dict[str, Any]) -> dict[str, Any]:
        if ctx.get("mode") == "plan":
            return self.build_plan(args)
        if ctx.get("dry_run"):
            return self.build_dry_run(args)
        try:
            return await self.recover(ctx, args)
        except Exception as e:
            logger.exception(
                "tenant_recovery_failed", business_id=args["businessId"], request_id=ctx.get("request_id")
            )
            return {
                **error_result(ErrorCode.RECOVERY_ERROR, str(e)),
                "businessId": args["businessId"],
                "recoveryStatus": "failed",
            }

    def build_plan(self, args: dict[str, Any]) -> dict[str, Any]:
        run_voice, recheck_billing, auto_fix = self.options(args)

        steps = [
            {"action": "tenant.status", "description": "Get current tenant status and identify issues"},
        ]
        if run_voice:
            steps.append(
                {"action": "voice.diagnostics", "description": "Run voice service connectivity and latency tests"}
            )
        if recheck_billing:
            steps.append(
                {
                    "action": "billing.validateStripeConfig",
                    "description": "Validate Stripe configuration and subscription status",
                }
            )
        steps.append(
            {"action": "aggregate_results", "description": "Aggregate all check results and determine recovery status"}
        )
        if auto_fix:
            steps.append(
                {
                    "action": "auto_fix",
                    "description": "Attempt automatic fixes for issues found (conditional)",
                    "conditional": True,
                    "note": "Only executes if issues are found",
                }
            )
        for number, step in enumerate(steps, start=1):
            step.update({"step": number, "willExecute": True})

        return {
            "ok": True,
            "businessId": args["businessId"],
            "mode": "plan",
            "executed": False,
            "plan": {
                "steps": steps,
                "totalSteps": len(steps),
                "options": {"runVoiceTest": run_voice, "recheckBilling": recheck_billing, "autoFix": auto_fix},
                "warnings": ["autoFix=true will attempt to modify data if issues are found"] if auto_fix else [],
            },
            "recommendations": [
                "Review the plan steps before executing",
                "autoFix is enabled - data may be modified" if auto_fix else "autoFix is disabled - read-only checks",
            ],
        }

    def build_dry_run(self, args: dict[str, Any]) -> dict[str, Any]:
        run_voice, recheck_billing, auto_fix = self.options(args)
        return {
            "ok": True,
            "businessId": args["businessId"],
            "mode": "dryRun",
            "executed": False,
            "wouldExecute": {
                "tenantStatus": True,
                "voiceDiagnostics": run_voice,
                "billingValidation": recheck_billing,
                "autoFix": auto_fix,
            },
            "simulatedResult": {
                "recoveryStatus": "would_be_determined",
                "issuesFound": "would_be_counted",
                "issuesFixed": "would_be_attempted" if auto_fix else 0,
                "checks": {
                    "voice": {"status": "would_run" if run_voice else "skipped"},
                    "billing": {"status": "would_run" if recheck_billing else "skipped"},
                    "provisioning": {"status": "would_run"},
                },
                "actions": ["Potential fixes would be attempted"] if auto_fix else ["No fixes - read-only mode"],
                "recommendations": ["Execute without dryRun to see actual results"],
            },
        }

    async def recover(self, ctx: dict[str, Any], args: dict[str, Any]) -> dict[str, Any]:
        business_id = args["businessId"]
        run_voice, recheck_billing, auto_fix = self.options(args)
        request_id = ctx.get("request_id")

        checks: dict[str, Any] = {
            "voice": {"status": "skipped"},
            "billing": {"status": "skipped"},
            "provisioning": {"ready": False, "message": "Not checked yet"},
        }
        actions: list[str] = []
        recommendations: list[str] = []
        details: dict[str, Any] = {}
        issues: list[dict[str, str]] = []
        status_failed = False

        # Step 1: tenant status
        try:
            status = await self.status.execute(ctx, {"businessId": business_id})
            details["tenantStatus"] = status
            summary = status.get("summary") or {}
            if not status.get("ok"):
                issues.append({"type": "tenant_status", "severity": "high", "message": "Failed to get tenant status"})
            elif not summary.get("ready"):
                issues.append(
                    {
                        "type": "tenant_not_ready",
                        "severity": "medium",
                        "message": summary.get("readyMessage") or "Tenant not fully operational",
                    }
                )
                recommendations.extend(status.get("recommendations") or [])
                for check in status.get("checks") or []:
                    if check["status"] == "failed":
                        issues.append(
                            {"type": f"tenant_{check['item']}", "severity": "high", "message": check["details"]}
                        )
            checks["provisioning"] = {
                "ready": bool(summary.get("ready")),
                "message": summary.get("readyMessage") or "Unknown",
            }
        except Exception as e:
            logger.exception("tenant_recovery_status_failed", request_id=request_id, business_id=business_id)
            status_failed = True
            issues.append({"type": "tenant_status_error", "severity": "high", "message": str(e)})
            details["tenantStatusError"] = str(e)

        # Step 2: voice diagnostics
        if run_voice:
            try:
                voice = await self.diagnostics.execute(ctx, {"businessId": business_id, "timeoutMs": 5000})
                details["voiceDiagnostics"] = voice
                overall = voice.get("overallStatus") or "unknown"
                checks["voice"] = {
                    "status": overall,
                    "latencyMs": (voice.get("summary") or {}).get("avgLatencyMs"),
                }
                if overall != "healthy":
                    checks["voice"]["error"] = voice.get("statusReason")
                if overall in ("critical", "degraded"):
                    issues.append(
                        {
                            "type": "voice_unhealthy",
                            "severity": "high" if overall == "critical" else "medium",
                            "message": voice.get("statusReason") or "Voice services unhealthy",
                        }
                    )
                    for target in voice.get("results") or []:
                        if target["status"] in UNHEALTHY_TARGET_STATUSES:
                            recommendations.append(f"Check {target['target']}: {target['reason']}")
            except Exception as e:
                logger.exception("tenant_recovery_voice_failed", request_id=request_id, business_id=business_id)
                issues.append({"type": "voice_check_error", "severity": "medium", "message": str(e)})
                checks["voice"] = {"status": "error", "error": str(e)}
        else:
            actions.append("Skipped voice diagnostics (runVoiceTest=false)")

        # Step 3: billing validation
        if recheck_billing:
            try:
                billing = await self.stripe_config.execute(ctx, {"businessId": business_id})
                details["billingValidation"] = billing
                valid = billing.get("ok") is True
                checks["billing"] = {"status": "healthy" if valid else "unhealthy", "valid": valid}
                if not valid:
                    message = billing.get("summary") or "Billing configuration invalid"
                    checks["billing"]["error"] = message
                    issues.append({"type": "billing_invalid", "severity": "high", "message": message})
                    for check in billing.get("checks") or []:
                        if not check.get("ok"):
                            recommendations.append(f"Billing: {check.get('message') or check.get('name')}")
            except Exception as e:
                logger.exception("tenant_recovery_billing_failed", request_id=request_id, business_id=business_id)
                issues.append({"type": "billing_check_error", "severity": "medium", "message": str(e)})
                checks["billing"] = {"status": "error", "valid": False, "error": str(e)}
        else:
            actions.append("Skipped billing validation (recheckBilling=false)")

        # Step 4: autoFix (plans only)
        issues_fixed = 0
        if auto_fix and issues:
            actions.append(f"AutoFix enabled: Found {len(issues)} issue(s) to address")

            if any(i["type"].startswith("voice_") for i in issues):
                actions.append("Voice issues detected - recommend checking API keys and service status")
                recommendations.append("Voice auto-fix not implemented yet - manual intervention required")

            if any(i["type"].startswith("billing_") for i in issues):
                try:
                    sync = await self.sync_prices.execute(ctx, {"businessId": business_id, "mode": "plan"})
                    to_create = (sync.get("summary") or {}).get("toCreate", 0)
                    if sync.get("ok") and to_create > 0:
                        actions.append(f"Billing: Found {to_create} price(s) to sync")
                        recommendations.append("Run billing.syncPrices with mode=execute to apply changes")
                    details["billingSyncPlan"] = sync
                except Exception as e:
                    logger.exception("tenant_recovery_sync_failed", request_id=request_id, business_id=business_id)
                    actions.append(f"Billing auto-fix failed: {e}")

            if any(i["type"].startswith("tenant_") for i in issues):
                actions.append("Tenant provisioning issues detected")
                recommendations.append("Consider running tenant.bootstrap to complete setup")
        elif auto_fix:
            actions.append("AutoFix enabled but no issues found")

        # Step 5: recovery status
        if status_failed:
            recovery_status = "failed"
            recommendations.append("Tenant status could not be determined - retry recovery")
        elif not issues:
            recovery_status = "healthy"
            recommendations.append("Tenant is healthy - no action needed")
        elif issues_fixed >= len(issues):
            recovery_status = "recovered"
            recommendations.append("All issues were automatically resolved")
        elif any(i["severity"] == "high" for i in issues):
            recovery_status = "needs_attention"
            recommendations.append("Critical issues found - manual intervention required")
        else:
            recovery_status = "needs_attention"
            recommendations.append("Minor issues found - review recommendations")

        details["issues"] = issues
        logger.info(
            "tenant_recovery_completed",
            request_id=request_id,
            business_id=business_id,
            recovery_status=recovery_status,
            issues=len(issues),
        )

        return {
            "ok": True,
            "businessId": business_id,
            "mode": "execute",
            "executed": True,
            "recoveryStatus": recovery_status,
            "issuesFound": len(issues),
            "issuesFixed": issues_fixed,
            "checks": checks,
            "actions": actions,
            "recommendations": dedupe(recommendations),
            "details": details,
        }
