"""billing_verification Tool.

Read-only billing audit for a tenant: compares what was billed in a
period against what call usage and subscription charges say should have
been billed, and flags discrepancies beyond a tolerance.
"""

import math
from typing import Any

from ops_memory.timestamps import format_timestamp, utcnow
from ops_obs.logging import get_logger
from ops_tools.base import ToolDescriptor, ToolExample
from ops_tools.exceptions import ErrorCode, error_result
from ops_tools.tools.call_logs import CALL_LOGS_COLLECTION
from ops_tools.tools.common import BUSINESS_ID_SCHEMA, USERS_COLLECTION, date_range, range_filter

logger = get_logger(__name__)

BILLING_RECORDS_COLLECTION = "billing_records"

PRICE_PER_MINUTE = 0.10
DEFAULT_TOLERANCE_PERCENT = 1

PLAN_STEPS = (
    ("fetch_subscription", "Get subscription details and pricing"),
    ("fetch_usage", "Get metered usage records (call minutes)"),
    ("fetch_invoices", "Get billing records for the period"),
    ("calculate_expected", "Calculate expected billing amounts"),
    ("compare_amounts", "Compare actual vs expected"),
    ("identify_discrepancies", "Flag any discrepancies above tolerance"),
)


def mask(value: str | None) -> str | None:
    return f"***{value[-4:]}" if value else None


def billable_minutes(call_logs: list[dict[str, Any]]) -> int:
    """Each call is billed in whole minutes, rounded up."""
    return sum(math.ceil((log.get("durationSeconds") or 0) / 60) for log in call_logs)


def find_discrepancies(
    total_billed: float,
    total_expected: float,
    call_count: int,
    record_count: int,
    usage_minutes: int,
    billed_minutes: int,
    tolerance_percent: float,
) -> tuple[list[dict[str, Any]], float, float]:
    """
    Compare billed against expected amounts.

    Returns:
        (discrepancies, difference, differencePercent)
    """
    difference = round(total_billed - total_expected, 2)
    difference_percent = round(abs(difference) / total_expected * 100, 2) if total_expected > 0 else 0
    discrepancies: list[dict[str, Any]] = []

    if difference_percent > tolerance_percent:
        discrepancies.append(
            {
                "type": "amount_mismatch",
                "severity": "high" if difference_percent > 10 else "medium",
                "expected": total_expected,
                "actual": total_billed,
                "difference": difference,
                "differencePercent": difference_percent,
                "message": f"Billing difference of {difference_percent}% exceeds {tolerance_percent}% tolerance",
            }
        )
    if call_count and not record_count:
        discrepancies.append(
            {
                "type": "missing_billing",
                "severity": "high",
                "message": f"Found {call_count} calls but no billing records for the period",
            }
        )
    if usage_minutes > billed_minutes:
        discrepancies.append(
            {
                "type": "unbilled_usage",
                "severity": "medium",
                "unbilledMinutes": usage_minutes - billed_minutes,
                "message": f"{usage_minutes - billed_minutes} call minutes may not be billed",
            }
        )
    return discrepancies, difference, difference_percent


def verification_status(discrepancies: list[dict[str, Any]], flags: list[dict[str, Any]]) -> tuple[str, str]:
    if not discrepancies and not flags:
        return "verified", "Billing verified - no issues found"
    if any(d["severity"] == "high" for d in discrepancies):
        return "needs_review", "High-severity discrepancies found - manual review required"
    if discrepancies:
        return "minor_issues", "Minor discrepancies found - review recommended"
    return "flagged", "Review flagged items before billing period closes"


class BillingVerificationTool:
    """Verify billing records for a tenant."""

    descriptor = ToolDescriptor(
        name="billing_verification",
        description=(
            "Verify billing records for a business. Compares actual billing against expected amounts, "
            "identifies discrepancies, and flags potential issues for review."
        ),
        category="billing",
        dry_run_supported=True,
        allowed_callers=("n8n", "ops_console", "human", "api", "mcp"),
        input_schema={
            "type": "object",
            "required": ["businessId"],
            "properties": {
                "businessId": BUSINESS_ID_SCHEMA,
                "startDate": {
                    "type": "string",
                    "description": "Start date in ISO format. Defaults to the start of the current month.",
                },
                "endDate": {"type": "string", "description": "End date in ISO format. Defaults to now."},
                "includeDetails": {
                    "type": "boolean",
                    "default": True,
                    "description": "Include detailed line items in response",
                },
                "tolerancePercent": {
                    "type": "number",
                    "minimum": 0,
                    "maximum": 100,
                    "default": DEFAULT_TOLERANCE_PERCENT,
                    "description": "Tolerance percentage for flagging discrepancies",
                },
            },
        },
        output_schema={
            "type": "object",
            "required": ["ok", "businessId", "status", "summary"],
            "properties": {
                "ok": {"type": "boolean"},
                "businessId": {"type": "string"},
                "status": {
                    "type": "string",
                    "enum": ["verified", "needs_review", "minor_issues", "flagged"],
                },
                "summary": {"type": "object"},
                "discrepancies": {"type": "array"},
                "flags": {"type": "array"},
            },
        },
        examples=(
            ToolExample(
                name="Verify current month",
                input={"businessId": "biz_abc123"},
                description="Verify billing since the start of the current month",
            ),
            ToolExample(
                name="Strict verification for January",
                input={"businessId": "biz_abc123", "startDate": "2024-01-01", "endDate": "2024-01-31", "tolerancePercent": 0},
                description="Flag any difference at all",
            ),
        ),
    )

    async def execute(self, ctx: dict[str, Any], args: dict[str, Any]) -> dict[str, Any]:
        business_id = args["businessId"]
        include_details = args.get("includeDetails", True) is not False
        tolerance = args.get("tolerancePercent")
        tolerance = DEFAULT_TOLERANCE_PERCENT if tolerance is None else tolerance

        now = utcnow()
        try:
            start, end = date_range(args, now.replace(day=1, hour=0, minute=0, second=0, microsecond=0))
        except ValueError as e:
            return {**error_result(ErrorCode.VALIDATION_ERROR, f"Invalid date range: {e}"), "businessId": business_id}
        window = {"start": format_timestamp(start), "end": format_timestamp(end)}

        if ctx.get("mode") == "plan":
            return {
                "ok": True,
                "businessId": business_id,
                "mode": "plan",
                "executed": False,
                "plan": {
                    "steps": [
                        {"order": n, "action": action, "description": description}
                        for n, (action, description) in enumerate(PLAN_STEPS, start=1)
                    ],
                    "dateRange": window,
                    "options": {"includeDetails": include_details, "tolerancePercent": tolerance},
                },
                "recommendations": [
                    "Execute without plan mode to run actual verification",
                    "Use includeDetails=false for faster summary-only verification",
                ],
            }
        if ctx.get("dry_run"):
            return {
                "ok": True,
                "businessId": business_id,
                "mode": "dryRun",
                "executed": False,
                "wouldExecute": {
                    "collections": [USERS_COLLECTION, BILLING_RECORDS_COLLECTION, CALL_LOGS_COLLECTION],
                    "operations": ["read"],
                },
                "recommendations": ["Execute without dryRun to see actual results"],
            }

        db = ctx["db"]
        user = await db.get(USERS_COLLECTION, business_id)
        if user is None:
            return {
                **error_result(ErrorCode.BUSINESS_NOT_FOUND, f"Business '{business_id}' not found"),
                "businessId": business_id,
                "status": "error",
            }

        subscription = user.get("subscription") or {}
        period = {"businessId": business_id, "createdAt": range_filter(start, end)}
        call_logs = await db.find(CALL_LOGS_COLLECTION, period)
        records = await db.find(BILLING_RECORDS_COLLECTION, period, sort="createdAt")

        usage_minutes = billable_minutes(call_logs)
        total_billed = round(sum(r.get("amount") or 0 for r in records), 2)
        subscription_cost = sum(r.get("amount") or 0 for r in records if r.get("type") == "subscription")
        total_expected = round(subscription_cost + usage_minutes * PRICE_PER_MINUTE, 2)
        billed_minutes = sum(r.get("quantity") or 0 for r in records if r.get("type") in ("usage", "metered"))

        discrepancies, difference, difference_percent = find_discrepancies(
            total_billed,
            total_expected,
            len(call_logs),
            len(records),
            usage_minutes,
            billed_minutes,
            tolerance,
        )

        flags = []
        if subscription.get("status") != "active" and call_logs:
            flags.append(
                {"type": "inactive_subscription", "message": "Usage recorded but subscription is not active"}
            )

        status, headline = verification_status(discrepancies, flags)
        recommendations = [headline]
        if any(d["type"] == "unbilled_usage" for d in discrepancies):
            recommendations.append("Reconcile metered usage records in Stripe")
        if flags:
            recommendations.append("Verify subscription status or pause usage tracking")

        logger.info(
            "billing_verification_completed",
            business_id=business_id,
            request_id=ctx.get("request_id"),
            status=status,
            discrepancies=len(discrepancies),
        )

        return {
            "ok": True,
            "businessId": business_id,
            "dateRange": window,
            "status": status,
            "subscription": {
                "status": subscription.get("status") or "none",
                "plan": subscription.get("stripePriceId") or "unknown",
                "stripeCustomerId": mask(subscription.get("stripeCustomerId")),
                "stripeSubscriptionId": mask(subscription.get("stripeSubscriptionId")),
            },
            "usage": {"totalCalls": len(call_logs), "totalMinutes": usage_minutes, "billableMinutes": usage_minutes},
            "totalBilled": total_billed,
            "totalExpected": total_expected,
            "difference": difference,
            "differencePercent": difference_percent,
            "discrepancies": discrepancies,
            "flags": flags,
            "lineItems": [
                {
                    "id": r.get("id"),
                    "date": r.get("createdAt"),
                    "description": r.get("description") or r.get("type"),
                    "amount": r.get("amount") or 0,
                    "status": r.get("status") or "unknown",
                    "invoiceId": r.get("invoiceId"),
                }
                for r in records
            ]
            if include_details
            else [],
            "summary": {
                "totalBilled": total_billed,
                "totalExpected": total_expected,
                "difference": difference,
                "differencePercent": difference_percent,
                "discrepancyCount": len(discrepancies),
                "flagCount": len(flags),
            },
            "recommendations": recommendations,
        }
