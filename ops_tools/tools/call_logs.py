"""call_logs Tool.

Read-only call history for a tenant over a date range (default: last 30
days), with status filtering and summary statistics.
"""

from datetime import timedelta
from typing import Any

from ops_memory.timestamps import format_timestamp, utcnow
from ops_obs.logging import get_logger
from ops_tools.base import ToolDescriptor, ToolExample
from ops_tools.exceptions import ErrorCode, error_result
from ops_tools.tools.common import BUSINESS_ID_SCHEMA, date_range, range_filter

logger = get_logger(__name__)

CALL_LOGS_COLLECTION = "call_logs"

DEFAULT_LOOKBACK = timedelta(days=30)
DEFAULT_LIMIT = 100
CALL_STATUSES = ("all", "completed", "failed", "missed", "in_progress")


def summarize_calls(logs: list[dict[str, Any]]) -> dict[str, Any]:
    """Counts per status, durations and cost over a page of call logs."""
    stats = {
        "totalCalls": len(logs),
        "completed": 0,
        "failed": 0,
        "missed": 0,
        "inProgress": 0,
        "totalDurationSeconds": 0,
        "totalDurationMinutes": 0,
        "averageDurationSeconds": 0,
        "totalCost": 0,
    }
    keys = {"completed": "completed", "failed": "failed", "missed": "missed", "in_progress": "inProgress"}
    cost = 0.0
    for log in logs:
        if log.get("status") in keys:
            stats[keys[log["status"]]] += 1
        stats["totalDurationSeconds"] += log.get("durationSeconds") or 0
        try:
            cost += float(log.get("cost") or 0)
        except (TypeError, ValueError):
            pass

    if logs:
        stats["totalDurationMinutes"] = round(stats["totalDurationSeconds"] / 60, 2)
        stats["averageDurationSeconds"] = round(stats["totalDurationSeconds"] / len(logs), 2)
        stats["totalCost"] = round(cost, 2)
    return stats


def public_log(log: dict[str, Any]) -> dict[str, Any]:
    return {
        "id": log.get("id"),
        "businessId": log.get("businessId"),
        "callId": log.get("callId"),
        "agentId": log.get("agentId"),
        "phoneNumber": log.get("phoneNumber"),
        "direction": log.get("direction") or "outbound",
        "status": log.get("status"),
        "durationSeconds": log.get("durationSeconds") or 0,
        "startedAt": log.get("startedAt") or log.get("createdAt"),
        "endedAt": log.get("endedAt"),
        "createdAt": log.get("createdAt"),
        "summary": log.get("summary"),
        "cost": log.get("cost"),
        "metadata": log.get("metadata"),
    }


class CallLogsTool:
    """Query call logs for a tenant."""

    descriptor = ToolDescriptor(
        name="call_logs",
        description=(
            "Query call logs for a business within a date range. Returns call history with details "
            "like duration, status, and timestamps."
        ),
        category="voice",
        dry_run_supported=True,
        allowed_callers=("n8n", "ops_console", "human", "api", "mcp"),
        input_schema={
            "type": "object",
            "required": ["businessId"],
            "properties": {
                "businessId": BUSINESS_ID_SCHEMA,
                "startDate": {
                    "type": "string",
                    "description": "Start date in ISO format (e.g., 2024-01-01). Defaults to 30 days ago.",
                },
                "endDate": {
                    "type": "string",
                    "description": "End date in ISO format (e.g., 2024-01-31). Defaults to now.",
                },
                "limit": {
                    "type": "number",
                    "minimum": 1,
                    "maximum": 1000,
                    "default": DEFAULT_LIMIT,
                    "description": "Maximum number of logs to return",
                },
                "status": {
                    "type": "string",
                    "enum": list(CALL_STATUSES),
                    "default": "all",
                    "description": "Filter by call status",
                },
                "sortOrder": {
                    "type": "string",
                    "enum": ["asc", "desc"],
                    "default": "desc",
                    "description": "Sort order by timestamp",
                },
            },
        },
        output_schema={
            "type": "object",
            "required": ["ok", "businessId", "logs"],
            "properties": {
                "ok": {"type": "boolean"},
                "businessId": {"type": "string"},
                "dateRange": {"type": "object"},
                "logs": {"type": "array"},
                "pagination": {"type": "object"},
                "summary": {"type": "object"},
            },
        },
        examples=(
            ToolExample(
                name="Get recent call logs",
                input={"businessId": "biz_abc123"},
                description="Get last 100 call logs from past 30 days",
            ),
            ToolExample(
                name="Get call logs for date range",
                input={"businessId": "biz_abc123", "startDate": "2024-01-01", "endDate": "2024-01-31", "limit": 50},
                description="Get up to 50 call logs for January 2024",
            ),
            ToolExample(
                name="Get failed calls only",
                input={"businessId": "biz_abc123", "status": "failed", "limit": 20},
                description="Get last 20 failed calls for debugging",
            ),
        ),
    )

    async def execute(self, ctx: dict[str, Any], args: dict[str, Any]) -> dict[str, Any]:
        business_id = args["businessId"]
        limit = int(args.get("limit") or DEFAULT_LIMIT)
        status = args.get("status") or "all"
        sort_order = args.get("sortOrder") or "desc"

        try:
            start, end = date_range(args, utcnow() - DEFAULT_LOOKBACK)
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
                    "query": {
                        "collection": CALL_LOGS_COLLECTION,
                        "businessId": business_id,
                        "dateRange": window,
                        "statusFilter": status,
                        "limit": limit,
                        "sortOrder": sort_order,
                    },
                    "description": (
                        f"Query up to {limit} call logs for business {business_id} "
                        f"from {window['start']} to {window['end']}"
                    ),
                },
                "recommendations": [
                    "Execute without plan mode to retrieve actual call logs",
                    "Use startDate and endDate to narrow down results for better performance",
                ],
            }
        if ctx.get("dry_run"):
            return {
                "ok": True,
                "businessId": business_id,
                "mode": "dryRun",
                "executed": False,
                "wouldExecute": {"collection": CALL_LOGS_COLLECTION, "operation": "find", "limit": limit},
                "recommendations": ["Execute without dryRun to see actual results"],
            }

        filters: dict[str, Any] = {"businessId": business_id, "createdAt": range_filter(start, end)}
        if status != "all":
            filters["status"] = status

        db = ctx["db"]
        logs = await db.find(
            CALL_LOGS_COLLECTION, filters, sort="createdAt", descending=sort_order == "desc", limit=limit
        )
        total = await db.count(CALL_LOGS_COLLECTION, filters)

        logger.info(
            "call_logs_queried",
            business_id=business_id,
            request_id=ctx.get("request_id"),
            returned=len(logs),
            total=total,
        )

        return {
            "ok": True,
            "businessId": business_id,
            "dateRange": window,
            "logs": [public_log(log) for log in logs],
            "pagination": {"returned": len(logs), "total": total, "limit": limit, "hasMore": total > limit},
            "summary": summarize_calls(logs),
        }
