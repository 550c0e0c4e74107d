"""voice.diagnostics Tool.

Probes voice service targets in parallel with a per-target timeout. A
slow or failing target degrades the overall status but never fails the
tool.
"""

import asyncio
import time
from typing import Any

from ops_memory.timestamps import format_timestamp, utcnow
from ops_obs.logging import get_logger
from ops_tools.adapters.probe import ProbeClient
from ops_tools.base import ToolDescriptor, ToolExample
from ops_tools.exceptions import ErrorCode, error_result

logger = get_logger(__name__)

DEFAULT_TIMEOUT_MS = 5000

DEFAULT_TARGETS = (
    {"name": "vapi_api", "url": "https://api.vapi.ai/health", "type": "health"},
    {
        "name": "openai_api",
        "url": "https://api.openai.com/v1/models",
        "type": "auth",
        "requiresKey": "OPENAI_API_KEY",
    },
    {
        "name": "elevenlabs_api",
        "url": "https://api.elevenlabs.io/v1/user",
        "type": "auth",
        "requiresKey": "ELEVENLABS_API_KEY",
    },
)

UNHEALTHY_STATUSES = ("unhealthy", "error", "timeout", "unreachable", "dns_error")
TARGET_TYPES = ("health", "auth", "ping")


def target_errors(targets: list[Any]) -> list[str]:
    """Shape errors for caller-supplied targets: objects with name and an http(s) url."""
    errors = []
    for index, target in enumerate(targets):
        if not isinstance(target, dict):
            errors.append(f"targets[{index}] must be an object")
            continue
        if not isinstance(target.get("name"), str) or not target["name"]:
            errors.append(f"targets[{index}].name must be a non-empty string")
        url = target.get("url")
        if not isinstance(url, str) or not url.startswith(("http://", "https://")):
            errors.append(f"targets[{index}].url must be an http(s) URL")
        if target.get("type", "health") not in TARGET_TYPES:
            errors.append(f"targets[{index}].type must be one of: {', '.join(TARGET_TYPES)}")
        if target.get("requiresKey") is not None and not isinstance(target["requiresKey"], str):
            errors.append(f"targets[{index}].requiresKey must be a string")
    return errors


def auth_headers(key_name: str, key: str) -> dict[str, str]:
    if key_name == "ELEVENLABS_API_KEY":
        return {"xi-api-key": key}
    return {"Authorization": f"Bearer {key}"}


def classify(status_code: int) -> tuple[str, str]:
    if 200 <= status_code < 300:
        return "healthy", "OK"
    if status_code in (401, 403):
        return "auth_error", "Authentication failed - check API key"
    if status_code >= 500:
        return "unhealthy", f"Server error: {status_code}"
    return "degraded", f"Unexpected status: {status_code}"


class VoiceDiagnosticsTool:
    """Check latency and connectivity to voice targets."""

    descriptor = ToolDescriptor(
        name="voice.diagnostics",
        description="Voice service diagnostics - checks latency and connectivity to voice targets",
        category="voice",
        allowed_callers=("n8n", "human", "api", "mcp"),
        input_schema={
            "type": "object",
            "properties": {
                "businessId": {"type": "string", "description": "Optional business context for logging"},
                "targets": {
                    "type": "array",
                    "description": "Custom targets to check (defaults to voice service endpoints)",
                },
                "timeoutMs": {
                    "type": "number",
                    "minimum": 100,
                    "maximum": 30000,
                    "default": DEFAULT_TIMEOUT_MS,
                    "description": "Timeout per target in milliseconds",
                },
            },
        },
        output_schema={
            "type": "object",
            "required": ["ok", "overallStatus", "results"],
            "properties": {
                "ok": {"type": "boolean"},
                "overallStatus": {"type": "string", "enum": ["healthy", "degraded", "critical", "unknown"]},
                "statusReason": {"type": "string"},
                "summary": {"type": "object"},
                "results": {"type": "array"},
            },
        },
        examples=(
            ToolExample(name="Basic voice diagnostics", input={}, description="Check all default voice service targets"),
            ToolExample(
                name="Quick diagnostics with timeout",
                input={"timeoutMs": 2000},
                description="Fast check with 2 second timeout per target",
            ),
        ),
    )

    def __init__(self, probe: ProbeClient, api_keys: dict[str, str | None] | None = None):
        """
        Args:
            probe: HTTP probe client
            api_keys: Environment-style key name -> value (missing or empty skips the target)
        """
        self.probe = probe
        self.api_keys = api_keys or {}

    async def check_target(self, target: dict[str, Any], timeout_ms: int) -> dict[str, Any]:
        name, url = target.get("name"), target.get("url")
        key_name = target.get("requiresKey")

        headers: dict[str, str] = {}
        if key_name:
            key = self.api_keys.get(key_name)
            if not key:
                return {
                    "target": name,
                    "url": url,
                    "status": "skipped",
                    "reason": f"Missing environment variable: {key_name}",
                    "latencyMs": 0,
                }
            if target.get("type") == "auth":
                headers = auth_headers(key_name, key)

        result = await self.probe.probe(url, timeout_ms=timeout_ms, headers=headers)
        if result.status_code is None:
            return {
                "target": name,
                "url": url,
                "status": result.error_kind or "error",
                "reason": result.error,
                "latencyMs": result.latency_ms,
                "error": result.error,
            }

        status, reason = classify(result.status_code)
        return {
            "target": name,
            "url": url,
            "status": status,
            "reason": reason,
            "latencyMs": result.latency_ms,
            "httpStatus": result.status_code,
        }

    async def execute(self, ctx: dict[str, Any], args: dict[str, Any]) -> dict[str, Any]:
        business_id = args.get("businessId")
        timeout_ms = int(args.get("timeoutMs") or DEFAULT_TIMEOUT_MS)
        targets = args.get("targets") or list(DEFAULT_TARGETS)
        errors = target_errors(targets)
        if errors:
            return error_result(ErrorCode.VALIDATION_ERROR, "Invalid diagnostic targets", errors=errors)

        started = time.monotonic()
        results = await asyncio.gather(*(self.check_target(t, timeout_ms) for t in targets))
        total_duration_ms = int((time.monotonic() - started) * 1000)

        total = len(results)
        healthy = sum(1 for r in results if r["status"] == "healthy")
        unhealthy = sum(1 for r in results if r["status"] in UNHEALTHY_STATUSES)
        skipped = sum(1 for r in results if r["status"] == "skipped")

        latencies = [r["latencyMs"] for r in results if r["status"] == "healthy" and r["latencyMs"] > 0]
        avg_latency_ms = round(sum(latencies) / len(latencies)) if latencies else None

        overall, reason = "healthy", "All services operational"
        if unhealthy:
            overall = "critical" if unhealthy == total else "degraded"
            reason = f"{unhealthy}/{total} service(s) unhealthy"
        elif skipped == total:
            overall, reason = "unknown", "All checks skipped (missing API keys)"

        logger.info(
            "voice_diagnostics_completed",
            business_id=business_id,
            request_id=ctx.get("request_id"),
            overall_status=overall,
            healthy=healthy,
            total=total,
        )

        return {
            "ok": True,
            "businessId": business_id,
            "overallStatus": overall,
            "statusReason": reason,
            "summary": {
                "total": total,
                "healthy": healthy,
                "unhealthy": unhealthy,
                "skipped": skipped,
                "avgLatencyMs": avg_latency_ms,
                "totalDurationMs": total_duration_ms,
            },
            "results": list(results),
            "checkedAt": format_timestamp(utcnow()),
        }
