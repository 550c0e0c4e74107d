"""Tool Executor.

The single boundary between callers and tool implementations:

    cached response -> lock -> tool lookup -> caller allowlist
    -> argument validation -> approval gate -> run (span) -> output check
    -> event log -> cache response -> release lock

Expected failures come back as ``{"ok": False, "error": {...}}`` bodies with
an HTTP-style status code; unexpected tool exceptions are converted to
INTERNAL_ERROR here and still produce a failed event log entry.
"""

import time
import uuid
from dataclasses import dataclass
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from ops_memory.approvals import ApprovalRequestStore, hash_payload
from ops_memory.event_log import (
    EventLogEntry,
    EventLogStore,
    coerce_actor,
    entry_from_bootstrap_result,
    failed_entry,
    status_from_result,
)
from ops_memory.exceptions import DuplicateKeyError
from ops_memory.executions import ExecutionCache
from ops_memory.stores import DocumentStore
from ops_memory.timestamps import format_timestamp, utcnow
from ops_obs.logging import bind_execution_context, get_logger
from ops_obs.metrics import (
    approval_requests_total,
    idempotent_replays_total,
    tool_execution_duration,
    tool_executions_total,
    validation_failures_total,
)
from ops_obs.redaction import redact_sensitive
from ops_obs.tracing import get_tracer, tool_span
from ops_tools.exceptions import ErrorCode, error_result
from ops_tools.registry import ToolRegistry
from ops_tools.tools.common import elapsed_ms
from ops_tools.validator import validate_output

logger = get_logger(__name__)
tracer = get_tracer(__name__)

VERSION = "1.3.0"
ENVELOPE_FIELDS = ("requestId", "dryRun", "tool", "args", "input", "actor", "mode")

ERROR_HELP = {
    ErrorCode.VALIDATION_ERROR: "Check tool documentation for required arguments. Most tools require businessId.",
    ErrorCode.TOOL_NOT_FOUND: "Use GET /ops/tools to list available tools",
    ErrorCode.TOOL_NOT_ALLOWED: "This caller is not in the tool's allowedCallers list",
    ErrorCode.REQUEST_IN_PROGRESS: "This requestId is being processed. Use a unique requestId for new requests.",
    ErrorCode.APPROVAL_REQUIRED: "Approve the request via POST /ops/requests/{id}/approve, then execute it",
    ErrorCode.INTERNAL_ERROR: "Check service logs for details. If persistent, contact support.",
}


def generate_request_id() -> str:
    return f"req_{uuid.uuid4().hex}"


def extract_args(body: dict[str, Any]) -> tuple[dict[str, Any], str]:
    """
    Pull tool arguments out of a request body.

    Priority: non-empty ``args``, then non-empty ``input`` (n8n style),
    then every non-envelope top-level field.

    Returns:
        (args, format) where format is "args", "input" or "flat"
    """
    if isinstance(body.get("args"), dict) and body["args"]:
        return body["args"], "args"
    if isinstance(body.get("input"), dict) and body["input"]:
        return body["input"], "input"
    flat = {k: v for k, v in body.items() if k not in ENVELOPE_FIELDS and v is not None}
    return flat, "flat"


class ExecuteRequest(BaseModel):
    """Normalized execution envelope."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    tool: str = Field(..., min_length=1)
    mode: Literal["plan", "execute"] = "execute"
    dry_run: bool = False
    request_id: str = Field(default_factory=generate_request_id, min_length=1)
    actor: str = "api"
    args: dict[str, Any] = Field(default_factory=dict)
    args_format: str = "args"

    @field_validator("actor", mode="before")
    @classmethod
    def normalize_actor(cls, value: Any) -> Any:
        # {"type": "user" | "system", "id": "..."} envelopes
        if isinstance(value, dict):
            return "human" if value.get("type") == "user" else value.get("type") or "system"
        return value or "api"

    @classmethod
    def from_body(cls, body: dict[str, Any]) -> "ExecuteRequest":
        """Build from a raw request body (raises pydantic.ValidationError)."""
        args, args_format = extract_args(body)
        envelope = {k: body[k] for k in ("tool", "mode", "dryRun", "requestId", "actor") if body.get(k) is not None}
        return cls.model_validate({**envelope, "args": args, "argsFormat": args_format})

    @property
    def effective_dry_run(self) -> bool:
        return self.dry_run or self.mode == "plan"


@dataclass
class ExecutionOutcome:
    """Response body plus the HTTP status it maps to."""

    body: dict[str, Any]
    status_code: int = 200
    cached: bool = False


class ToolExecutor:
    """Runs tools through validation, approval gating and audit."""

    def __init__(
        self,
        registry: ToolRegistry,
        store: DocumentStore,
        approvals: ApprovalRequestStore,
        event_log: EventLogStore,
        cache: ExecutionCache,
    ):
        self.registry = registry
        self.store = store
        self.approvals = approvals
        self.event_log = event_log
        self.cache = cache

    def build_context(
        self,
        request_id: str,
        actor: str,
        mode: str = "execute",
        dry_run: bool = False,
        **extra: Any,
    ) -> dict[str, Any]:
        """Execution context handed to every tool."""
        return {
            "db": self.store,
            "request_id": request_id,
            "actor": actor,
            "mode": mode,
            "dry_run": dry_run or mode == "plan",
            **extra,
        }

    def envelope(
        self,
        request: ExecuteRequest,
        result: dict[str, Any] | None,
        error: dict[str, Any] | None = None,
        duration_ms: int | None = None,
        warnings: list[str] | None = None,
        **fields: Any,
    ) -> dict[str, Any]:
        executed = result is not None and not request.effective_dry_run
        if executed and isinstance(result.get("executed"), bool):
            # Tools with their own mode (replay, price sync) report it
            executed = result["executed"]
        body: dict[str, Any] = {
            "ok": error is None and (result or {}).get("ok") is not False,
            "requestId": request.request_id,
            "tool": request.tool,
            "mode": request.mode,
            "dryRun": request.effective_dry_run,
            "executed": executed,
            "result": result,
            "error": error if error is not None else (result or {}).get("error"),
            "executedAt": format_timestamp(utcnow()),
            "durationMs": duration_ms,
            **fields,
            "_meta": {"version": VERSION, "cached": False, "argsFormat": request.args_format},
        }
        if warnings:
            body["warnings"] = warnings
        return body

    def failure(
        self, request: ExecuteRequest, code: ErrorCode, message: str, status_code: int, **details: Any
    ) -> ExecutionOutcome:
        error: dict[str, Any] = {"code": code.value, "message": message}
        if details:
            error["details"] = details
        if code in ERROR_HELP:
            error["help"] = ERROR_HELP[code]
        logger.info("tool_execution_rejected", request_id=request.request_id, tool=request.tool, code=code.value)
        return ExecutionOutcome(self.envelope(request, None, error=error), status_code)

    async def run(self, request: ExecuteRequest, key_id: str | None = None) -> ExecutionOutcome:
        """
        Execute an envelope end to end.

        Args:
            request: Normalized envelope
            key_id: Fingerprint of the calling API key (audit only)

        Returns:
            ExecutionOutcome
        """
        cached = await self.cache.get_cached(request.request_id)
        if cached:
            idempotent_replays_total.labels(tool=cached.get("tool") or request.tool).inc()
            logger.info("execution_cached", request_id=request.request_id, tool=request.tool)
            cached["_meta"] = {**(cached.get("_meta") or {}), "cached": True, "originalExecutedAt": cached.get("executedAt")}
            return ExecutionOutcome(cached, 200, cached=True)

        if not await self.cache.acquire_lock(request.request_id):
            return self.failure(
                request,
                ErrorCode.REQUEST_IN_PROGRESS,
                "This request is already being processed",
                409,
                requestId=request.request_id,
            )

        try:
            with bind_execution_context(request.request_id, request.tool, request.actor, mode=request.mode):
                outcome = await self._run_locked(request, key_id)
            if outcome.status_code < 500 and outcome.status_code not in (400, 403, 404):
                await self.cache.store_result(request.request_id, outcome.body)
            return outcome
        finally:
            await self.cache.release_lock(request.request_id)

    async def _run_locked(self, request: ExecuteRequest, key_id: str | None) -> ExecutionOutcome:
        logged = await self.event_log.get_by_request_id(request.request_id)
        if logged:
            idempotent_replays_total.labels(tool=logged.tool).inc()
            logger.info("execution_already_logged", request_id=request.request_id, tool=logged.tool)
            body = self.envelope(request, None)
            body.update(
                {
                    "ok": logged.status.value != "failed",
                    "tool": logged.tool,
                    "executed": True,
                    "executedAt": format_timestamp(logged.executed_at),
                    "durationMs": logged.duration_ms,
                    "status": logged.status.value,
                }
            )
            body["_meta"].update({"cached": True, "source": "event_log"})
            return ExecutionOutcome(body, 200, cached=True)

        tool = self.registry.get(request.tool)
        if tool is None:
            return self.failure(
                request,
                ErrorCode.TOOL_NOT_FOUND,
                f"Tool '{request.tool}' not found",
                404,
                availableTools=self.registry.names(include_deprecated=False),
            )
        descriptor = tool.descriptor

        if request.actor not in descriptor.allowed_callers:
            return self.failure(
                request,
                ErrorCode.TOOL_NOT_ALLOWED,
                f"Caller '{request.actor}' is not allowed to run '{request.tool}'",
                403,
                allowedCallers=list(descriptor.allowed_callers),
            )

        validation = self.registry.validate_args(request.tool, request.args)
        if not validation.valid:
            validation_failures_total.labels(tool=request.tool).inc()
            outcome = self.failure(
                request,
                ErrorCode.VALIDATION_ERROR,
                "Tool arguments validation failed",
                400,
                receivedArgs=sorted(request.args),
                argsFormat=request.args_format,
            )
            outcome.body["error"]["errors"] = validation.errors
            return outcome

        if descriptor.requires_approval and request.mode == "execute" and not request.dry_run:
            return await self.gate(request)

        ctx = self.build_context(request.request_id, request.actor, request.mode, request.dry_run)
        result, duration_ms, warnings = await self.invoke(
            request.tool, request.args, ctx, key_id=key_id, args_format=request.args_format
        )

        body = self.envelope(request, result, duration_ms=duration_ms, warnings=warnings)
        if (result.get("error") or {}).get("code") == ErrorCode.INTERNAL_ERROR.value:
            return ExecutionOutcome(body, 500)
        return ExecutionOutcome(body, 200)

    async def gate(self, request: ExecuteRequest) -> ExecutionOutcome:
        """Create an approval request (with a plan preview) instead of executing."""
        plan = await self.preview(request.tool, request.args, request.request_id, request.actor)
        try:
            approval = await self.approvals.create(
                tool=request.tool,
                payload=request.args,
                requested_by=request.actor,
                plan=plan,
                meta={"source": "execute", "argsFormat": request.args_format},
                request_id=request.request_id,
            )
        except DuplicateKeyError:
            approval = await self.approvals.get(request.request_id)
            if approval is None or approval.tool != request.tool or approval.payload_hash != hash_payload(request.args):
                logger.warning("approval_request_id_reused", request_id=request.request_id, tool=request.tool)
                return self.failure(
                    request,
                    ErrorCode.PAYLOAD_MISMATCH,
                    f"Approval request '{request.request_id}' already exists for a different call",
                    409,
                    approvalRequestId=request.request_id,
                    approvalTool=approval.tool if approval else None,
                )
        approval_requests_total.labels(tool=request.tool).inc()
        tool_executions_total.labels(tool=request.tool, status="approval_required").inc()

        body = self.envelope(
            request,
            None,
            error={
                "code": ErrorCode.APPROVAL_REQUIRED.value,
                "message": f"Tool '{request.tool}' requires approval before execution",
                "help": ERROR_HELP[ErrorCode.APPROVAL_REQUIRED],
            },
            requiresApproval=True,
            approvalRequestId=approval.request_id,
            approvalStatus=approval.status.value,
            expiresAt=format_timestamp(approval.expires_at),
            plan=plan,
        )
        return ExecutionOutcome(body, 202)

    async def preview(
        self, name: str, args: dict[str, Any], request_id: str, actor: str
    ) -> dict[str, Any] | None:
        """Plan-mode result shown to approvers; None if the tool has no preview."""
        tool = self.registry.get(name)
        if tool is None or not tool.descriptor.dry_run_supported:
            return None
        ctx = self.build_context(f"{request_id}:plan", actor, mode="plan", dry_run=True)
        try:
            return await tool.execute(ctx, args)
        except Exception as e:
            logger.warning("approval_preview_failed", request_id=request_id, tool=name, error=str(e))
            return {"ok": False, "error": {"code": ErrorCode.INTERNAL_ERROR.value, "message": str(e)}}

    async def invoke(
        self,
        name: str,
        args: dict[str, Any],
        ctx: dict[str, Any],
        key_id: str | None = None,
        args_format: str | None = None,
    ) -> tuple[dict[str, Any], int, list[str]]:
        """
        Run an already validated tool call at the error boundary.

        Tool exceptions become INTERNAL_ERROR results. Every call is recorded
        in the event log under ``ctx["request_id"]``.

        Returns:
            (result, duration_ms, output warnings)
        """
        request_id = ctx["request_id"]
        actor = ctx.get("actor") or "api"
        started = time.monotonic()

        with tool_span(tracer, name, request_id, ctx) as span:
            try:
                result = await self.registry.execute(name, args, ctx)
            except Exception as e:
                logger.exception("tool_execution_failed", request_id=request_id, tool=name)
                span.record_exception(e)
                result = error_result(ErrorCode.INTERNAL_ERROR, str(e), type=type(e).__name__)
            if not isinstance(result, dict):
                result = error_result(ErrorCode.INTERNAL_ERROR, "Tool returned a non-object result")
            span.set_attribute("ops.ok", result.get("ok") is not False)

        duration_ms = elapsed_ms(started)

        warnings: list[str] = []
        descriptor = self.registry.descriptor(name)
        if descriptor and descriptor.output_schema and result.get("ok") is not False:
            warnings = validate_output(result, descriptor.output_schema).warnings
            if warnings:
                logger.warning("tool_output_schema_warnings", request_id=request_id, tool=name, warnings=warnings)

        entry = self.build_entry(name, args, ctx, result, duration_ms, key_id, args_format)
        _, created = await self.event_log.record(entry)
        if not created:
            idempotent_replays_total.labels(tool=name).inc()
            logger.warning("tool_execution_duplicate_log", request_id=request_id, tool=name)

        tool_executions_total.labels(tool=name, status=entry.status.value).inc()
        tool_execution_duration.labels(tool=name).observe(duration_ms / 1000)

        logger.info(
            "ops_audit",
            request_id=request_id,
            tool=name,
            actor=actor,
            mode=ctx.get("mode"),
            dry_run=bool(ctx.get("dry_run")),
            status=entry.status.value,
            duration_ms=duration_ms,
            key_id=key_id,
            is_replay=bool(ctx.get("is_replay")),
            args=redact_sensitive(args),
            result=redact_sensitive(result),
        )
        return result, duration_ms, warnings

    @staticmethod
    def build_entry(
        name: str,
        args: dict[str, Any],
        ctx: dict[str, Any],
        result: dict[str, Any],
        duration_ms: int,
        key_id: str | None,
        args_format: str | None,
    ) -> EventLogEntry:
        request_id = ctx["request_id"]
        actor = ctx.get("actor") or "api"
        business_id = args.get("businessId") or result.get("businessId")

        if name == "tenant.bootstrap":
            entry = entry_from_bootstrap_result(
                request_id,
                business_id,
                result,
                duration_ms,
                actor=actor,
                key_id=key_id,
                args_format=args_format,
                input=args,
            )
        elif (result.get("error") or {}).get("code") == ErrorCode.INTERNAL_ERROR.value:
            entry = failed_entry(
                request_id,
                name,
                result["error"],
                duration_ms,
                actor=actor,
                business_id=business_id,
                input=args,
                metadata={"dryRun": bool(ctx.get("dry_run")), "mode": ctx.get("mode"), "keyId": key_id},
            )
        else:
            entry = EventLogEntry(
                request_id=request_id,
                tool=name,
                business_id=business_id,
                status=status_from_result(result),
                duration_ms=duration_ms,
                executed_at=utcnow(),
                actor=coerce_actor(actor),
                input=args,
                metadata={
                    "dryRun": bool(ctx.get("dry_run")),
                    "mode": ctx.get("mode"),
                    "summary": result.get("summary") if isinstance(result.get("summary"), str) else None,
                    "error": result.get("error"),
                    "keyId": key_id,
                    "argsFormat": args_format,
                },
            )

        for key, label in (
            ("is_replay", "isReplay"),
            ("original_request_id", "originalRequestId"),
            ("approval_request_id", "approvalRequestId"),
            ("approved_by", "approvedBy"),
        ):
            if ctx.get(key):
                entry.metadata[label] = ctx[key]
        return entry
