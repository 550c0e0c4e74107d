"""ops.replayExecution Tool.

Re-run a logged execution with optional overrides. The original event log
entry is never modified; execute mode runs the tool under a fresh request
id tagged with the original one.
"""

import uuid
from typing import Any

from ops_memory.event_log import EventLogStore
from ops_memory.timestamps import format_timestamp, utcnow
from ops_obs.logging import get_logger
from ops_obs.metrics import replay_executions_total
from ops_tools.base import ToolDescriptor, ToolExample
from ops_tools.exceptions import ErrorCode, error_result

logger = get_logger(__name__)


def deprecation_warnings(descriptor: ToolDescriptor) -> list[str] | None:
    if not descriptor.deprecated:
        return None
    return [f"Tool '{descriptor.name}' is deprecated. Consider using '{descriptor.replaced_by}' instead."]


class ReplayExecutionTool:
    """Replay a previous execution."""

    descriptor = ToolDescriptor(
        name="ops.replayExecution",
        description="Replay a previous execution with optional overrides - supports plan mode",
        category="ops",
        mutates=True,
        risk="medium",
        dry_run_supported=True,
        input_schema={
            "type": "object",
            "required": ["requestId"],
            "properties": {
                "requestId": {
                    "type": "string",
                    "minLength": 1,
                    "description": "The requestId of the execution to replay",
                },
                "mode": {
                    "type": "string",
                    "enum": ["plan", "execute"],
                    "default": "plan",
                    "description": "plan = preview replay, execute = run replay",
                },
                "overrideMeta": {"type": "object", "description": "Override meta values for the replay"},
                "overridePayload": {"type": "object", "description": "Override payload values for the replay"},
            },
        },
        output_schema={
            "type": "object",
            "required": ["ok", "mode", "executed"],
            "properties": {
                "ok": {"type": "boolean"},
                "mode": {"type": "string", "enum": ["plan", "execute"]},
                "executed": {"type": "boolean"},
                "summary": {"type": "object"},
                "result": {"type": "object"},
            },
        },
        examples=(
            ToolExample(
                name="Preview replay",
                input={"requestId": "req_abc123", "mode": "plan"},
                description="Show what a replay would run",
            ),
            ToolExample(
                name="Replay without voice test",
                input={"requestId": "req_abc123", "mode": "execute", "overridePayload": {"skipVoiceTest": True}},
                description="Re-run a bootstrap skipping the voice smoke test",
            ),
        ),
    )

    def __init__(self, event_log: EventLogStore, executor):
        """
        Args:
            event_log: Source of past executions
            executor: ToolExecutor used to re-run the tool (and to create
                approval requests for tools that need them)
        """
        self.event_log = event_log
        self.executor = executor

    async def execute(self, ctx: dict[str, Any], args: dict[str, Any]) -> dict[str, Any]:
        target_id = args["requestId"]
        mode = "plan" if ctx.get("dry_run") else args.get("mode") or "plan"
        override_meta = args.get("overrideMeta")
        override_payload = args.get("overridePayload")
        current_id = ctx.get("request_id")
        registry = self.executor.registry

        replay_executions_total.labels(mode=mode).inc()

        original = await self.event_log.get_by_request_id(target_id)
        if original is None:
            return error_result(ErrorCode.EXECUTION_NOT_FOUND, f"No execution found with requestId: {target_id}")

        tool_name = original.tool
        descriptor = registry.descriptor(tool_name)
        if descriptor is None:
            return error_result(ErrorCode.TOOL_NOT_FOUND, f"Tool '{tool_name}' no longer exists in registry")
        if descriptor.deprecated:
            logger.warning("replay_deprecated_tool", request_id=current_id, tool=tool_name)

        original_input = original.input or original.metadata.get("payload") or {}
        payload = {**original_input, **(override_payload or {})}
        meta = {
            **original.metadata,
            **(override_meta or {}),
            "isReplay": True,
            "originalRequestId": target_id,
            "replayRequestId": current_id,
        }

        validation = registry.validate_args(tool_name, payload)
        if not validation.valid:
            return {
                **error_result(
                    ErrorCode.VALIDATION_ERROR, "Replay payload validation failed", errors=validation.errors
                ),
                "replay": {
                    "tool": tool_name,
                    "originalPayload": original_input,
                    "replayPayload": payload,
                    "overrides": {"meta": override_meta, "payload": override_payload},
                },
            }

        summary = {
            "originalExecution": {
                "requestId": target_id,
                "tool": tool_name,
                "status": original.status.value,
                "executedAt": original.to_document()["executedAt"],
                "durationMs": original.duration_ms,
                "businessId": original.business_id,
            },
            "replay": {
                "tool": tool_name,
                "payload": payload,
                "meta": meta,
                "overridesApplied": {
                    "meta": sorted(override_meta or {}),
                    "payload": sorted(override_payload or {}),
                },
            },
            "toolInfo": {
                "deprecated": descriptor.deprecated,
                "deprecatedReason": descriptor.deprecated_reason,
                "replacedBy": descriptor.replaced_by,
                "risk": descriptor.risk,
                "mutates": descriptor.mutates,
                "requiresApproval": descriptor.requires_approval,
            },
        }
        warnings = deprecation_warnings(descriptor)

        if mode == "plan":
            result: dict[str, Any] = {
                "ok": True,
                "mode": "plan",
                "executed": False,
                "summary": summary,
                "nextStep": f"Tool '{tool_name}' requires approval. Submit mode=\"execute\" to request approval."
                if descriptor.requires_approval
                else 'Submit with mode="execute" to replay this execution',
            }
            if warnings:
                result["warnings"] = warnings
            return result

        if descriptor.requires_approval:
            plan = await self.executor.preview(tool_name, payload, current_id, ctx.get("actor") or "api")
            approval = await self.executor.approvals.create(
                tool=tool_name,
                payload=payload,
                requested_by=ctx.get("actor") or "api",
                plan=plan,
                meta={"source": "replay", "originalRequestId": target_id, "replayRequestId": current_id},
            )
            logger.info(
                "replay_approval_requested",
                request_id=current_id,
                tool=tool_name,
                approval_request_id=approval.request_id,
            )
            return {
                "ok": False,
                "mode": "execute",
                "executed": False,
                "requiresApproval": True,
                "approvalRequestId": approval.request_id,
                "summary": summary,
                "error": {
                    "code": ErrorCode.APPROVAL_REQUIRED.value,
                    "message": f"Tool '{tool_name}' requires approval before replay",
                },
            }

        replay_id = f"replay_{uuid.uuid4().hex}"
        replay_ctx = self.executor.build_context(
            replay_id,
            ctx.get("actor") or "api",
            is_replay=True,
            original_request_id=target_id,
        )
        try:
            replayed, duration_ms, _ = await self.executor.invoke(tool_name, payload, replay_ctx)
        except Exception as e:
            logger.exception("replay_execution_failed", request_id=current_id, tool=tool_name)
            return {
                "ok": False,
                "mode": "execute",
                "executed": False,
                "summary": summary,
                "error": {
                    "code": ErrorCode.REPLAY_EXECUTION_ERROR.value,
                    "message": str(e),
                    "type": type(e).__name__,
                },
            }

        logger.info("replay_completed", request_id=current_id, replay_request_id=replay_id, tool=tool_name)
        result = {
            "ok": replayed.get("ok") is not False,
            "mode": "execute",
            "executed": True,
            "summary": summary,
            "result": replayed,
            "execution": {
                "requestId": replay_id,
                "durationMs": duration_ms,
                "completedAt": format_timestamp(utcnow()),
            },
        }
        if warnings:
            result["warnings"] = warnings
        return result
