"""Approval Workflow.

Submit, approve, reject and execute approval requests. Every step checks
expiry by time first (a stale stored status is never trusted), then the
transition table, and execution re-hashes the payload before running it.
"""

from typing import Any

from ops_memory.approvals import (
    ApprovalRequest,
    ApprovalRequestStore,
    ApprovalStatus,
    hash_payload,
    validate_status_transition,
)
from ops_memory.exceptions import DuplicateKeyError, InvalidTransitionError
from ops_memory.timestamps import format_timestamp, utcnow
from ops_obs.logging import bind_execution_context, get_logger
from ops_obs.metrics import approval_requests_total
from ops_tools.exceptions import ErrorCode
from ops_tools.executor import VERSION, ExecutionOutcome, ToolExecutor

logger = get_logger(__name__)

EXECUTOR_ACTOR = "approval-executor"


def failure(code: ErrorCode, message: str, status_code: int, **details: Any) -> ExecutionOutcome:
    return ExecutionOutcome(
        {"ok": False, "error": {"code": code.value, "message": message, **details}, "_meta": {"version": VERSION}},
        status_code,
    )


def success(**fields: Any) -> ExecutionOutcome:
    return ExecutionOutcome({"ok": True, **fields, "_meta": {"version": VERSION}}, 200)


def public(request: ApprovalRequest) -> dict[str, Any]:
    return request.to_document()


class ApprovalWorkflow:
    """Approval request lifecycle on top of the executor."""

    def __init__(self, approvals: ApprovalRequestStore, executor: ToolExecutor):
        self.approvals = approvals
        self.executor = executor

    async def submit(
        self,
        tool: str,
        payload: dict[str, Any],
        requested_by: str,
        plan: dict[str, Any] | None = None,
        meta: dict[str, Any] | None = None,
        request_id: str | None = None,
    ) -> ExecutionOutcome:
        """Create a pending approval request; the plan preview is computed if not supplied."""
        registry = self.executor.registry
        if tool not in registry:
            return failure(ErrorCode.TOOL_NOT_FOUND, f"Tool '{tool}' not found in registry", 404)

        validation = registry.validate_args(tool, payload)
        if not validation.valid:
            return failure(
                ErrorCode.VALIDATION_ERROR, "Input validation failed", 400, errors=validation.errors
            )

        if plan is None:
            plan = await self.executor.preview(tool, payload, request_id or "approval", requested_by)

        try:
            request = await self.approvals.create(
                tool=tool,
                payload=payload,
                requested_by=requested_by,
                plan=plan,
                meta=meta,
                request_id=request_id,
            )
        except DuplicateKeyError:
            return failure(
                ErrorCode.VALIDATION_ERROR, f"Approval request '{request_id}' already exists", 409
            )
        approval_requests_total.labels(tool=tool).inc()

        return ExecutionOutcome(
            {
                "ok": True,
                "requestId": request.request_id,
                "status": request.status.value,
                "payloadHash": request.payload_hash,
                "expiresAt": format_timestamp(request.expires_at),
                "request": public(request),
                "_meta": {"version": VERSION},
            },
            201,
        )

    async def _load(self, request_id: str) -> tuple[ApprovalRequest | None, ExecutionOutcome | None]:
        request = await self.approvals.get(request_id)
        if request is None:
            return None, failure(ErrorCode.NOT_FOUND, f"Approval request '{request_id}' not found", 404)

        if request.status == ApprovalStatus.EXPIRED or request.is_expired():
            if request.status != ApprovalStatus.EXPIRED:
                await self._mark_expired(request)
            return None, failure(
                ErrorCode.REQUEST_EXPIRED,
                "Approval request has expired",
                410,
                expiredAt=format_timestamp(request.expires_at),
            )
        return request, None

    async def _mark_expired(self, request: ApprovalRequest) -> None:
        try:
            await self.approvals.transition(request, ApprovalStatus.EXPIRED)
        except InvalidTransitionError as e:
            # Terminal states stay as they are
            logger.info("approval_request_expiry_skipped", request_id=request.request_id, reason=str(e))

    async def approve(self, request_id: str, approved_by: str | None) -> ExecutionOutcome:
        """pending -> approved."""
        if not approved_by or not isinstance(approved_by, str):
            return failure(ErrorCode.VALIDATION_ERROR, "approvedBy is required and must be a string", 400)

        request, error = await self._load(request_id)
        if error:
            return error

        try:
            updated = await self.approvals.transition(
                request, ApprovalStatus.APPROVED, approved_by=approved_by, approved_at=utcnow()
            )
        except InvalidTransitionError as e:
            return failure(
                ErrorCode.INVALID_TRANSITION, str(e), 400, currentStatus=e.current
            )

        return success(
            requestId=updated.request_id,
            status=updated.status.value,
            approvedBy=updated.approved_by,
            approvedAt=format_timestamp(updated.approved_at),
            expiresAt=format_timestamp(updated.expires_at),
            tool=updated.tool,
        )

    async def reject(self, request_id: str, rejected_by: str | None, reason: str | None = None) -> ExecutionOutcome:
        """pending -> rejected."""
        if not rejected_by or not isinstance(rejected_by, str):
            return failure(ErrorCode.VALIDATION_ERROR, "rejectedBy is required and must be a string", 400)

        request, error = await self._load(request_id)
        if error:
            return error

        try:
            updated = await self.approvals.transition(
                request,
                ApprovalStatus.REJECTED,
                rejected_by=rejected_by,
                rejected_at=utcnow(),
                rejection_reason=reason,
            )
        except InvalidTransitionError as e:
            return failure(ErrorCode.INVALID_TRANSITION, str(e), 400, currentStatus=e.current)

        return success(
            requestId=updated.request_id,
            status=updated.status.value,
            rejectedBy=updated.rejected_by,
            rejectionReason=updated.rejection_reason,
            tool=updated.tool,
        )

    async def execute(
        self,
        request_id: str,
        executed_by: str | None = None,
        payload: dict[str, Any] | None = None,
        key_id: str | None = None,
    ) -> ExecutionOutcome:
        """
        Run an approved request.

        Args:
            request_id: Approval request id
            executed_by: Operator triggering execution
            payload: Arguments the caller intends to run; must hash to the
                approved payloadHash when supplied
            key_id: Fingerprint of the calling API key (audit only)

        Returns:
            ExecutionOutcome; PAYLOAD_MISMATCH leaves the request untouched
        """
        lock_id = f"exec-{request_id}"
        if not await self.executor.cache.acquire_lock(lock_id):
            return failure(
                ErrorCode.REQUEST_IN_PROGRESS,
                "This approval request is already being executed",
                409,
                requestId=request_id,
            )
        try:
            return await self._execute_locked(request_id, executed_by, payload, key_id)
        finally:
            await self.executor.cache.release_lock(lock_id)

    async def _execute_locked(
        self,
        request_id: str,
        executed_by: str | None,
        payload: dict[str, Any] | None,
        key_id: str | None,
    ) -> ExecutionOutcome:
        request, error = await self._load(request_id)
        if error:
            return error

        check = validate_status_transition(request.status, ApprovalStatus.EXECUTED)
        if not check.valid:
            return failure(
                ErrorCode.INVALID_TRANSITION,
                check.error,
                400,
                currentStatus=request.status.value,
                hint="Request must be approved before execution. POST /ops/requests/{id}/approve first."
                if request.status == ApprovalStatus.PENDING
                else None,
            )

        if hash_payload(request.payload) != request.payload_hash or (
            payload is not None and hash_payload(payload) != request.payload_hash
        ):
            logger.error("approval_payload_mismatch", request_id=request_id, tool=request.tool)
            return failure(
                ErrorCode.PAYLOAD_MISMATCH,
                "Payload hash mismatch - arguments changed since approval",
                409,
                hint="Create a new approval request",
            )

        registry = self.executor.registry
        if request.tool not in registry:
            return failure(ErrorCode.TOOL_NOT_FOUND, f"Tool '{request.tool}' not found in registry", 404)

        validation = registry.validate_args(request.tool, request.payload)
        if not validation.valid:
            return failure(ErrorCode.VALIDATION_ERROR, "Input validation failed", 400, errors=validation.errors)

        logger.info(
            "approved_request_executing",
            request_id=request_id,
            tool=request.tool,
            approved_by=request.approved_by,
            executed_by=executed_by,
        )

        ctx = self.executor.build_context(
            f"exec-{request_id}",
            EXECUTOR_ACTOR,
            approval_request_id=request_id,
            approved_by=request.approved_by,
        )
        with bind_execution_context(
            ctx["request_id"], request.tool, EXECUTOR_ACTOR, approval_request_id=request_id
        ):
            result, duration_ms, warnings = await self.executor.invoke(
                request.tool, request.payload, ctx, key_id=key_id
            )

        execution_error = result.get("error") if result.get("ok") is False else None
        executed_at = utcnow()
        try:
            updated = await self.approvals.transition(
                request,
                ApprovalStatus.EXECUTED,
                executed_by=executed_by or EXECUTOR_ACTOR,
                executed_at=executed_at,
                result=result,
                error=execution_error,
                meta={**request.meta, "executionDurationMs": duration_ms, "executedByKeyId": key_id},
            )
        except InvalidTransitionError as e:
            # Another executor finished first; the tool already ran under exec-<id>
            logger.warning("approved_request_double_execute", request_id=request_id, error=str(e))
            return failure(ErrorCode.INVALID_TRANSITION, str(e), 409, currentStatus=e.current)

        body: dict[str, Any] = {
            "ok": execution_error is None,
            "requestId": request_id,
            "executionRequestId": f"exec-{request_id}",
            "status": updated.status.value,
            "tool": request.tool,
            "result": result,
            "error": execution_error,
            "executedAt": format_timestamp(executed_at),
            "executionDurationMs": duration_ms,
            "approvalDetails": {
                "approvedBy": request.approved_by,
                "approvedAt": format_timestamp(request.approved_at) if request.approved_at else None,
            },
            "_meta": {"version": VERSION},
        }
        if warnings:
            body["warnings"] = warnings
        internal = (execution_error or {}).get("code") == ErrorCode.INTERNAL_ERROR.value
        return ExecutionOutcome(body, 500 if internal else 200)
