"""Tool Executor Tests.

Envelope parsing, idempotency, approval gating and the error boundary.
"""

import pytest
from pydantic import ValidationError

from ops_memory.approvals import ApprovalStatus, hash_payload
from ops_memory.event_log import EventStatus
from ops_tools.base import ToolDescriptor
from ops_tools.executor import ExecuteRequest, ToolExecutor, extract_args
from ops_tools.registry import ToolRegistry
from ops_tools.tools.common import USERS_COLLECTION


def envelope(**body) -> ExecuteRequest:
    return ExecuteRequest.from_body(body)


class ExplodingTool:
    descriptor = ToolDescriptor(
        name="test.explode",
        category="system",
        input_schema={"type": "object", "properties": {"businessId": {"type": "string"}}},
    )

    async def execute(self, ctx, args):
        raise RuntimeError("kaboom")


class SloppyTool:
    descriptor = ToolDescriptor(
        name="test.sloppy",
        category="system",
        input_schema={"type": "object", "properties": {}},
        output_schema={"type": "object", "required": ["ok", "count"], "properties": {"count": {"type": "number"}}},
    )

    async def execute(self, ctx, args):
        return {"ok": True, "count": "three"}


@pytest.fixture
def custom_executor(plane, store):
    registry = ToolRegistry()
    registry.register(ExplodingTool())
    registry.register(SloppyTool())
    registry.freeze()
    return ToolExecutor(registry, store, plane.approvals, plane.event_log, plane.cache)


# ============================================================================
# ENVELOPE PARSING
# ============================================================================


def test_extract_args_priority():
    assert extract_args({"tool": "t", "args": {"a": 1}, "input": {"b": 2}}) == ({"a": 1}, "args")
    assert extract_args({"tool": "t", "args": {}, "input": {"b": 2}}) == ({"b": 2}, "input")
    assert extract_args({"tool": "t", "requestId": "r", "businessId": "acme", "extra": None}) == (
        {"businessId": "acme"},
        "flat",
    )


def test_from_body_defaults():
    request = envelope(tool="tenant.status", businessId="acme")

    assert request.mode == "execute"
    assert request.dry_run is False
    assert request.actor == "api"
    assert request.request_id.startswith("req_")
    assert request.args == {"businessId": "acme"}
    assert request.args_format == "flat"


def test_from_body_normalizes_actor_object():
    assert envelope(tool="t", actor={"type": "user", "id": "u1"}).actor == "human"
    assert envelope(tool="t", actor={"type": "system"}).actor == "system"


def test_from_body_rejects_bad_mode_and_missing_tool():
    with pytest.raises(ValidationError):
        envelope(tool="tenant.status", mode="apply")
    with pytest.raises(ValidationError):
        envelope(businessId="acme")


def test_plan_mode_is_effective_dry_run():
    assert envelope(tool="t", mode="plan").effective_dry_run
    assert envelope(tool="t", dryRun=True).effective_dry_run
    assert not envelope(tool="t").effective_dry_run


# ============================================================================
# EXECUTION
# ============================================================================


@pytest.mark.asyncio
async def test_successful_execution_envelope(plane, seed_tenant):
    await seed_tenant("acme-plumbing")

    outcome = await plane.executor.run(envelope(tool="tenant.status", requestId="req_1", input={"businessId": "acme-plumbing"}))

    body = outcome.body
    assert outcome.status_code == 200
    assert body["ok"] is True
    assert body["requestId"] == "req_1"
    assert body["executed"] is True
    assert body["dryRun"] is False
    assert body["error"] is None
    assert body["result"]["summary"]["ready"] is True
    assert body["_meta"]["cached"] is False
    assert body["_meta"]["argsFormat"] == "input"
    assert isinstance(body["durationMs"], int)

    entry = await plane.event_log.get_by_request_id("req_1")
    assert entry.status == EventStatus.SUCCESS
    assert entry.metadata["argsFormat"] == "input"


@pytest.mark.asyncio
async def test_repeat_request_id_returns_cached_response(plane, seed_tenant):
    await seed_tenant("acme-plumbing")
    request = envelope(tool="tenant.status", requestId="req_same", businessId="acme-plumbing")

    first = await plane.executor.run(request)
    second = await plane.executor.run(request)

    assert not first.cached
    assert second.cached
    assert second.status_code == 200
    assert second.body["_meta"]["cached"] is True
    assert second.body["_meta"]["originalExecutedAt"] == first.body["executedAt"]
    assert second.body["result"] == first.body["result"]
    assert len(await plane.event_log.get_recent_events()) == 1


@pytest.mark.asyncio
async def test_logged_request_without_cache_is_not_rerun(plane, seed_tenant):
    await seed_tenant("acme-plumbing")
    await plane.executor.run(envelope(tool="tenant.status", requestId="req_logged", businessId="acme-plumbing"))
    await plane.cache.store.delete_one("ops_executions", "req_logged")

    outcome = await plane.executor.run(envelope(tool="tenant.status", requestId="req_logged", businessId="acme-plumbing"))

    assert outcome.cached
    assert outcome.body["_meta"]["source"] == "event_log"
    assert outcome.body["status"] == "success"


@pytest.mark.asyncio
async def test_in_flight_request_id_conflicts(plane):
    assert await plane.cache.acquire_lock("req_busy")

    outcome = await plane.executor.run(envelope(tool="tenant.status", requestId="req_busy", businessId="acme"))

    assert outcome.status_code == 409
    assert outcome.body["error"]["code"] == "REQUEST_IN_PROGRESS"
    assert await plane.event_log.get_by_request_id("req_busy") is None


@pytest.mark.asyncio
async def test_lock_released_after_run(plane):
    await plane.executor.run(envelope(tool="tenant.status", requestId="req_lock", businessId="acme"))

    assert await plane.cache.acquire_lock("req_lock")


@pytest.mark.asyncio
async def test_validation_failure(plane):
    request = envelope(tool="tenant.status", requestId="req_invalid", args={"businessId": 7})

    outcome = await plane.executor.run(request)

    error = outcome.body["error"]
    assert outcome.status_code == 400
    assert outcome.body["ok"] is False
    assert outcome.body["executed"] is False
    assert error["code"] == "VALIDATION_ERROR"
    assert error["errors"] == ["Field 'businessId' expected string, got number"]
    assert error["details"]["receivedArgs"] == ["businessId"]
    assert "help" in error

    # Client errors are not cached; a corrected retry may reuse the id
    assert await plane.cache.get_cached("req_invalid") is None


@pytest.mark.asyncio
async def test_unknown_tool(plane):
    outcome = await plane.executor.run(envelope(tool="tenant.nope", businessId="acme"))

    assert outcome.status_code == 404
    assert outcome.body["error"]["code"] == "TOOL_NOT_FOUND"
    assert "tenant.bootstrap" in outcome.body["error"]["details"]["availableTools"]
    assert "tenant.ensure" not in outcome.body["error"]["details"]["availableTools"]


@pytest.mark.asyncio
async def test_caller_not_allowed(plane):
    outcome = await plane.executor.run(
        envelope(tool="tenant.delete", actor="n8n", businessId="acme", confirmationCode="acme")
    )

    assert outcome.status_code == 403
    assert outcome.body["error"]["code"] == "TOOL_NOT_ALLOWED"
    assert outcome.body["error"]["details"]["allowedCallers"] == ["human", "api"]


@pytest.mark.asyncio
async def test_plan_mode_does_not_mutate(plane, store, seed_tenant):
    await seed_tenant("acme-plumbing")

    outcome = await plane.executor.run(
        envelope(tool="tenant.delete", mode="plan", args={"businessId": "acme-plumbing", "confirmationCode": "acme-plumbing"})
    )

    assert outcome.status_code == 200
    assert outcome.body["dryRun"] is True
    assert outcome.body["executed"] is False
    assert outcome.body["result"]["dryRunPlan"]["wouldDelete"] == {"users": 1, "eventTypes": 1}
    assert await store.get(USERS_COLLECTION, "acme-plumbing") is not None


# ============================================================================
# APPROVAL GATE
# ============================================================================


@pytest.mark.asyncio
async def test_high_risk_tool_is_gated(plane, store, seed_tenant):
    await seed_tenant("acme-plumbing")
    args = {"businessId": "acme-plumbing", "confirmationCode": "acme-plumbing", "reason": "churned"}

    outcome = await plane.executor.run(envelope(tool="tenant.delete", requestId="req_delete", args=args))

    body = outcome.body
    assert outcome.status_code == 202
    assert body["ok"] is False
    assert body["executed"] is False
    assert body["requiresApproval"] is True
    assert body["approvalRequestId"] == "req_delete"
    assert body["approvalStatus"] == "pending"
    assert body["error"]["code"] == "APPROVAL_REQUIRED"
    assert body["plan"]["dryRunPlan"]["action"] == "delete_business"

    approval = await plane.approvals.get("req_delete")
    assert approval.status == ApprovalStatus.PENDING
    assert approval.payload == args
    assert approval.payload_hash == hash_payload(args)
    assert approval.meta["source"] == "execute"

    assert await store.get(USERS_COLLECTION, "acme-plumbing") is not None
    assert await plane.event_log.get_by_request_id("req_delete") is None


@pytest.mark.asyncio
async def test_gated_retry_returns_same_approval(plane, seed_tenant):
    await seed_tenant("acme-plumbing")
    request = envelope(
        tool="tenant.delete", requestId="req_delete", args={"businessId": "acme-plumbing", "confirmationCode": "acme-plumbing"}
    )

    await plane.executor.run(request)
    retry = await plane.executor.run(request)

    assert retry.cached
    assert retry.body["approvalRequestId"] == "req_delete"
    assert len(await plane.approvals.list_requests()) == 1


@pytest.mark.asyncio
async def test_gated_request_id_taken_by_other_approval(plane, store, seed_tenant):
    await seed_tenant("acme-plumbing")
    await seed_tenant("other-biz")
    submitted = await plane.workflow.submit(
        "tenant.delete",
        {"businessId": "other-biz", "confirmationCode": "other-biz"},
        requested_by="human",
        request_id="req_shared",
    )
    assert submitted.status_code == 201

    outcome = await plane.executor.run(
        envelope(
            tool="tenant.delete",
            requestId="req_shared",
            args={"businessId": "acme-plumbing", "confirmationCode": "acme-plumbing"},
        )
    )

    assert outcome.status_code == 409
    assert outcome.body["error"]["code"] == "PAYLOAD_MISMATCH"
    assert outcome.body["error"]["details"]["approvalRequestId"] == "req_shared"
    approval = await plane.approvals.get("req_shared")
    assert approval.payload["businessId"] == "other-biz"
    assert await store.get(USERS_COLLECTION, "acme-plumbing") is not None


# ============================================================================
# ERROR BOUNDARY
# ============================================================================


@pytest.mark.asyncio
async def test_tool_exception_becomes_internal_error(custom_executor, plane):
    outcome = await custom_executor.run(envelope(tool="test.explode", requestId="req_boom", businessId="acme"))

    assert outcome.status_code == 500
    assert outcome.body["ok"] is False
    assert outcome.body["error"]["code"] == "INTERNAL_ERROR"
    assert outcome.body["error"]["message"] == "kaboom"
    assert await plane.cache.get_cached("req_boom") is None

    entry = await plane.event_log.get_by_request_id("req_boom")
    assert entry.status == EventStatus.FAILED
    assert entry.business_id == "acme"
    assert entry.metadata["error"]["type"] == "RuntimeError"


@pytest.mark.asyncio
async def test_output_schema_violations_are_warnings(custom_executor):
    outcome = await custom_executor.run(envelope(tool="test.sloppy", requestId="req_sloppy"))

    assert outcome.status_code == 200
    assert outcome.body["ok"] is True
    assert outcome.body["warnings"] == ["Output schema warning: Field 'count' expected number, got string"]
