"""Approval Workflow Tests.

submit -> approve/reject -> execute, with expiry and payload integrity.
"""

import asyncio
from datetime import timedelta

import pytest

from ops_memory.approvals import ApprovalStatus
from ops_memory.timestamps import utcnow
from ops_tools.approvals import ApprovalWorkflow
from ops_tools.base import ToolDescriptor
from ops_tools.executor import ToolExecutor
from ops_tools.registry import ToolRegistry
from ops_tools.tools.common import USERS_COLLECTION

DELETE_ARGS = {"businessId": "acme-plumbing", "confirmationCode": "acme-plumbing"}


class SlowGatedTool:
    """Approval-gated tool that counts its runs."""

    descriptor = ToolDescriptor(
        name="test.slowWipe",
        category="system",
        mutates=True,
        risk="high",
        requires_approval=True,
        input_schema={"type": "object", "required": ["businessId"], "properties": {"businessId": {"type": "string"}}},
    )

    def __init__(self):
        self.runs = 0

    async def execute(self, ctx, args):
        self.runs += 1
        await asyncio.sleep(0.05)
        return {"ok": True, "wiped": args["businessId"]}


@pytest.fixture
def workflow(plane):
    return plane.workflow


async def approved_delete(plane, seed_tenant, request_id: str = "apr_1"):
    await seed_tenant("acme-plumbing")
    await plane.workflow.submit("tenant.delete", DELETE_ARGS, requested_by="n8n", request_id=request_id)
    await plane.workflow.approve(request_id, "ops_alice")
    return request_id


# ============================================================================
# SUBMIT
# ============================================================================


@pytest.mark.asyncio
async def test_submit_creates_pending_request_with_plan(workflow, seed_tenant):
    await seed_tenant("acme-plumbing")

    outcome = await workflow.submit("tenant.delete", DELETE_ARGS, requested_by="n8n")

    body = outcome.body
    assert outcome.status_code == 201
    assert body["ok"] is True
    assert body["status"] == "pending"
    assert len(body["payloadHash"]) == 64
    assert body["request"]["plan"]["dryRunPlan"]["wouldDelete"]["users"] == 1
    assert body["request"]["requestedBy"] == "n8n"


@pytest.mark.asyncio
async def test_submit_keeps_supplied_plan(workflow):
    outcome = await workflow.submit("tenant.delete", DELETE_ARGS, requested_by="n8n", plan={"note": "manual"})

    assert outcome.body["request"]["plan"] == {"note": "manual"}


@pytest.mark.asyncio
async def test_submit_unknown_tool(workflow):
    outcome = await workflow.submit("tenant.nope", {}, requested_by="n8n")

    assert outcome.status_code == 404
    assert outcome.body["error"]["code"] == "TOOL_NOT_FOUND"


@pytest.mark.asyncio
async def test_submit_invalid_payload(workflow):
    outcome = await workflow.submit("tenant.delete", {"businessId": "acme"}, requested_by="n8n")

    assert outcome.status_code == 400
    assert outcome.body["error"]["errors"] == ["Missing required field: confirmationCode"]


@pytest.mark.asyncio
async def test_submit_duplicate_request_id(workflow):
    await workflow.submit("tenant.delete", DELETE_ARGS, requested_by="n8n", request_id="apr_dup")

    outcome = await workflow.submit("tenant.delete", DELETE_ARGS, requested_by="n8n", request_id="apr_dup")

    assert outcome.status_code == 409


# ============================================================================
# APPROVE / REJECT
# ============================================================================


@pytest.mark.asyncio
async def test_approve_requires_approver(workflow):
    await workflow.submit("tenant.delete", DELETE_ARGS, requested_by="n8n", request_id="apr_1")

    outcome = await workflow.approve("apr_1", None)

    assert outcome.status_code == 400
    assert outcome.body["error"]["code"] == "VALIDATION_ERROR"


@pytest.mark.asyncio
async def test_approve_then_approve_again(workflow, plane):
    await workflow.submit("tenant.delete", DELETE_ARGS, requested_by="n8n", request_id="apr_1")

    first = await workflow.approve("apr_1", "ops_alice")
    second = await workflow.approve("apr_1", "ops_bob")

    assert first.status_code == 200
    assert first.body["status"] == "approved"
    assert first.body["approvedBy"] == "ops_alice"
    assert second.status_code == 400
    assert second.body["error"]["code"] == "INVALID_TRANSITION"
    assert second.body["error"]["currentStatus"] == "approved"
    assert (await plane.approvals.get("apr_1")).approved_by == "ops_alice"


@pytest.mark.asyncio
async def test_unknown_request(workflow):
    assert (await workflow.approve("apr_missing", "ops_alice")).status_code == 404
    assert (await workflow.reject("apr_missing", "ops_alice")).body["error"]["code"] == "NOT_FOUND"
    assert (await workflow.execute("apr_missing")).status_code == 404


@pytest.mark.asyncio
async def test_reject_then_execute(workflow, plane):
    await workflow.submit("tenant.delete", DELETE_ARGS, requested_by="n8n", request_id="apr_1")

    rejected = await workflow.reject("apr_1", "ops_alice", reason="wrong tenant")
    executed = await workflow.execute("apr_1", executed_by="ops_bob")

    assert rejected.body["status"] == "rejected"
    assert rejected.body["rejectionReason"] == "wrong tenant"
    assert executed.status_code == 400
    assert executed.body["error"]["code"] == "INVALID_TRANSITION"
    assert (await plane.approvals.get("apr_1")).status == ApprovalStatus.REJECTED


@pytest.mark.asyncio
async def test_execute_pending_request_is_refused(workflow):
    await workflow.submit("tenant.delete", DELETE_ARGS, requested_by="n8n", request_id="apr_1")

    outcome = await workflow.execute("apr_1", executed_by="ops_bob")

    assert outcome.status_code == 400
    assert outcome.body["error"]["currentStatus"] == "pending"
    assert "approve" in outcome.body["error"]["hint"]


# ============================================================================
# EXECUTE
# ============================================================================


@pytest.mark.asyncio
async def test_execute_approved_request(plane, store, seed_tenant):
    request_id = await approved_delete(plane, seed_tenant)

    outcome = await plane.workflow.execute(request_id, executed_by="ops_bob", payload=dict(DELETE_ARGS))

    body = outcome.body
    assert outcome.status_code == 200
    assert body["ok"] is True
    assert body["status"] == "executed"
    assert body["executionRequestId"] == "exec-apr_1"
    assert body["result"]["affectedRecords"] == {"users": 1, "eventTypes": 1}
    assert body["approvalDetails"]["approvedBy"] == "ops_alice"
    assert await store.get(USERS_COLLECTION, "acme-plumbing") is None

    stored = await plane.approvals.get(request_id)
    assert stored.status == ApprovalStatus.EXECUTED
    assert stored.executed_by == "ops_bob"
    assert stored.result["deleted"] is True

    entry = await plane.event_log.get_by_request_id("exec-apr_1")
    assert entry.tool == "tenant.delete"
    assert entry.metadata["approvalRequestId"] == "apr_1"
    assert entry.metadata["approvedBy"] == "ops_alice"


@pytest.mark.asyncio
async def test_execute_twice_is_refused(plane, seed_tenant):
    request_id = await approved_delete(plane, seed_tenant)

    await plane.workflow.execute(request_id, executed_by="ops_bob")
    again = await plane.workflow.execute(request_id, executed_by="ops_bob")

    assert again.status_code == 400
    assert again.body["error"]["currentStatus"] == "executed"


@pytest.mark.asyncio
async def test_concurrent_execute_runs_tool_once(plane, store):
    tool = SlowGatedTool()
    registry = ToolRegistry()
    registry.register(tool)
    registry.freeze()
    executor = ToolExecutor(registry, store, plane.approvals, plane.event_log, plane.cache)
    workflow = ApprovalWorkflow(plane.approvals, executor)
    await workflow.submit("test.slowWipe", {"businessId": "acme"}, requested_by="n8n", request_id="apr_1")
    await workflow.approve("apr_1", "ops_alice")

    first, second = await asyncio.gather(workflow.execute("apr_1"), workflow.execute("apr_1"))

    assert tool.runs == 1
    assert sorted([first.status_code, second.status_code]) == [200, 409]
    busy = first if first.status_code == 409 else second
    assert busy.body["error"]["code"] == "REQUEST_IN_PROGRESS"
    assert (await plane.approvals.get("apr_1")).status == ApprovalStatus.EXECUTED

    later = await workflow.execute("apr_1")

    assert later.status_code == 400
    assert tool.runs == 1


@pytest.mark.asyncio
async def test_payload_mismatch_leaves_request_untouched(plane, store, seed_tenant):
    request_id = await approved_delete(plane, seed_tenant)
    tampered = {**DELETE_ARGS, "businessId": "someone-else"}

    outcome = await plane.workflow.execute(request_id, executed_by="ops_bob", payload=tampered)

    assert outcome.status_code == 409
    assert outcome.body["error"]["code"] == "PAYLOAD_MISMATCH"
    assert (await plane.approvals.get(request_id)).status == ApprovalStatus.APPROVED
    assert await store.get(USERS_COLLECTION, "acme-plumbing") is not None
    assert await plane.event_log.get_by_request_id(f"exec-{request_id}") is None


@pytest.mark.asyncio
async def test_reordered_payload_still_matches(plane, seed_tenant):
    request_id = await approved_delete(plane, seed_tenant)
    reordered = {"confirmationCode": "acme-plumbing", "businessId": "acme-plumbing"}

    outcome = await plane.workflow.execute(request_id, executed_by="ops_bob", payload=reordered)

    assert outcome.status_code == 200


# ============================================================================
# EXPIRY
# ============================================================================


@pytest.mark.asyncio
async def test_expired_request_cannot_be_approved(plane):
    request = await plane.approvals.create(
        "tenant.delete", DELETE_ARGS, "n8n", expires_at=utcnow() - timedelta(minutes=1)
    )

    outcome = await plane.workflow.approve(request.request_id, "ops_alice")

    assert outcome.status_code == 410
    assert outcome.body["error"]["code"] == "REQUEST_EXPIRED"
    assert (await plane.approvals.get(request.request_id)).status == ApprovalStatus.EXPIRED


@pytest.mark.asyncio
async def test_expiry_checked_before_status(plane, store, seed_tenant):
    """An approved request past its deadline is expired, not executable."""
    await seed_tenant("acme-plumbing")
    request = await plane.approvals.create(
        "tenant.delete", DELETE_ARGS, "n8n", expires_at=utcnow() + timedelta(hours=1)
    )
    approved = await plane.approvals.transition(request, ApprovalStatus.APPROVED, approved_by="ops_alice")
    await store.update_one(
        "ops_approval_requests",
        approved.request_id,
        {"expiresAt": (utcnow() - timedelta(seconds=1)).isoformat()},
    )

    outcome = await plane.workflow.execute(approved.request_id, executed_by="ops_bob")

    assert outcome.status_code == 410
    assert (await plane.approvals.get(approved.request_id)).status == ApprovalStatus.EXPIRED
    assert await store.get(USERS_COLLECTION, "acme-plumbing") is not None


@pytest.mark.asyncio
async def test_stored_expired_status_stays_expired(plane):
    request = await plane.approvals.create("tenant.delete", DELETE_ARGS, "n8n")
    await plane.approvals.transition(request, ApprovalStatus.EXPIRED)

    outcome = await plane.workflow.reject(request.request_id, "ops_alice")

    assert outcome.status_code == 410
