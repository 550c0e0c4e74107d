"""
/ops/requests Router - Approval Requests.

Handles:
- POST /ops/requests: create a pending approval request
- GET /ops/requests: list with status counts
- GET /ops/requests/{id}: one request
- POST /ops/requests/{id}/approve | /reject | /execute: lifecycle transitions
"""

from typing import Any

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from apps.ops_api.auth import Principal, require_scope
from apps.ops_api.deps import get_control_plane
from apps.ops_api.errors import ApiError
from ops_memory.approvals import ApprovalStatus
from ops_tools.catalog import ControlPlane
from ops_tools.exceptions import ErrorCode
from ops_tools.executor import ExecutionOutcome

router = APIRouter()


# ============================================================================
# REQUEST MODELS
# ============================================================================


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CreateApprovalRequest(CamelModel):
    """Body for POST /ops/requests."""

    tool: str = Field(..., min_length=1)
    payload: dict[str, Any] = Field(default_factory=dict)
    requested_by: str | None = Field(None, description="Defaults to the authenticated principal")
    plan: dict[str, Any] | None = Field(None, description="Preview shown to approvers; computed when omitted")
    meta: dict[str, Any] | None = None
    request_id: str | None = None


class ApproveBody(CamelModel):
    approved_by: str | None = None


class RejectBody(CamelModel):
    rejected_by: str | None = None
    reason: str | None = None


class ExecuteApprovedBody(CamelModel):
    executed_by: str | None = None
    payload: dict[str, Any] | None = Field(
        None, description="When supplied, must hash to the approved payloadHash"
    )


def respond(outcome: ExecutionOutcome) -> JSONResponse:
    return JSONResponse(status_code=outcome.status_code, content=outcome.body)


# ============================================================================
# ENDPOINTS
# ============================================================================


@router.post("/ops/requests")
async def create_request(
    body: CreateApprovalRequest,
    principal: Principal = Depends(require_scope("ops.requests.create")),
    plane: ControlPlane = Depends(get_control_plane),
):
    """Create a pending approval request (201)."""
    outcome = await plane.workflow.submit(
        tool=body.tool,
        payload=body.payload,
        requested_by=body.requested_by or principal.principal_id,
        plan=body.plan,
        meta=body.meta,
        request_id=body.request_id,
    )
    return respond(outcome)


@router.get("/ops/requests")
async def list_requests(
    status: str | None = Query(None),
    tool: str | None = Query(None),
    requested_by: str | None = Query(None, alias="requestedBy"),
    limit: int | None = Query(None, ge=1),
    skip: int = Query(0, ge=0),
    principal: Principal = Depends(require_scope("ops.requests.read")),
    plane: ControlPlane = Depends(get_control_plane),
):
    """List approval requests, newest first, with counts per status."""
    valid = [s.value for s in ApprovalStatus]
    if status and status not in valid:
        raise ApiError(400, ErrorCode.VALIDATION_ERROR, f"Unknown status '{status}'", validStatuses=valid)

    requests = await plane.approvals.list_requests(
        status=status, tool=tool, requested_by=requested_by, limit=limit, skip=skip
    )
    counts = await plane.approvals.count_by_status()
    return {
        "ok": True,
        "requests": [r.to_document() for r in requests],
        "count": len(requests),
        "counts": counts,
        "skip": skip,
    }


@router.get("/ops/requests/{request_id}")
async def get_request(
    request_id: str,
    principal: Principal = Depends(require_scope("ops.requests.read")),
    plane: ControlPlane = Depends(get_control_plane),
):
    """One approval request; ``isExpired`` reflects the clock, not the stored status."""
    request = await plane.approvals.get(request_id)
    if request is None:
        raise ApiError(404, ErrorCode.NOT_FOUND, f"Approval request '{request_id}' not found")
    return {"ok": True, "request": request.to_document(), "isExpired": request.is_expired()}


@router.post("/ops/requests/{request_id}/approve")
async def approve_request(
    request_id: str,
    body: ApproveBody,
    principal: Principal = Depends(require_scope("ops.requests.approve")),
    plane: ControlPlane = Depends(get_control_plane),
):
    """pending -> approved."""
    return respond(await plane.workflow.approve(request_id, body.approved_by))


@router.post("/ops/requests/{request_id}/reject")
async def reject_request(
    request_id: str,
    body: RejectBody,
    principal: Principal = Depends(require_scope("ops.requests.approve")),
    plane: ControlPlane = Depends(get_control_plane),
):
    """pending -> rejected."""
    return respond(await plane.workflow.reject(request_id, body.rejected_by, body.reason))


@router.post("/ops/requests/{request_id}/execute")
async def execute_request(
    request_id: str,
    body: ExecuteApprovedBody | None = None,
    principal: Principal = Depends(require_scope("ops.requests.execute")),
    plane: ControlPlane = Depends(get_control_plane),
):
    """approved -> executed (runs the stored payload)."""
    body = body or ExecuteApprovedBody()
    outcome = await plane.workflow.execute(
        request_id,
        executed_by=body.executed_by or principal.principal_id,
        payload=body.payload,
        key_id=principal.key_id,
    )
    return respond(outcome)
