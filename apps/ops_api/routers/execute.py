"""
/ops/execute Router - Tool Execution Endpoint.

Handles:
- POST /ops/execute: run one tool through the executor boundary
  (idempotency, allowlist, validation, approval gate, audit)
- GET /ops/executions/{requestId}: stored response for a request id
"""

from typing import Any

from fastapi import APIRouter, Body, Depends
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from apps.ops_api.auth import Principal, require_scope
from apps.ops_api.deps import get_control_plane
from apps.ops_api.errors import ApiError
from ops_obs.logging import get_logger
from ops_tools.catalog import ControlPlane
from ops_tools.exceptions import ErrorCode
from ops_tools.executor import ExecuteRequest

router = APIRouter()
logger = get_logger(__name__)


def validation_details(exc: ValidationError) -> list[dict[str, Any]]:
    return [
        {"path": ".".join(str(p) for p in err["loc"]), "message": err["msg"]}
        for err in exc.errors()
    ]


@router.post("/ops/execute")
async def execute_tool(
    body: dict[str, Any] = Body(
        ...,
        examples=[
            {
                "tool": "tenant.bootstrap",
                "requestId": "n8n_exec_550e8400",
                "actor": "n8n",
                "args": {"businessId": "acme-plumbing"},
            }
        ],
    ),
    principal: Principal = Depends(require_scope("ops.execute")),
    plane: ControlPlane = Depends(get_control_plane),
):
    """
    Execute a tool.

    Accepted argument formats (first non-empty wins):
    - ``{"tool": ..., "args": {...}}``
    - ``{"tool": ..., "input": {...}}`` (n8n)
    - ``{"tool": ..., "businessId": ...}`` (flat)

    Returns:
        200 with the response envelope (including ok:false tool results),
        202 when the tool requires approval, 400/403/404/409 for rejected
        calls, 500 when the tool crashed
    """
    try:
        request = ExecuteRequest.from_body(body)
    except ValidationError as e:
        raise ApiError(400, ErrorCode.VALIDATION_ERROR, "Invalid execution envelope", errors=validation_details(e)) from e

    logger.info(
        "ops_execute_received",
        request_id=request.request_id,
        tool=request.tool,
        mode=request.mode,
        dry_run=request.dry_run,
        principal=principal.principal_id,
    )

    outcome = await plane.executor.run(request, key_id=principal.key_id)
    return JSONResponse(status_code=outcome.status_code, content=outcome.body)


@router.get("/ops/executions/{request_id}")
async def get_execution(
    request_id: str,
    principal: Principal = Depends(require_scope("ops.logs.read")),
    plane: ControlPlane = Depends(get_control_plane),
):
    """Stored /ops/execute response for ``request_id``."""
    cached = await plane.cache.get_cached(request_id)
    if cached is None:
        raise ApiError(404, ErrorCode.EXECUTION_NOT_FOUND, f"No stored execution for requestId '{request_id}'")
    return {"ok": True, "requestId": request_id, "response": cached}
