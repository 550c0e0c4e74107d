"""
/ops/logs Router - Event Log Queries.

- GET /ops/logs: events for a tenant (businessId) or across tenants
- GET /ops/logs/stats: counts and durations per tool x status
- GET /ops/logs/{requestId}: one event
"""

from datetime import timedelta

from fastapi import APIRouter, Depends, Query

from apps.ops_api.auth import Principal, require_scope
from apps.ops_api.deps import get_control_plane, get_settings
from apps.ops_api.errors import ApiError
from ops_config.settings import Settings
from ops_memory.event_log import ACTOR_VALUES, STATUS_VALUES
from ops_memory.timestamps import utcnow
from ops_tools.catalog import ControlPlane
from ops_tools.exceptions import ErrorCode

router = APIRouter()


@router.get("/ops/logs")
async def list_logs(
    business_id: str | None = Query(None, alias="businessId"),
    tool: str | None = Query(None),
    status: str | None = Query(None),
    actor: str | None = Query(None),
    limit: int | None = Query(None, ge=1),
    skip: int = Query(0, ge=0),
    principal: Principal = Depends(require_scope("ops.logs.read")),
    plane: ControlPlane = Depends(get_control_plane),
):
    """Event log entries, newest first."""
    if status and status not in STATUS_VALUES:
        raise ApiError(400, ErrorCode.VALIDATION_ERROR, f"Unknown status '{status}'", validStatuses=STATUS_VALUES)
    if actor and actor not in ACTOR_VALUES:
        raise ApiError(400, ErrorCode.VALIDATION_ERROR, f"Unknown actor '{actor}'", validActors=ACTOR_VALUES)

    if business_id:
        events = await plane.event_log.get_events_by_business(
            business_id, tool=tool, status=status, limit=limit, skip=skip
        )
    else:
        events = await plane.event_log.get_recent_events(
            tool=tool, status=status, actor=actor, limit=limit, skip=skip
        )

    return {
        "ok": True,
        "businessId": business_id,
        "events": [e.to_document() for e in events],
        "count": len(events),
        "skip": skip,
    }


@router.get("/ops/logs/stats")
async def log_stats(
    hours: int | None = Query(None, ge=1, le=24 * 90),
    principal: Principal = Depends(require_scope("ops.logs.read")),
    plane: ControlPlane = Depends(get_control_plane),
    settings: Settings = Depends(get_settings),
):
    """Aggregates over the last ``hours`` (default STATS_DEFAULT_WINDOW_HOURS)."""
    window = hours or settings.STATS_DEFAULT_WINDOW_HOURS
    stats = await plane.event_log.get_event_stats(since=utcnow() - timedelta(hours=window))
    return {"ok": True, "hours": window, **stats}


@router.get("/ops/logs/{request_id}")
async def get_log(
    request_id: str,
    principal: Principal = Depends(require_scope("ops.logs.read")),
    plane: ControlPlane = Depends(get_control_plane),
):
    """Event for one requestId."""
    event = await plane.event_log.get_by_request_id(request_id)
    if event is None:
        raise ApiError(404, ErrorCode.EXECUTION_NOT_FOUND, f"No event logged for requestId '{request_id}'")
    return {"ok": True, "event": event.to_document()}
