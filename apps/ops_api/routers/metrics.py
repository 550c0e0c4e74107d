"""
Prometheus Metrics Endpoint.

Exposes /metrics for Prometheus scraping.
"""

from fastapi import APIRouter
from fastapi.responses import Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

router = APIRouter()


@router.get("/metrics")
async def metrics():
    """
    Prometheus metrics endpoint.

    Example metrics:
    ```
    # HELP ops_tool_executions_total Total tool executions
    # TYPE ops_tool_executions_total counter
    ops_tool_executions_total{tool="tenant.bootstrap",status="success"} 15.0

    # HELP ops_approval_transitions_total Approval request status transitions
    # TYPE ops_approval_transitions_total counter
    ops_approval_transitions_total{from_status="pending",to_status="approved"} 3.0
    ```
    """
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
