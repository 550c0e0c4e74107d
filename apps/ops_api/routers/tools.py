"""
/ops/tools Router - Tool Catalog.

- GET /ops/tools: list descriptors (filter by category, hide deprecated)
- GET /ops/tools/{name}: one descriptor
"""

from fastapi import APIRouter, Depends, Query

from apps.ops_api.auth import Principal, require_scope
from apps.ops_api.deps import get_control_plane
from apps.ops_api.errors import ApiError
from ops_tools.base import CATEGORIES, RISK_LEVELS
from ops_tools.catalog import ControlPlane
from ops_tools.exceptions import ErrorCode

router = APIRouter()


@router.get("/ops/tools")
async def list_tools(
    include_deprecated: bool = Query(False, alias="includeDeprecated"),
    category: str | None = Query(None),
    principal: Principal = Depends(require_scope("ops.tools.read")),
    plane: ControlPlane = Depends(get_control_plane),
):
    """List registered tools."""
    if category and category not in CATEGORIES:
        raise ApiError(
            400,
            ErrorCode.VALIDATION_ERROR,
            f"Unknown category '{category}'",
            validCategories=sorted(CATEGORIES),
        )

    registry = plane.registry
    if category:
        descriptors = registry.by_category(category, include_deprecated)
    else:
        descriptors = registry.list_tools(include_deprecated)

    return {
        "ok": True,
        "tools": [d.to_public() for d in descriptors],
        "count": len(descriptors),
        "deprecatedCount": len(registry.deprecated_tools()),
        "categories": CATEGORIES,
        "riskLevels": RISK_LEVELS,
    }


@router.get("/ops/tools/{name}")
async def get_tool(
    name: str,
    principal: Principal = Depends(require_scope("ops.tools.read")),
    plane: ControlPlane = Depends(get_control_plane),
):
    """One tool descriptor."""
    descriptor = plane.registry.descriptor(name)
    if descriptor is None:
        raise ApiError(
            404,
            ErrorCode.TOOL_NOT_FOUND,
            f"Tool '{name}' not found",
            availableTools=plane.registry.names(include_deprecated=False),
        )
    return {"ok": True, "tool": descriptor.to_public()}
