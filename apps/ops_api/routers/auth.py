"""
Authentication Router.

Endpoints:
- POST /auth/token - Issue an operator access token (admin keys only)
- GET /auth/me - Current principal and its scopes
"""

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from apps.ops_api.auth import Principal, TokenResponse, generate_jwt_token, get_principal, require_scope
from apps.ops_api.deps import get_settings
from ops_config.settings import Settings
from ops_obs.logging import get_logger

router = APIRouter()
logger = get_logger(__name__)


class TokenRequest(BaseModel):
    """Request model for token creation."""

    user_id: str = Field(..., min_length=1)
    scopes: list[str] = ["ops.requests.*", "ops.logs.read", "ops.tools.read"]


@router.post("/token", response_model=TokenResponse)
async def create_token(
    request: TokenRequest,
    principal: Principal = Depends(require_scope("ops.auth.issue")),
    settings: Settings = Depends(get_settings),
) -> TokenResponse:
    """
    Issue an operator JWT carrying ``scopes``.

    Example:
        POST /auth/token
        {
            "user_id": "ops_alice",
            "scopes": ["ops.requests.*", "ops.logs.read"]
        }
    """
    logger.info("operator_token_issued", user_id=request.user_id, scopes=request.scopes, issued_by=principal.principal_id)
    return generate_jwt_token(request.user_id, request.scopes, settings)


@router.get("/me")
async def me(principal: Principal = Depends(get_principal)):
    """Who am I?"""
    return {"principalId": principal.principal_id, "kind": principal.kind, "scopes": principal.scopes}
