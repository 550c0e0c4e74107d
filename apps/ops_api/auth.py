"""
Authentication and Authorization.

Implements:
- Scoped API keys (X-Ops-Api-Key, constant-time comparison)
- Operator JWT validation (python-jose)
- Scope matching with wildcards (``*``, ``prefix.*``)
- Token generation for operators
"""

import hmac
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any

from fastapi import Depends, Header
from jose import JWTError, jwt
from pydantic import BaseModel

from apps.ops_api.deps import get_settings
from apps.ops_api.errors import ApiError
from ops_config.settings import Settings
from ops_obs.logging import get_logger
from ops_obs.redaction import key_fingerprint
from ops_tools.exceptions import ErrorCode

logger = get_logger(__name__)

API_KEY_HEADER = "X-Ops-Api-Key"

N8N_SCOPES = [
    "ops.execute",
    "ops.requests.create",
    "ops.requests.read",
    "ops.tools.read",
    "ops.logs.read",
    "tenant.*",
    "voice.*",
    "billing.read",
]
ADMIN_SCOPES = ["*"]


# ============================================================================
# PYDANTIC MODELS
# ============================================================================


class Principal(BaseModel):
    """Authenticated caller."""

    principal_id: str
    kind: str  # api_key or jwt
    scopes: list[str] = []
    key_id: str | None = None


class TokenResponse(BaseModel):
    """Token generation response."""

    access_token: str
    token_type: str = "bearer"
    expires_in: int


# ============================================================================
# SCOPES
# ============================================================================


def scope_matches(required: str, granted: str) -> bool:
    """
    Check one granted scope against a required scope.

    Example:
        scope_matches("ops.requests.read", "ops.*")  # True
        scope_matches("ops.execute", "ops.requests.*")  # False
    """
    if granted in ("*", required):
        return True
    if granted.endswith(".*"):
        return required.startswith(granted[:-1])
    return False


def has_scope(required: str, scopes: list[str]) -> bool:
    return any(scope_matches(required, granted) for granted in scopes)


# ============================================================================
# API KEYS
# ============================================================================


def scoped_keys(settings: Settings) -> list[tuple[str, str, list[str]]]:
    """(name, secret, scopes) for every configured key."""
    keys = [
        ("n8n", settings.OPS_KEY_N8N, N8N_SCOPES),
        ("admin", settings.OPS_KEY_ADMIN, ADMIN_SCOPES),
        ("internal", settings.OPS_INTERNAL_SECRET, ADMIN_SCOPES),
    ]
    return [(name, secret, scopes) for name, secret, scopes in keys if secret]


def verify_api_key(provided: str, settings: Settings) -> Principal | None:
    """
    Match an API key against the configured scoped keys.

    Every configured key is compared (hmac.compare_digest) so timing does
    not reveal which key matched.
    """
    match = None
    for name, secret, scopes in scoped_keys(settings):
        if hmac.compare_digest(provided.encode("utf-8"), secret.encode("utf-8")):
            match = Principal(
                principal_id=name, kind="api_key", scopes=list(scopes), key_id=key_fingerprint(secret)
            )
    return match


def key_kind(provided: str | None, settings: Settings) -> str | None:
    """Name of the key (n8n/admin/internal) without building a principal."""
    if not provided:
        return None
    principal = verify_api_key(provided, settings)
    return principal.principal_id if principal else None


# ============================================================================
# JWT
# ============================================================================


def validate_jwt(authorization_header: str, settings: Settings) -> Principal:
    """
    Validate an operator JWT from the Authorization header.

    Raises:
        ApiError: 401 if the token is malformed, expired or invalid
    """
    if not authorization_header.startswith("Bearer "):
        raise ApiError(401, ErrorCode.AUTH_FAILED, "Invalid authorization header format. Expected 'Bearer <token>'")

    token = authorization_header[7:]
    try:
        payload = jwt.decode(token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
    except JWTError as e:
        raise ApiError(401, ErrorCode.AUTH_FAILED, f"Invalid JWT token: {e}") from e

    user_id = payload.get("sub")
    if not user_id:
        raise ApiError(401, ErrorCode.AUTH_FAILED, "Token missing 'sub' claim")

    return Principal(
        principal_id=user_id,
        kind="jwt",
        scopes=payload.get("scopes", []),
        key_id=payload.get("jti"),
    )


def create_access_token(user_id: str, scopes: list[str] | None, settings: Settings) -> str:
    """
    Create an operator access token.

    Example:
        token = create_access_token("ops_alice", ["ops.requests.*"], settings)
    """
    now = datetime.now(timezone.utc)
    exp = now + timedelta(minutes=settings.JWT_EXPIRATION_MINUTES)

    payload: dict[str, Any] = {
        "sub": user_id,
        "iat": int(now.timestamp()),
        "exp": int(exp.timestamp()),
        "jti": str(uuid.uuid4()),
        "token_type": "access",
    }
    if scopes:
        payload["scopes"] = scopes

    return jwt.encode(payload, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def generate_jwt_token(user_id: str, scopes: list[str] | None, settings: Settings) -> TokenResponse:
    return TokenResponse(
        access_token=create_access_token(user_id, scopes, settings),
        expires_in=settings.JWT_EXPIRATION_MINUTES * 60,
    )


# ============================================================================
# DEPENDENCIES
# ============================================================================


async def get_principal(
    x_ops_api_key: str | None = Header(None, alias=API_KEY_HEADER),
    authorization: str | None = Header(None),
    settings: Settings = Depends(get_settings),
) -> Principal:
    """
    Dependency: authenticate by API key or operator JWT.

    Raises:
        ApiError: 401 when no valid credential is presented
    """
    if x_ops_api_key:
        principal = verify_api_key(x_ops_api_key, settings)
        if principal is None:
            logger.warning("auth_failed", reason="invalid_api_key", key_id=key_fingerprint(x_ops_api_key))
            raise ApiError(401, ErrorCode.AUTH_FAILED, "Invalid API key")
        return principal

    if authorization:
        return validate_jwt(authorization, settings)

    raise ApiError(
        401,
        ErrorCode.AUTH_FAILED,
        f"Missing credentials. Send {API_KEY_HEADER} or Authorization: Bearer <token>",
    )


def require_scope(scope: str):
    """
    Dependency factory: authenticate and require ``scope``.

    Example Usage:
        @router.get("/ops/logs")
        async def list_logs(principal: Principal = Depends(require_scope("ops.logs.read"))):
            ...
    """

    async def scope_checker(principal: Principal = Depends(get_principal)) -> Principal:
        if not has_scope(scope, principal.scopes):
            logger.warning("auth_forbidden", principal=principal.principal_id, required_scope=scope)
            raise ApiError(
                403,
                ErrorCode.FORBIDDEN,
                f"Insufficient permissions. Required scope: {scope}",
                requiredScope=scope,
            )
        return principal

    return scope_checker
