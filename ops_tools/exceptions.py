"""Tool system error codes and exceptions.

Expected failures are returned as ``{"ok": False, "error": {...}}`` values;
exceptions are reserved for configuration faults and programming errors.
"""

from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Error codes surfaced to callers."""

    VALIDATION_ERROR = "VALIDATION_ERROR"
    TOOL_NOT_FOUND = "TOOL_NOT_FOUND"
    TOOL_NOT_ALLOWED = "TOOL_NOT_ALLOWED"
    EXECUTION_NOT_FOUND = "EXECUTION_NOT_FOUND"
    BUSINESS_NOT_FOUND = "BUSINESS_NOT_FOUND"
    NOT_FOUND = "NOT_FOUND"
    PAYLOAD_MISMATCH = "PAYLOAD_MISMATCH"
    APPROVAL_REQUIRED = "APPROVAL_REQUIRED"
    REQUEST_EXPIRED = "REQUEST_EXPIRED"
    REQUEST_IN_PROGRESS = "REQUEST_IN_PROGRESS"
    INVALID_TRANSITION = "INVALID_TRANSITION"
    INTERNAL_ERROR = "INTERNAL_ERROR"
    BOOTSTRAP_ERROR = "BOOTSTRAP_ERROR"
    RECOVERY_ERROR = "RECOVERY_ERROR"
    REPLAY_EXECUTION_ERROR = "REPLAY_EXECUTION_ERROR"
    STRIPE_NOT_CONFIGURED = "STRIPE_NOT_CONFIGURED"
    STRIPE_ERROR = "STRIPE_ERROR"
    CONFIRMATION_MISMATCH = "CONFIRMATION_MISMATCH"
    AUTH_FAILED = "AUTH_FAILED"
    FORBIDDEN = "FORBIDDEN"
    RATE_LIMITED = "RATE_LIMITED"


def error_result(code: ErrorCode | str, message: str, **extra: Any) -> dict[str, Any]:
    """Build a structured failure: {"ok": False, "error": {code, message, ...}}."""
    return {
        "ok": False,
        "error": {"code": getattr(code, "value", code), "message": message, **extra},
    }


class OpsError(Exception):
    """Base exception for the tool system."""

    code: ErrorCode = ErrorCode.INTERNAL_ERROR


class ToolRegistrationError(OpsError):
    """Malformed or duplicate tool registration (raised at startup)."""

    pass


class ToolNotFoundError(OpsError):
    """Tool name is not registered."""

    code = ErrorCode.TOOL_NOT_FOUND

    def __init__(self, name: str):
        super().__init__(f"Tool '{name}' not found")
        self.name = name
