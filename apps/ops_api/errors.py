"""HTTP error type rendered as ``{"ok": false, "error": {...}}``."""

from typing import Any

from ops_tools.exceptions import ErrorCode


class ApiError(Exception):
    """Raised by dependencies and routers; rendered by the app exception handler."""

    def __init__(
        self,
        status_code: int,
        code: ErrorCode,
        message: str,
        headers: dict[str, str] | None = None,
        **details: Any,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.message = message
        self.headers = headers
        self.details = details

    def to_body(self) -> dict[str, Any]:
        return {"ok": False, "error": {"code": self.code.value, "message": self.message, **self.details}}
