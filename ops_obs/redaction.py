"""Sensitive Data Redaction.

Applied to every argument/result payload before it reaches the audit log.
"""

import hashlib
from typing import Any

SENSITIVE_KEYS = (
    "apikey",
    "api_key",
    "secret",
    "token",
    "password",
    "authorization",
    "auth",
    "credential",
    "private",
    "stripe_secret",
    "webhook_secret",
    "refresh_token",
    "access_token",
)

MAX_DEPTH = 10


def is_sensitive_key(key: str) -> bool:
    """Case-insensitive substring match against SENSITIVE_KEYS."""
    lowered = key.lower()
    return any(marker in lowered for marker in SENSITIVE_KEYS)


def redact_value(value: Any) -> Any:
    """Mask a single sensitive value, keeping only its length."""
    if isinstance(value, str):
        if not value or value.startswith("[REDACTED"):
            return value
        return f"[REDACTED:{len(value)}chars]"
    if value is None:
        return None
    return "[REDACTED]"


def redact_sensitive(data: Any, depth: int = 0) -> Any:
    """
    Recursively redact sensitive keys from a payload.

    Args:
        data: Arbitrary JSON-like structure
        depth: Current recursion depth

    Returns:
        Copy of ``data`` with sensitive values masked

    Example:
        redact_sensitive({"stripeSecretKey": "sk_live_abc"})
        # {"stripeSecretKey": "[REDACTED:11chars]"}
    """
    if depth > MAX_DEPTH:
        return "[MAX_DEPTH]"

    if isinstance(data, dict):
        redacted = {}
        for key, value in data.items():
            if isinstance(key, str) and is_sensitive_key(key):
                redacted[key] = redact_value(value)
            else:
                redacted[key] = redact_sensitive(value, depth + 1)
        return redacted

    if isinstance(data, (list, tuple)):
        return [redact_sensitive(item, depth + 1) for item in data]

    return data


def key_fingerprint(secret: str | None) -> str:
    """Short, non-reversible identifier for an API key (safe to log)."""
    if not secret:
        return "unknown"
    digest = hashlib.sha256(secret.encode("utf-8")).hexdigest()
    return f"key_{digest[:8]}"
