"""
Structured Logging (structlog).

Every control plane event carries the service and environment, plus the
execution context bound around a tool call (request_id, tool, actor and,
for approved work, approval_request_id). Sensitive fields are masked
before rendering, so secrets passed as log kwargs never reach stdout.
"""

import logging
import sys
from contextlib import contextmanager
from typing import Any, Iterator

import structlog

from ops_config.settings import Settings
from ops_obs.redaction import is_sensitive_key, redact_sensitive, redact_value

# structlog's own keys, never masked
RESERVED_KEYS = frozenset({"event", "level", "logger", "timestamp", "exc_info", "exception", "stack"})


def add_service_context(service: str, environment: str):
    """Processor stamping every event with the service name and environment."""

    def processor(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
        event_dict.setdefault("service", service)
        event_dict.setdefault("environment", environment)
        return event_dict

    return processor


def redact_event(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """Mask sensitive keys in an event, recursing into dict and list values."""
    for key, value in list(event_dict.items()):
        if key in RESERVED_KEYS:
            continue
        if is_sensitive_key(key):
            event_dict[key] = redact_value(value)
        elif isinstance(value, (dict, list, tuple)):
            event_dict[key] = redact_sensitive(value)
    return event_dict


def build_processors(settings: Settings) -> list[Any]:
    """Processor chain shared by JSON and console output."""
    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        add_service_context(settings.OTEL_SERVICE_NAME, settings.ENVIRONMENT),
        redact_event,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]
    if settings.LOG_FORMAT == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())
    return processors


def setup_logging(settings: Settings) -> None:
    """
    Configure structlog over stdlib logging.

    Output format: JSON (default) or text (dev), at LOG_LEVEL.
    """
    logging.basicConfig(
        format="%(message)s", stream=sys.stdout, level=settings.LOG_LEVEL.upper()
    )

    structlog.configure(
        processors=build_processors(settings),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


@contextmanager
def bind_execution_context(request_id: str, tool: str, actor: str, **extra: Any) -> Iterator[None]:
    """
    Bind the execution identity to every log line emitted inside the block.

    Example:
        with bind_execution_context("req_1", "tenant.bootstrap", "n8n"):
            logger.info("step_done")  # carries request_id, tool, actor
    """
    context = {"request_id": request_id, "tool": tool, "actor": actor}
    context.update({k: v for k, v in extra.items() if v is not None})
    with structlog.contextvars.bound_contextvars(**context):
        yield


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get configured logger."""
    return structlog.get_logger(name)
