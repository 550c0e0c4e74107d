"""
Distributed Tracing Setup (OpenTelemetry).

Auto-instruments: fastapi, httpx, sqlalchemy, redis ONLY. Tool calls get
their own ``ops.tool.<name>`` span via ``tool_span``.
"""

from contextlib import contextmanager
from typing import Any, Iterator

from fastapi import FastAPI
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
from opentelemetry.instrumentation.redis import RedisInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

from ops_config.settings import Settings
from ops_obs.logging import get_logger

logger = get_logger(__name__)

SERVICE_VERSION = "0.1.0"

# Health and metrics scrapes would drown the tool spans
EXCLUDED_URLS = "health,metrics"


def build_resource(settings: Settings) -> Resource:
    return Resource.create(
        {
            "service.name": settings.OTEL_SERVICE_NAME,
            "service.version": SERVICE_VERSION,
            "service.namespace": "ops",
            "deployment.environment": settings.ENVIRONMENT,
            "ops.store_backend": settings.STORE_BACKEND,
        }
    )


def setup_tracing(settings: Settings, app: FastAPI | None = None) -> None:
    """
    Setup OpenTelemetry distributed tracing.

    Instruments: fastapi (minus health/metrics), httpx (probes, Stripe),
    sqlalchemy (Postgres store), redis (rate limiter)
    Exports: OTLP (Jaeger/Tempo/Collector)
    """
    if not settings.OTEL_TRACES_ENABLED:
        return

    provider = TracerProvider(resource=build_resource(settings))
    otlp_exporter = OTLPSpanExporter(endpoint=settings.OTEL_EXPORTER_OTLP_ENDPOINT)
    provider.add_span_processor(BatchSpanProcessor(otlp_exporter))
    trace.set_tracer_provider(provider)

    HTTPXClientInstrumentor().instrument()
    RedisInstrumentor().instrument()
    SQLAlchemyInstrumentor().instrument()
    if app is not None:
        FastAPIInstrumentor.instrument_app(app, excluded_urls=EXCLUDED_URLS)

    logger.info(
        "tracing_enabled",
        service=settings.OTEL_SERVICE_NAME,
        endpoint=settings.OTEL_EXPORTER_OTLP_ENDPOINT,
    )


def get_tracer(name: str) -> trace.Tracer:
    """Get a tracer (no-op until setup_tracing installs a provider)."""
    return trace.get_tracer(name)


@contextmanager
def tool_span(
    tracer: trace.Tracer, tool: str, request_id: str, ctx: dict[str, Any]
) -> Iterator[trace.Span]:
    """Span around one tool call, tagged with the execution context."""
    with tracer.start_as_current_span(f"ops.tool.{tool}") as span:
        span.set_attribute("ops.tool", tool)
        span.set_attribute("ops.request_id", request_id)
        span.set_attribute("ops.actor", ctx.get("actor") or "api")
        span.set_attribute("ops.mode", ctx.get("mode") or "execute")
        span.set_attribute("ops.dry_run", bool(ctx.get("dry_run")))
        if ctx.get("approval_request_id"):
            span.set_attribute("ops.approval_request_id", ctx["approval_request_id"])
        if ctx.get("is_replay"):
            span.set_attribute("ops.original_request_id", ctx.get("original_request_id") or "")
        yield span
