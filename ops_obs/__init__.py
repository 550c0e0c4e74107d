"""
Ops Control Plane Observability Package.

Provides:
- Distributed tracing (OpenTelemetry)
- Metrics (Prometheus)
- Structured logging (structlog) with sensitive-data redaction
"""

__all__ = ["tracing", "metrics", "logging", "redaction"]
