"""HTTP health probe adapter."""

from .client import ProbeClient, ProbeResult

__all__ = ["ProbeClient", "ProbeResult"]
