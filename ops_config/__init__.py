"""
Ops Control Plane Configuration Package.

Provides Pydantic Settings loaded from environment variables.
"""

from ops_config.settings import Settings

__all__ = ["Settings"]
