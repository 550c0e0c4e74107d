"""
Ops Control Plane Applications Package.

Contains:
- ops_api: FastAPI application (tool execution, approvals, event log)
"""

__version__ = "0.1.0"
