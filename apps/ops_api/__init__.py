"""Ops Control Plane HTTP API (FastAPI)."""
