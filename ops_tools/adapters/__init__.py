"""Outbound HTTP adapters used by ops tools."""
