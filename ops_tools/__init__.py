"""Ops Control Plane Tool System.

Schema validator, tool descriptors, registry, executor boundary and
approval workflow.
"""

from ops_tools.base import Tool, ToolDescriptor
from ops_tools.registry import ToolRegistry

__all__ = ["Tool", "ToolDescriptor", "ToolRegistry"]
