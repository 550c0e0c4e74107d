"""Tool Registry.

Built once at startup by ``ops_tools.catalog.build_control_plane`` and frozen;
request handlers receive it through ``app.state``.
"""

from typing import Any

from ops_obs.logging import get_logger
from ops_tools.base import Tool, ToolDescriptor
from ops_tools.exceptions import ToolNotFoundError, ToolRegistrationError
from ops_tools.validator import ValidationResult, validate

logger = get_logger(__name__)


class ToolRegistry:
    """Tool registry with category and deprecation lookups."""

    def __init__(self):
        self._tools: dict[str, Tool] = {}
        self._frozen = False

    def register(self, tool: Tool) -> None:
        """
        Register a tool.

        Raises:
            ToolRegistrationError: Duplicate name, registry frozen, malformed
                descriptor, or non-callable execute
        """
        if self._frozen:
            raise ToolRegistrationError("Tool registry is frozen")

        descriptor = getattr(tool, "descriptor", None)
        if not isinstance(descriptor, ToolDescriptor):
            raise ToolRegistrationError(f"Tool {tool!r} must carry a ToolDescriptor")

        name = descriptor.name
        if name in self._tools:
            raise ToolRegistrationError(f"Tool '{name}' is already registered")

        if not callable(getattr(tool, "execute", None)):
            raise ToolRegistrationError(f"Tool '{name}' must have an execute function")

        self._tools[name] = tool
        logger.debug("tool_registered", tool=name, category=descriptor.category, risk=descriptor.risk)

    def freeze(self) -> "ToolRegistry":
        """Reject further registrations."""
        self._frozen = True
        return self

    @property
    def frozen(self) -> bool:
        return self._frozen

    def get(self, name: str) -> Tool | None:
        """Get tool by name."""
        return self._tools.get(name)

    def descriptor(self, name: str) -> ToolDescriptor | None:
        tool = self._tools.get(name)
        return tool.descriptor if tool else None

    def __contains__(self, name: str) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    def validate_args(self, name: str, args: dict[str, Any]) -> ValidationResult:
        """Validate arguments; unknown tools yield an error result, not an exception."""
        tool = self._tools.get(name)
        if tool is None:
            return ValidationResult(valid=False, errors=[f"Tool '{name}' not found in registry"])
        return validate(args, tool.descriptor.input_schema)

    async def execute(self, name: str, args: dict[str, Any], ctx: dict[str, Any]) -> dict[str, Any]:
        """
        Invoke a tool with already validated arguments.

        Raises:
            ToolNotFoundError: Unknown tool name
        """
        tool = self._tools.get(name)
        if tool is None:
            raise ToolNotFoundError(name)
        return await tool.execute(ctx, args)

    def names(self, include_deprecated: bool = True) -> list[str]:
        return [d.name for d in self.list_tools(include_deprecated)]

    def list_tools(self, include_deprecated: bool = True) -> list[ToolDescriptor]:
        descriptors = [t.descriptor for t in self._tools.values()]
        if include_deprecated:
            return descriptors
        return [d for d in descriptors if not d.deprecated]

    def canonical_tools(self) -> list[ToolDescriptor]:
        return self.list_tools(include_deprecated=False)

    def deprecated_tools(self) -> list[ToolDescriptor]:
        return [d for d in self.list_tools() if d.deprecated]

    def by_category(self, category: str, include_deprecated: bool = True) -> list[ToolDescriptor]:
        return [d for d in self.list_tools(include_deprecated) if d.category == category]
