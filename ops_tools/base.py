"""Tool Interface & Descriptors.

Every tool carries an immutable ToolDescriptor and an async execute().
Descriptors are validated when constructed, so a malformed catalog entry
fails at startup rather than at request time.
"""

from typing import Any, Literal, Protocol

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from ops_tools.validator import is_schema

Category = Literal["tenant", "billing", "voice", "ops", "system"]
RiskLevel = Literal["low", "medium", "high"]

CATEGORIES: dict[str, dict[str, str]] = {
    "tenant": {
        "name": "Tenant Management",
        "description": "Tools for creating, configuring, and managing tenants",
    },
    "billing": {
        "name": "Billing & Payments",
        "description": "Tools for Stripe integration and payment validation",
    },
    "voice": {
        "name": "Voice & AI Calling",
        "description": "Tools for voice agent testing and configuration",
    },
    "ops": {
        "name": "Operations",
        "description": "Tools for system operations, replay, and diagnostics",
    },
    "system": {
        "name": "System Operations",
        "description": "Tools for system-level operations and diagnostics",
    },
}

RISK_LEVELS: dict[str, dict[str, Any]] = {
    "low": {
        "name": "Low Risk",
        "description": "Read-only or minimal impact operations",
        "requiresConfirmation": False,
    },
    "medium": {
        "name": "Medium Risk",
        "description": "Creates or modifies data, reversible",
        "requiresConfirmation": False,
    },
    "high": {
        "name": "High Risk",
        "description": "Significant changes, may be difficult to reverse",
        "requiresConfirmation": True,
    },
}


class ToolExample(BaseModel):
    name: str
    input: dict[str, Any]
    description: str = ""


class ToolDescriptor(BaseModel):
    """Static tool metadata (camelCase when serialized)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    name: str = Field(..., pattern=r"^[a-z][A-Za-z0-9_]*(\.[a-z][A-Za-z0-9_]*)*$")
    description: str = ""
    category: Category
    mutates: bool = False
    risk: RiskLevel = "low"
    dry_run_supported: bool = False
    allowed_callers: tuple[str, ...] = ("n8n", "human", "api")
    requires_approval: bool = False
    required_role: str = "ops"
    deprecated: bool = False
    deprecated_reason: str | None = None
    replaced_by: str | None = None
    canonical_for: str | None = None
    replaces: tuple[str, ...] = ()
    input_schema: dict[str, Any]
    output_schema: dict[str, Any] | None = None
    examples: tuple[ToolExample, ...] = ()
    documentation: str | None = None

    @field_validator("input_schema")
    @classmethod
    def check_input_schema(cls, value: dict[str, Any]) -> dict[str, Any]:
        if not is_schema(value):
            raise ValueError("input_schema is not a valid validator schema")
        return value

    @field_validator("output_schema")
    @classmethod
    def check_output_schema(cls, value: dict[str, Any] | None) -> dict[str, Any] | None:
        if value is not None and not is_schema(value):
            raise ValueError("output_schema is not a valid validator schema")
        return value

    def to_public(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class Tool(Protocol):
    """Tool interface.

    ``ctx`` keys: db, request_id, actor, dry_run, mode and, when relevant,
    is_replay, original_request_id, approval_request_id, approved_by.
    """

    descriptor: ToolDescriptor

    async def execute(self, ctx: dict[str, Any], args: dict[str, Any]) -> dict[str, Any]:
        """Execute tool action; returns at least {"ok": bool}."""
        ...


def is_dry_run(ctx: dict[str, Any]) -> bool:
    return bool(ctx.get("dry_run")) or ctx.get("mode") == "plan"
