"""Tool Registry & Catalog Tests."""

import pytest

from ops_tools.base import ToolDescriptor
from ops_tools.exceptions import ToolNotFoundError, ToolRegistrationError
from ops_tools.registry import ToolRegistry


class EchoTool:
    descriptor = ToolDescriptor(
        name="test.echo",
        description="Echo arguments back",
        category="system",
        input_schema={
            "type": "object",
            "required": ["message"],
            "properties": {"message": {"type": "string", "minLength": 1}},
        },
    )

    async def execute(self, ctx, args):
        return {"ok": True, "echo": args["message"], "requestId": ctx.get("request_id")}


class LegacyEchoTool:
    descriptor = ToolDescriptor(
        name="test.legacyEcho",
        category="system",
        deprecated=True,
        replaced_by="test.echo",
        input_schema={"type": "object", "properties": {}},
    )

    async def execute(self, ctx, args):
        return {"ok": True}


# ============================================================================
# REGISTRATION
# ============================================================================


def test_register_and_get():
    registry = ToolRegistry()
    tool = EchoTool()
    registry.register(tool)

    assert registry.get("test.echo") is tool
    assert "test.echo" in registry
    assert len(registry) == 1
    assert registry.descriptor("test.echo").category == "system"


def test_duplicate_registration_rejected():
    registry = ToolRegistry()
    registry.register(EchoTool())

    with pytest.raises(ToolRegistrationError, match="already registered"):
        registry.register(EchoTool())


def test_frozen_registry_rejects_registration():
    registry = ToolRegistry()
    registry.register(EchoTool())
    registry.freeze()

    assert registry.frozen
    with pytest.raises(ToolRegistrationError, match="frozen"):
        registry.register(LegacyEchoTool())


def test_tool_without_descriptor_rejected():
    class Bare:
        async def execute(self, ctx, args):
            return {"ok": True}

    with pytest.raises(ToolRegistrationError):
        ToolRegistry().register(Bare())


def test_tool_without_callable_execute_rejected():
    class NoExecute:
        descriptor = EchoTool.descriptor.model_copy(update={"name": "test.noExecute"})
        execute = None

    with pytest.raises(ToolRegistrationError, match="execute"):
        ToolRegistry().register(NoExecute())


def test_descriptor_rejects_bad_name_and_schema():
    with pytest.raises(ValueError):
        ToolDescriptor(name="Bad Name", category="system", input_schema={"type": "object"})
    with pytest.raises(ValueError):
        ToolDescriptor(name="test.ok", category="system", input_schema={"type": "string"})


def test_descriptor_serializes_camel_case():
    public = EchoTool.descriptor.to_public()

    assert public["inputSchema"]["required"] == ["message"]
    assert public["dryRunSupported"] is False
    assert public["allowedCallers"] == ["n8n", "human", "api"]


# ============================================================================
# LOOKUPS & EXECUTION
# ============================================================================


def test_deprecated_filtering():
    registry = ToolRegistry()
    registry.register(EchoTool())
    registry.register(LegacyEchoTool())

    assert registry.names() == ["test.echo", "test.legacyEcho"]
    assert registry.names(include_deprecated=False) == ["test.echo"]
    assert [d.name for d in registry.deprecated_tools()] == ["test.legacyEcho"]
    assert [d.name for d in registry.by_category("system", include_deprecated=False)] == ["test.echo"]


def test_validate_args():
    registry = ToolRegistry()
    registry.register(EchoTool())

    assert registry.validate_args("test.echo", {"message": "hi"}).valid
    assert registry.validate_args("test.echo", {}).errors == ["Missing required field: message"]


def test_validate_args_unknown_tool_returns_error_result():
    result = ToolRegistry().validate_args("test.missing", {})

    assert not result.valid
    assert "not found" in result.errors[0]


@pytest.mark.asyncio
async def test_execute_passes_context():
    registry = ToolRegistry()
    registry.register(EchoTool())

    result = await registry.execute("test.echo", {"message": "hi"}, {"request_id": "req_1"})

    assert result == {"ok": True, "echo": "hi", "requestId": "req_1"}


@pytest.mark.asyncio
async def test_execute_unknown_tool_raises():
    with pytest.raises(ToolNotFoundError):
        await ToolRegistry().execute("test.missing", {}, {})


# ============================================================================
# CATALOG
# ============================================================================


def test_catalog_registers_all_tools(plane):
    registry = plane.registry

    assert registry.frozen
    assert len(registry) == 13
    assert sorted(registry.names(include_deprecated=False)) == [
        "billing.syncPrices",
        "billing_verification",
        "call_logs",
        "ops.replayExecution",
        "tenant.bootstrap",
        "tenant.delete",
        "tenant.recovery",
        "tenant.status",
        "voice.diagnostics",
    ]


def test_catalog_deprecated_tools_point_to_bootstrap(plane):
    deprecated = plane.registry.deprecated_tools()

    assert sorted(d.name for d in deprecated) == [
        "billing.validateStripeConfig",
        "tenant.ensure",
        "tenant.provisioningSummary",
        "voice.smokeTest",
    ]
    assert all(d.replaced_by == "tenant.bootstrap" for d in deprecated)


def test_catalog_approval_gated_tools(plane):
    gated = sorted(d.name for d in plane.registry.list_tools() if d.requires_approval)

    assert gated == ["billing.syncPrices", "tenant.delete"]
