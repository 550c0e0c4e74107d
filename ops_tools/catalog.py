"""Tool Catalog.

Builds the frozen ToolRegistry and the services wired around it. Called
once from the API lifespan (and from tests with fakes injected).
"""

from dataclasses import dataclass

import httpx

from ops_config.settings import Settings
from ops_memory.approvals import ApprovalRequestStore
from ops_memory.event_log import EventLogStore
from ops_memory.executions import ExecutionCache
from ops_memory.stores import DocumentStore
from ops_obs.logging import get_logger
from ops_tools.adapters.probe import ProbeClient
from ops_tools.approvals import ApprovalWorkflow
from ops_tools.executor import ToolExecutor
from ops_tools.registry import ToolRegistry
from ops_tools.tools import (
    BillingVerificationTool,
    CallLogsTool,
    ProvisioningSummaryTool,
    ReplayExecutionTool,
    SyncPricesTool,
    TenantBootstrapTool,
    TenantDeleteTool,
    TenantEnsureTool,
    TenantRecoveryTool,
    TenantStatusTool,
    ValidateStripeConfigTool,
    VoiceDiagnosticsTool,
    VoiceSmokeTestTool,
)

logger = get_logger(__name__)


@dataclass
class ControlPlane:
    """Everything a request handler needs."""

    registry: ToolRegistry
    executor: ToolExecutor
    workflow: ApprovalWorkflow
    approvals: ApprovalRequestStore
    event_log: EventLogStore
    cache: ExecutionCache
    probe: ProbeClient

    async def close(self) -> None:
        await self.probe.close()


def build_control_plane(
    settings: Settings,
    store: DocumentStore,
    probe: ProbeClient | None = None,
    stripe_transport: httpx.AsyncBaseTransport | None = None,
) -> ControlPlane:
    """
    Register every tool and freeze the registry.

    Args:
        settings: Application settings
        store: Document store shared by all tools
        probe: Health probe client (created from settings when omitted)
        stripe_transport: Optional httpx transport for Stripe calls

    Returns:
        ControlPlane

    Raises:
        ToolRegistrationError: Duplicate or malformed tool
    """
    probe = probe or ProbeClient(timeout=settings.VOICE_CHECK_TIMEOUT_MS / 1000)

    approvals = ApprovalRequestStore(store, expiry_hours=settings.APPROVAL_EXPIRY_HOURS)
    event_log = EventLogStore(store, retention_days=settings.EVENT_LOG_RETENTION_DAYS)
    cache = ExecutionCache(store)

    # Leaf tools
    ensure = TenantEnsureTool()
    status = TenantStatusTool()
    provisioning = ProvisioningSummaryTool()
    smoke_test = VoiceSmokeTestTool(probe, settings.BASE_URL, timeout_ms=settings.VOICE_CHECK_TIMEOUT_MS)
    diagnostics = VoiceDiagnosticsTool(
        probe,
        api_keys={
            "OPENAI_API_KEY": settings.OPENAI_API_KEY,
            "ELEVENLABS_API_KEY": settings.ELEVENLABS_API_KEY,
        },
    )
    stripe_config = ValidateStripeConfigTool(settings, transport=stripe_transport)
    sync_prices = SyncPricesTool(settings, transport=stripe_transport)

    registry = ToolRegistry()
    for tool in (
        TenantBootstrapTool(ensure, smoke_test, stripe_config, provisioning),
        TenantRecoveryTool(status, diagnostics, stripe_config, sync_prices),
        status,
        TenantDeleteTool(),
        diagnostics,
        sync_prices,
        ensure,
        stripe_config,
        smoke_test,
        provisioning,
        CallLogsTool(),
        BillingVerificationTool(),
    ):
        registry.register(tool)

    executor = ToolExecutor(registry, store, approvals, event_log, cache)
    registry.register(ReplayExecutionTool(event_log, executor))
    registry.freeze()

    logger.info(
        "tool_registry_ready",
        tools=len(registry),
        canonical=len(registry.canonical_tools()),
        deprecated=len(registry.deprecated_tools()),
    )

    return ControlPlane(
        registry=registry,
        executor=executor,
        workflow=ApprovalWorkflow(approvals, executor),
        approvals=approvals,
        event_log=event_log,
        cache=cache,
        probe=probe,
    )
