"""Ops tool implementations."""

from ops_tools.tools.billing_sync_prices import SyncPricesTool
from ops_tools.tools.billing_validate_stripe_config import ValidateStripeConfigTool
from ops_tools.tools.billing_verification import BillingVerificationTool
from ops_tools.tools.call_logs import CallLogsTool
from ops_tools.tools.ops_replay_execution import ReplayExecutionTool
from ops_tools.tools.tenant_bootstrap import TenantBootstrapTool
from ops_tools.tools.tenant_delete import TenantDeleteTool
from ops_tools.tools.tenant_ensure import TenantEnsureTool
from ops_tools.tools.tenant_provisioning_summary import ProvisioningSummaryTool
from ops_tools.tools.tenant_recovery import TenantRecoveryTool
from ops_tools.tools.tenant_status import TenantStatusTool
from ops_tools.tools.voice_diagnostics import VoiceDiagnosticsTool
from ops_tools.tools.voice_smoke_test import VoiceSmokeTestTool

__all__ = [
    "BillingVerificationTool",
    "CallLogsTool",
    "ProvisioningSummaryTool",
    "ReplayExecutionTool",
    "SyncPricesTool",
    "TenantBootstrapTool",
    "TenantDeleteTool",
    "TenantEnsureTool",
    "TenantRecoveryTool",
    "TenantStatusTool",
    "ValidateStripeConfigTool",
    "VoiceDiagnosticsTool",
    "VoiceSmokeTestTool",
]
