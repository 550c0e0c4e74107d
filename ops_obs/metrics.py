"""
Prometheus Metrics Registration.

Custom metrics for the ops control plane.
"""

from prometheus_client import Counter, Histogram

# ============================================================================
# COUNTERS
# ============================================================================

tool_executions_total = Counter(
    "ops_tool_executions_total",
    "Total tool executions",
    ["tool", "status"],  # success, failed, partial, approval_required
)

validation_failures_total = Counter(
    "ops_validation_failures_total", "Tool argument validation failures", ["tool"]
)

approval_requests_total = Counter(
    "ops_approval_requests_total", "Approval requests created", ["tool"]
)

approval_transitions_total = Counter(
    "ops_approval_transitions_total",
    "Approval request status transitions",
    ["from_status", "to_status"],
)

idempotent_replays_total = Counter(
    "ops_idempotent_replays_total",
    "Requests answered from the event log (duplicate requestId)",
    ["tool"],
)

replay_executions_total = Counter(
    "ops_replay_executions_total", "ops.replayExecution invocations", ["mode"]
)

# ============================================================================
# HISTOGRAMS
# ============================================================================

tool_execution_duration = Histogram(
    "ops_tool_execution_duration_seconds",
    "Tool execution duration",
    ["tool"],
    buckets=(0.05, 0.1, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0),
)

rate_limited_total = Counter(
    "ops_rate_limited_total", "Requests rejected by the rate limiter", ["key_kind"]
)
