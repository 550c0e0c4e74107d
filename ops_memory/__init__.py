"""
Ops Control Plane Persistence Package.

Provides:
- Document store abstraction (in-memory and Postgres backends)
- Approval request persistence and status state machine
- Event log persistence and aggregation
- Execution response cache and in-flight locks
"""

from ops_memory.approvals import ApprovalRequest, ApprovalRequestStore, ApprovalStatus
from ops_memory.event_log import EventLogEntry, EventLogStore, EventStatus
from ops_memory.exceptions import DuplicateKeyError, InvalidTransitionError, StoreError
from ops_memory.executions import ExecutionCache
from ops_memory.stores import DocumentStore, MemoryDocumentStore, Range, create_document_store

__all__ = [
    "ApprovalRequest",
    "ApprovalRequestStore",
    "ApprovalStatus",
    "DocumentStore",
    "DuplicateKeyError",
    "EventLogEntry",
    "EventLogStore",
    "EventStatus",
    "ExecutionCache",
    "InvalidTransitionError",
    "MemoryDocumentStore",
    "Range",
    "StoreError",
    "create_document_store",
]
