"""Approval Request Persistence.

Collection: ops_approval_requests

Approval requests gate execution of high-risk tools. Status changes are
governed by VALID_TRANSITIONS, the only place transition rules live:

    pending  -> approved | rejected | expired
    approved -> executed | expired
    rejected, executed, expired -> (terminal)

Indexes (Postgres expression indexes, see alembic/versions):
- unique (collection, key=requestId)
- status + createdAt
- tool + status
- requestedBy + createdAt
- expires_at (TTL sweep)
"""

import hashlib
import json
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from ops_memory.exceptions import InvalidTransitionError
from ops_memory.stores import DocumentStore
from ops_memory.timestamps import Timestamp, utcnow
from ops_obs.logging import get_logger
from ops_obs.metrics import approval_transitions_total

logger = get_logger(__name__)

COLLECTION_NAME = "ops_approval_requests"
DEFAULT_EXPIRY_HOURS = 24
DEFAULT_LIMIT = 50
MAX_LIMIT = 100


class ApprovalStatus(str, Enum):
    """Approval request lifecycle states."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    EXECUTED = "executed"
    EXPIRED = "expired"


VALID_TRANSITIONS: dict[ApprovalStatus, tuple[ApprovalStatus, ...]] = {
    ApprovalStatus.PENDING: (
        ApprovalStatus.APPROVED,
        ApprovalStatus.REJECTED,
        ApprovalStatus.EXPIRED,
    ),
    ApprovalStatus.APPROVED: (ApprovalStatus.EXECUTED, ApprovalStatus.EXPIRED),
    ApprovalStatus.REJECTED: (),
    ApprovalStatus.EXECUTED: (),
    ApprovalStatus.EXPIRED: (),
}


@dataclass(frozen=True)
class TransitionResult:
    """Outcome of validate_status_transition."""

    valid: bool
    error: str | None = None


def validate_status_transition(current: str, target: str) -> TransitionResult:
    """
    Check a status change against VALID_TRANSITIONS.

    Args:
        current: Stored status
        target: Requested status

    Returns:
        TransitionResult with an error naming the allowed set when invalid
    """
    current = getattr(current, "value", current)
    target = getattr(target, "value", target)
    try:
        current_status = ApprovalStatus(current)
    except ValueError:
        return TransitionResult(False, f"Unknown status '{current}'")

    allowed = VALID_TRANSITIONS[current_status]
    if target in {s.value for s in allowed}:
        return TransitionResult(True)

    allowed_text = ", ".join(s.value for s in allowed) or "none"
    return TransitionResult(
        False,
        f"Cannot transition from '{current}' to '{target}'. Allowed transitions: {allowed_text}",
    )


def hash_payload(payload: Any) -> str:
    """
    Deterministic SHA-256 digest of a payload.

    Keys are sorted at every nesting level before serialization, so the
    hash is invariant under key reordering.
    """
    canonical = json.dumps(
        payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def generate_request_id() -> str:
    return str(uuid.uuid4())


class ApprovalRequest(BaseModel):
    """Persisted approval request (camelCase on the wire and in storage)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    request_id: str
    tool: str
    payload_hash: str
    payload: dict[str, Any]
    plan: dict[str, Any] | None = None
    requested_by: str
    status: ApprovalStatus = ApprovalStatus.PENDING
    approved_by: str | None = None
    approved_at: Timestamp | None = None
    rejected_by: str | None = None
    rejected_at: Timestamp | None = None
    rejection_reason: str | None = None
    executed_by: str | None = None
    executed_at: Timestamp | None = None
    result: dict[str, Any] | None = None
    error: dict[str, Any] | None = None
    meta: dict[str, Any] = Field(default_factory=dict)
    created_at: Timestamp
    expires_at: Timestamp

    def is_expired(self, now: datetime | None = None) -> bool:
        """Time-based expiry check; independent of the stored status."""
        return (now or utcnow()) > self.expires_at

    def to_document(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class ApprovalRequestStore:
    """Approval request repository over a DocumentStore."""

    def __init__(self, store: DocumentStore, expiry_hours: int = DEFAULT_EXPIRY_HOURS):
        self.store = store
        self.expiry_hours = expiry_hours

    async def create(
        self,
        tool: str,
        payload: dict[str, Any],
        requested_by: str,
        plan: dict[str, Any] | None = None,
        meta: dict[str, Any] | None = None,
        request_id: str | None = None,
        expires_at: datetime | None = None,
    ) -> ApprovalRequest:
        """
        Create and persist a pending approval request.

        Args:
            tool: Tool awaiting approval
            payload: Exact arguments that will be executed
            requested_by: Actor asking for the execution
            plan: Plan-mode preview shown to the approver
            meta: Free-form metadata
            request_id: Caller-chosen id (generated when omitted)
            expires_at: Override the default expiry

        Returns:
            The stored ApprovalRequest

        Raises:
            DuplicateKeyError: request_id already in use
        """
        now = utcnow()
        request = ApprovalRequest(
            request_id=request_id or generate_request_id(),
            tool=tool,
            payload_hash=hash_payload(payload),
            payload=payload,
            plan=plan,
            requested_by=requested_by,
            meta=meta or {},
            created_at=now,
            expires_at=expires_at or now + timedelta(hours=self.expiry_hours),
        )

        await self.store.insert_one(
            COLLECTION_NAME, request.request_id, request.to_document(), expires_at=request.expires_at
        )

        logger.info(
            "approval_request_created",
            request_id=request.request_id,
            tool=tool,
            requested_by=requested_by,
            expires_at=request.expires_at.isoformat(),
        )
        return request

    async def get(self, request_id: str) -> ApprovalRequest | None:
        document = await self.store.get(COLLECTION_NAME, request_id)
        return ApprovalRequest.model_validate(document) if document else None

    async def list_requests(
        self,
        status: str | None = None,
        tool: str | None = None,
        requested_by: str | None = None,
        limit: int | None = None,
        skip: int = 0,
    ) -> list[ApprovalRequest]:
        """
        List approval requests, newest first.

        Args:
            status: Filter by status
            tool: Filter by tool name
            requested_by: Filter by requesting actor
            limit: Page size (default 50, capped at 100)
            skip: Pagination offset

        Returns:
            List of ApprovalRequest
        """
        filters: dict[str, Any] = {}
        if status:
            filters["status"] = status
        if tool:
            filters["tool"] = tool
        if requested_by:
            filters["requestedBy"] = requested_by

        documents = await self.store.find(
            COLLECTION_NAME,
            filters,
            sort="createdAt",
            descending=True,
            skip=max(skip, 0),
            limit=clamp_limit(limit),
        )
        return [ApprovalRequest.model_validate(d) for d in documents]

    async def count_by_status(self) -> dict[str, int]:
        """Counts for every status (statuses with no rows report 0)."""
        counts = {}
        for status in ApprovalStatus:
            counts[status.value] = await self.store.count(COLLECTION_NAME, {"status": status.value})
        return counts

    async def transition(
        self,
        request: ApprovalRequest,
        target: ApprovalStatus,
        **fields: Any,
    ) -> ApprovalRequest:
        """
        Move a request to a new status.

        The write is conditional on the stored status still matching
        ``request.status``; a concurrent change loses the race and raises.

        Args:
            request: Current snapshot of the request
            target: Desired status
            **fields: Additional attributes to set (snake_case)

        Returns:
            Updated ApprovalRequest

        Raises:
            InvalidTransitionError: Not allowed, or stale snapshot
        """
        current = request.status.value
        check = validate_status_transition(current, target.value)
        if not check.valid:
            raise InvalidTransitionError(current, target.value, check.error)

        updated = request.model_copy(update={"status": target, **fields})
        document = updated.to_document()
        changes = {k: v for k, v in document.items() if k != "requestId"}

        applied = await self.store.update_one(
            COLLECTION_NAME, request.request_id, changes, expected={"status": current}
        )
        if not applied:
            latest = await self.get(request.request_id)
            latest_status = latest.status.value if latest else "missing"
            raise InvalidTransitionError(
                latest_status,
                target.value,
                f"Request '{request.request_id}' changed concurrently (now '{latest_status}')",
            )

        approval_transitions_total.labels(from_status=current, to_status=target.value).inc()
        logger.info(
            "approval_request_transitioned",
            request_id=request.request_id,
            from_status=current,
            to_status=target.value,
        )
        return updated


def clamp_limit(limit: int | None, default: int = DEFAULT_LIMIT, maximum: int = MAX_LIMIT) -> int:
    """Page size: default when unset or non-positive, never above maximum."""
    if not limit or limit < 1:
        return default
    return min(limit, maximum)
