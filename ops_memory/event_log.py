"""Ops Event Log.

Collection: ops_event_logs

Append-only record of every tool execution keyed by the caller-supplied
requestId. The unique (collection, key) constraint is the idempotency
backstop: a second record() with the same requestId never creates a
second row.

Indexes (Postgres expression indexes, see alembic/versions):
- unique (collection, key=requestId)
- businessId + executedAt
- tool + status
- executedAt
- actor + executedAt
- expires_at = createdAt + retention (TTL sweep, default 90 days)
"""

from datetime import datetime, timedelta
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from ops_memory.approvals import clamp_limit
from ops_memory.exceptions import DuplicateKeyError
from ops_memory.stores import DocumentStore, Range
from ops_memory.timestamps import Timestamp, format_timestamp, parse_timestamp, utcnow
from ops_obs.logging import get_logger

logger = get_logger(__name__)

COLLECTION_NAME = "ops_event_logs"
DEFAULT_RETENTION_DAYS = 90


class EventStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    PARTIAL = "partial"


class Actor(str, Enum):
    N8N = "n8n"
    HUMAN = "human"
    SYSTEM = "system"
    API = "api"


STATUS_VALUES = [s.value for s in EventStatus]
ACTOR_VALUES = [a.value for a in Actor]


class EventLogEntry(BaseModel):
    """A single execution record (camelCase on the wire and in storage)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    request_id: str
    tool: str
    business_id: str | None = None
    status: EventStatus
    duration_ms: int = Field(default=0, ge=0)
    executed_at: Timestamp
    actor: Actor = Actor.API
    input: dict[str, Any] | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: Timestamp | None = None
    updated_at: Timestamp | None = None

    def to_document(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


def validate_event_log(document: dict[str, Any]) -> list[str]:
    """
    Validate a raw event log document before it is persisted.

    Returns:
        List of error strings (empty when valid)
    """
    errors = []

    if not isinstance(document.get("requestId"), str) or not document.get("requestId"):
        errors.append("requestId is required and must be a string")
    if not isinstance(document.get("tool"), str) or not document.get("tool"):
        errors.append("tool is required and must be a string")
    if document.get("status") not in STATUS_VALUES:
        errors.append(f"status must be one of: {', '.join(STATUS_VALUES)}")

    duration = document.get("durationMs")
    if isinstance(duration, bool) or not isinstance(duration, (int, float)) or duration < 0:
        errors.append("durationMs must be a non-negative number")

    executed_at = document.get("executedAt")
    if isinstance(executed_at, str):
        try:
            executed_at = parse_timestamp(executed_at)
        except ValueError:
            executed_at = None
    if not isinstance(executed_at, datetime):
        errors.append("executedAt must be a datetime")

    actor = document.get("actor")
    if actor is not None and actor not in ACTOR_VALUES:
        errors.append(f"actor must be one of: {', '.join(ACTOR_VALUES)}")

    return errors


def coerce_actor(value: str | None) -> Actor:
    """Map a free-form caller identity onto the Actor enum (unknown -> api)."""
    try:
        return Actor(value)
    except ValueError:
        return Actor.API


# ============================================================================
# ENTRY BUILDERS
# ============================================================================


def status_from_result(result: dict[str, Any]) -> EventStatus:
    """failed if ok is false, partial if ready is false, otherwise success."""
    if result.get("ok") is False:
        return EventStatus.FAILED
    if result.get("ready") is False:
        return EventStatus.PARTIAL
    return EventStatus.SUCCESS


def entry_from_bootstrap_result(
    request_id: str,
    business_id: str,
    result: dict[str, Any],
    duration_ms: int,
    actor: str = "api",
    tool: str = "tenant.bootstrap",
    key_id: str | None = None,
    args_format: str | None = None,
    input: dict[str, Any] | None = None,
) -> EventLogEntry:
    """Build an event log entry from a tenant.bootstrap result."""
    checklist = result.get("checklist") or []
    stats = {
        "total": len(checklist),
        "done": sum(1 for c in checklist if c.get("status") == "done"),
        "warnings": sum(1 for c in checklist if c.get("status") == "warning"),
        "failed": sum(1 for c in checklist if c.get("status") == "failed"),
        "skipped": sum(1 for c in checklist if c.get("status") == "skipped"),
    }

    metadata = {
        "dryRun": result.get("dryRun", False),
        "ready": result.get("ready"),
        "readyMessage": result.get("readyMessage"),
        "checklist": checklist,
        "recommendations": result.get("recommendations") or [],
        "stats": stats,
        "error": result.get("error"),
        "keyId": key_id,
        "argsFormat": args_format,
    }

    return EventLogEntry(
        request_id=request_id,
        tool=tool,
        business_id=business_id,
        status=status_from_result(result),
        duration_ms=max(int(duration_ms), 0),
        executed_at=utcnow(),
        actor=coerce_actor(actor),
        input=input,
        metadata=metadata,
    )


def failed_entry(
    request_id: str,
    tool: str,
    error: dict[str, Any],
    duration_ms: int,
    actor: str = "api",
    business_id: str | None = None,
    input: dict[str, Any] | None = None,
    metadata: dict[str, Any] | None = None,
) -> EventLogEntry:
    """Build a failed entry for an execution that raised or returned an error."""
    return EventLogEntry(
        request_id=request_id,
        tool=tool,
        business_id=business_id,
        status=EventStatus.FAILED,
        duration_ms=max(int(duration_ms), 0),
        executed_at=utcnow(),
        actor=coerce_actor(actor),
        input=input,
        metadata={**(metadata or {}), "error": error},
    )


# ============================================================================
# REPOSITORY
# ============================================================================


class EventLogStore:
    """Event log repository over a DocumentStore."""

    def __init__(self, store: DocumentStore, retention_days: int = DEFAULT_RETENTION_DAYS):
        self.store = store
        self.retention_days = retention_days

    async def record(self, entry: EventLogEntry) -> tuple[EventLogEntry, bool]:
        """
        Persist an entry unless its requestId is already logged.

        Args:
            entry: Entry to insert

        Returns:
            (stored entry, created). ``created`` is False when an entry with
            the same requestId already existed; the existing entry is returned.
        """
        existing = await self.get_by_request_id(entry.request_id)
        if existing:
            logger.info("event_log_duplicate", request_id=entry.request_id, tool=entry.tool)
            return existing, False

        now = utcnow()
        entry = entry.model_copy(update={"created_at": now, "updated_at": now})

        document = entry.to_document()
        errors = validate_event_log(document)
        if errors:
            raise ValueError(f"Invalid event log entry: {'; '.join(errors)}")

        try:
            await self.store.insert_one(
                COLLECTION_NAME,
                entry.request_id,
                document,
                expires_at=now + timedelta(days=self.retention_days),
            )
        except DuplicateKeyError:
            # Lost a race with a concurrent delivery of the same requestId
            existing = await self.get_by_request_id(entry.request_id)
            logger.info("event_log_duplicate", request_id=entry.request_id, tool=entry.tool, race=True)
            return existing or entry, False

        logger.info(
            "event_log_recorded",
            request_id=entry.request_id,
            tool=entry.tool,
            status=entry.status.value,
            duration_ms=entry.duration_ms,
        )
        return entry, True

    async def get_by_request_id(self, request_id: str) -> EventLogEntry | None:
        document = await self.store.get(COLLECTION_NAME, request_id)
        return EventLogEntry.model_validate(document) if document else None

    async def get_events_by_business(
        self,
        business_id: str,
        tool: str | None = None,
        status: str | None = None,
        limit: int | None = None,
        skip: int = 0,
    ) -> list[EventLogEntry]:
        """
        Events for one tenant, newest first.

        Args:
            business_id: Tenant identifier
            tool: Optional tool filter
            status: Optional status filter
            limit: Page size (default 50, capped at 100)
            skip: Pagination offset
        """
        filters: dict[str, Any] = {"businessId": business_id}
        if tool:
            filters["tool"] = tool
        if status:
            filters["status"] = status

        documents = await self.store.find(
            COLLECTION_NAME,
            filters,
            sort="executedAt",
            descending=True,
            skip=max(skip, 0),
            limit=clamp_limit(limit),
        )
        return [EventLogEntry.model_validate(d) for d in documents]

    async def get_recent_events(
        self,
        tool: str | None = None,
        status: str | None = None,
        actor: str | None = None,
        limit: int | None = None,
        skip: int = 0,
    ) -> list[EventLogEntry]:
        """Events across all tenants, newest first."""
        filters: dict[str, Any] = {}
        if tool:
            filters["tool"] = tool
        if status:
            filters["status"] = status
        if actor:
            filters["actor"] = actor

        documents = await self.store.find(
            COLLECTION_NAME,
            filters,
            sort="executedAt",
            descending=True,
            skip=max(skip, 0),
            limit=clamp_limit(limit),
        )
        return [EventLogEntry.model_validate(d) for d in documents]

    async def get_event_stats(self, since: datetime | None = None) -> dict[str, Any]:
        """
        Aggregate counts and durations grouped by tool x status.

        Args:
            since: Window start (default: 24 hours ago)

        Returns:
            {"since", "tools": [{tool, statuses, totalCount}], "totals": {...}}
            with tools sorted by totalCount descending
        """
        since = since or utcnow() - timedelta(hours=24)
        documents = await self.store.find(
            COLLECTION_NAME, {"executedAt": Range(gte=format_timestamp(since))}, sort=None
        )

        grouped: dict[str, dict[str, list[int]]] = {}
        for document in documents:
            durations = grouped.setdefault(document["tool"], {}).setdefault(document["status"], [])
            durations.append(int(document.get("durationMs") or 0))

        tools = []
        totals = {status: 0 for status in STATUS_VALUES}
        for tool, statuses in grouped.items():
            summary = {}
            for status, durations in statuses.items():
                summary[status] = {
                    "count": len(durations),
                    "avgDurationMs": round(sum(durations) / len(durations)),
                    "maxDurationMs": max(durations),
                }
                totals[status] = totals.get(status, 0) + len(durations)
            tools.append(
                {
                    "tool": tool,
                    "statuses": summary,
                    "totalCount": sum(len(d) for d in statuses.values()),
                }
            )

        tools.sort(key=lambda t: t["totalCount"], reverse=True)
        totals["total"] = sum(totals[s] for s in STATUS_VALUES)

        return {"since": format_timestamp(since), "tools": tools, "totals": totals}
