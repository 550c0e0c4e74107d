"""Event Log Tests."""

from datetime import timedelta

import pytest

from ops_memory.event_log import (
    EventLogEntry,
    EventLogStore,
    EventStatus,
    entry_from_bootstrap_result,
    failed_entry,
    status_from_result,
    validate_event_log,
)
from ops_memory.timestamps import format_timestamp, utcnow


@pytest.fixture
def event_log(store):
    return EventLogStore(store, retention_days=90)


def make_entry(request_id: str, tool: str = "tenant.status", status: str = "success", **fields) -> EventLogEntry:
    return EventLogEntry(
        request_id=request_id,
        tool=tool,
        status=status,
        duration_ms=fields.pop("duration_ms", 10),
        executed_at=fields.pop("executed_at", utcnow()),
        **fields,
    )


# ============================================================================
# VALIDATION
# ============================================================================


def test_validate_event_log_accepts_valid_document():
    document = make_entry("req_1").to_document()

    assert validate_event_log(document) == []


def test_validate_event_log_collects_errors():
    errors = validate_event_log(
        {"requestId": "", "tool": 5, "status": "done", "durationMs": -1, "executedAt": "yesterday", "actor": "robot"}
    )

    assert errors == [
        "requestId is required and must be a string",
        "tool is required and must be a string",
        "status must be one of: success, failed, partial",
        "durationMs must be a non-negative number",
        "executedAt must be a datetime",
        "actor must be one of: n8n, human, system, api",
    ]


def test_status_from_result():
    assert status_from_result({"ok": False}) == EventStatus.FAILED
    assert status_from_result({"ok": True, "ready": False}) == EventStatus.PARTIAL
    assert status_from_result({"ok": True}) == EventStatus.SUCCESS


def test_bootstrap_entry_stats():
    result = {
        "ok": True,
        "ready": True,
        "checklist": [{"status": "done"}, {"status": "warning"}, {"status": "skipped"}, {"status": "done"}],
    }

    entry = entry_from_bootstrap_result("req_1", "acme", result, 120, actor="n8n", key_id="key_abc")

    assert entry.tool == "tenant.bootstrap"
    assert entry.status == EventStatus.SUCCESS
    assert entry.metadata["stats"] == {"total": 4, "done": 2, "warnings": 1, "failed": 0, "skipped": 1}
    assert entry.metadata["keyId"] == "key_abc"
    assert entry.actor.value == "n8n"


def test_failed_entry_keeps_error_and_coerces_actor():
    entry = failed_entry("req_1", "tenant.status", {"code": "INTERNAL_ERROR"}, 5, actor="approval-executor")

    assert entry.status == EventStatus.FAILED
    assert entry.metadata["error"] == {"code": "INTERNAL_ERROR"}
    assert entry.actor.value == "api"


# ============================================================================
# REPOSITORY
# ============================================================================


@pytest.mark.asyncio
async def test_record_is_idempotent(event_log):
    first, created = await event_log.record(make_entry("req_1", duration_ms=10))
    second, created_again = await event_log.record(make_entry("req_1", status="failed", duration_ms=99))

    assert created
    assert not created_again
    assert second.status == EventStatus.SUCCESS
    assert second.duration_ms == 10
    assert len(await event_log.get_recent_events()) == 1


@pytest.mark.asyncio
async def test_record_sets_timestamps(event_log):
    entry, _ = await event_log.record(make_entry("req_1"))

    assert entry.created_at is not None
    assert entry.updated_at == entry.created_at
    assert (await event_log.get_by_request_id("req_1")).request_id == "req_1"
    assert await event_log.get_by_request_id("missing") is None


@pytest.mark.asyncio
async def test_events_by_business(event_log):
    now = utcnow()
    await event_log.record(make_entry("a1", business_id="acme", executed_at=now - timedelta(minutes=2)))
    await event_log.record(make_entry("a2", business_id="acme", status="failed", executed_at=now - timedelta(minutes=1)))
    await event_log.record(make_entry("b1", business_id="beta", executed_at=now))

    events = await event_log.get_events_by_business("acme")
    assert [e.request_id for e in events] == ["a2", "a1"]

    failed = await event_log.get_events_by_business("acme", status="failed")
    assert [e.request_id for e in failed] == ["a2"]

    page = await event_log.get_events_by_business("acme", limit=1, skip=1)
    assert [e.request_id for e in page] == ["a1"]


@pytest.mark.asyncio
async def test_recent_events_filters(event_log):
    await event_log.record(make_entry("r1", tool="tenant.status", actor="n8n"))
    await event_log.record(make_entry("r2", tool="voice.diagnostics", actor="human"))

    assert [e.request_id for e in await event_log.get_recent_events(tool="voice.diagnostics")] == ["r2"]
    assert [e.request_id for e in await event_log.get_recent_events(actor="n8n")] == ["r1"]


@pytest.mark.asyncio
async def test_event_stats(event_log):
    now = utcnow()
    await event_log.record(make_entry("s1", tool="tenant.status", duration_ms=10))
    await event_log.record(make_entry("s2", tool="tenant.status", duration_ms=30))
    await event_log.record(make_entry("s3", tool="tenant.status", status="failed", duration_ms=5))
    await event_log.record(make_entry("s4", tool="voice.diagnostics", duration_ms=100))
    await event_log.record(make_entry("old", tool="voice.diagnostics", executed_at=now - timedelta(days=3)))

    stats = await event_log.get_event_stats(since=now - timedelta(hours=1))

    assert stats["since"] == format_timestamp(now - timedelta(hours=1))
    assert [t["tool"] for t in stats["tools"]] == ["tenant.status", "voice.diagnostics"]

    status_stats = stats["tools"][0]
    assert status_stats["totalCount"] == 3
    assert status_stats["statuses"]["success"] == {"count": 2, "avgDurationMs": 20, "maxDurationMs": 30}
    assert status_stats["statuses"]["failed"]["count"] == 1

    assert stats["totals"] == {"success": 3, "failed": 1, "partial": 0, "total": 4}
