"""Execution Response Cache & In-Flight Locks.

Collections:
- ops_executions: full response envelope per requestId (7 day TTL)
- ops_locks: one row per requestId currently executing (5 minute TTL)

Both rely on insert_one being an atomic insert-if-absent.
"""

from datetime import timedelta
from typing import Any

from ops_memory.exceptions import DuplicateKeyError
from ops_memory.stores import DocumentStore
from ops_memory.timestamps import format_timestamp, utcnow
from ops_obs.logging import get_logger

logger = get_logger(__name__)

EXECUTIONS_COLLECTION = "ops_executions"
LOCKS_COLLECTION = "ops_locks"

RESPONSE_TTL = timedelta(days=7)
LOCK_TTL = timedelta(minutes=5)


class ExecutionCache:
    """Stored responses and per-request locks for /ops/execute."""

    def __init__(self, store: DocumentStore):
        self.store = store

    async def get_cached(self, request_id: str) -> dict[str, Any] | None:
        document = await self.store.get(EXECUTIONS_COLLECTION, request_id)
        return document["response"] if document else None

    async def store_result(self, request_id: str, response: dict[str, Any]) -> bool:
        """Store a response; returns False if one was already stored."""
        now = utcnow()
        try:
            await self.store.insert_one(
                EXECUTIONS_COLLECTION,
                request_id,
                {"requestId": request_id, "response": response, "createdAt": format_timestamp(now)},
                expires_at=now + RESPONSE_TTL,
            )
        except DuplicateKeyError:
            return False
        return True

    async def acquire_lock(self, request_id: str) -> bool:
        """Claim a requestId for execution; False if another task holds it."""
        now = utcnow()
        try:
            await self.store.insert_one(
                LOCKS_COLLECTION,
                request_id,
                {"requestId": request_id, "createdAt": format_timestamp(now)},
                expires_at=now + LOCK_TTL,
            )
        except DuplicateKeyError:
            logger.info("execution_lock_busy", request_id=request_id)
            return False
        return True

    async def release_lock(self, request_id: str) -> None:
        await self.store.delete_one(LOCKS_COLLECTION, request_id)
