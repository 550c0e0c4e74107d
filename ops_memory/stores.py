"""Document Store Adapters.

Collection/key document storage used by every control plane component.

Backends:
- MemoryDocumentStore: in-process dicts (tests, local development)
- PostgresDocumentStore: SQLAlchemy async + asyncpg over ops_documents

Both backends treat insert_one as an atomic insert-if-absent: a second
insert with the same (collection, key) raises DuplicateKeyError.
"""

import copy
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Protocol

from sqlalchemy import asc, delete, desc, func, literal, select, update
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.exc import IntegrityError

from ops_config.settings import Settings
from ops_memory.exceptions import DuplicateKeyError
from ops_memory.models import OpsDocument
from ops_memory.timestamps import utcnow
from ops_obs.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class Range:
    """Half-open range filter: gte <= value < lt (either bound optional)."""

    gte: Any = None
    lt: Any = None


Filters = dict[str, Any]


class DocumentStore(Protocol):
    """Async document store interface."""

    async def insert_one(
        self,
        collection: str,
        key: str,
        document: dict[str, Any],
        expires_at: datetime | None = None,
    ) -> None:
        ...

    async def get(self, collection: str, key: str) -> dict[str, Any] | None:
        ...

    async def find_one(self, collection: str, filters: Filters) -> dict[str, Any] | None:
        ...

    async def find(
        self,
        collection: str,
        filters: Filters | None = None,
        sort: str | None = None,
        descending: bool = True,
        skip: int = 0,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        ...

    async def count(self, collection: str, filters: Filters | None = None) -> int:
        ...

    async def update_one(
        self,
        collection: str,
        key: str,
        updates: dict[str, Any],
        expected: Filters | None = None,
    ) -> bool:
        ...

    async def delete_one(self, collection: str, key: str) -> bool:
        ...

    async def delete_many(self, collection: str, filters: Filters) -> int:
        ...

    async def purge_expired(self, now: datetime | None = None) -> int:
        ...

    async def ping(self) -> bool:
        ...


# ============================================================================
# IN-MEMORY STORE
# ============================================================================


def _matches(document: dict[str, Any], filters: Filters | None) -> bool:
    for field, expected in (filters or {}).items():
        value = document.get(field)
        if isinstance(expected, Range):
            if value is None:
                return False
            if expected.gte is not None and value < expected.gte:
                return False
            if expected.lt is not None and value >= expected.lt:
                return False
        elif value != expected:
            return False
    return True


class MemoryDocumentStore:
    """In-process document store.

    Every method completes without awaiting, so each call is atomic with
    respect to other tasks on the same event loop.
    """

    def __init__(self):
        self._collections: dict[str, dict[str, dict[str, Any]]] = {}

    def _rows(self, collection: str) -> dict[str, dict[str, Any]]:
        return self._collections.setdefault(collection, {})

    async def insert_one(
        self,
        collection: str,
        key: str,
        document: dict[str, Any],
        expires_at: datetime | None = None,
    ) -> None:
        rows = self._rows(collection)
        if key in rows:
            raise DuplicateKeyError(collection, key)
        rows[key] = {"body": copy.deepcopy(document), "expires_at": expires_at}

    async def get(self, collection: str, key: str) -> dict[str, Any] | None:
        row = self._rows(collection).get(key)
        return copy.deepcopy(row["body"]) if row else None

    async def find_one(self, collection: str, filters: Filters) -> dict[str, Any] | None:
        results = await self.find(collection, filters, limit=1)
        return results[0] if results else None

    async def find(
        self,
        collection: str,
        filters: Filters | None = None,
        sort: str | None = None,
        descending: bool = True,
        skip: int = 0,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        documents = [
            row["body"] for row in self._rows(collection).values() if _matches(row["body"], filters)
        ]
        if sort:
            documents.sort(key=lambda d: str(d.get(sort) or ""), reverse=descending)
        documents = documents[skip:]
        if limit is not None:
            documents = documents[:limit]
        return copy.deepcopy(documents)

    async def count(self, collection: str, filters: Filters | None = None) -> int:
        return sum(1 for row in self._rows(collection).values() if _matches(row["body"], filters))

    async def update_one(
        self,
        collection: str,
        key: str,
        updates: dict[str, Any],
        expected: Filters | None = None,
    ) -> bool:
        row = self._rows(collection).get(key)
        if row is None or not _matches(row["body"], expected):
            return False
        row["body"].update(copy.deepcopy(updates))
        return True

    async def delete_one(self, collection: str, key: str) -> bool:
        return self._rows(collection).pop(key, None) is not None

    async def delete_many(self, collection: str, filters: Filters) -> int:
        rows = self._rows(collection)
        doomed = [key for key, row in rows.items() if _matches(row["body"], filters)]
        for key in doomed:
            del rows[key]
        return len(doomed)

    async def purge_expired(self, now: datetime | None = None) -> int:
        now = now or utcnow()
        purged = 0
        for rows in self._collections.values():
            expired = [
                key for key, row in rows.items() if row["expires_at"] and row["expires_at"] < now
            ]
            for key in expired:
                del rows[key]
            purged += len(expired)
        return purged

    async def ping(self) -> bool:
        return True


# ============================================================================
# POSTGRES STORE
# ============================================================================


class PostgresDocumentStore:
    """Postgres-backed document store.

    Stores:
    - One row per document in ops_documents (JSONB body)
    - Unique (collection, key) enforces idempotent inserts
    - expires_at drives the periodic TTL sweep
    """

    def __init__(self, session_factory):
        """Initialize Postgres store.

        Args:
            session_factory: async_sessionmaker instance
        """
        self.session_factory = session_factory

    @staticmethod
    def _apply_filters(stmt, filters: Filters | None):
        for field, expected in (filters or {}).items():
            if isinstance(expected, Range):
                column = OpsDocument.body[field].astext
                if expected.gte is not None:
                    stmt = stmt.where(column >= str(expected.gte))
                if expected.lt is not None:
                    stmt = stmt.where(column < str(expected.lt))
            else:
                stmt = stmt.where(OpsDocument.body.contains({field: expected}))
        return stmt

    async def insert_one(
        self,
        collection: str,
        key: str,
        document: dict[str, Any],
        expires_at: datetime | None = None,
    ) -> None:
        async with self.session_factory() as session:
            session.add(
                OpsDocument(collection=collection, key=key, body=document, expires_at=expires_at)
            )
            try:
                await session.commit()
            except IntegrityError as e:
                await session.rollback()
                raise DuplicateKeyError(collection, key) from e

    async def get(self, collection: str, key: str) -> dict[str, Any] | None:
        async with self.session_factory() as session:
            stmt = select(OpsDocument.body).where(
                OpsDocument.collection == collection, OpsDocument.key == key
            )
            result = await session.execute(stmt)
            return result.scalar_one_or_none()

    async def find_one(self, collection: str, filters: Filters) -> dict[str, Any] | None:
        results = await self.find(collection, filters, limit=1)
        return results[0] if results else None

    async def find(
        self,
        collection: str,
        filters: Filters | None = None,
        sort: str | None = None,
        descending: bool = True,
        skip: int = 0,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        async with self.session_factory() as session:
            stmt = select(OpsDocument.body).where(OpsDocument.collection == collection)
            stmt = self._apply_filters(stmt, filters)

            if sort:
                column = OpsDocument.body[sort].astext
                stmt = stmt.order_by(desc(column) if descending else asc(column))

            stmt = stmt.offset(skip)
            if limit is not None:
                stmt = stmt.limit(limit)

            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def count(self, collection: str, filters: Filters | None = None) -> int:
        async with self.session_factory() as session:
            stmt = select(func.count()).select_from(OpsDocument).where(
                OpsDocument.collection == collection
            )
            stmt = self._apply_filters(stmt, filters)
            result = await session.execute(stmt)
            return int(result.scalar() or 0)

    async def update_one(
        self,
        collection: str,
        key: str,
        updates: dict[str, Any],
        expected: Filters | None = None,
    ) -> bool:
        async with self.session_factory() as session:
            stmt = update(OpsDocument).where(
                OpsDocument.collection == collection, OpsDocument.key == key
            )
            stmt = self._apply_filters(stmt, expected)
            stmt = stmt.values(
                body=OpsDocument.body.op("||", return_type=JSONB)(literal(updates, JSONB))
            )
            result = await session.execute(stmt)
            await session.commit()
            return result.rowcount > 0

    async def delete_one(self, collection: str, key: str) -> bool:
        async with self.session_factory() as session:
            stmt = delete(OpsDocument).where(
                OpsDocument.collection == collection, OpsDocument.key == key
            )
            result = await session.execute(stmt)
            await session.commit()
            return result.rowcount > 0

    async def delete_many(self, collection: str, filters: Filters) -> int:
        async with self.session_factory() as session:
            stmt = delete(OpsDocument).where(OpsDocument.collection == collection)
            stmt = self._apply_filters(stmt, filters)
            result = await session.execute(stmt)
            await session.commit()
            return result.rowcount

    async def purge_expired(self, now: datetime | None = None) -> int:
        async with self.session_factory() as session:
            stmt = delete(OpsDocument).where(OpsDocument.expires_at < (now or utcnow()))
            result = await session.execute(stmt)
            await session.commit()
            return result.rowcount

    async def ping(self) -> bool:
        from ops_memory.database import check_db_connection

        return await check_db_connection()


# ============================================================================
# FACTORY
# ============================================================================


def create_document_store(settings: Settings) -> DocumentStore:
    """Build the configured document store backend.

    Args:
        settings: Application settings (STORE_BACKEND, DATABASE_URL)

    Returns:
        DocumentStore instance
    """
    if settings.STORE_BACKEND == "memory":
        logger.info("document_store_initialized", backend="memory")
        return MemoryDocumentStore()

    from ops_memory.database import get_session_factory

    logger.info("document_store_initialized", backend="postgres")
    return PostgresDocumentStore(get_session_factory(settings.DATABASE_URL))
