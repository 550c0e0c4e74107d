"""SQLAlchemy Async Models.

Driver: asyncpg ONLY (no psycopg2)

One table backs every logical collection (ops_approval_requests,
ops_event_logs, users, event_types). Documents live in a JSONB body keyed
by (collection, key).
"""

from sqlalchemy import Column, Index, Text, TIMESTAMP, UniqueConstraint, BigInteger
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import declarative_base
from sqlalchemy.sql import func

Base = declarative_base()


class OpsDocument(Base):
    """A single document in a logical collection."""

    __tablename__ = "ops_documents"
    __table_args__ = (
        UniqueConstraint("collection", "key", name="uq_ops_documents_collection_key"),
        Index("ix_ops_documents_expires_at", "expires_at"),
    )

    id = Column(BigInteger, primary_key=True, autoincrement=True)
    collection = Column(Text, nullable=False, index=True)
    key = Column(Text, nullable=False)
    body = Column(JSONB, nullable=False)
    created_at = Column(TIMESTAMP(timezone=True), server_default=func.now())
    updated_at = Column(TIMESTAMP(timezone=True), server_default=func.now(), onupdate=func.now())
    expires_at = Column(TIMESTAMP(timezone=True))  # Swept by purge_expired()
