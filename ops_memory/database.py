"""Database session factory and engine initialization.

Provides async SQLAlchemy engine and session factory for Postgres with asyncpg.
"""

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from ops_config.settings import Settings

# Global engine and session factory
_engine: AsyncEngine | None = None
_async_session_factory: async_sessionmaker | None = None


def get_engine(database_url: str | None = None) -> AsyncEngine:
    """Get or create async engine.

    Args:
        database_url: Database connection URL (must use asyncpg driver)

    Returns:
        AsyncEngine instance
    """
    global _engine

    if _engine is None:
        url = database_url or Settings().DATABASE_URL

        # Ensure asyncpg driver
        if not url.startswith("postgresql+asyncpg://"):
            raise ValueError(
                f"Database URL must use asyncpg driver. Got: {url.split('://')[0]}"
            )

        _engine = create_async_engine(
            url,
            echo=False,
            pool_pre_ping=True,
            pool_size=20,
            max_overflow=10,
            pool_timeout=30,
            pool_recycle=3600,
        )

    return _engine


def get_session_factory(database_url: str | None = None) -> async_sessionmaker:
    """Get or create async session factory.

    Args:
        database_url: Database connection URL

    Returns:
        async_sessionmaker instance
    """
    global _async_session_factory

    if _async_session_factory is None:
        engine = get_engine(database_url)
        _async_session_factory = async_sessionmaker(
            engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )

    return _async_session_factory


async def close_db_connections() -> None:
    """Close database connections.

    Call this during application shutdown.
    """
    global _engine, _async_session_factory

    if _engine:
        await _engine.dispose()
        _engine = None

    _async_session_factory = None


async def check_db_connection() -> bool:
    """Check database connection health.

    Returns:
        bool: True if database is reachable

    Raises:
        Exception: If connection fails
    """
    engine = get_engine()
    async with engine.begin() as conn:
        result = await conn.execute(text("SELECT 1"))
        return result.scalar() == 1
