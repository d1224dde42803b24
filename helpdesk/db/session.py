"""
Database session management.

WHY: Every request works on its own AsyncSession. DAOs flush but never
commit, so the session owner decides the transaction boundary.
"""

from typing import AsyncGenerator, Optional

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine, async_sessionmaker

from helpdesk.core.config import settings


def enable_sqlite_savepoints(engine: AsyncEngine) -> AsyncEngine:
    """
    Make SAVEPOINT handling work on SQLite drivers.

    WHY: pysqlite/aiosqlite emit their own BEGIN lazily, which breaks
    nested transactions. Merge, destroy and rule batches rely on
    begin_nested(), so SQLite engines must take over BEGIN themselves.

    Args:
        engine: Async engine bound to a sqlite URL

    Returns:
        The same engine, for chaining
    """

    @event.listens_for(engine.sync_engine, "connect")
    def _disable_driver_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    return engine


def create_engine(url: Optional[str] = None, echo: Optional[bool] = None) -> AsyncEngine:
    """
    Create the async engine for the configured database.

    Args:
        url: Database URL (defaults to settings)
        echo: Log SQL statements (defaults to settings.DEBUG)

    Returns:
        AsyncEngine
    """
    url = url or settings.async_database_url
    engine = create_async_engine(
        url,
        echo=settings.DEBUG if echo is None else echo,
        pool_pre_ping=True,
    )
    if url.startswith("sqlite"):
        enable_sqlite_savepoints(engine)
    return engine


engine = create_engine()

# expire_on_commit=False prevents lazy-loading issues after commit.
AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Yield a session that commits on success and rolls back on error.

    Yields:
        AsyncSession: Database session for one unit of work
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()
