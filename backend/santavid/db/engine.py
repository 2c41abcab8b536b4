"""
Database engine configuration for santavid.

Provides the async SQLAlchemy engine with SQLite WAL mode and the session
factory used by the API, CLI and background pipeline runs.
"""
from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from santavid.config import settings


def configure_sqlite_pragmas(dbapi_conn, connection_record):
    """
    Configure SQLite PRAGMA settings on every new connection.

    - WAL mode so poll triggers can read while a run writes
    - FULL synchronous for crash safety
    - Foreign keys for children / scene_operations ownership
    - Busy timeout so concurrent compare-and-set updates wait instead of failing
    """
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA synchronous=FULL")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.execute("PRAGMA busy_timeout=5000")
    cursor.close()


def build_engine(database_url: str) -> AsyncEngine:
    """Create an async engine, registering SQLite PRAGMAs where applicable."""
    new_engine = create_async_engine(database_url, echo=False)
    if new_engine.dialect.name == "sqlite":
        # aiosqlite: listeners must be registered on the sync engine
        event.listens_for(new_engine.sync_engine, "connect")(configure_sqlite_pragmas)
    return new_engine


def build_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    # expire_on_commit=False keeps loaded orders readable after commit
    return async_sessionmaker(bind, expire_on_commit=False, class_=AsyncSession)


engine = build_engine(settings.storage.database_url)
async_session = build_session_factory(engine)


async def get_session():
    """
    Dependency injection function for async sessions.

    Yields an async session and ensures proper cleanup.
    """
    async with async_session() as session:
        yield session


async def shutdown():
    """Dispose of engine and close all connections."""
    await engine.dispose()
