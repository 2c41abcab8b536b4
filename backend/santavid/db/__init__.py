"""
Database module for santavid.

Provides the async SQLAlchemy engine, session management and schema
initialization.
"""
from sqlalchemy.ext.asyncio import AsyncEngine

from santavid.db.engine import async_session, engine, get_session, shutdown
from santavid.db.models import Base


async def init_database(bind: AsyncEngine | None = None):
    """Create any missing tables (idempotent)."""
    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


__all__ = [
    "Base",
    "engine",
    "async_session",
    "get_session",
    "shutdown",
    "init_database",
]
