"""
Database module for vidgate.

Provides async SQLAlchemy engine with SQLite WAL mode,
session management, and schema initialization.
"""
import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncEngine

from vidgate.db.engine import async_session, engine, make_engine, make_session_factory, shutdown
from vidgate.db.models import Base

logger = logging.getLogger(__name__)


async def init_database(bind: Optional[AsyncEngine] = None):
    """Initialize database schema on first run."""
    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database schema ready")


__all__ = [
    "Base",
    "engine",
    "async_session",
    "make_engine",
    "make_session_factory",
    "shutdown",
    "init_database",
]
