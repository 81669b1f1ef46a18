"""Database initialization utilities."""

import logging

from app.db.base import Base
from app.db.session import engine

# Register all models on the metadata
import app.models  # noqa: F401

logger = logging.getLogger(__name__)


async def create_tables() -> None:
    """Create all database tables."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables created")


async def drop_tables() -> None:
    """Drop all database tables (use with caution)."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    logger.info("Database tables dropped")


async def init_db() -> None:
    """Initialize database schema for development."""
    await create_tables()
    logger.info("Database initialization complete")
