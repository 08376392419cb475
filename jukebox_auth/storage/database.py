"""
Async database engine and session factory.
"""

import logging

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel

# Registers the tables on SQLModel.metadata
from jukebox_auth.storage import tables  # noqa: F401

logger = logging.getLogger(__name__)


def create_engine(database_url: str, echo: bool = False) -> AsyncEngine:
    """
    Create an async engine for the configured database.

    In-memory SQLite gets a single shared connection so every session sees
    the same database.
    """
    kwargs = {"echo": echo}
    if database_url.startswith("sqlite") and (":memory:" in database_url or database_url.endswith("://")):
        kwargs["poolclass"] = StaticPool
        kwargs["connect_args"] = {"check_same_thread": False}

    return create_async_engine(database_url, **kwargs)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False)


async def create_db_and_tables(engine: AsyncEngine) -> None:
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    logger.info("Database tables ready")
