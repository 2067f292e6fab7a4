"""SQLAlchemy 2.x database setup for the staging and live stores.

Engines are built from configuration and injected into components; nothing
here opens a connection at import time.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy import func, select, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from .config import LiveDatabaseSettings, Settings, StagingDatabaseSettings
from .errors import ConfigurationError
from .models import Base

logger = logging.getLogger(__name__)


def make_engine(config: StagingDatabaseSettings | LiveDatabaseSettings) -> AsyncEngine:
    """Create an async engine; SQLite files get a fresh connection per session."""
    kwargs: dict = {"echo": config.echo, "future": True}
    if config.url.startswith("sqlite"):
        kwargs["poolclass"] = NullPool
    else:
        kwargs.update(pool_size=config.pool_size, max_overflow=config.max_overflow, pool_pre_ping=True)
    return create_async_engine(config.url, **kwargs)


class Store:
    """An async engine plus its session factory."""

    name = "store"

    def __init__(self, engine: AsyncEngine) -> None:
        self.engine = engine
        self.session_factory = async_sessionmaker(bind=engine, expire_on_commit=False, class_=AsyncSession)

    @property
    def dialect(self) -> str:
        return self.engine.dialect.name

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        async with self.session_factory() as session:
            yield session

    async def count(self, model: type[Base]) -> int:
        """Row count for one mapped table."""
        async with self.session_factory() as session:
            result = await session.execute(select(func.count()).select_from(model))
            return int(result.scalar_one())

    async def ping(self) -> None:
        """Run ``SELECT 1``; raise ConfigurationError when the store is unreachable."""
        try:
            async with self.engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
        except (SQLAlchemyError, OSError) as e:
            raise ConfigurationError(f"{self.name} store unreachable: {e}", component=self.name) from e

    async def dispose(self) -> None:
        await self.engine.dispose()


class StagingStore(Store):
    """Store the pipeline writes to. Rows land here with sync_status=pending."""

    name = "staging"

    @asynccontextmanager
    async def transaction(self, session: AsyncSession | None = None) -> AsyncIterator[AsyncSession]:
        """Yield a session inside a transaction.

        When ``session`` is given the caller already owns a transaction on it;
        the work joins that transaction and the caller commits or rolls back.
        """
        if session is not None:
            yield session
            return
        async with self.session_factory() as own:
            async with own.begin():
                yield own

    async def create_schema(self) -> None:
        """Create the vector extension (PostgreSQL) and all tables."""
        async with self.engine.begin() as conn:
            if self.dialect == "postgresql":
                await conn.execute(text("CREATE EXTENSION IF NOT EXISTS vector"))
            await conn.run_sync(Base.metadata.create_all)

    async def drop_schema(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)


class LiveStore(Store):
    """Publicly served store. The pipeline only reads from it."""

    name = "live"

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        async with self.session_factory() as session:
            try:
                yield session
            finally:
                # Never let a pipeline write reach the live store.
                await session.rollback()


def build_stores(settings: Settings) -> tuple[StagingStore, LiveStore]:
    """Construct both stores from settings."""
    staging = StagingStore(make_engine(settings.staging_db))
    live = LiveStore(make_engine(settings.live_db))
    logger.info(f"Configured staging store ({staging.dialect}) and live store ({live.dialect})")
    return staging, live
