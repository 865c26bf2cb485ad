"""
Async database plumbing.

The engine and its connection pool live on an explicit ``Database`` object
that the application builds at startup and disposes at shutdown.
"""

from __future__ import annotations

from typing import AsyncIterator, Optional

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from config import Settings, async_database_url


Base = declarative_base()


class Database:
    """Owns the async engine (connection pool) and the session factory."""

    def __init__(self, engine: AsyncEngine):
        self.engine = engine
        self.session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    @classmethod
    def from_settings(cls, settings: Settings) -> "Database":
        url = async_database_url(settings.DATABASE_URL)
        options = {"pool_pre_ping": True}
        if not url.startswith("sqlite"):
            options.update(
                pool_size=settings.DB_POOL_SIZE,
                max_overflow=settings.DB_MAX_OVERFLOW,
                pool_timeout=settings.DB_POOL_TIMEOUT,
                pool_recycle=settings.DB_POOL_RECYCLE,
            )
        return cls(create_async_engine(url, **options))

    async def create_schema(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def dispose(self) -> None:
        await self.engine.dispose()


def get_database(request: Request) -> Optional[Database]:
    return getattr(request.app.state, "database", None)


async def get_db(request: Request) -> AsyncIterator[AsyncSession]:
    """Yield a session bound to the application's connection pool."""
    database = get_database(request)
    if database is None:
        raise RuntimeError("Database is not initialised; the application lifespan has not run.")
    async with database.session_maker() as session:
        yield session
