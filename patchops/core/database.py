"""
Async SQLAlchemy engine for the job store and the inventory snapshot.

PostgreSQL (asyncpg) in deployments; any async DSN set through
``DB_URL`` replaces it, which is how the tests run against aiosqlite.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from patchops.core.config import settings


class Base(DeclarativeBase):
    """Declarative base for patch jobs, install entries and inventory rows."""


def _engine_options() -> dict:
    options = {"echo": settings.app.app_debug}
    # Pool sizing only applies to the server backend
    if settings.database.dsn.startswith("postgresql"):
        options["pool_size"] = settings.database.pool_size
        options["max_overflow"] = settings.database.max_overflow
    return options


engine = create_async_engine(settings.database.dsn, **_engine_options())

async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


@asynccontextmanager
async def session_scope(
    factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """
    Unit of work over one session from ``factory``.

    Commits when the block exits normally, rolls back and re-raises
    otherwise.

    Example:
        async with session_scope(async_session_factory) as session:
            session.add(job)
    """
    async with factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def init_db() -> None:
    """Create any missing tables."""
    # Registers the mapped classes on Base.metadata
    from patchops.models import patching  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    await engine.dispose()
