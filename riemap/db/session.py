"""SQLAlchemy async session setup for RieMap.

Provides:
- Base: DeclarativeBase for all ORM models
- create_engine_for: async engine for a database URL
- make_session_factory: session maker bound to an engine
- unit_of_work: commit/rollback scope around repository calls

Unlike a module-level engine, nothing connects at import time: an empty
DATABASE_URL means jobs and reports stay in memory.
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from riemap.config.settings import Environment, Settings


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy ORM models."""

    pass


def create_engine_for(settings: Settings) -> AsyncEngine:
    return create_async_engine(
        settings.DATABASE_URL,
        echo=(settings.ENVIRONMENT == Environment.DEV and settings.LOG_LEVEL == "DEBUG"),
        pool_pre_ping=True,
    )


def make_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


@asynccontextmanager
async def unit_of_work(
    factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """Yield an async database session with Unit-of-Work semantics.

    Repositories only call add()/flush()/refresh().
    Commit happens once when the block exits cleanly.
    Rollback happens on any exception.
    """
    async with factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
