"""
Async SQLAlchemy engine/session factory.

Unlike a module-level engine, each store owns its engine so tests can point
at a throwaway SQLite file.
"""

from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine


def make_engine(database_url: str, echo: bool = False) -> AsyncEngine:
    kwargs: dict = {"echo": echo}
    if not database_url.startswith("sqlite"):
        kwargs.update(pool_size=20, max_overflow=10, pool_pre_ping=True)
    return create_async_engine(database_url, **kwargs)


def make_sessionmaker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
