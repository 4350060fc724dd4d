"""Async engine and session handling for the SQL shift store.

The engine and session factory are process-wide and created lazily from
``settings.database``. Tests build their own in-memory engine with
``create_test_engine`` and pass a factory around instead.
"""
from __future__ import annotations

from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncGenerator

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from shift_escalation.config import get_settings
from shift_escalation.core.logging import get_logger
from shift_escalation.db.base import Base

log = get_logger(__name__)

MEMORY_SQLITE = "sqlite+aiosqlite:///:memory:"

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def _engine_options(url: str, echo: bool) -> dict[str, Any]:
    parsed = make_url(url)
    if parsed.get_backend_name() != "sqlite":
        return {
            "echo": echo,
            "pool_size": 5,
            "max_overflow": 10,
            "pool_recycle": 1800,
            "pool_pre_ping": True,
        }

    options: dict[str, Any] = {"echo": echo, "connect_args": {"check_same_thread": False}}
    if parsed.database in (None, "", ":memory:"):
        # Every checkout must see the same in-memory database
        options["poolclass"] = StaticPool
    else:
        Path(parsed.database).parent.mkdir(parents=True, exist_ok=True)
    return options


def get_engine() -> AsyncEngine:
    global _engine

    if _engine is None:
        database = get_settings().database
        _engine = create_async_engine(database.url, **_engine_options(database.url, database.echo))
        log.info("Database engine created", backend=make_url(database.url).get_backend_name())
    return _engine


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False, autoflush=False)


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    global _session_factory

    if _session_factory is None:
        _session_factory = create_session_factory(get_engine())
    return _session_factory


@asynccontextmanager
async def get_db_context(
    session_factory: async_sessionmaker[AsyncSession] | None = None,
) -> AsyncGenerator[AsyncSession, None]:
    """One unit of work: commit when the block exits cleanly, roll back otherwise."""
    async with (session_factory or get_session_factory())() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def init_db(engine: AsyncEngine | None = None) -> None:
    """Create missing tables."""
    from shift_escalation.db import models  # noqa: F401  registers the tables

    async with (engine or get_engine()).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    global _engine, _session_factory

    if _engine is None:
        return
    await _engine.dispose()
    _engine = None
    _session_factory = None


async def create_test_engine(url: str = MEMORY_SQLITE) -> AsyncEngine:
    """Engine with the schema already created."""
    engine = create_async_engine(url, **_engine_options(url, echo=False))
    await init_db(engine)
    return engine
