"""Async engine and sessions for the local archive.

The archive is a single SQLite file by default (aiosqlite driver). Any
async URL SQLAlchemy understands is accepted through STORAGE_DATABASE_URL.
"""

from __future__ import annotations

import contextlib
import logging
from collections.abc import AsyncGenerator
from pathlib import Path
from typing import Any

from sqlalchemy import event
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from bustapaga.config import settings

logger = logging.getLogger(__name__)


def _is_sqlite(url: str) -> bool:
    return make_url(url).get_backend_name() == "sqlite"


def sqlite_file(url: str) -> Path | None:
    """Path of a SQLite database file; None for other backends and in-memory databases."""
    parsed = make_url(url)
    if parsed.get_backend_name() != "sqlite":
        return None
    if not parsed.database or parsed.database == ":memory:":
        return None
    return Path(parsed.database)


def build_engine(url: str) -> AsyncEngine:
    """Create the async engine; SQLite connections get WAL and foreign keys."""
    if not _is_sqlite(url):
        return create_async_engine(url, pool_pre_ping=True)

    new_engine = create_async_engine(url)
    on_disk = sqlite_file(url) is not None

    @event.listens_for(new_engine.sync_engine, "connect")
    def _set_sqlite_pragmas(dbapi_connection: Any, _record: Any) -> None:
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        if on_disk:
            cursor.execute("PRAGMA journal_mode=WAL")
        cursor.close()

    return new_engine


engine: AsyncEngine = build_engine(settings.storage.database_url)

async_session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency: one session per request, committed on success."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


# ── Lifespan ─────────────────────────────────────────────────────────


async def init_db() -> None:
    """Create the database file's directory and any missing table."""
    import bustapaga.models  # noqa: F401  (registers every table)
    from bustapaga.models.base import Base

    path = sqlite_file(settings.storage.database_url)
    if path is not None:
        path.parent.mkdir(parents=True, exist_ok=True)
        logger.info("Archive database: %s", path.resolve())

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    await engine.dispose()


@contextlib.asynccontextmanager
async def db_lifespan() -> AsyncGenerator[None, None]:
    """Database lifecycle for the FastAPI lifespan: create on entry, dispose on exit."""
    await init_db()
    try:
        yield
    finally:
        await close_db()
