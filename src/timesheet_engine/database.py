"""Process-wide engine and session lifecycle."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from timesheet_engine.config import Settings, get_settings

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def init_db(
    settings: Settings | None = None,
) -> tuple[AsyncEngine, async_sessionmaker[AsyncSession]]:
    """Build the engine for DATABASE_URL once; later calls reuse it."""
    global _engine, _session_factory
    if _engine is None or _session_factory is None:
        settings = settings or get_settings()
        _engine = create_async_engine(
            settings.database_url, echo=settings.debug, pool_pre_ping=True
        )
        # Services hand loaded entries back to callers after commit
        _session_factory = async_sessionmaker(
            _engine, expire_on_commit=False, autoflush=False
        )
    return _engine, _session_factory


@asynccontextmanager
async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Session that commits on success and rolls back on error."""
    _, factory = init_db()
    async with factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def dispose_db() -> None:
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _session_factory = None
