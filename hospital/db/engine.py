"""Database access for the scheduling core.

One asyncpg-backed SQLAlchemy engine per process. Request handlers get a
session through ``get_session``; background jobs (the no-show sweep, the
audit subscriber) open their own from ``async_session_factory``.
"""

from __future__ import annotations

import contextlib
import logging
from collections.abc import AsyncGenerator

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from hospital.config import settings
from hospital.events import discard_pending, publish_pending

logger = logging.getLogger(__name__)

# ── Engine ───────────────────────────────────────────────────────────

engine: AsyncEngine = create_async_engine(
    settings.db.database_url,
    echo=settings.log_level == "DEBUG",
    pool_size=settings.db.pool_size,
    max_overflow=settings.db.max_overflow,
    pool_pre_ping=True,
    pool_recycle=3600,
)

# Objects stay readable after commit; API responses serialise them then.
async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency: one session, one transaction per request.

    Commits when the handler returns and rolls back when it raises, so a
    rejected booking or transition never leaves a partial write (or an
    orphan notification) behind. Row locks taken by the scheduling
    service are held until this commit. Events the handler deferred are
    published only after the commit succeeds and dropped on rollback.
    """
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            discard_pending(session)
            raise
        await publish_pending(session)


# ── Startup / shutdown ───────────────────────────────────────────────


async def init_db() -> None:
    """Check connectivity; outside production also create missing tables.

    Production schemas come from the Alembic migrations only.
    """
    from hospital.models import Base

    async with engine.begin() as conn:
        if not settings.is_production:
            await conn.run_sync(Base.metadata.create_all)
    logger.info("Database ready (%d tables registered)", len(Base.metadata.tables))


async def close_db() -> None:
    await engine.dispose()


@contextlib.asynccontextmanager
async def db_lifespan() -> AsyncGenerator[None, None]:
    """Open the pool for the lifetime of the app and dispose it on exit."""
    await init_db()
    try:
        yield
    finally:
        await close_db()
