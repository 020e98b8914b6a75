"""Async engine, session factory and schema bootstrap for the match store."""

import logging

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from load_hunter.app.config import get_settings

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    """Declarative base shared by plans, loads, matches and mappings."""
    pass


def is_sqlite(database_url: str) -> bool:
    return database_url.startswith("sqlite")


def build_engine(database_url: str, *, echo: bool = False) -> AsyncEngine:
    """Create the async engine with driver-appropriate pooling.

    SQLite gets a generous lock timeout since the expiry sweep writes from
    a background task while requests read; server databases get a small
    bounded pool.
    """
    kwargs: dict = {"echo": echo}
    if is_sqlite(database_url):
        kwargs["connect_args"] = {"check_same_thread": False, "timeout": 30}
    else:
        kwargs["pool_size"] = 5
        kwargs["max_overflow"] = 10
        kwargs["pool_pre_ping"] = True
    return create_async_engine(database_url, **kwargs)


settings = get_settings()
engine = build_engine(settings.database_url)
async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def get_db():
    """FastAPI dependency: yield an async database session."""
    async with async_session() as session:
        try:
            yield session
        finally:
            await session.close()


async def init_db(target: AsyncEngine | None = None):
    """Create missing tables. Production schemas are managed by migrations."""
    import load_hunter.domain.models  # noqa: F401

    target = target or engine
    async with target.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    if is_sqlite(str(target.url)) and target.url.database not in (None, "", ":memory:"):
        async with target.begin() as conn:
            await conn.execute(text("PRAGMA journal_mode=WAL"))
            await conn.execute(text("PRAGMA busy_timeout=30000"))
    logger.info("Database ready (%s)", target.url.render_as_string(hide_password=True))
