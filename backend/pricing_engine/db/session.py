"""Async engine, session factory and schema bootstrap for the pricing store."""

from __future__ import annotations

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from pricing_engine.core.config import get_settings
from pricing_engine.db.base import Base

_engines: dict[str, AsyncEngine] = {}
_sessionmakers: dict[str, async_sessionmaker[AsyncSession]] = {}


def _resolve_database_url(override: str | None = None) -> str:
    return override or get_settings().database_url


def get_engine(database_url: str | None = None) -> AsyncEngine:
    """Return the engine for ``database_url``, creating it on first use."""
    url = _resolve_database_url(database_url)
    engine = _engines.get(url)
    if engine is None:
        engine = create_async_engine(url, echo=False)
        _engines[url] = engine
    return engine


def get_sessionmaker(
    database_url: str | None = None,
) -> async_sessionmaker[AsyncSession]:
    """Return (and cache) an async sessionmaker for the given database URL.

    Sessions keep loaded conditions usable after commit so a snapshot taken
    inside a transaction stays readable once it ends.
    """
    url = _resolve_database_url(database_url)
    sessionmaker = _sessionmakers.get(url)
    if sessionmaker is None:
        sessionmaker = async_sessionmaker(
            get_engine(url), expire_on_commit=False, class_=AsyncSession
        )
        _sessionmakers[url] = sessionmaker
    return sessionmaker


async def create_schema(
    database_url: str | None = None, *, drop_existing: bool = False
) -> None:
    """Create the condition and waterfall tables, optionally dropping them first."""
    import pricing_engine.models  # noqa: F401  registers tables on Base.metadata

    async with get_engine(database_url).begin() as connection:
        if drop_existing:
            await connection.run_sync(Base.metadata.drop_all)
        await connection.run_sync(Base.metadata.create_all)


async def dispose_engine(database_url: str | None = None) -> None:
    """Dispose the cached engine/sessionmaker for the given database URL."""
    url = _resolve_database_url(database_url)
    _sessionmakers.pop(url, None)
    engine = _engines.pop(url, None)
    if engine is not None:
        await engine.dispose()
