"""Test fixtures for the pricing engine."""
from __future__ import annotations

import os
import uuid
from collections.abc import AsyncIterator

import pytest
import pytest_asyncio

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./test.db")

from pricing_engine.core.config import get_settings
from pricing_engine.db.session import create_schema, dispose_engine


@pytest.fixture(scope="session")
def db_url(tmp_path_factory: pytest.TempPathFactory) -> str:
    """Provide a temporary SQLite database URL for the test session."""
    db_path = tmp_path_factory.mktemp("db") / "test.db"
    return f"sqlite+aiosqlite:///{db_path}"


@pytest_asyncio.fixture()
async def reset_database(db_url: str) -> AsyncIterator[None]:
    """Drop and recreate the pricing tables for an isolated test."""
    os.environ["DATABASE_URL"] = db_url
    get_settings.cache_clear()
    get_settings()

    await dispose_engine(db_url)
    await create_schema(db_url, drop_existing=True)
    yield
    await dispose_engine(db_url)


@pytest.fixture()
def account_id() -> uuid.UUID:
    """Return a fresh account identifier."""
    return uuid.uuid4()
