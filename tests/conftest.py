"""
Global pytest configuration and fixtures for Musterbook billing tests.
"""

import os

# Tests never talk to a real database or gateway unless a fixture builds one
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.pop("DATABASE__URL", None)

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from musterbook.platform.db import create_all_tables, create_engine_for_url


@pytest_asyncio.fixture
async def async_engine(tmp_path):
    """File-backed SQLite engine so separate sessions see each other's commits."""
    engine = create_engine_for_url(f"sqlite+aiosqlite:///{tmp_path / 'billing.sqlite'}")
    await create_all_tables(engine)
    try:
        yield engine
    finally:
        await engine.dispose()


@pytest.fixture
def session_maker(async_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=async_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture
async def async_session(session_maker):
    async with session_maker() as session:
        yield session
