"""Shared fixtures for unit tests: in-memory store, fakes and a wired manager."""

from __future__ import annotations

from unittest.mock import patch

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlmodel import SQLModel

import rolekeys.models  # noqa: F401
from rolekeys.config import Settings
from rolekeys.managers.api_key import ApiKeyManager
from rolekeys.services.cache import ApiKeyCache
from rolekeys.services.provisioning import RoleProvisioner
from tests.fakes import FakeCacheClient, FakeSqlExecutor


@pytest.fixture
def fake_settings() -> Settings:
    """Create test settings with minimal config."""
    return Settings(
        database={"url": "sqlite+aiosqlite:///:memory:"},
        credentials={"max_create_attempts": 3},
    )


@pytest.fixture
async def db_session():
    """Create in-memory SQLite database and session."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
    )

    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)

    async_session_factory = sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    async with async_session_factory() as session:
        yield session

    await engine.dispose()


@pytest.fixture
def fake_executor() -> FakeSqlExecutor:
    return FakeSqlExecutor()


@pytest.fixture
def fake_cache_client() -> FakeCacheClient:
    return FakeCacheClient()


@pytest.fixture
def api_key_manager(
    db_session: AsyncSession,
    fake_executor: FakeSqlExecutor,
    fake_cache_client: FakeCacheClient,
    fake_settings: Settings,
) -> ApiKeyManager:
    """Create ApiKeyManager over the in-memory store and fakes."""
    with patch("rolekeys.managers.api_key.api_key.get_settings", return_value=fake_settings):
        manager = ApiKeyManager(
            db_session=db_session,
            provisioner=RoleProvisioner(fake_executor),
            cache=ApiKeyCache(fake_cache_client),
        )
        yield manager
