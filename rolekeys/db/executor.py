"""SQL execution channel for privilege-management commands.

Commands run with elevated privilege against the database engine that hosts
the account schemas, which is usually not the record store.

Executor is responsible ONLY for running SQL. It does NOT handle:
- Building commands
- Translating engine errors (see RoleProvisioner)
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

import structlog
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from rolekeys.config import Settings

logger = structlog.get_logger()


class SqlExecutor(ABC):
    """Abstract SQL execution channel."""

    @abstractmethod
    async def run(self, sql: str) -> None:
        """Execute one command in its own transaction.

        Raises:
            sqlalchemy.exc.DBAPIError: If the engine rejects the command
        """
        ...

    @abstractmethod
    async def fetch(self, sql: str, params: dict[str, Any] | None = None) -> list[dict[str, Any]]:
        """Run a read query with bind parameters and return rows as dicts."""
        ...

    async def close(self) -> None:
        """Release connections (no-op by default)."""
        return None


class EngineSqlExecutor(SqlExecutor):
    """SqlExecutor over an async SQLAlchemy engine."""

    def __init__(self, engine: AsyncEngine) -> None:
        self._engine = engine
        self._log = logger.bind(service="sql_executor")

    @classmethod
    def from_settings(cls, settings: Settings) -> EngineSqlExecutor:
        return cls(create_async_engine(settings.provisioning.superuser_url, future=True))

    async def run(self, sql: str) -> None:
        # exec_driver_sql: DDL text must not be scanned for :bind markers
        async with self._engine.begin() as conn:
            await conn.exec_driver_sql(sql)

    async def fetch(self, sql: str, params: dict[str, Any] | None = None) -> list[dict[str, Any]]:
        async with self._engine.connect() as conn:
            result = await conn.execute(text(sql), params or {})
            return [dict(row) for row in result.mappings().all()]

    async def close(self) -> None:
        await self._engine.dispose()
        self._log.debug("sql_executor.closed")
