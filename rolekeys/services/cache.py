"""Key-value projection of API keys.

Request authenticators look keys up by ``api_keys:<username>:<token>``
instead of querying the record store. Each entry is a flat hash:

    user, type, database_role, database_password, grants_<api>...

The cache is written after the record commits and is never authoritative;
errors from the client propagate to the caller unchanged.
"""

from __future__ import annotations

import structlog
from redis.asyncio import Redis

from rolekeys.accounts import Owner
from rolekeys.config import CacheConfig
from rolekeys.models.api_key import ApiKey

logger = structlog.get_logger()

_redis_client: Redis | None = None


def get_redis_client(config: CacheConfig) -> Redis:
    """Get or create the process-wide redis client."""
    global _redis_client
    if _redis_client is None:
        _redis_client = Redis.from_url(config.url, decode_responses=True)
    return _redis_client


async def close_redis_client() -> None:
    global _redis_client
    if _redis_client is not None:
        await _redis_client.aclose()
        _redis_client = None


class ApiKeyCache:
    """Publishes and removes the cache entry of an API key."""

    def __init__(self, client: Redis, key_prefix: str = "api_keys:") -> None:
        self._client = client
        self._key_prefix = key_prefix
        self._log = logger.bind(service="api_key_cache")

    def cache_key(self, username: str, token: str) -> str:
        return f"{self._key_prefix}{username}:{token}"

    def build_entry(self, api_key: ApiKey, owner: Owner) -> dict[str, str]:
        entry = {
            "user": owner.username,
            "type": api_key.type,
            "database_role": api_key.db_role or "",
            "database_password": api_key.db_password or "",
        }
        for api in api_key.granted_apis():
            entry[f"grants_{api}"] = "true"
        return entry

    async def add(self, api_key: ApiKey, owner: Owner) -> None:
        await self._client.hset(
            self.cache_key(owner.username, api_key.token),
            mapping=self.build_entry(api_key, owner),
        )

    async def remove(self, username: str, token: str) -> None:
        await self._client.delete(self.cache_key(username, token))

    async def sync(self, api_key: ApiKey, owner: Owner, *, previous_token: str | None = None) -> None:
        """Publish the entry; drop the one under ``previous_token`` first if it rotated."""
        if previous_token is not None and previous_token != api_key.token:
            await self.remove(owner.username, previous_token)
            self._log.info("cache.rotate", api_key_id=api_key.id, user=owner.username)
        await self.add(api_key, owner)
        self._log.debug("cache.sync", api_key_id=api_key.id, user=owner.username)
