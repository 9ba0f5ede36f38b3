"""Unit tests for ApiKeyCache."""

from __future__ import annotations

import pytest

from rolekeys.config import CacheConfig
from rolekeys.models.api_key import ApiKey
from rolekeys.models.grants import grants_all_apis
from rolekeys.services.cache import ApiKeyCache, close_redis_client, get_redis_client
from tests.fakes import FakeCacheClient, make_owner


def _regular_key(token: str = "tok-1") -> ApiKey:
    return ApiKey(
        id="key-1",
        user_id="user-1",
        type="regular",
        name="reporting",
        token=token,
        grants=[{"type": "apis", "apis": ["sql"]}],
        db_role="ana_role_1",
        db_password="pw",
    )


@pytest.fixture
def client() -> FakeCacheClient:
    return FakeCacheClient()


@pytest.fixture
def cache(client: FakeCacheClient) -> ApiKeyCache:
    return ApiKeyCache(client)


class TestEntry:
    def test_cache_key(self, cache):
        assert cache.cache_key("ana", "tok-1") == "api_keys:ana:tok-1"

    def test_custom_prefix(self, client):
        assert ApiKeyCache(client, key_prefix="k:").cache_key("ana", "t") == "k:ana:t"

    def test_regular_entry(self, cache):
        entry = cache.build_entry(_regular_key(), make_owner())

        assert entry == {
            "user": "ana",
            "type": "regular",
            "database_role": "ana_role_1",
            "database_password": "pw",
            "grants_sql": "true",
        }

    def test_all_apis_entry(self, cache):
        api_key = _regular_key()
        api_key.type = "master"
        api_key.grants = grants_all_apis()

        entry = cache.build_entry(api_key, make_owner())

        assert entry["grants_sql"] == "true"
        assert entry["grants_maps"] == "true"
        assert entry["type"] == "master"


class TestSync:
    async def test_sync_publishes(self, cache, client):
        await cache.sync(_regular_key(), make_owner())

        assert client.calls == [("hset", "api_keys:ana:tok-1")]
        assert (await client.hgetall("api_keys:ana:tok-1"))["database_role"] == "ana_role_1"

    async def test_sync_same_token_does_not_delete(self, cache, client):
        await cache.sync(_regular_key(), make_owner(), previous_token="tok-1")
        assert client.calls == [("hset", "api_keys:ana:tok-1")]

    async def test_sync_rotated_token(self, cache, client):
        await cache.sync(_regular_key("tok-1"), make_owner())

        await cache.sync(_regular_key("tok-2"), make_owner(), previous_token="tok-1")

        assert client.calls[1:] == [
            ("delete", "api_keys:ana:tok-1"),
            ("hset", "api_keys:ana:tok-2"),
        ]
        assert set(client.store) == {"api_keys:ana:tok-2"}

    async def test_remove(self, cache, client):
        await cache.sync(_regular_key(), make_owner())

        await cache.remove("ana", "tok-1")

        assert client.store == {}

    async def test_client_errors_propagate(self, cache, client):
        async def unavailable(*args, **kwargs):
            raise ConnectionError("cache unavailable")

        client.hset = unavailable

        with pytest.raises(ConnectionError):
            await cache.sync(_regular_key(), make_owner())


class TestRedisClient:
    async def test_process_wide_client(self):
        config = CacheConfig(url="redis://localhost:6379/5")

        client = get_redis_client(config)

        assert get_redis_client(config) is client
        await close_redis_client()
        assert get_redis_client(config) is not client
        await close_redis_client()
