"""Unit tests for per-key locks."""

from __future__ import annotations

from rolekeys.concurrency.locks import cleanup_api_key_lock, get_api_key_lock, get_lock_count


class TestApiKeyLocks:
    async def test_same_key_same_lock(self):
        first = await get_api_key_lock("lock-test-1")
        second = await get_api_key_lock("lock-test-1")

        assert first is second
        await cleanup_api_key_lock("lock-test-1")

    async def test_different_keys(self):
        a = await get_api_key_lock("lock-test-a")
        b = await get_api_key_lock("lock-test-b")

        assert a is not b
        await cleanup_api_key_lock("lock-test-a")
        await cleanup_api_key_lock("lock-test-b")

    async def test_cleanup(self):
        before = get_lock_count()
        await get_api_key_lock("lock-test-2")
        assert get_lock_count() == before + 1

        await cleanup_api_key_lock("lock-test-2")
        await cleanup_api_key_lock("lock-test-2")

        assert get_lock_count() == before
