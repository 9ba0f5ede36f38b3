"""API-key-level in-memory locks for concurrency control.

This module provides per-key locks used by:
- ApiKeyManager (delete, regenerate_token, reprovision)
- ProvisioningReconciler (through ApiKeyManager.reprovision)

Note: These locks only work within a single process/instance.
Across instances, the store's unique constraints and idempotent teardown
keep concurrent operations on the same key safe.
"""

from __future__ import annotations

import asyncio

# Key: api_key_id, Value: asyncio.Lock
_api_key_locks: dict[str, asyncio.Lock] = {}
_api_key_locks_lock = asyncio.Lock()


async def get_api_key_lock(api_key_id: str) -> asyncio.Lock:
    """Get or create a lock for a specific API key.

    Serializes operations on the same key, e.g. a delete racing the
    reconciler re-provisioning the same role.

    Args:
        api_key_id: The API key ID to get lock for

    Returns:
        asyncio.Lock for the specified key
    """
    async with _api_key_locks_lock:
        if api_key_id not in _api_key_locks:
            _api_key_locks[api_key_id] = asyncio.Lock()
        return _api_key_locks[api_key_id]


async def cleanup_api_key_lock(api_key_id: str) -> None:
    """Cleanup lock for a deleted API key."""
    async with _api_key_locks_lock:
        _api_key_locks.pop(api_key_id, None)


def get_lock_count() -> int:
    """Get current number of locks (for testing/metrics)."""
    return len(_api_key_locks)
