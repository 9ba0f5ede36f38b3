"""Concurrency utilities for rolekeys."""

from rolekeys.concurrency.locks import cleanup_api_key_lock, get_api_key_lock

__all__ = ["get_api_key_lock", "cleanup_api_key_lock"]
