"""Datetime helpers."""

from __future__ import annotations

from datetime import UTC, datetime


def utcnow() -> datetime:
    """Return current UTC time as a timezone-aware datetime.

    ApiKey timestamp columns are ``TIMESTAMP WITH TIME ZONE`` and only ever
    receive aware values.
    """
    return datetime.now(UTC)
