"""Credential generation for regular API keys.

Token and role name are generated then checked against existing keys until
unused, at most ``max_create_attempts`` times. The check is best effort: two
concurrent creations can still pick the same value, which the store's unique
constraints reject at commit and the caller answers by generating again.
"""

from __future__ import annotations

import secrets
from collections.abc import Awaitable, Callable

import structlog

from rolekeys.config import CredentialsConfig
from rolekeys.errors import ConflictError
from rolekeys.utils.sql import MAX_IDENTIFIER_LENGTH, sanitize_identifier

logger = structlog.get_logger()

ExistsCheck = Callable[[str], Awaitable[bool]]

ROLE_INFIX = "_role_"
ROLE_SUFFIX_BYTES = 16

# Room left for the username so the random suffix is never truncated
_ROLE_PREFIX_LENGTH = MAX_IDENTIFIER_LENGTH - len(ROLE_INFIX) - 2 * ROLE_SUFFIX_BYTES


class CredentialGenerator:
    """Mints token, database role name and role password."""

    def __init__(self, config: CredentialsConfig | None = None) -> None:
        self._config = config or CredentialsConfig()
        self._log = logger.bind(service="credentials")

    def new_token(self) -> str:
        return secrets.token_urlsafe(self._config.token_bytes)

    def new_db_role(self, username: str) -> str:
        """``<username>_role_<32 hex>``, username cut to fit the identifier limit."""
        prefix = sanitize_identifier(username)[:_ROLE_PREFIX_LENGTH]
        return f"{prefix}{ROLE_INFIX}{secrets.token_hex(ROLE_SUFFIX_BYTES)}"

    def new_password(self) -> str:
        """Random hex password (password_length chars)."""
        return secrets.token_hex(self._config.password_length // 2)

    async def generate_token(self, exists: ExistsCheck) -> str:
        """Generate a token no existing key holds.

        Args:
            exists: Async check returning True if a key already holds the token

        Raises:
            ConflictError: If every attempt collided
        """
        for attempt in range(1, self._config.max_create_attempts + 1):
            token = self.new_token()
            if not await exists(token):
                return token
            self._log.warning("credentials.token.collision", attempt=attempt)

        raise ConflictError(
            "Could not generate an unused token",
            details={"attempts": self._config.max_create_attempts},
        )

    async def generate_db_role(self, username: str, exists: ExistsCheck) -> str:
        """Generate a sanitized role name no existing key holds.

        Raises:
            ConflictError: If every attempt collided
        """
        for attempt in range(1, self._config.max_create_attempts + 1):
            db_role = self.new_db_role(username)
            if not await exists(db_role):
                return db_role
            self._log.warning("credentials.db_role.collision", db_role=db_role, attempt=attempt)

        raise ConflictError(
            "Could not generate an unused database role name",
            details={"attempts": self._config.max_create_attempts},
        )
