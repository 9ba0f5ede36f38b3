"""Account data consumed by the key lifecycle.

The account subsystem is external: rolekeys only reads the identity and
database settings of the account that owns a key.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class Owner:
    """Read-only view of the account that issues API keys."""

    id: str
    username: str

    # The account's own database role (reused by its master key)
    database_username: str
    database_password: str

    # Account-level public role; granted to every regular key role
    database_public_username: str

    # The only schema regular keys may grant table permissions on
    database_schema: str

    # Rendered search_path value, e.g. '"ana", cartodb, public'
    search_path: str

    # Account API key; doubles as the master key token
    api_key: str

    # Member group role of the organization, None for standalone accounts
    organization_member_role: str | None = None

    @property
    def is_organization_user(self) -> bool:
        return self.organization_member_role is not None


class AccountDirectory(ABC):
    """Lookup port into the account subsystem."""

    @abstractmethod
    async def get_owner(self, user_id: str) -> Owner | None:
        """Return the owner with this id, or None if the account is gone."""
        ...
