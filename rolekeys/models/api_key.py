"""API Key data model.

One row per issued key. Regular keys carry the credentials of the database
role created for them; master and default public keys carry the account's
own role credentials.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from sqlalchemy import JSON, Column, DateTime, Index, UniqueConstraint, text
from sqlmodel import Field, SQLModel

from rolekeys.models.grants import GrantSpec, TablePermissions
from rolekeys.utils.datetime import utcnow


class ApiKeyType(str, Enum):
    """API key type."""

    MASTER = "master"
    DEFAULT_PUBLIC = "default_public"
    REGULAR = "regular"


VALID_TYPES = tuple(t.value for t in ApiKeyType)

NAME_MASTER = "Master"
NAME_DEFAULT_PUBLIC = "Default public"


class ApiKey(SQLModel, table=True):
    """API key record.

    Uniqueness is enforced by the store, not only by pre-checks:
    - name per owner
    - token per owner (the default public token is shared by every owner)
    - one master and one default public key per owner
    - db_role across regular keys
    """

    __tablename__ = "api_keys"
    __table_args__ = (
        UniqueConstraint("user_id", "name", name="uq_api_keys_user_name"),
        UniqueConstraint("user_id", "token", name="uq_api_keys_user_token"),
        Index(
            "uq_api_keys_user_singleton_type",
            "user_id",
            "type",
            unique=True,
            sqlite_where=text("type != 'regular'"),
            postgresql_where=text("type != 'regular'"),
        ),
        Index(
            "uq_api_keys_regular_db_role",
            "db_role",
            unique=True,
            sqlite_where=text("type = 'regular'"),
            postgresql_where=text("type = 'regular'"),
        ),
    )

    id: str = Field(primary_key=True)
    user_id: str = Field(index=True)
    type: str = Field(default=ApiKeyType.REGULAR.value)
    name: str
    token: str = Field(index=True)

    # Grants payload as submitted, see rolekeys.models.grants
    grants: list[dict[str, Any]] = Field(
        default_factory=list,
        sa_column=Column(JSON, nullable=False),
    )

    db_role: Optional[str] = Field(default=None)
    db_password: Optional[str] = Field(default=None)

    # Set once the database role is known to match the grants.
    # NULL on a regular key means provisioning has not completed.
    provisioned_at: Optional[datetime] = Field(default=None, sa_type=DateTime(timezone=True))

    # Timestamps are timezone-aware UTC
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))
    updated_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))

    @property
    def is_master(self) -> bool:
        return self.type == ApiKeyType.MASTER

    @property
    def is_default_public(self) -> bool:
        return self.type == ApiKeyType.DEFAULT_PUBLIC

    @property
    def is_regular(self) -> bool:
        return self.type == ApiKeyType.REGULAR

    @property
    def can_be_deleted(self) -> bool:
        """Only regular keys may be deleted by their owner."""
        return self.is_regular

    @property
    def grant_spec(self) -> GrantSpec:
        return GrantSpec(self.grants)

    def granted_apis(self) -> list[str]:
        return self.grant_spec.granted_apis()

    def table_permissions(self) -> list[TablePermissions]:
        return self.grant_spec.table_permissions()

    def affected_schemas(self) -> list[str]:
        return self.grant_spec.affected_schemas()
