"""SQLModel data models and grant value types."""

from rolekeys.models.api_key import (
    NAME_DEFAULT_PUBLIC,
    NAME_MASTER,
    ApiKey,
    ApiKeyType,
)
from rolekeys.models.grants import (
    GrantSpec,
    PermissionSet,
    TablePermissions,
    grants_all_apis,
)

__all__ = [
    "ApiKey",
    "ApiKeyType",
    "NAME_MASTER",
    "NAME_DEFAULT_PUBLIC",
    "GrantSpec",
    "PermissionSet",
    "TablePermissions",
    "grants_all_apis",
]
