"""Grant specification and per-table permission sets.

A grants payload is a JSON array of sections:

    [
        {"type": "apis", "apis": ["sql", "maps"]},
        {"type": "database", "tables": [
            {"schema": "public", "name": "orders", "permissions": ["select"]}
        ]}
    ]

Exactly one ``apis`` section is required, at most one ``database`` section
is allowed. Permission names are case-insensitive and folded to lower case.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator
from pydantic import ValidationError as PydanticValidationError

from rolekeys.errors import InvalidGrantsError, UnprocessableEntityError

API_SQL = "sql"
API_MAPS = "maps"
ALL_APIS = (API_SQL, API_MAPS)

SECTION_APIS = "apis"
SECTION_DATABASE = "database"

WRITE_PERMISSIONS = frozenset({"insert", "update", "delete", "truncate"})
KNOWN_PERMISSIONS = WRITE_PERMISSIONS | {"select", "references", "trigger"}


def grants_all_apis() -> list[dict[str, Any]]:
    """Canonical grants of master and default public keys: every API, no tables."""
    return [{"type": SECTION_APIS, "apis": list(ALL_APIS)}]


class PermissionSet:
    """Lower-case permission names, unique, kept in first-granted order.

    Order is informational only; equality ignores it.
    """

    def __init__(self, permissions: Iterable[str] = ()) -> None:
        self._items: list[str] = []
        self.merge(permissions)

    def merge(self, permissions: Iterable[str]) -> None:
        """Add permissions not already present (case-insensitive)."""
        for permission in permissions:
            permission = permission.lower()
            if permission not in self._items:
                self._items.append(permission)

    @property
    def is_write(self) -> bool:
        return not WRITE_PERMISSIONS.isdisjoint(self._items)

    def as_list(self) -> list[str]:
        return list(self._items)

    def __iter__(self) -> Iterator[str]:
        return iter(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, permission: object) -> bool:
        return isinstance(permission, str) and permission.lower() in self._items

    def __eq__(self, other: object) -> bool:
        if isinstance(other, PermissionSet):
            return set(self._items) == set(other._items)
        if isinstance(other, (set, frozenset)):
            return set(self._items) == other
        return NotImplemented

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        return f"PermissionSet({self._items!r})"


@dataclass
class TablePermissions:
    """Merged permissions granted on one (schema, table)."""

    schema: str
    name: str
    permissions: PermissionSet = field(default_factory=PermissionSet)

    @property
    def table_id(self) -> str:
        return f"{self.schema}.{self.name}"

    @property
    def is_write(self) -> bool:
        return self.permissions.is_write

    def merge(self, permissions: Iterable[str]) -> None:
        self.permissions.merge(permissions)

    def to_dict(self) -> dict[str, Any]:
        return {
            "schema": self.schema,
            "name": self.name,
            "permissions": self.permissions.as_list(),
        }


# ---------------------------------------------------------------------------
# Structural shape of each section
# ---------------------------------------------------------------------------


class TableGrant(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    schema_name: str = Field(alias="schema", min_length=1)
    name: str = Field(min_length=1)
    permissions: list[str]

    @field_validator("permissions")
    @classmethod
    def _known_permissions(cls, value: list[str]) -> list[str]:
        unknown = [p for p in value if p.lower() not in KNOWN_PERMISSIONS]
        if unknown:
            raise ValueError(f"unknown permissions: {', '.join(unknown)}")
        return value


class ApisSection(BaseModel):
    model_config = ConfigDict(extra="forbid")

    type: Literal["apis"]
    # Optional here: a missing list is reported lazily by GrantSpec.granted_apis()
    apis: list[Literal["sql", "maps"]] | None = None


class DatabaseSection(BaseModel):
    model_config = ConfigDict(extra="forbid")

    type: Literal["database"]
    tables: list[TableGrant]


GrantSection = Annotated[Union[ApisSection, DatabaseSection], Field(discriminator="type")]

_sections_adapter: TypeAdapter[list[GrantSection]] = TypeAdapter(list[GrantSection])


def _section_type(section: Any) -> Any:
    return section.get("type") if isinstance(section, dict) else None


class GrantSpec:
    """Parsed view over a grants payload.

    Derived views are computed on first access and memoized; the payload is
    treated as immutable for the lifetime of the instance.
    """

    def __init__(self, grants: list[dict[str, Any]]) -> None:
        self._grants = grants
        self._granted_apis: list[str] | None = None
        self._table_permissions: dict[str, TablePermissions] | None = None

    @staticmethod
    def validate(grants: Any) -> list[str]:
        """Return every problem with a grants payload (empty when valid)."""
        if not isinstance(grants, list):
            return ["grants has to be an array"]

        errors: list[str] = []
        types = [_section_type(section) for section in grants]
        if types.count(SECTION_APIS) != 1:
            errors.append("only one apis section is allowed")
        if types.count(SECTION_DATABASE) > 1:
            errors.append("only one database section is allowed")

        try:
            _sections_adapter.validate_python(grants)
        except PydanticValidationError as e:
            for err in e.errors():
                location = ".".join(str(part) for part in err["loc"])
                errors.append(f"section {location}: {err['msg']}")

        return errors

    @classmethod
    def parse(cls, grants: Any) -> GrantSpec:
        """Validate and wrap a grants payload.

        Raises:
            InvalidGrantsError: If the payload is not acceptable
        """
        errors = cls.validate(grants)
        if errors:
            raise InvalidGrantsError(errors)
        return cls(grants)

    @property
    def raw(self) -> list[dict[str, Any]]:
        return self._grants

    def is_all_apis(self) -> bool:
        return self._grants == grants_all_apis()

    def granted_apis(self) -> list[str]:
        """API names of the apis section.

        Raises:
            UnprocessableEntityError: If the apis section carries no apis list
        """
        if self._granted_apis is None:
            section = self._find_section(SECTION_APIS)
            apis = section.get("apis") if section else None
            if apis is None:
                raise UnprocessableEntityError('apis array is needed for type "apis"')
            self._granted_apis = list(apis)
        return self._granted_apis

    def table_permissions(self) -> list[TablePermissions]:
        """Merged permissions per table of the database section (may be empty)."""
        if self._table_permissions is None:
            self._table_permissions = self._build_table_permissions()
        return list(self._table_permissions.values())

    def affected_schemas(self) -> list[str]:
        """Distinct schemas referenced by table grants, in first-seen order."""
        return list(dict.fromkeys(tp.schema for tp in self.table_permissions()))

    def _find_section(self, section_type: str) -> dict[str, Any] | None:
        for section in self._grants:
            if _section_type(section) == section_type:
                return section
        return None

    def _build_table_permissions(self) -> dict[str, TablePermissions]:
        table_permissions: dict[str, TablePermissions] = {}

        database = self._find_section(SECTION_DATABASE)
        if not database:
            return table_permissions

        for table in database.get("tables") or []:
            table_id = f"{table['schema']}.{table['name']}"
            if table_id not in table_permissions:
                table_permissions[table_id] = TablePermissions(
                    schema=table["schema"],
                    name=table["name"],
                )
            table_permissions[table_id].merge(table.get("permissions") or [])

        return table_permissions
