"""Database role provisioning for regular API keys.

A regular key is backed by a login role holding exactly the table
permissions of its grants. Creation and teardown are ordered lists of
``RoleCommand`` built by pure functions, then run one by one through a
``SqlExecutor``. Commands are independent: a failure stops the sequence but
does not undo the commands already executed.

Creation:
1. CREATE ROLE (login, no superuser, no createdb)
2. GRANT account public role
3. ALTER ROLE ... SET search_path
4. GRANT organization member role (organization accounts only)
5. GRANT <permissions> ON TABLE, per table with permissions
6. GRANT USAGE ON SCHEMA + USAGE, SELECT ON ALL SEQUENCES, per schema

Teardown:
1. REVOKE table, schema and sequence privileges, per schema
2. DROP ROLE
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass

import structlog
from sqlalchemy.exc import DBAPIError

from rolekeys.accounts import Owner
from rolekeys.db.executor import SqlExecutor
from rolekeys.errors import ProvisioningError
from rolekeys.models.api_key import ApiKey
from rolekeys.models.grants import PermissionSet, TablePermissions
from rolekeys.utils.sql import quote_identifier, quote_literal

logger = structlog.get_logger()

# Engine message after the server's "ERROR:" prefix, or after the exception
# class marker some async drivers put in front of it
_ENGINE_MESSAGE_PATTERNS = (
    re.compile(r"ERROR:\s+(.+)"),
    re.compile(r"^<class '[\w.]+'>:\s*(.+)"),
)

_LIVE_GRANTS_QUERY = """
    SELECT
      table_schema,
      table_name,
      string_agg(lower(privilege_type), ',') AS privilege_types
    FROM
      information_schema.role_table_grants
    WHERE
      grantee = :role
    GROUP BY
      table_schema,
      table_name
"""

_ROLE_EXISTS_QUERY = "SELECT 1 AS found FROM pg_roles WHERE rolname = :role"


@dataclass(frozen=True)
class RoleCommand:
    """One privilege-management statement.

    ``action`` is a stable label for logs; ``sql`` may carry a password and
    must never be logged.
    """

    action: str
    sql: str


def build_create_role_commands(db_role: str, db_password: str, owner: Owner) -> list[RoleCommand]:
    role = quote_identifier(db_role)
    commands = [
        RoleCommand(
            "create_role",
            f"CREATE ROLE {role} NOSUPERUSER NOCREATEDB LOGIN ENCRYPTED PASSWORD {quote_literal(db_password)}",
        ),
        RoleCommand(
            "grant_public_role",
            f"GRANT {quote_identifier(owner.database_public_username)} TO {role}",
        ),
        RoleCommand(
            "set_search_path",
            f"ALTER ROLE {role} SET search_path TO {owner.search_path}",
        ),
    ]
    if owner.organization_member_role:
        commands.append(
            RoleCommand(
                "grant_organization_role",
                f"GRANT {quote_identifier(owner.organization_member_role)} TO {role}",
            )
        )
    return commands


def build_grant_commands(db_role: str, table_permissions: Iterable[TablePermissions]) -> list[RoleCommand]:
    """Table grants, then schema/sequence usage for every schema granted on."""
    role = quote_identifier(db_role)
    commands: list[RoleCommand] = []
    schemas: list[str] = []

    for tp in table_permissions:
        if not tp.permissions:
            continue
        commands.append(
            RoleCommand(
                "grant_table",
                f"GRANT {', '.join(tp.permissions)} ON TABLE "
                f"{quote_identifier(tp.schema)}.{quote_identifier(tp.name)} TO {role}",
            )
        )
        if tp.schema not in schemas:
            schemas.append(tp.schema)

    # Sequences backing serial columns need these for inserts to work
    for schema in schemas:
        quoted = quote_identifier(schema)
        commands.append(RoleCommand("grant_schema_usage", f"GRANT USAGE ON SCHEMA {quoted} TO {role}"))
        commands.append(
            RoleCommand(
                "grant_sequences",
                f"GRANT USAGE, SELECT ON ALL SEQUENCES IN SCHEMA {quoted} TO {role}",
            )
        )

    return commands


def build_provision_commands(api_key: ApiKey, owner: Owner) -> list[RoleCommand]:
    """Full creation sequence for a regular key."""
    return build_create_role_commands(api_key.db_role, api_key.db_password, owner) + build_grant_commands(
        api_key.db_role, api_key.table_permissions()
    )


def build_teardown_commands(db_role: str, schemas: Iterable[str]) -> list[RoleCommand]:
    role = quote_identifier(db_role)
    commands: list[RoleCommand] = []
    for schema in dict.fromkeys(schemas):
        quoted = quote_identifier(schema)
        commands.extend(
            [
                RoleCommand(
                    "revoke_tables",
                    f"REVOKE ALL PRIVILEGES ON ALL TABLES IN SCHEMA {quoted} FROM {role}",
                ),
                RoleCommand("revoke_schema_usage", f"REVOKE USAGE ON SCHEMA {quoted} FROM {role}"),
                RoleCommand(
                    "revoke_sequences",
                    f"REVOKE USAGE, SELECT ON ALL SEQUENCES IN SCHEMA {quoted} FROM {role}",
                ),
            ]
        )
    commands.append(RoleCommand("drop_role", f"DROP ROLE {role}"))
    return commands


def extract_engine_message(exc: BaseException) -> str | None:
    """Pull the engine's own message out of a driver exception."""
    source = getattr(exc, "orig", None) or exc
    text = str(source)
    for pattern in _ENGINE_MESSAGE_PATTERNS:
        match = pattern.search(text)
        if match:
            return match.group(1).strip()
    return None


class RoleProvisioner:
    """Runs role creation/teardown sequences against the database engine."""

    def __init__(self, executor: SqlExecutor) -> None:
        self._executor = executor
        self._log = logger.bind(service="provisioner")

    async def provision(self, api_key: ApiKey, owner: Owner) -> None:
        """Create the key's role and grant its table permissions.

        Raises:
            ProvisioningError: If any command fails
        """
        commands = build_provision_commands(api_key, owner)
        self._log.info(
            "provisioning.provision",
            api_key_id=api_key.id,
            db_role=api_key.db_role,
            commands=len(commands),
        )
        await self._run_all(commands, db_role=api_key.db_role)

    async def deprovision(self, db_role: str, schemas: Iterable[str]) -> bool:
        """Revoke everything on ``schemas`` and drop the role.

        Safe to call again after a partial or complete teardown: a role that
        no longer exists is skipped.

        Returns:
            False if the role did not exist
        """
        if not await self.role_exists(db_role):
            self._log.info("provisioning.deprovision.skip", db_role=db_role, reason="role_missing")
            return False

        commands = build_teardown_commands(db_role, schemas)
        self._log.info("provisioning.deprovision", db_role=db_role, commands=len(commands))
        await self._run_all(commands, db_role=db_role)
        return True

    async def role_exists(self, db_role: str) -> bool:
        rows = await self._executor.fetch(_ROLE_EXISTS_QUERY, {"role": db_role})
        return bool(rows)

    async def table_permissions_from_db(self, db_role: str) -> list[TablePermissions]:
        """Table permissions the role holds right now, per the grant catalog."""
        rows = await self._executor.fetch(_LIVE_GRANTS_QUERY, {"role": db_role})
        return [
            TablePermissions(
                schema=row["table_schema"],
                name=row["table_name"],
                permissions=PermissionSet(row["privilege_types"].split(",")),
            )
            for row in rows
        ]

    async def _run_all(self, commands: list[RoleCommand], *, db_role: str) -> None:
        for command in commands:
            await self._run(command, db_role=db_role)

    async def _run(self, command: RoleCommand, *, db_role: str) -> None:
        try:
            await self._executor.run(command.sql)
        except DBAPIError as e:
            message = extract_engine_message(e)
            self._log.warning(
                "provisioning.command.failed",
                action=command.action,
                db_role=db_role,
                error=message or type(e).__name__,
            )
            raise ProvisioningError(message, details={"action": command.action}) from e
