"""ApiKeyManager - API key lifecycle.

Create: validate -> mint credentials (regular only) -> commit record ->
provision role (regular only) -> publish cache entry.
Delete: remove record (uncommitted) -> tear down role -> commit -> drop cache entry.
"""

from __future__ import annotations

import uuid
from typing import Any

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from rolekeys.accounts import Owner
from rolekeys.concurrency.locks import cleanup_api_key_lock, get_api_key_lock
from rolekeys.config import get_settings
from rolekeys.errors import ConflictError, ForbiddenError, NotFoundError, ProvisioningError, ValidationError
from rolekeys.models.api_key import NAME_DEFAULT_PUBLIC, NAME_MASTER, ApiKey, ApiKeyType
from rolekeys.models.grants import GrantSpec, TablePermissions, grants_all_apis
from rolekeys.services.cache import ApiKeyCache
from rolekeys.services.credentials import CredentialGenerator
from rolekeys.services.provisioning import RoleProvisioner
from rolekeys.utils.datetime import utcnow
from rolekeys.validators.api_key import KeyDraft, ensure_valid_api_key

logger = structlog.get_logger()


def _token_hint(token: str) -> str:
    return f"{token[:6]}..."


class ApiKeyManager:
    """Manages API key lifecycle, role provisioning and cache projection."""

    def __init__(
        self,
        db_session: AsyncSession,
        provisioner: RoleProvisioner,
        cache: ApiKeyCache,
        credentials: CredentialGenerator | None = None,
    ) -> None:
        self._db = db_session
        self._provisioner = provisioner
        self._cache = cache
        self._settings = get_settings()
        self._credentials = credentials or CredentialGenerator(self._settings.credentials)
        self._log = logger.bind(manager="api_key")

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    async def create_master_key(self, owner: Owner) -> ApiKey:
        """Create the owner's master key, backed by the account's own role."""
        draft = KeyDraft(
            owner=owner,
            type=ApiKeyType.MASTER.value,
            name=NAME_MASTER,
            grants=grants_all_apis(),
        )
        await self._validate(draft)

        api_key = self._new_record(
            draft,
            token=owner.api_key,
            db_role=owner.database_username,
            db_password=owner.database_password,
        )
        # The account role already exists; nothing to provision
        api_key.provisioned_at = utcnow()
        await self._insert(api_key, draft)

        await self._cache.sync(api_key, owner)
        return api_key

    async def create_default_public_key(self, owner: Owner) -> ApiKey:
        """Create the owner's default public key, backed by the public role."""
        credentials_config = self._settings.credentials
        draft = KeyDraft(
            owner=owner,
            type=ApiKeyType.DEFAULT_PUBLIC.value,
            name=NAME_DEFAULT_PUBLIC,
            grants=grants_all_apis(),
        )
        await self._validate(draft)

        api_key = self._new_record(
            draft,
            token=credentials_config.default_public_token,
            db_role=owner.database_public_username,
            db_password=credentials_config.public_db_password,
        )
        api_key.provisioned_at = utcnow()
        await self._insert(api_key, draft)

        await self._cache.sync(api_key, owner)
        return api_key

    async def create_regular_key(self, owner: Owner, name: str, grants: Any) -> ApiKey:
        """Create a regular key with its own database role.

        Raises:
            ValidationError: If name or grants are rejected (nothing persisted)
            UnprocessableEntityError: If the apis section has no apis list
            ConflictError: If unique credentials could not be committed
            ProvisioningError: If the role could not be set up
        """
        draft = KeyDraft(
            owner=owner,
            type=ApiKeyType.REGULAR.value,
            name=name,
            grants=grants,
        )
        await self._validate(draft)

        # Generated once; only token and role are retried on collision
        db_password = self._credentials.new_password()
        max_attempts = self._settings.credentials.max_create_attempts

        for attempt in range(1, max_attempts + 1):
            token = await self._credentials.generate_token(self._token_exists)
            db_role = await self._credentials.generate_db_role(owner.username, self._db_role_exists)
            api_key = self._new_record(draft, token=token, db_role=db_role, db_password=db_password)

            self._db.add(api_key)
            try:
                await self._db.commit()
            except IntegrityError:
                await self._db.rollback()
                # A concurrent create may have taken the name meanwhile
                await self._validate(draft)
                self._log.warning(
                    "api_key.create.credential_conflict",
                    user_id=owner.id,
                    attempt=attempt,
                )
                continue
            await self._db.refresh(api_key)
            break
        else:
            raise ConflictError(
                "Could not allocate unique credentials for the API key",
                details={"attempts": max_attempts},
            )

        self._log.info(
            "api_key.create",
            api_key_id=api_key.id,
            user_id=owner.id,
            type=api_key.type,
            token=_token_hint(api_key.token),
            db_role=api_key.db_role,
        )

        await self._provision(api_key, owner)
        await self._cache.sync(api_key, owner)
        return api_key

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get(self, api_key_id: str, owner: Owner) -> ApiKey:
        """Get an owner's API key by ID.

        Raises:
            NotFoundError: If no such key belongs to the owner
        """
        result = await self._db.execute(
            select(ApiKey).where(
                ApiKey.id == api_key_id,
                ApiKey.user_id == owner.id,
            )
        )
        api_key = result.scalars().first()

        if api_key is None:
            raise NotFoundError(f"API key not found: {api_key_id}")

        return api_key

    async def list(self, owner: Owner) -> list[ApiKey]:
        """List an owner's API keys, oldest first."""
        result = await self._db.execute(
            select(ApiKey).where(ApiKey.user_id == owner.id).order_by(ApiKey.created_at, ApiKey.id)
        )
        return list(result.scalars().all())

    async def table_permissions_from_db(self, api_key_id: str, owner: Owner) -> list[TablePermissions]:
        """Table permissions the key's role actually holds in the database."""
        api_key = await self.get(api_key_id, owner)
        return await self._provisioner.table_permissions_from_db(api_key.db_role)

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    async def regenerate_token(self, api_key_id: str, owner: Owner) -> ApiKey:
        """Rotate a regular key's token and move its cache entry.

        Raises:
            ForbiddenError: For master and default public keys
        """
        api_key = await self.get(api_key_id, owner)
        if not api_key.is_regular:
            raise ForbiddenError(
                f"Token of {api_key.type} keys cannot be regenerated",
                details={"api_key_id": api_key.id},
            )

        lock = await get_api_key_lock(api_key.id)
        async with lock:
            previous_token = api_key.token
            max_attempts = self._settings.credentials.max_create_attempts

            for attempt in range(1, max_attempts + 1):
                api_key.token = await self._credentials.generate_token(self._token_exists)
                api_key.updated_at = utcnow()
                try:
                    await self._db.commit()
                except IntegrityError:
                    await self._db.rollback()
                    await self._db.refresh(api_key)
                    self._log.warning(
                        "api_key.regenerate_token.conflict",
                        api_key_id=api_key.id,
                        attempt=attempt,
                    )
                    continue
                await self._db.refresh(api_key)
                break
            else:
                raise ConflictError(
                    "Could not allocate a unique token for the API key",
                    details={"attempts": max_attempts},
                )

            self._log.info(
                "api_key.regenerate_token",
                api_key_id=api_key.id,
                token=_token_hint(api_key.token),
            )
            await self._cache.sync(api_key, owner, previous_token=previous_token)

        return api_key

    async def delete(self, api_key_id: str, owner: Owner) -> None:
        """Delete a regular key, its database role and its cache entry.

        Raises:
            NotFoundError: If no such key belongs to the owner
            ForbiddenError: For master and default public keys
            ProvisioningError: If the role teardown fails (record kept, cache untouched)
        """
        api_key = await self.get(api_key_id, owner)
        if not api_key.can_be_deleted:
            raise ForbiddenError(
                f"{api_key.type} keys cannot be deleted",
                details={"api_key_id": api_key.id},
            )

        lock = await get_api_key_lock(api_key.id)
        async with lock:
            key_id = api_key.id
            db_role = api_key.db_role
            token = api_key.token
            schemas = api_key.affected_schemas()

            # The removal stays uncommitted until the role is gone
            await self._db.delete(api_key)
            await self._db.flush()

            try:
                await self._provisioner.deprovision(db_role, schemas)
            except ProvisioningError as e:
                await self._db.rollback()
                self._log.error(
                    "api_key.deprovision.failed",
                    api_key_id=key_id,
                    db_role=db_role,
                    error=e.message,
                )
                raise

            await self._db.commit()
            self._log.info("api_key.delete", api_key_id=key_id, user_id=owner.id, db_role=db_role)

            await self._cache.remove(owner.username, token)

        await cleanup_api_key_lock(key_id)

    async def reprovision(self, api_key: ApiKey, owner: Owner) -> ApiKey:
        """Rebuild a regular key's role from its grants.

        Tears down whatever role state exists, provisions from scratch and
        marks the key provisioned.
        """
        lock = await get_api_key_lock(api_key.id)
        async with lock:
            self._log.info("api_key.reprovision", api_key_id=api_key.id, db_role=api_key.db_role)
            await self._provisioner.deprovision(api_key.db_role, api_key.affected_schemas())
            await self._provisioner.provision(api_key, owner)
            await self._mark_provisioned(api_key)
            await self._cache.sync(api_key, owner)
        return api_key

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _new_record(self, draft: KeyDraft, *, token: str, db_role: str, db_password: str) -> ApiKey:
        return ApiKey(
            id=str(uuid.uuid4()),
            user_id=draft.owner.id,
            type=draft.type,
            name=draft.name,
            token=token,
            grants=draft.grants,
            db_role=db_role,
            db_password=db_password,
        )

    async def _insert(self, api_key: ApiKey, draft: KeyDraft) -> None:
        """Commit a master/default public key.

        A unique violation here means a concurrent create won the race; the
        re-validation turns it into the matching ValidationError.
        """
        self._db.add(api_key)
        try:
            await self._db.commit()
        except IntegrityError as e:
            await self._db.rollback()
            await self._validate(draft)
            raise ConflictError(
                f"{draft.type} key conflicts with an existing key",
                details={"user_id": draft.owner.id},
            ) from e
        await self._db.refresh(api_key)

        self._log.info(
            "api_key.create",
            api_key_id=api_key.id,
            user_id=draft.owner.id,
            type=api_key.type,
        )

    async def _provision(self, api_key: ApiKey, owner: Owner) -> None:
        try:
            await self._provisioner.provision(api_key, owner)
        except ProvisioningError as e:
            rollback = self._settings.provisioning.rollback_on_failure
            self._log.error(
                "api_key.provision.failed",
                api_key_id=api_key.id,
                db_role=api_key.db_role,
                error=e.message,
                rollback=rollback,
            )
            if rollback:
                e.details["record_kept"] = not await self._rollback_creation(api_key)
            else:
                e.details["record_kept"] = True
            e.details["api_key_id"] = api_key.id
            raise

        await self._mark_provisioned(api_key)

    async def _rollback_creation(self, api_key: ApiKey) -> bool:
        """Undo a creation whose provisioning failed.

        The record is only deleted once the role is gone, otherwise it stays
        (unprovisioned) for the reconciler to finish.

        Returns:
            True if the record was deleted
        """
        try:
            await self._provisioner.deprovision(api_key.db_role, api_key.affected_schemas())
        except ProvisioningError as e:
            self._log.error(
                "api_key.rollback.teardown_failed",
                api_key_id=api_key.id,
                db_role=api_key.db_role,
                error=e.message,
            )
            return False

        await self._db.delete(api_key)
        await self._db.commit()
        self._log.info("api_key.rollback", api_key_id=api_key.id, db_role=api_key.db_role)
        return True

    async def _mark_provisioned(self, api_key: ApiKey) -> None:
        now = utcnow()
        api_key.provisioned_at = now
        api_key.updated_at = now
        self._db.add(api_key)
        await self._db.commit()
        await self._db.refresh(api_key)

    async def _validate(self, draft: KeyDraft) -> None:
        owner = draft.owner
        if draft.name:
            draft.name_taken = await self._exists(
                ApiKey.user_id == owner.id,
                ApiKey.name == draft.name,
            )
        if draft.type != ApiKeyType.REGULAR:
            draft.type_taken = await self._exists(
                ApiKey.user_id == owner.id,
                ApiKey.type == draft.type,
            )

        try:
            ensure_valid_api_key(draft)
        except ValidationError as e:
            self._log.info(
                "api_key.create.invalid",
                user_id=owner.id,
                type=draft.type,
                errors=e.errors,
            )
            raise

        # The cache projection needs this view; request it before anything
        # is persisted so a missing apis list fails here.
        GrantSpec(draft.grants).granted_apis()

    async def _exists(self, *conditions: Any) -> bool:
        result = await self._db.execute(select(ApiKey.id).where(*conditions).limit(1))
        return result.first() is not None

    async def _token_exists(self, token: str) -> bool:
        return await self._exists(ApiKey.token == token)

    async def _db_role_exists(self, db_role: str) -> bool:
        return await self._exists(ApiKey.db_role == db_role)
