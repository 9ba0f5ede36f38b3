"""ProvisioningReconciler - finish provisioning of stuck regular keys.

The record commits before its role is created, so a crash (or a failed
rollback) in between leaves a regular key with ``provisioned_at IS NULL``.
The reconciler picks those up once they are older than the grace period
and rebuilds their role through ApiKeyManager.reprovision().
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta
from typing import TYPE_CHECKING

import structlog
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from rolekeys.accounts import AccountDirectory
from rolekeys.config import ReconcileConfig
from rolekeys.models.api_key import ApiKey, ApiKeyType
from rolekeys.utils.datetime import utcnow

if TYPE_CHECKING:
    from rolekeys.managers.api_key import ApiKeyManager

logger = structlog.get_logger()


@dataclass
class ReconcileResult:
    """Result of a reconciler run.

    Attributes:
        reconciled_count: Keys whose role was rebuilt
        skipped_count: Keys left alone (e.g. owner account gone)
        errors: One message per key that failed
    """

    reconciled_count: int = 0
    skipped_count: int = 0
    errors: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return len(self.errors) == 0

    def add_error(self, error: str) -> None:
        self.errors.append(error)


class ProvisioningReconciler:
    """Re-provisions regular keys whose provisioning never completed.

    Trigger condition:
        type = 'regular' AND provisioned_at IS NULL AND
        created_at < now - grace_seconds

    Action:
        ApiKeyManager.reprovision(api_key, owner)
    """

    def __init__(
        self,
        db_session: AsyncSession,
        manager: "ApiKeyManager",
        accounts: AccountDirectory,
        config: ReconcileConfig | None = None,
    ) -> None:
        self._db = db_session
        self._manager = manager
        self._accounts = accounts
        self._config = config or ReconcileConfig()
        self._log = logger.bind(service="reconciler")

    async def run(self) -> ReconcileResult:
        result = ReconcileResult()

        stuck = await self._find_unprovisioned()
        self._log.info("reconcile.found", count=len(stuck))

        for api_key in stuck:
            owner = await self._accounts.get_owner(api_key.user_id)
            if owner is None:
                result.skipped_count += 1
                self._log.warning(
                    "reconcile.skip",
                    api_key_id=api_key.id,
                    reason="owner_missing",
                )
                continue

            try:
                await self._manager.reprovision(api_key, owner)
                result.reconciled_count += 1
                self._log.info("reconcile.reprovisioned", api_key_id=api_key.id)
            except Exception as e:
                self._log.exception(
                    "reconcile.item_error",
                    api_key_id=api_key.id,
                    error=str(e),
                )
                result.add_error(f"api_key {api_key.id}: {e}")

        return result

    async def _find_unprovisioned(self) -> list[ApiKey]:
        cutoff = utcnow() - timedelta(seconds=self._config.grace_seconds)
        query = (
            select(ApiKey)
            .where(
                ApiKey.type == ApiKeyType.REGULAR.value,
                ApiKey.provisioned_at.is_(None),
                ApiKey.created_at < cutoff,
            )
            .order_by(ApiKey.created_at)
        )
        result = await self._db.execute(query)
        return list(result.scalars().all())
