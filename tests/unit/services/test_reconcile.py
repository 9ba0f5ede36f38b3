"""Unit tests for ProvisioningReconciler."""

from __future__ import annotations

from datetime import timedelta

import pytest

from rolekeys.config import ReconcileConfig
from rolekeys.errors import ProvisioningError
from rolekeys.services.reconcile import ProvisioningReconciler, ReconcileResult
from rolekeys.utils.datetime import utcnow
from tests.fakes import FakeAccountDirectory, make_owner

OWNER = make_owner()

GRANTS = [
    {"type": "apis", "apis": ["sql"]},
    {"type": "database", "tables": [{"schema": "public", "name": "t1", "permissions": ["select"]}]},
]


@pytest.fixture
async def stuck_key(api_key_manager, db_session, fake_executor, fake_settings):
    """A regular key whose provisioning failed and was left in place."""
    fake_settings.provisioning.rollback_on_failure = False
    fake_executor.set_fail_on("ON TABLE")
    with pytest.raises(ProvisioningError):
        await api_key_manager.create_regular_key(OWNER, "reporting", GRANTS)
    fake_executor.set_fail_on(None)

    (api_key,) = await api_key_manager.list(OWNER)
    assert api_key.provisioned_at is None
    return api_key


async def _age(db_session, api_key, seconds: int) -> None:
    api_key.created_at = utcnow() - timedelta(seconds=seconds)
    db_session.add(api_key)
    await db_session.commit()


class TestReconcileResult:
    def test_success(self):
        result = ReconcileResult()
        assert result.success is True

        result.add_error("api_key k1: boom")

        assert result.success is False
        assert result.errors == ["api_key k1: boom"]


class TestProvisioningReconciler:
    async def test_reprovisions_stuck_key(
        self, api_key_manager, db_session, fake_executor, fake_cache_client, stuck_key
    ):
        await _age(db_session, stuck_key, 120)
        reconciler = ProvisioningReconciler(db_session, api_key_manager, FakeAccountDirectory([OWNER]))

        result = await reconciler.run()

        assert result.success
        assert result.reconciled_count == 1
        assert stuck_key.provisioned_at is not None
        assert stuck_key.db_role in fake_executor.roles
        assert f"api_keys:ana:{stuck_key.token}" in fake_cache_client.store

    async def test_young_key_is_left_alone(self, api_key_manager, db_session, fake_executor, stuck_key):
        commands_before = list(fake_executor.commands)
        reconciler = ProvisioningReconciler(db_session, api_key_manager, FakeAccountDirectory([OWNER]))

        result = await reconciler.run()

        assert result.reconciled_count == 0
        assert result.skipped_count == 0
        assert fake_executor.commands == commands_before

    async def test_custom_grace_period(self, api_key_manager, db_session, stuck_key):
        await _age(db_session, stuck_key, 10)
        reconciler = ProvisioningReconciler(
            db_session,
            api_key_manager,
            FakeAccountDirectory([OWNER]),
            ReconcileConfig(grace_seconds=5),
        )

        result = await reconciler.run()

        assert result.reconciled_count == 1

    async def test_owner_missing_is_skipped(self, api_key_manager, db_session, stuck_key):
        await _age(db_session, stuck_key, 120)
        reconciler = ProvisioningReconciler(db_session, api_key_manager, FakeAccountDirectory([]))

        result = await reconciler.run()

        assert result.skipped_count == 1
        assert result.reconciled_count == 0
        assert stuck_key.provisioned_at is None

    async def test_failure_is_collected(self, api_key_manager, db_session, fake_executor, stuck_key):
        await _age(db_session, stuck_key, 120)
        fake_executor.set_fail_on("ON TABLE")
        reconciler = ProvisioningReconciler(db_session, api_key_manager, FakeAccountDirectory([OWNER]))

        result = await reconciler.run()

        assert result.success is False
        assert result.reconciled_count == 0
        assert len(result.errors) == 1
        assert result.errors[0].startswith(f"api_key {stuck_key.id}:")
        assert stuck_key.provisioned_at is None

    async def test_provisioned_keys_are_ignored(self, api_key_manager, db_session, fake_executor):
        api_key = await api_key_manager.create_regular_key(OWNER, "ok", GRANTS)
        await _age(db_session, api_key, 120)
        commands_before = list(fake_executor.commands)
        reconciler = ProvisioningReconciler(db_session, api_key_manager, FakeAccountDirectory([OWNER]))

        result = await reconciler.run()

        assert result.reconciled_count == 0
        assert fake_executor.commands == commands_before
