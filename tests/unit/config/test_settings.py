"""Unit tests for settings loading."""

from __future__ import annotations

import pytest

from rolekeys.config import Settings, get_settings


@pytest.fixture(autouse=True)
def clear_settings_cache(monkeypatch, tmp_path):
    # Keep a stray ./config.yaml out of the picture
    monkeypatch.chdir(tmp_path)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


class TestDefaults:
    def test_defaults(self):
        settings = Settings()

        assert settings.provisioning.rollback_on_failure is True
        assert settings.cache.key_prefix == "api_keys:"
        assert settings.credentials.token_bytes == 24
        assert settings.credentials.password_length == 40
        assert settings.credentials.default_public_token == "default_public"
        assert settings.credentials.public_db_password == "publicuser"
        assert settings.reconcile.grace_seconds == 60

    def test_nested_env_override(self, monkeypatch):
        monkeypatch.setenv("ROLEKEYS_CACHE__URL", "redis://cache:6379/0")
        monkeypatch.setenv("ROLEKEYS_PROVISIONING__ROLLBACK_ON_FAILURE", "false")

        settings = Settings()

        assert settings.cache.url == "redis://cache:6379/0"
        assert settings.provisioning.rollback_on_failure is False


class TestConfigFile:
    def test_yaml_file(self, monkeypatch, tmp_path):
        config_file = tmp_path / "rolekeys.yaml"
        config_file.write_text(
            "cache:\n"
            "  key_prefix: 'keys:'\n"
            "credentials:\n"
            "  max_create_attempts: 9\n"
        )
        monkeypatch.setenv("ROLEKEYS_CONFIG_FILE", str(config_file))

        settings = get_settings()

        assert settings.cache.key_prefix == "keys:"
        assert settings.credentials.max_create_attempts == 9
        assert settings.credentials.token_bytes == 24
        assert get_settings() is settings

    def test_env_wins_over_file(self, monkeypatch, tmp_path):
        config_file = tmp_path / "rolekeys.yaml"
        config_file.write_text(
            "cache:\n"
            "  url: redis://from-file:6379/5\n"
            "  key_prefix: 'keys:'\n"
        )
        monkeypatch.setenv("ROLEKEYS_CONFIG_FILE", str(config_file))
        monkeypatch.setenv("ROLEKEYS_CACHE__URL", "redis://from-env:6379/5")

        settings = get_settings()

        assert settings.cache.url == "redis://from-env:6379/5"
        assert settings.cache.key_prefix == "keys:"

    def test_empty_file(self, monkeypatch, tmp_path):
        config_file = tmp_path / "empty.yaml"
        config_file.write_text("")
        monkeypatch.setenv("ROLEKEYS_CONFIG_FILE", str(config_file))

        assert get_settings().cache.key_prefix == "api_keys:"
