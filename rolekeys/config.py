"""rolekeys configuration management.

Configuration sources (in priority order):
1. Environment variables (ROLEKEYS_ prefix)
2. Config file (config.yaml)
3. Defaults
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseConfig(BaseModel):
    """Record store configuration (where api_keys rows live)."""

    url: str = "sqlite+aiosqlite:///./rolekeys.db"
    echo: bool = False


class ProvisioningConfig(BaseModel):
    """Role provisioning configuration."""

    # Connection used to run CREATE ROLE / GRANT / REVOKE / DROP ROLE.
    # Must connect as a role allowed to manage other roles.
    superuser_url: str = "postgresql+asyncpg://postgres@localhost:5432/postgres"

    # On provisioning failure: tear down partial role state and delete the
    # freshly created record before re-raising.
    # False leaves the record unprovisioned for the reconciler.
    rollback_on_failure: bool = True


class CacheConfig(BaseModel):
    """Key-value cache configuration."""

    url: str = "redis://localhost:6379/5"
    key_prefix: str = "api_keys:"


class CredentialsConfig(BaseModel):
    """Credential generation configuration."""

    # Entropy for generated tokens (urlsafe base64 of this many bytes)
    token_bytes: int = 24

    # Hex chars in generated role passwords (2 per byte of entropy)
    password_length: int = 40

    # Fixed well-known values for default public keys
    default_public_token: str = "default_public"
    public_db_password: str = "publicuser"

    # Commit attempts before giving up on credential collisions
    max_create_attempts: int = 5


class ReconcileConfig(BaseModel):
    """Reconciler configuration for persisted-but-unprovisioned keys."""

    # Keys younger than this are assumed to still be provisioning in-flight
    grace_seconds: int = 60


class Settings(BaseSettings):
    """rolekeys application settings."""

    model_config = SettingsConfigDict(
        env_prefix="ROLEKEYS_",
        env_nested_delimiter="__",
        case_sensitive=False,
    )

    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    provisioning: ProvisioningConfig = Field(default_factory=ProvisioningConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    credentials: CredentialsConfig = Field(default_factory=CredentialsConfig)
    reconcile: ReconcileConfig = Field(default_factory=ReconcileConfig)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        # File values arrive as init kwargs; environment must still win
        return env_settings, init_settings, dotenv_settings, file_secret_settings


def _load_config_file() -> dict:
    """Load configuration from YAML file if exists.

    Looks for config file in order:
    1. ROLEKEYS_CONFIG_FILE environment variable
    2. ./config.yaml
    3. /etc/rolekeys/config.yaml
    """
    import os

    config_paths = [
        os.environ.get("ROLEKEYS_CONFIG_FILE"),
        Path("config.yaml"),
        Path("/etc/rolekeys/config.yaml"),
    ]

    for path in config_paths:
        if path is None:
            continue
        path = Path(path)
        if path.exists():
            with open(path) as f:
                return yaml.safe_load(f) or {}

    return {}


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance.

    Configuration is loaded from:
    1. YAML config file (if exists)
    2. Environment variables (override)
    3. Defaults
    """
    file_config = _load_config_file()

    # Environment variables override via settings_customise_sources
    return Settings(**file_config)
