# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_sandbox

from typing import Any, Literal

from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict

from coreason_devbox.exceptions import ConfigurationError
from coreason_devbox.integrations.vault import VaultIntegrator


class VaultSettingsSource(PydanticBaseSettingsSource):
    """
    Custom Pydantic Settings Source that reads secrets from Vault.
    """

    def get_field_value(self, field: Any, field_name: str) -> tuple[Any, str, bool]:
        # Unused: __call__ returns the full dict.
        return None, field_name, False  # pragma: no cover

    def __call__(self) -> dict[str, Any]:
        vault = VaultIntegrator()
        secrets: dict[str, Any] = {}

        # Config Field -> Vault Key
        mapping = {
            "e2b_api_key": "E2B_API_KEY",
            "dispatch_secret_key": "DISPATCH_SECRET_KEY",
        }

        for field, key in mapping.items():
            val = vault.get_secret(key)
            if val:
                secrets[field] = val

        return secrets


class DevboxSettings(BaseSettings):
    """
    Configuration for sandbox orchestration and command dispatch.

    Timeouts are in seconds.
    """

    environment: Literal["development", "production"] = "development"

    # E2B Configuration
    e2b_api_key: str | None = None
    e2b_template: str | None = None
    sandbox_timeout: float = 600.0  # 10 minutes
    probe_port: int = 3000
    preview_scheme: str = "https"

    # Command policy
    default_timeout: float = 120.0
    install_timeout: float = 300.0
    dev_server_timeout: float | None = 300.0
    package_manager_install_timeout: float = 60.0
    serialize_commands: bool = False
    log_preview_chars: int = 200

    # Log store
    log_retention: float | None = None

    # Distributed dispatch (Celery)
    dispatch_secret_key: str | None = None
    broker_url: str = "redis://localhost:6379/0"
    result_backend: str = "redis://localhost:6379/1"
    dispatch_timeout: float = 900.0

    model_config = SettingsConfigDict(
        env_prefix="COREASON_DEVBOX_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            VaultSettingsSource(settings_cls),
            file_secret_settings,
        )

    def require_api_key(self) -> str:
        """Return the sandbox credential.

        Raises:
            ConfigurationError: If no credential is configured.
        """
        if not self.e2b_api_key:
            raise ConfigurationError("E2B_API_KEY environment variable is not set")
        return self.e2b_api_key
