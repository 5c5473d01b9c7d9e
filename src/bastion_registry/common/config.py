"""Bastion registry configuration via pydantic-settings."""

import warnings
from functools import lru_cache

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_INSECURE_API_KEY = "insecure-api-key-change-me"


class BastionSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="BASTION_")

    environment: str = "development"
    log_level: str = "INFO"

    # Database
    db_url: str = "sqlite+aiosqlite:///./data/db/bastion.db"

    # API
    api_title: str = "Bastion Registry"
    api_version: str = "0.1.0"
    api_key: str = _INSECURE_API_KEY
    host: str = "0.0.0.0"
    port: int = 8080

    # Public endpoint handed back to registering machines
    server_url: str = "localhost"
    tunnel_port: int = 2222
    ssh_user: str = "bastion"

    # Port pool (closed range, 78 slots by default)
    port_min: int = 10022
    port_max: int = 10099

    # Generated artifacts
    keys_dir: str = "/data/keys"
    config_path: str = "/data/sshpiper.yaml"
    server_key: str = "/data/server-key"
    authorized_keys_path: str = "/home/bastion/.ssh/authorized_keys"

    # Routing daemon
    piper_enabled: bool = False
    piper_binary: str = "/usr/local/bin/sshpiperd"
    piper_listen_port: int = 2223
    piper_host_key: str = "/etc/sshpiper/ssh_host_ed25519_key"
    piper_log_level: str = "info"

    @model_validator(mode="after")
    def _check_port_pool(self) -> "BastionSettings":
        if not 1 <= self.port_min <= 65535 or not 1 <= self.port_max <= 65535:
            raise ValueError("port pool bounds must lie within 1..65535")
        if self.port_min > self.port_max:
            raise ValueError(
                f"port_min ({self.port_min}) must not exceed port_max ({self.port_max})"
            )
        return self

    @property
    def pool_size(self) -> int:
        return self.port_max - self.port_min + 1

    @property
    def piper_command(self) -> list[str]:
        return [
            self.piper_binary,
            "-p", str(self.piper_listen_port),
            "-i", self.piper_host_key,
            "--log-level", self.piper_log_level,
            "yaml", "--config", self.config_path, "--no-check-perm",
        ]

    def validate_for_production(self) -> None:
        """Raise if the insecure default API key is used outside development."""
        if self.api_key != _INSECURE_API_KEY:
            return

        if self.environment != "development":
            raise RuntimeError(
                f"Insecure default API key detected in '{self.environment}' environment. "
                "Set BASTION_API_KEY to a secure value. "
                "Generate one with: python -c \"import secrets; print(secrets.token_urlsafe(48))\""
            )

        warnings.warn(
            "Using insecure default API key — set BASTION_API_KEY for production",
            UserWarning,
            stacklevel=2,
        )


@lru_cache
def get_settings() -> BastionSettings:
    settings = BastionSettings()
    settings.validate_for_production()
    return settings
