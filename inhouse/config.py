from __future__ import annotations

from functools import lru_cache
from typing import Any
from urllib.parse import quote_plus

from loguru import logger
from pydantic import Field, computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict
from rich.console import Console

console = Console()
log = logger.bind(module="config")


def split_list(raw: str | None) -> list[str]:
    """Split a comma-separated setting, dropping blanks and keeping order."""

    if not raw:
        return []
    return [part.strip() for part in raw.strip().split(",") if part.strip()]


class Settings(BaseSettings):
    """Centralised application configuration."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    app_name: str = Field(default="inhouse-builder", alias="APP_NAME")
    environment: str = Field(default="development", alias="APP_ENV")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    logs_base_dir: str | None = Field(default=None, alias="LOGS_BASE_DIR")

    database_url: str | None = Field(default=None, alias="DATABASE_URL")
    db_scheme: str = Field(default="postgresql+psycopg", alias="DB_SCHEME")
    db_host: str = Field(default="localhost", alias="DB_HOST")
    db_port: int = Field(default=5432, alias="DB_PORT")
    db_username: str = Field(default="postgres", alias="DB_USER")
    db_password: str = Field(default="postgres", alias="DB_PASSWORD")
    db_name: str = Field(default="inhouse", alias="DB_NAME")
    db_pool_size: int = Field(default=5, alias="DB_POOL_SIZE")
    db_max_overflow: int = Field(default=5, alias="DB_MAX_OVERFLOW")
    db_pool_timeout: int = Field(default=30, alias="DB_POOL_TIMEOUT")
    db_echo: bool = Field(default=False, alias="DB_ECHO")

    docker_base_url: str | None = Field(default=None, alias="DOCKER_BASE_URL")
    docker_timeout_seconds: int = Field(default=600, alias="DOCKER_TIMEOUT_SECONDS")

    builder_idle_delay_seconds: float = Field(default=0.1, alias="BUILDER_IDLE_DELAY_SECONDS")
    builder_max_attempts: int = Field(default=5, alias="BUILDER_MAX_ATTEMPTS")
    builder_message_max_chars: int = Field(default=20_000, alias="BUILDER_MESSAGE_MAX_CHARS")
    builder_container_id: str | None = Field(default=None, alias="BUILDER_CONTAINER_ID")

    rollout_health_window_seconds: float = Field(
        default=10.0,
        alias="ROLLOUT_HEALTH_WINDOW_SECONDS",
    )
    rollout_reclaim_failed_instance: bool = Field(
        default=True,
        alias="ROLLOUT_RECLAIM_FAILED_INSTANCE",
    )

    github_secret: str | None = Field(default=None, alias="GITHUB_SECRET")
    sitewatcher_host: str = Field(default="localhost", alias="SITEWATCHER_HOST")
    service_net: str | None = Field(default=None, alias="SERVICE_NET")
    service_dns: str | None = Field(default=None, alias="SERVICE_DNS")

    @computed_field(return_type=str)
    @property
    def database_dsn(self) -> str:
        """Return a SQLAlchemy compatible DSN."""
        if self.database_url:
            return self.database_url

        username = quote_plus(self.db_username)
        password = quote_plus(self.db_password)
        return (
            f"{self.db_scheme}://{username}:{password}"
            f"@{self.db_host}:{self.db_port}/{self.db_name}"
        )

    @property
    def service_networks(self) -> list[str]:
        return split_list(self.service_net)

    @property
    def service_dns_servers(self) -> list[str]:
        return split_list(self.service_dns)

    @property
    def uses_static_wiring(self) -> bool:
        """Static network/DNS wiring applies when either list is declared."""
        return bool(self.service_networks or self.service_dns_servers)

    def export_safe(self) -> dict[str, Any]:
        """Return non-sensitive settings for debugging/logging."""
        return {
            "app_name": self.app_name,
            "environment": self.environment,
            "db_host": self.db_host,
            "db_port": self.db_port,
            "db_name": self.db_name,
            "docker_base_url": self.docker_base_url,
            "builder_idle_delay_seconds": self.builder_idle_delay_seconds,
            "builder_max_attempts": self.builder_max_attempts,
            "rollout_health_window_seconds": self.rollout_health_window_seconds,
            "rollout_reclaim_failed_instance": self.rollout_reclaim_failed_instance,
            "wiring": "static" if self.uses_static_wiring else "peer-link",
            "github_secret_set": bool(self.github_secret),
        }


@lru_cache
def get_settings() -> Settings:
    """Load and cache application settings."""
    settings = Settings()
    console.log(
        f"[bold green]Loaded settings[/] env={settings.environment!r} "
        f"db_host={settings.db_host!r}",
    )
    log.info("Settings initialised: {}", settings.export_safe())
    return settings
