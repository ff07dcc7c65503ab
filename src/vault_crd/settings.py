"""Operator configuration.

All knobs are read from environment variables (or a local ``.env`` file)
through pydantic-settings and validated once at import.
"""

from datetime import timedelta

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from vault_crd.constants import (
    DEFAULT_REFRESH_INITIAL_DELAY,
    DEFAULT_REFRESH_INTERVAL,
    DEFAULT_REQUEST_TIMEOUT,
    DEFAULT_VAULT_URL,
)


class Settings(BaseSettings):
    """Environment driven configuration of the Vault CRD operator.

    Defaults target a local Vault dev server; each field names the variable
    that overrides it.
    """

    model_config = SettingsConfigDict(
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Vault connection
    vault_url: str = Field(
        default=DEFAULT_VAULT_URL,
        validation_alias="VAULT_URL",
        description="Base URL of the Vault HTTP API, including the /v1/ prefix",
    )
    vault_token: str = Field(
        default="",
        validation_alias="VAULT_TOKEN",
        description="Token sent as X-Vault-Token (empty = no token header)",
    )
    request_timeout_seconds: float = Field(
        default=DEFAULT_REQUEST_TIMEOUT,
        gt=0,
        validation_alias="REQUEST_TIMEOUT_SECONDS",
        description="Timeout for every Vault and Kubernetes API request",
    )

    # Scheduled refresh
    refresh_scheduler_enabled: bool = Field(
        default=True,
        validation_alias="REFRESH_SCHEDULER_ENABLED",
        description="Enable the periodic refresh of managed secrets",
    )
    refresh_interval_seconds: float = Field(
        default=DEFAULT_REFRESH_INTERVAL,
        gt=0,
        validation_alias="REFRESH_INTERVAL_SECONDS",
        description="Fixed rate in seconds between refresh passes",
    )
    refresh_initial_delay_seconds: float = Field(
        default=DEFAULT_REFRESH_INITIAL_DELAY,
        ge=0,
        validation_alias="REFRESH_INITIAL_DELAY_SECONDS",
        description="Delay in seconds before the first refresh pass",
    )
    refresh_margin_seconds: int = Field(
        default=0,
        ge=0,
        validation_alias="REFRESH_MARGIN_SECONDS",
        description="Refresh certificates this many seconds before their TTL ends",
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        validation_alias="LOG_LEVEL",
        description="Root log level name",
    )
    json_logs: bool = Field(
        default=True,
        validation_alias="JSON_LOGS",
        description="Emit one JSON object per log line",
    )
    correlation_ids: bool = Field(
        default=True,
        validation_alias="CORRELATION_IDS",
        description="Stamp every log line with the ID of its refresh pass or handler call",
    )

    # Watched namespaces
    namespaces: str = Field(
        default="",
        validation_alias="VAULT_CRD_NAMESPACES",
        description="Comma-separated namespaces holding Vault resources (empty = cluster-wide)",
    )

    # Metrics
    metrics_port: int = Field(
        default=8081,
        validation_alias="METRICS_PORT",
        description="Port of the /metrics and /healthz endpoints",
    )
    metrics_host: str = Field(
        default="0.0.0.0",
        validation_alias="METRICS_HOST",
        description="Bind address of the metrics endpoints",
    )

    @property
    def watched_namespaces(self) -> list[str] | None:
        """Namespaces to watch, or None for cluster-wide operation."""
        names = [name.strip() for name in self.namespaces.split(",")]
        return [name for name in names if name] or None

    @property
    def refresh_margin(self) -> timedelta:
        """Refresh margin as a timedelta."""
        return timedelta(seconds=self.refresh_margin_seconds)


# Process-wide settings, read once
settings = Settings()
