"""Application settings using Pydantic Settings plus a declarative YAML file."""

import os
import re
from datetime import timedelta
from functools import lru_cache
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_CONFIG_PATH = "config.yaml"

_GO_DURATION_RE = re.compile(r"^(?:\d+(?:\.\d+)?(?:ns|us|µs|ms|s|m|h))+$")
_GO_DURATION_PART_RE = re.compile(r"(\d+(?:\.\d+)?)(ns|us|µs|ms|s|m|h)")
_GO_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}


class ConfigError(ValueError):
    """The configuration file could not be parsed."""


def parse_duration(value: Any) -> Any:
    """Convert Go-style duration strings (``"30s"``, ``"1m30s"``) to timedelta.

    Anything else is returned unchanged for pydantic to coerce (seconds as a
    number, ISO 8601 durations).
    """
    if isinstance(value, str) and _GO_DURATION_RE.match(value.strip()):
        seconds = sum(
            float(amount) * _GO_DURATION_UNITS[unit]
            for amount, unit in _GO_DURATION_PART_RE.findall(value.strip())
        )
        return timedelta(seconds=seconds)
    return value


class NotifierConfig(BaseModel):
    """One configured notification channel."""

    type: str = Field(description="Channel implementation, e.g. 'webhook'")
    name: str = Field(min_length=1, description="Label used in logs and metrics")
    retries: int = Field(default=3, ge=1, description="Delivery attempts per batch")

    # Webhook
    endpoint: str | None = None
    headers: dict[str, str] = Field(default_factory=dict)

    @field_validator("headers", mode="before")
    @classmethod
    def _stringify_headers(cls, v: Any) -> Any:
        # YAML reads `X-Retry: 5` as an int and `X-Flag: true` as a bool
        if not isinstance(v, dict):
            return v
        out = {}
        for key, value in v.items():
            if value is None:
                value = ""
            elif isinstance(value, bool):
                value = "true" if value else "false"
            elif isinstance(value, (int, float)):
                value = str(value)
            out[key] = value
        return out

    @model_validator(mode="after")
    def _check_endpoint(self) -> "NotifierConfig":
        if self.type == "webhook" and not self.endpoint:
            raise ValueError(f"webhook notifier {self.name!r} requires an endpoint")
        return self


class Settings(BaseSettings):
    """
    Central configuration for the miser agent.

    Loaded from the YAML config file; any field the file leaves out can be
    supplied with a ``MISER_`` environment variable (e.g. MISER_ES_PASSWORD).
    """

    model_config = SettingsConfigDict(
        env_prefix="MISER_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Environment
    environment: Literal["development", "staging", "production"] = "production"
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    # Alert store
    es_host: str = "http://localhost:9200"
    es_username: str | None = None
    es_password: str | None = None
    alerts_index: str = "alerts"
    fetch_size: int = Field(default=10_000, ge=1, le=10_000)
    fetch_timeout_seconds: float = Field(default=30.0, gt=0)

    # Sync loop
    sync_interval: timedelta = Field(default=timedelta(seconds=30))

    # Notification channels
    notifiers: list[NotifierConfig] = Field(default_factory=list)

    # Observability
    metrics_host: str = "0.0.0.0"
    metrics_port: int = 8766

    @field_validator("sync_interval", mode="before")
    @classmethod
    def _parse_sync_interval(cls, value: Any) -> Any:
        return parse_duration(value)

    @field_validator("sync_interval")
    @classmethod
    def _check_sync_interval(cls, value: timedelta) -> timedelta:
        if value.total_seconds() <= 0:
            raise ValueError("sync_interval must be positive")
        return value

    @field_validator("es_host")
    @classmethod
    def _strip_host(cls, value: str) -> str:
        return value.rstrip("/")

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment == "production"

    @property
    def sync_interval_seconds(self) -> float:
        return self.sync_interval.total_seconds()


def load_settings(path: str | Path) -> Settings:
    """
    Load settings from a YAML file.

    Args:
        path: Path to the YAML config file

    Returns:
        Settings with file values taking precedence over the environment

    Raises:
        FileNotFoundError: If the file does not exist
        ConfigError: If the file is not a YAML mapping
        pydantic.ValidationError: If a value is invalid
    """
    config_path = Path(path)
    try:
        raw = yaml.safe_load(config_path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Failed to parse config file {config_path}: {e}") from e

    if not isinstance(raw, dict):
        raise ConfigError(f"Config file {config_path} must contain a mapping")

    return Settings(**raw)


@lru_cache
def get_settings(path: str | None = None) -> Settings:
    """
    Get cached settings instance.

    Reads ``path`` (or MISER_CONFIG, or config.yaml). When no path is given
    and the default file is absent, settings come from the environment only.
    Clear cache with get_settings.cache_clear() if needed.
    """
    if path is not None:
        return load_settings(path)

    config_path = os.environ.get("MISER_CONFIG")
    if config_path:
        return load_settings(config_path)
    if Path(DEFAULT_CONFIG_PATH).exists():
        return load_settings(DEFAULT_CONFIG_PATH)
    return Settings()
