"""Configuration loading, validation, and access."""

from __future__ import annotations

import os
from pathlib import Path

import yaml
from pydantic import BaseModel, ConfigDict, SecretStr, field_validator, model_validator

from valora.core.exceptions import ConfigError
from valora.core.models import ArchiveTransport


class SourcesConfig(BaseModel):
    """Upstream provider access configuration."""

    model_config = ConfigDict(frozen=True)

    user_agent: str = "Valora/1.0"
    request_timeout: float = 8.0
    archive_timeout: float = 30.0
    rate_limit: int = 5
    haremaltin_cf_clearance: SecretStr | None = None
    haremaltin_transport: ArchiveTransport = ArchiveTransport.CURL
    tcmb_history_delay: float = 0.1

    @field_validator("request_timeout", "archive_timeout")
    @classmethod
    def timeout_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("timeouts must be > 0 seconds")
        return v

    @field_validator("rate_limit")
    @classmethod
    def rate_limit_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("rate_limit must be >= 1 request/second")
        return v

    @field_validator("haremaltin_cf_clearance", mode="before")
    @classmethod
    def blank_cookie_is_none(cls, v: object) -> object:
        """An empty env var means "no cookie", not an empty cookie."""
        if isinstance(v, str) and not v.strip():
            return None
        return v


class RefreshConfig(BaseModel):
    """Refresh cadence, cooldown and staleness configuration."""

    model_config = ConfigDict(frozen=True)

    metals_interval_seconds: int = 300
    fx_interval_seconds: int = 600
    cooldown_seconds: int = 10
    stale_after_seconds: int = 900
    failure_alert_threshold: int = 5
    augment_metals: bool = True

    @field_validator("metals_interval_seconds", "fx_interval_seconds")
    @classmethod
    def interval_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("refresh intervals must be >= 1 second")
        return v

    @field_validator("cooldown_seconds", "stale_after_seconds")
    @classmethod
    def non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError("cooldown/staleness must be >= 0 seconds")
        return v

    @field_validator("failure_alert_threshold")
    @classmethod
    def threshold_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("failure_alert_threshold must be >= 1")
        return v


class BackfillConfig(BaseModel):
    """Historical backfill configuration."""

    model_config = ConfigDict(frozen=True)

    enabled: bool = True
    metals_years: int = 5
    fx_years: int = 3
    batch_size: int = 500
    tolerance_days: int = 30

    @field_validator("metals_years", "fx_years")
    @classmethod
    def years_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("backfill lookback must be >= 1 year")
        return v

    @field_validator("batch_size")
    @classmethod
    def batch_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("batch_size must be >= 1")
        return v


class StorageConfig(BaseModel):
    """Storage backend configuration."""

    model_config = ConfigDict(frozen=True)

    sqlite_path: str = "./data/valora.db"


class APIConfig(BaseModel):
    """FastAPI server configuration."""

    model_config = ConfigDict(frozen=True)

    host: str = "0.0.0.0"
    port: int = 5050
    latest_ttl_seconds: int = 60
    history_ttl_seconds: int = 300
    history_max_limit: int = 10_000
    cache_cleanup_seconds: int = 3600

    @model_validator(mode="after")
    def ttls_non_negative(self) -> APIConfig:
        if self.latest_ttl_seconds < 0 or self.history_ttl_seconds < 0:
            raise ValueError("cache TTLs must be >= 0 seconds")
        if self.cache_cleanup_seconds <= 0:
            raise ValueError("cache_cleanup_seconds must be > 0")
        return self


class ValoraConfig(BaseModel):
    """Root configuration for the entire valora system."""

    model_config = ConfigDict(frozen=True)

    sources: SourcesConfig = SourcesConfig()
    refresh: RefreshConfig = RefreshConfig()
    backfill: BackfillConfig = BackfillConfig()
    storage: StorageConfig = StorageConfig()
    api: APIConfig = APIConfig()


def load_config(
    config_path: str | None = None,
    env_prefix: str = "VALORA_",
) -> ValoraConfig:
    """Load configuration from environment + YAML file + defaults.

    Resolution order (highest priority first):
    1. Environment variables (VALORA_REFRESH__COOLDOWN_SECONDS, etc.)
    2. YAML file at config_path
    3. Built-in defaults

    Nested keys use double-underscore in env vars:
        VALORA_SOURCES__HAREMALTIN_CF_CLEARANCE=abc  ->  sources.haremaltin_cf_clearance
    """
    try:
        yaml_path = _resolve_config_path(config_path)
        base: dict = {}
        if yaml_path is not None:
            base = _load_yaml(yaml_path)

        merged = _merge_env_vars(base, env_prefix)
        return ValoraConfig.model_validate(merged)
    except Exception as e:
        if isinstance(e, ConfigError):
            raise
        raise ConfigError(str(e), context={"source": "load_config"}) from e


def _resolve_config_path(explicit: str | None) -> Path | None:
    """Determine config file path."""
    if explicit is not None:
        p = Path(explicit)
        if not p.exists():
            raise ConfigError(
                f"Config file not found: {explicit}",
                context={"field": "config_path", "value": explicit},
            )
        return p

    env_path = os.environ.get("VALORA_CONFIG")
    if env_path:
        p = Path(env_path)
        if not p.exists():
            raise ConfigError(
                f"Config file from VALORA_CONFIG not found: {env_path}",
                context={"field": "VALORA_CONFIG", "value": env_path},
            )
        return p

    default = Path("valora.yml")
    if default.exists():
        return default

    return None


def _load_yaml(path: Path) -> dict:
    """Load and parse YAML file."""
    try:
        with open(path) as f:
            data = yaml.safe_load(f)
        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ConfigError(
                f"YAML config must be a mapping, got {type(data).__name__}",
                context={"field": "config_file", "value": str(path)},
            )
        return data
    except yaml.YAMLError as e:
        raise ConfigError(
            f"Failed to parse YAML config: {e}",
            context={"field": "config_file", "value": str(path)},
        ) from e


def _merge_env_vars(base: dict, prefix: str) -> dict:
    """Overlay environment variables onto base config dict.

    Double-underscore separates nesting levels.
    Values are auto-cast: "true"/"false" -> bool, numeric strings -> int/float.
    """
    result = dict(base)

    for key, value in os.environ.items():
        if not key.startswith(prefix):
            continue

        remainder = key[len(prefix) :]
        parts = [p.lower() for p in remainder.split("__")]

        # Skip the CONFIG env var itself
        if parts == ["config"]:
            continue

        # Cookies stay strings even when they look numeric
        cast_value = value if _is_secret(parts[-1]) else _auto_cast(value)

        target = result
        for part in parts[:-1]:
            existing = target.get(part)
            if not isinstance(existing, dict):
                existing = dict(existing) if existing else {}
                target[part] = existing
            target = existing
        target[parts[-1]] = cast_value

    return result


def _is_secret(field: str) -> bool:
    return field.endswith(("cf_clearance", "user_agent"))


def _auto_cast(value: str) -> str | int | float | bool:
    """Auto-cast string values from environment variables."""
    if value.lower() == "true":
        return True
    if value.lower() == "false":
        return False
    try:
        return int(value)
    except ValueError:
        pass
    try:
        return float(value)
    except ValueError:
        pass
    return value
