"""
Process configuration.

Every setting is read from a PG_FEATURESERVER_* environment variable
when the settings object is first created. get_settings() caches the
instance; reset_settings() drops it (used for testing).
"""

import os
from typing import Optional

from pydantic import BaseModel, Field, field_validator

_PREFIX = "PG_FEATURESERVER_"

_settings = None


def _env(name: str, default: str = None) -> Optional[str]:
    return os.environ.get(_PREFIX + name, default)


class Settings(BaseModel):
    """Runtime configuration for the feature service."""

    # Environment-derived defaults go through the validators too
    model_config = {"validate_default": True}

    # PostgreSQL
    database_url: str = Field(
        default_factory=lambda: _env("DATABASE_URL", "postgresql://localhost/gis"),
        description="libpq connection string or URL",
    )
    pool_min_size: int = Field(
        default_factory=lambda: int(_env("POOL_MIN_SIZE", "1")),
    )
    pool_max_size: int = Field(
        default_factory=lambda: int(_env("POOL_MAX_SIZE", "10")),
    )
    pool_timeout: float = Field(
        default_factory=lambda: float(_env("POOL_TIMEOUT", "10.0")),
        description="Seconds to wait for a pooled connection",
    )
    statement_timeout_ms: int = Field(
        default_factory=lambda: int(_env("STATEMENT_TIMEOUT_MS", "30000")),
        description="Per-request deadline for the feature query; 0 disables it",
    )
    max_retries: int = Field(
        default_factory=lambda: int(_env("MAX_RETRIES", "1")),
        description="Retries after a transient connection failure",
    )

    # Service
    service_name: str = Field(
        default_factory=lambda: _env("SERVICE_NAME", "staging_data"),
    )
    max_record_count: int = Field(
        default_factory=lambda: int(_env("MAX_RECORD_COUNT", "1000")),
    )
    layers_file: Optional[str] = Field(
        default_factory=lambda: _env("LAYERS"),
        description="YAML file replacing the built-in layer catalog",
    )
    log_level: str = Field(
        default_factory=lambda: _env("LOG_LEVEL", "INFO"),
    )

    @field_validator("pool_min_size", "max_record_count")
    @classmethod
    def _positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be at least 1")
        return v

    @field_validator("statement_timeout_ms", "max_retries")
    @classmethod
    def _non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError("must not be negative")
        return v

    @field_validator("pool_timeout")
    @classmethod
    def _positive_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("must be positive")
        return v

    @field_validator("pool_max_size")
    @classmethod
    def _max_size(cls, v: int, info) -> int:
        min_size = info.data.get("pool_min_size", 1)
        if v < min_size:
            raise ValueError(f"must be at least pool_min_size ({min_size})")
        return v

    @field_validator("log_level")
    @classmethod
    def _log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"unknown log level: {v}")
        return level


def get_settings() -> Settings:
    """Singleton settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def set_settings(settings: Settings):
    """Override the settings instance (used for testing)."""
    global _settings
    _settings = settings


def reset_settings():
    """Reset the singleton settings (used for testing)."""
    global _settings
    _settings = None
