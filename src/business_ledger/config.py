"""Centralized configuration management using pydantic-settings.

Configuration is loaded from environment variables with sensible defaults.
All settings can be overridden via environment variables or a .env file.
"""

import decimal
from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    """Application environment."""

    DEVELOPMENT = "development"
    TESTING = "testing"
    STAGING = "staging"
    PRODUCTION = "production"


class LogLevel(str, Enum):
    """Log level options."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


_ROUNDING_MODES = {
    "ROUND_HALF_UP",
    "ROUND_HALF_EVEN",
    "ROUND_HALF_DOWN",
    "ROUND_UP",
    "ROUND_DOWN",
    "ROUND_CEILING",
    "ROUND_FLOOR",
}


class Settings(BaseSettings):
    """Ledger settings loaded from environment variables.

    All settings have sensible defaults for development. Override via
    environment variables (prefixed with BL_) or .env file.

    Examples:
        BL_SQLITE_PATH=/var/lib/ledger/ledger.db
        BL_BASE_CURRENCY=EUR
        BL_LOG_LEVEL=DEBUG
        BL_AGING_BUCKET_BOUNDARIES='[0, 1, 31, 61, 91]'
    """

    model_config = SettingsConfigDict(
        env_prefix="BL_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "Business Ledger"
    app_version: str = "0.1.0"
    environment: Environment = Environment.DEVELOPMENT

    # Database
    sqlite_path: Path = Field(
        default=Path("business_ledger.db"),
        description="SQLite database file path; ':memory:' for a throwaway ledger",
    )
    sqlite_busy_timeout: float = Field(
        default=30.0,
        ge=0,
        description="Seconds a writer waits for the database lock before failing",
    )

    # Logging
    log_level: LogLevel = LogLevel.INFO
    log_format: Literal["json", "console"] | None = Field(
        default=None,
        validate_default=True,
        description="Log output format: 'json' for production, 'console' for development",
    )
    log_file: Path | None = Field(default=None, description="Optional log file path")

    # Money
    base_currency: str = Field(default="USD", min_length=3, max_length=3)
    rounding_mode: str = "ROUND_HALF_UP"

    # Accounting
    retained_earnings_account_code: str = "3200"
    aging_bucket_boundaries: list[int] = Field(
        default_factory=lambda: [0, 1, 31, 61, 91],
        description="Lower bounds (days overdue) of each aging bucket; last is open-ended",
    )

    # Audit
    enable_audit_log: bool = True
    audit_queue_size: int = Field(default=10_000, ge=1)

    @field_validator("base_currency", mode="after")
    @classmethod
    def normalize_base_currency(cls, v: str) -> str:
        return v.upper()

    @field_validator("rounding_mode", mode="after")
    @classmethod
    def validate_rounding_mode(cls, v: str) -> str:
        """Only the rounding constants exported by ``decimal`` are accepted."""
        mode = v.upper()
        if mode not in _ROUNDING_MODES:
            raise ValueError(
                f"Unknown rounding mode {v!r}; expected one of {sorted(_ROUNDING_MODES)}"
            )
        return mode

    @field_validator("aging_bucket_boundaries", mode="after")
    @classmethod
    def validate_bucket_boundaries(cls, v: list[int]) -> list[int]:
        if not v:
            raise ValueError("At least one aging bucket boundary is required")
        if v[0] != 0:
            raise ValueError("The first aging bucket must start at day 0")
        if any(later <= earlier for earlier, later in zip(v, v[1:])):
            raise ValueError("Aging bucket boundaries must be strictly ascending")
        return v

    @field_validator("log_format", mode="after")
    @classmethod
    def set_log_format_from_environment(cls, v: str | None, info) -> str:
        """Default to JSON logging in production."""
        if v is None:
            if info.data.get("environment") == Environment.PRODUCTION:
                return "json"
            return "console"
        return v

    @property
    def rounding(self) -> str:
        """The ``decimal`` module constant matching ``rounding_mode``."""
        return getattr(decimal, self.rounding_mode)

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment == Environment.PRODUCTION

    @property
    def is_testing(self) -> bool:
        """Check if running in testing environment."""
        return self.environment == Environment.TESTING


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once.
    Call get_settings.cache_clear() to reload settings.

    Returns:
        Configured Settings instance.
    """
    return Settings()
