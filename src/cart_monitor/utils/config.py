"""Configuration management using Pydantic."""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from cart_monitor.utils.constants import (
    CONFIRMATION_TIMEOUT,
    DEFAULT_COOKIE_DOMAIN,
    DEFAULT_MAX_ATTEMPTS,
    NAVIGATION_TIMEOUT,
)


class DelayRange(BaseModel):
    """Inclusive range of seconds to sleep between two human-paced actions."""

    min_sec: float = Field(gt=0)
    max_sec: float = Field(gt=0)

    @model_validator(mode="after")
    def check_order(self) -> DelayRange:
        if self.max_sec < self.min_sec:
            raise ValueError("max_sec must be >= min_sec")
        return self


class BrowserSettings(BaseSettings):
    """Remote debugging attachment configuration."""

    model_config = SettingsConfigDict(
        env_prefix="BROWSER_",
        env_file=".env",
        extra="ignore",
    )

    host: str = Field(default="127.0.0.1", description="Remote debugging host")
    port: int = Field(default=9222, description="Remote debugging port")
    navigation_timeout_ms: int = Field(
        default=NAVIGATION_TIMEOUT,
        gt=0,
        description="Deadline for a single navigation",
    )
    cookie_domain: str = Field(
        default=DEFAULT_COOKIE_DOMAIN,
        description="Domain used for cookies that do not carry one",
    )


class PacingSettings(BaseSettings):
    """Randomized delay ranges used to keep a human interaction cadence."""

    model_config = SettingsConfigDict(
        env_prefix="PACING_",
        env_nested_delimiter="__",
        env_file=".env",
        extra="ignore",
    )

    between_options: DelayRange = Field(
        default_factory=lambda: DelayRange(min_sec=0.25, max_sec=0.6)
    )
    before_click: DelayRange = Field(
        default_factory=lambda: DelayRange(min_sec=0.2, max_sec=0.5)
    )
    between_skus: DelayRange = Field(
        default_factory=lambda: DelayRange(min_sec=0.9, max_sec=2.2)
    )
    long_pause: DelayRange = Field(
        default_factory=lambda: DelayRange(min_sec=2.0, max_sec=5.0)
    )
    long_pause_probability: float = Field(default=0.08, ge=0.0, le=1.0)


class CartSettings(BaseSettings):
    """Add-to-cart batch policy."""

    model_config = SettingsConfigDict(
        env_prefix="CART_",
        env_file=".env",
        extra="ignore",
    )

    max_attempts: int = Field(
        default=DEFAULT_MAX_ATTEMPTS,
        ge=1,
        description="Attempts per variant when the add-to-cart control is stale",
    )
    confirmation_timeout_ms: int = Field(
        default=CONFIRMATION_TIMEOUT,
        gt=0,
        description="Window for the cart counter / toast confirmation",
    )
    deadline_seconds: float = Field(
        default=900.0,
        gt=0,
        description="Overall deadline for one add-all batch",
    )
    lock_mode: Literal["wait", "reject"] = Field(
        default="wait",
        description="What a second request for a busy account does",
    )
    lock_timeout_seconds: float | None = Field(
        default=None,
        description="Give up waiting for a busy account after this long",
    )


class DatabaseSettings(BaseSettings):
    """PostgreSQL database configuration for the product store."""

    model_config = SettingsConfigDict(
        env_prefix="DB_",
        env_file=".env",
        extra="ignore",
    )

    enabled: bool = Field(default=False, description="Enable product persistence")
    host: str = Field(default="localhost", description="Database host")
    port: int = Field(default=5432, description="Database port")
    user: str = Field(default="monitor", description="Database user")
    password: str = Field(default="monitor_secret", description="Database password")
    name: str = Field(default="cart-monitor", description="Database name")

    @property
    def url(self) -> str:
        """Build async PostgreSQL connection URL."""
        return f"postgresql+asyncpg://{self.user}:{self.password}@{self.host}:{self.port}/{self.name}"


class DebugSettings(BaseSettings):
    """Diagnostic artifact configuration."""

    model_config = SettingsConfigDict(
        env_prefix="DEBUG_ARTIFACTS_",
        env_file=".env",
        extra="ignore",
    )

    enabled: bool = Field(default=False, description="Write screenshots and HTML dumps")
    artifact_dir: Path = Field(default=Path("./data/_debug"))


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        env_prefix="CART_MONITOR_",
        env_nested_delimiter="__",
        env_file=".env",
        extra="ignore",
    )

    env: str = "development"
    browser: BrowserSettings = Field(default_factory=BrowserSettings)
    pacing: PacingSettings = Field(default_factory=PacingSettings)
    cart: CartSettings = Field(default_factory=CartSettings)
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    debug: DebugSettings = Field(default_factory=DebugSettings)
    log_level: str = "INFO"
    log_json: bool = False


# Singleton instance
_settings: Settings | None = None


def get_settings() -> Settings:
    """Get cached settings instance (singleton)."""
    global _settings  # noqa: PLW0603
    if _settings is None:
        _settings = Settings()
    return _settings


def reset_settings() -> None:
    """Drop the cached settings so the next call re-reads the environment."""
    global _settings  # noqa: PLW0603
    _settings = None
