"""
Configuration Management for Pocket Ledger

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
This makes it easy to see what external dependencies exist and
ensures all required configuration is validated at startup.
"""

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class LedgerSettings(BaseSettings):
    """Which book the ledger serves, and for whom."""

    model_config = SettingsConfigDict(
        env_prefix="LEDGER_",
        extra="ignore"
    )

    book_id: str = Field(
        default="default-book",
        min_length=1,
        description="Book the ledger is scoped to"
    )
    user_id: str = Field(
        default="local-user",
        min_length=1,
        description="Owner of the book"
    )
    default_currency: str = Field(
        default="INR",
        min_length=3,
        max_length=3,
        description="Currency code given to new accounts"
    )


class SyncSettings(BaseSettings):
    """
    Remote sync behaviour.

    Retries happen at the gateway boundary only; the ledger itself
    never waits on them.
    """

    model_config = SettingsConfigDict(
        env_prefix="SYNC_",
        extra="ignore"
    )

    max_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Attempts per outbox entry before it is marked failed"
    )
    backoff_multiplier: float = Field(
        default=1.0,
        ge=0.0,
        description="Multiplier for exponential backoff between attempts"
    )
    backoff_min: float = Field(
        default=0.5,
        ge=0.0,
        description="Minimum wait between attempts (seconds)"
    )
    backoff_max: float = Field(
        default=10.0,
        ge=0.0,
        description="Maximum wait between attempts (seconds)"
    )
    outbox_path: Optional[str] = Field(
        default=None,
        description="Journal file for pending writes (None keeps the outbox in memory)"
    )
    poll_interval_seconds: float = Field(
        default=30.0,
        gt=0.0,
        description="How often polling subscriptions re-read a collection"
    )

    @model_validator(mode='after')
    def validate_backoff_bounds(self) -> 'SyncSettings':
        if self.backoff_max < self.backoff_min:
            raise ValueError("backoff_max cannot be smaller than backoff_min")
        return self


class GoogleSheetsSettings(BaseSettings):
    """Google Sheets document store configuration."""

    model_config = SettingsConfigDict(
        env_prefix="GOOGLE_SHEETS_",
        extra="ignore"
    )

    credentials_path: str = Field(
        ...,
        description="Path to Google service account credentials JSON"
    )
    spreadsheet_id: str = Field(
        ...,
        description="ID of the Google Sheets spreadsheet to use"
    )
    worksheet_rows: int = Field(
        default=1000,
        ge=10,
        description="Rows allocated when a collection worksheet is created"
    )

    @field_validator('credentials_path')
    @classmethod
    def validate_credentials_path(cls, v: str) -> str:
        """Warn if credentials file doesn't exist (but don't fail - might be mounted later)."""
        if not Path(v).exists():
            import warnings
            warnings.warn(
                f"Google credentials file not found at {v}. "
                "Make sure it exists before running the application."
            )
        return v


class AppSettings(BaseSettings):
    """
    Main application settings.

    Loads configuration from environment variables and .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Environment
    app_environment: str = Field(
        default="development",
        description="Application environment"
    )
    debug_mode: bool = Field(
        default=False,
        description="Enable debug mode"
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$",
        description="Minimum level emitted by the structured logger"
    )
    log_json: bool = Field(
        default=True,
        description="Render logs as JSON (False renders for a console)"
    )

    # Sanity limits
    max_transaction_amount: float = Field(
        default=100000000.0,
        gt=0,
        description="Largest single transaction amount accepted"
    )


class Settings(BaseSettings):
    """
    Root settings container.

    Aggregates all sub-settings for easy access.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Note: These are loaded lazily to allow partial configuration

    @property
    def ledger(self) -> LedgerSettings:
        return LedgerSettings()

    @property
    def sync(self) -> SyncSettings:
        return SyncSettings()

    @property
    def google_sheets(self) -> GoogleSheetsSettings:
        return GoogleSheetsSettings()

    @property
    def app(self) -> AppSettings:
        return AppSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

    Uses LRU cache to ensure settings are only loaded once.
    Call get_settings.cache_clear() to reload if needed.
    """
    return Settings()


def validate_all_settings() -> dict[str, bool]:
    """
    Validate all settings are properly configured.

    Returns a dict of {setting_name: is_valid}, plus a
    `<name>_error` entry for every section that failed.
    Useful for startup checks.
    """
    results = {}

    settings = get_settings()

    for name in ("ledger", "sync", "google_sheets", "app"):
        try:
            getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
