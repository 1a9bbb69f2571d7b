"""
Configuration Management for the Recurring Items Engine

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
This makes it easy to see which tiers and thresholds exist and
ensures all required configuration is validated at startup.
"""

import warnings
from decimal import Decimal
from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class GoogleSheetsSettings(BaseSettings):
    """Google Sheets remote store configuration."""

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

    # Every collection gets its own worksheet, named with this prefix
    worksheet_prefix: str = Field(
        default="ri_",
        max_length=20,
        description="Prefix for collection worksheets"
    )
    audit_sheet_name: str = Field(
        default="AuditLog",
        description="Name of the sheet for audit logs"
    )

    # Reachability checks do not retry; after a failed connect they
    # report offline until the cooldown has passed
    reconnect_cooldown_seconds: float = Field(
        default=60.0,
        ge=0.0,
        description="Seconds to wait before trying to reconnect after a failure"
    )

    @field_validator('credentials_path')
    @classmethod
    def validate_credentials_path(cls, v: str) -> str:
        """Warn if credentials file doesn't exist (but don't fail - might be mounted later)."""
        if not Path(v).exists():
            warnings.warn(
                f"Google credentials file not found at {v}. "
                "Make sure it exists before enabling remote sync."
            )
        return v


class LocalCacheSettings(BaseSettings):
    """Local cache tier configuration."""

    model_config = SettingsConfigDict(
        env_prefix="LOCAL_CACHE_",
        extra="ignore"
    )

    backend: str = Field(
        default="file",
        pattern="^(file|memory)$",
        description="Local cache backend"
    )
    directory: Path = Field(
        default=Path(".recurring_cache"),
        description="Directory holding one JSON file per collection"
    )


class SyncSettings(BaseSettings):
    """
    Remote synchronization settings.

    Retries inside a single call use tenacity's exponential wait.
    Retries across calls use the outbox backoff schedule.
    """

    model_config = SettingsConfigDict(
        env_prefix="SYNC_",
        extra="ignore"
    )

    remote_enabled: bool = Field(
        default=False,
        description="Use Google Sheets as the authoritative remote tier"
    )
    retry_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Attempts per remote call before giving up"
    )
    retry_wait_min_seconds: float = Field(
        default=1.0,
        ge=0.0,
        description="Minimum wait between attempts of one remote call"
    )
    retry_wait_max_seconds: float = Field(
        default=10.0,
        ge=0.0,
        description="Maximum wait between attempts of one remote call"
    )
    backoff_base_seconds: float = Field(
        default=30.0,
        ge=0.0,
        description="Outbox backoff after the first failed flush"
    )
    backoff_max_seconds: float = Field(
        default=3600.0,
        ge=0.0,
        description="Upper bound for the outbox backoff"
    )
    outbox_alert_attempts: int = Field(
        default=10,
        ge=1,
        description="Failed flushes after which an entry is reported as stuck"
    )
    repair_on_access: bool = Field(
        default=True,
        description="Heal expense items against the ledger before pay/undo"
    )

    @model_validator(mode='after')
    def validate_waits(self) -> 'SyncSettings':
        if self.retry_wait_max_seconds < self.retry_wait_min_seconds:
            raise ValueError("retry_wait_max_seconds cannot be below retry_wait_min_seconds")
        if self.backoff_max_seconds < self.backoff_base_seconds:
            raise ValueError("backoff_max_seconds cannot be below backoff_base_seconds")
        return self


class AppSettings(BaseSettings):
    """
    Main application settings.

    Loads configuration from environment variables and .env file.
    """

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Environment
    environment: str = Field(
        default="development",
        description="Application environment"
    )
    debug_mode: bool = Field(
        default=False,
        description="Enable debug mode"
    )

    # Every collection is scoped to this user
    user_id: Optional[str] = Field(
        default=None,
        description="Authenticated user the data belongs to"
    )

    # Validation thresholds
    max_reasonable_amount: Decimal = Field(
        default=Decimal("1000000"),
        gt=0,
        description="Amounts above this are flagged (not rejected)"
    )
    migration_duplicate_tolerance_seconds: int = Field(
        default=60,
        ge=0,
        description="Window in which a legacy entry counts as already imported"
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

    # Sub-settings are loaded lazily so a missing Google Sheets
    # configuration does not break offline use.

    @property
    def google_sheets(self) -> GoogleSheetsSettings:
        return GoogleSheetsSettings()

    @property
    def local_cache(self) -> LocalCacheSettings:
        return LocalCacheSettings()

    @property
    def sync(self) -> SyncSettings:
        return SyncSettings()

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

    Returns a dict of {setting_name: is_valid}.
    Google Sheets is only checked when remote sync is enabled.
    """
    results = {}

    settings = get_settings()

    checks = {
        "app": lambda: settings.app,
        "local_cache": lambda: settings.local_cache,
        "sync": lambda: settings.sync,
    }
    for name, load in checks.items():
        try:
            load()
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    if results.get("sync") and settings.sync.remote_enabled:
        try:
            _ = settings.google_sheets
            results["google_sheets"] = True
        except Exception as e:
            results["google_sheets"] = False
            results["google_sheets_error"] = str(e)

    return results
