"""Configuration package."""

from recurring_items.config.settings import (
    AppSettings,
    GoogleSheetsSettings,
    LocalCacheSettings,
    Settings,
    SyncSettings,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "AppSettings",
    "GoogleSheetsSettings",
    "LocalCacheSettings",
    "Settings",
    "SyncSettings",
    "get_settings",
    "validate_all_settings",
]
