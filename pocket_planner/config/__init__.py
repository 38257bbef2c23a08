"""Configuration package."""

from pocket_planner.config.settings import (
    AppSettings,
    GoogleSheetsSettings,
    LedgerSettings,
    NotificationSettings,
    Settings,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "AppSettings",
    "GoogleSheetsSettings",
    "LedgerSettings",
    "NotificationSettings",
    "Settings",
    "get_settings",
    "validate_all_settings",
]
