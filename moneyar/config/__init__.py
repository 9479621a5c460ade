"""Configuration package."""

from moneyar.config.settings import (
    AppSettings,
    DatabaseSettings,
    LedgerSettings,
    SessionSettings,
    Settings,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "AppSettings",
    "DatabaseSettings",
    "LedgerSettings",
    "SessionSettings",
    "Settings",
    "get_settings",
    "validate_all_settings",
]
