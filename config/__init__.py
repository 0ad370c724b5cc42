"""Configuration module."""

from config.settings import settings, Settings, get_settings

__all__ = [
    "settings",
    "Settings",
    "get_settings",
]
