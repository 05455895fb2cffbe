"""Configuration package."""

from reconciler.config.settings import Settings, settings

__all__ = [
    "Settings",
    "settings",
]
