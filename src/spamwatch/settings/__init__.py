"""Public interface for spamwatch configuration settings."""

from .config import (
    ENV_VAR_NAME,
    PROJECT_ROOT,
    ChainSettings,
    ProviderChainSettings,
    Settings,
    get_settings,
    reload_settings,
)

__all__ = [
    "Settings",
    "ChainSettings",
    "ProviderChainSettings",
    "get_settings",
    "reload_settings",
    "PROJECT_ROOT",
    "ENV_VAR_NAME",
]
