"""Contract metadata providers."""

from __future__ import annotations

from typing import Dict

from spamwatch.settings import Settings, get_settings

from .base import ContractMetadata, ContractMetadataProvider, DependencyHealth, TokenStandard
from .cache import MetadataCache, MetadataCacheEntry, MetadataCacheStats
from .http import HttpMetadataProvider
from .moralis import MoralisProvider
from .pinax import PinaxProvider

PROVIDER_CLASSES = {
    MoralisProvider.name: MoralisProvider,
    PinaxProvider.name: PinaxProvider,
}


def default_providers(settings: Settings | None = None) -> Dict[str, ContractMetadataProvider]:
    """Instantiate every provider that is enabled globally in ``settings``."""

    resolved = settings or get_settings()
    enabled = {
        MoralisProvider.name: resolved.moralis.enabled,
        PinaxProvider.name: resolved.pinax.enabled,
    }
    return {name: cls(settings=resolved) for name, cls in PROVIDER_CLASSES.items() if enabled[name]}


__all__ = [
    "ContractMetadata",
    "ContractMetadataProvider",
    "DependencyHealth",
    "HttpMetadataProvider",
    "MetadataCache",
    "MetadataCacheEntry",
    "MetadataCacheStats",
    "MoralisProvider",
    "PinaxProvider",
    "PROVIDER_CLASSES",
    "TokenStandard",
    "default_providers",
]
