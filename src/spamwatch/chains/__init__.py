"""Chain registry: supported chains and how each provider serves them."""

from .registry import DEFAULT_CHAINS, ChainConfig, ChainRegistry, ProviderChainConfig

__all__ = ["ChainConfig", "ChainRegistry", "ProviderChainConfig", "DEFAULT_CHAINS"]
