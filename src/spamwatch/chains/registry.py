"""Config-driven table of supported chains and per-chain provider settings."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Dict, Iterable, List, Mapping, Sequence, Tuple

from spamwatch.errors import ChainNotSupportedError
from spamwatch.settings import ChainSettings, Settings

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ProviderChainConfig:
    """How one provider serves one chain; ``None`` fields fall back to provider defaults."""

    enabled: bool = True
    namespace: str | None = None
    timeout_seconds: float | None = None
    max_attempts: int | None = None
    base_url: str | None = None


@dataclass(frozen=True, slots=True)
class ChainConfig:
    """One row of the chain registry."""

    chain_id: int
    name: str
    enabled: bool = True
    aliases: Tuple[str, ...] = ()
    providers: Mapping[str, ProviderChainConfig] = field(default_factory=dict)

    def provider(self, name: str) -> ProviderChainConfig | None:
        return self.providers.get(name)

    def provider_enabled(self, name: str) -> bool:
        config = self.providers.get(name)
        return bool(config and config.enabled)

    @property
    def label(self) -> str:
        return f"{self.name} (ID: {self.chain_id})"


def _nft_chain(
    chain_id: int,
    name: str,
    *,
    moralis_slug: str,
    pinax_db: str,
    aliases: Sequence[str] = (),
    enabled: bool = True,
) -> ChainConfig:
    return ChainConfig(
        chain_id=chain_id,
        name=name,
        enabled=enabled,
        aliases=tuple(aliases),
        providers={
            "moralis": ProviderChainConfig(namespace=moralis_slug),
            "pinax": ProviderChainConfig(namespace=pinax_db),
        },
    )


DEFAULT_CHAINS: Tuple[ChainConfig, ...] = (
    _nft_chain(1, "Ethereum", moralis_slug="eth", pinax_db="mainnet:evm-nft-tokens@v0.6.2", aliases=("UNI", "ETH")),
    _nft_chain(137, "Polygon", moralis_slug="polygon", pinax_db="matic:evm-nft-tokens@v0.6.2", aliases=("MATIC",)),
    _nft_chain(8453, "Base", moralis_slug="base", pinax_db="base:evm-nft-tokens@v0.6.2"),
    _nft_chain(43114, "Avalanche", moralis_slug="avalanche", pinax_db="avalanche:evm-nft-tokens@v0.6.2", aliases=("AVAX",)),
    _nft_chain(42161, "Arbitrum", moralis_slug="arbitrum", pinax_db="arbitrum-one:evm-nft-tokens@v0.6.2", aliases=("ARB",)),
    # Known chains that are not wired up yet.
    _nft_chain(10, "Optimism", moralis_slug="optimism", pinax_db="optimism:evm-nft-tokens@v0.6.2", aliases=("OP",), enabled=False),
    _nft_chain(56, "BNB Smart Chain", moralis_slug="bsc", pinax_db="bsc:evm-nft-tokens@v0.6.2", aliases=("BSC", "BNB"), enabled=False),
)


class ChainRegistry:
    """Immutable lookup of chains by ID, name or alias."""

    def __init__(self, chains: Iterable[ChainConfig] = DEFAULT_CHAINS) -> None:
        by_id: Dict[int, ChainConfig] = {}
        for chain in chains:
            if chain.chain_id in by_id:
                raise ValueError(f"duplicate chain ID in registry: {chain.chain_id}")
            by_id[chain.chain_id] = chain
        self._by_id = by_id
        self._by_name: Dict[str, int] = {}
        for chain in by_id.values():
            for key in (chain.name, *chain.aliases):
                self._by_name.setdefault(key.strip().upper(), chain.chain_id)

    @classmethod
    def from_settings(cls, settings: Settings, *, base: Iterable[ChainConfig] = DEFAULT_CHAINS) -> "ChainRegistry":
        """Build the registry from the built-in table plus ``settings.chains`` overrides."""

        merged: Dict[int, ChainConfig] = {chain.chain_id: chain for chain in base}
        for raw_id, override in settings.chains.items():
            chain_id = int(raw_id)
            merged[chain_id] = _apply_override(merged.get(chain_id), chain_id, override)
        registry = cls(merged.values())
        LOGGER.debug("Chain registry loaded with %d chains (%d enabled)", len(registry), len(registry.supported()))
        return registry

    def __len__(self) -> int:
        return len(self._by_id)

    def __contains__(self, chain_id: object) -> bool:
        return chain_id in self._by_id

    def all(self) -> List[ChainConfig]:
        return sorted(self._by_id.values(), key=lambda chain: chain.chain_id)

    def supported(self) -> List[ChainConfig]:
        """Return enabled chains ordered by chain ID."""

        return [chain for chain in self.all() if chain.enabled]

    def resolve(self, chain_id: int) -> ChainConfig:
        """Return the enabled chain for ``chain_id``.

        Raises:
            ChainNotSupportedError: ``reason`` is ``unknown`` for IDs missing
                from the table and ``disabled`` for known but inactive chains.
        """

        chain = self._by_id.get(chain_id)
        if chain is None:
            raise ChainNotSupportedError(
                chain_id,
                "unknown",
                f"unsupported chain ID: {chain_id}. Supported chain IDs are: {self._supported_summary()}",
            )
        if not chain.enabled:
            raise ChainNotSupportedError(
                chain_id,
                "disabled",
                f"{chain.label} is planned for future implementation",
            )
        return chain

    def validate(self, chain_id: int, available_providers: Sequence[str]) -> Tuple[ChainConfig, List[str]]:
        """Resolve ``chain_id`` and return it with the usable providers, in the given order.

        A provider is usable when it is in ``available_providers`` (built and
        globally enabled) and enabled for the chain.
        """

        chain = self.resolve(chain_id)
        usable = [name for name in available_providers if chain.provider_enabled(name)]
        if not usable:
            raise ChainNotSupportedError(
                chain_id,
                "no_providers",
                f"no enabled metadata provider for {chain.label}",
            )
        return chain, usable

    def parse(self, value: int | str) -> ChainConfig:
        """Resolve a numeric ID, numeric string, chain name or alias (case-insensitive)."""

        if isinstance(value, int):
            return self.resolve(value)
        text = str(value).strip()
        if text.isdigit():
            return self.resolve(int(text))
        chain_id = self._by_name.get(text.upper())
        if chain_id is None:
            names = ", ".join(chain.name for chain in self.supported())
            raise ChainNotSupportedError(
                None,
                "unknown",
                f"unsupported chain name: {text}. Supported chain names are: {names}",
            )
        return self.resolve(chain_id)

    def _supported_summary(self) -> str:
        return ", ".join(f"{chain.chain_id} ({chain.name})" for chain in self.supported())


def _apply_override(existing: ChainConfig | None, chain_id: int, override: ChainSettings) -> ChainConfig:
    chain = existing or ChainConfig(chain_id=chain_id, name=override.name or f"Chain {chain_id}", enabled=False)
    providers = dict(chain.providers)
    for provider_name, provider_override in override.providers.items():
        current = providers.get(provider_name) or ProviderChainConfig()
        updates = {key: value for key, value in provider_override.model_dump().items() if value is not None}
        providers[provider_name] = replace(current, **updates)
    return ChainConfig(
        chain_id=chain_id,
        name=override.name or chain.name,
        enabled=chain.enabled if override.enabled is None else override.enabled,
        aliases=tuple(override.aliases) if override.aliases is not None else chain.aliases,
        providers=providers,
    )


__all__ = ["ChainConfig", "ChainRegistry", "ProviderChainConfig", "DEFAULT_CHAINS"]
