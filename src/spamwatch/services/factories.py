"""Factory helpers that instantiate core services based on configuration.

These helpers wire one set of providers, one prediction cache and one
classifier per process so that the contract status service and the health
aggregator observe the same dependencies.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict

from spamwatch.chains import ChainRegistry
from spamwatch.classification import PredictionCache, SpamClassifier
from spamwatch.providers import ContractMetadataProvider, default_providers
from spamwatch.services.contract_status import ContractStatusService
from spamwatch.services.health import HealthAggregator
from spamwatch.settings import Settings, get_settings


def build_chain_registry(settings: Settings | None = None) -> ChainRegistry:
    """Return the built-in chain table with configured overrides applied."""

    return ChainRegistry.from_settings(settings or get_settings())


def build_prediction_cache(settings: Settings | None = None) -> PredictionCache | None:
    """Return a prediction cache sized from settings, or ``None`` when caching is disabled."""

    resolved = settings or get_settings()
    if not resolved.cache.enabled:
        return None
    return PredictionCache.from_settings(resolved)


def build_providers(settings: Settings | None = None) -> Dict[str, ContractMetadataProvider]:
    """Instantiate every globally enabled metadata provider keyed by name."""

    return default_providers(settings or get_settings())


def build_classifier(settings: Settings | None = None, *, cache: PredictionCache | None = None) -> SpamClassifier:
    """Instantiate the spam classifier for the configured completion backend.

    Raises:
        RegistryError: If the model or prompt registry cannot be loaded.
    """

    resolved = settings or get_settings()
    return SpamClassifier(settings=resolved, cache=cache)


@dataclass(slots=True)
class ServiceContainer:
    """Process-wide service graph shared by the API and the CLI."""

    settings: Settings
    registry: ChainRegistry
    providers: Dict[str, ContractMetadataProvider]
    cache: PredictionCache | None
    classifier: SpamClassifier
    contract_status: ContractStatusService
    health: HealthAggregator

    async def aclose(self) -> None:
        await self.contract_status.aclose()


def build_service_container(settings: Settings | None = None) -> ServiceContainer:
    """Build the full dependency graph from configuration."""

    resolved = settings or get_settings()
    registry = build_chain_registry(resolved)
    providers = build_providers(resolved)
    cache = build_prediction_cache(resolved)
    classifier = build_classifier(resolved, cache=cache)
    contract_status = ContractStatusService(
        settings=resolved,
        registry=registry,
        providers=providers,
        classifier=classifier,
    )
    health = HealthAggregator(
        settings=resolved,
        registry=registry,
        providers=providers,
        classifier=classifier,
    )
    return ServiceContainer(
        settings=resolved,
        registry=registry,
        providers=providers,
        cache=cache,
        classifier=classifier,
        contract_status=contract_status,
        health=health,
    )


__all__ = [
    "ServiceContainer",
    "build_chain_registry",
    "build_classifier",
    "build_prediction_cache",
    "build_providers",
    "build_service_container",
]
