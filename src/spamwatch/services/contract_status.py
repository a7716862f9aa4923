"""Contract status orchestration: validate, fan out, merge, classify."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Sequence, Tuple, Union

from spamwatch.chains import ChainConfig, ChainRegistry
from spamwatch.classification import PredictionCache, SpamClassifier
from spamwatch.errors import (
    ClassifierError,
    EmptyRequestError,
    ProviderError,
    ProviderNotFound,
    ProviderUnauthorized,
    RequestTimeoutError,
    TooManyAddressesError,
)
from spamwatch.observability import Observability, get_observability
from spamwatch.providers import ContractMetadata, ContractMetadataProvider, MetadataCache, default_providers
from spamwatch.settings import Settings, get_settings
from spamwatch.util.addresses import dedupe_addresses

LOGGER = logging.getLogger(__name__)

NO_DATA_MESSAGE = "no data found for the contract on any provider"
PROVIDERS_FAILED_MESSAGE = "unable to retrieve contract data from external services"
CLASSIFICATION_UNAVAILABLE_PREFIX = "classification unavailable"
CLASSIFICATION_DISABLED_MESSAGE = "classification disabled"

ProviderOutcome = Union[ContractMetadata, ProviderError]


@dataclass(frozen=True, slots=True)
class ContractStatusResult:
    """Verdict for one address. ``contract_spam_status`` is ``None`` when undetermined."""

    chain_id: int
    contract_spam_status: bool | None
    message: str
    source: str | None = None
    cached: bool = False
    diagnostics: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def determined(self) -> bool:
        return self.contract_spam_status is not None

    def to_dict(self) -> Dict[str, object]:
        return {
            "chain_id": self.chain_id,
            "contract_spam_status": self.contract_spam_status,
            "message": self.message,
        }


@dataclass(frozen=True, slots=True)
class MergedMetadata:
    """Canonical metadata for an address plus every provider failure seen."""

    metadata: ContractMetadata | None
    failures: Tuple[ProviderError, ...] = ()
    cached: bool = False

    @property
    def diagnostics(self) -> Tuple[str, ...]:
        return tuple(f"{failure.provider}: {failure.kind}: {failure.detail}" for failure in self.failures)

    @property
    def cacheable(self) -> bool:
        """True when the outcome is definitive: data found, or "not found" everywhere."""

        if self.metadata is not None:
            return True
        return bool(self.failures) and all(isinstance(failure, ProviderNotFound) for failure in self.failures)

    def undetermined_message(self) -> str:
        errors = [failure for failure in self.failures if not isinstance(failure, ProviderNotFound)]
        if not errors:
            return NO_DATA_MESSAGE
        summary = ", ".join(f"{failure.provider} ({failure.kind})" for failure in errors)
        if len(errors) == len(self.failures):
            return f"{PROVIDERS_FAILED_MESSAGE}: {summary}"
        return f"{NO_DATA_MESSAGE}; provider errors: {summary}"


def merge_provider_results(outcomes: Iterable[Tuple[str, ProviderOutcome]]) -> MergedMetadata:
    """Pick the first successful outcome; ``outcomes`` must be in priority order."""

    chosen: ContractMetadata | None = None
    failures: List[ProviderError] = []
    for _name, outcome in outcomes:
        if isinstance(outcome, ProviderError):
            failures.append(outcome)
        elif chosen is None:
            chosen = outcome
    return MergedMetadata(metadata=chosen, failures=tuple(failures))


class ContractStatusService:
    """Resolve spam verdicts for a batch of contract addresses on one chain."""

    def __init__(
        self,
        *,
        settings: Settings | None = None,
        registry: ChainRegistry | None = None,
        providers: Mapping[str, ContractMetadataProvider] | Sequence[ContractMetadataProvider] | None = None,
        classifier: SpamClassifier | None = None,
        metadata_cache: MetadataCache | None = None,
        observability: Observability | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.registry = registry or ChainRegistry.from_settings(self.settings)
        if providers is None:
            providers = default_providers(self.settings)
        if isinstance(providers, Mapping):
            self.providers: Dict[str, ContractMetadataProvider] = dict(providers)
        else:
            self.providers = {provider.name: provider for provider in providers}
        self.classifier = classifier or SpamClassifier(
            settings=self.settings,
            cache=PredictionCache.from_settings(self.settings) if self.settings.cache.enabled else None,
        )
        if metadata_cache is None and self.settings.metadata_cache.enabled:
            metadata_cache = MetadataCache.from_settings(self.settings)
        self.metadata_cache = metadata_cache
        self.observability = observability or get_observability(component="contract_status", settings=self.settings)
        self.provider_order = self._priority_order()

    def _priority_order(self) -> List[str]:
        preferred = [name for name in self.settings.pipeline.provider_priority if name in self.providers]
        remaining = sorted(name for name in self.providers if name not in preferred)
        return preferred + remaining

    async def handle(self, chain_id: int, addresses: Sequence[str]) -> Dict[str, ContractStatusResult]:
        """Return one result per unique normalized address.

        Raises:
            RequestValidationError: For empty, oversized or malformed input and
                unsupported chains; raised before any provider is called.
            RequestTimeoutError: When the request deadline expires; in-flight
                provider and classifier calls are cancelled.
        """

        started = time.perf_counter()
        if not addresses:
            raise EmptyRequestError()
        unique = dedupe_addresses(addresses)
        limit = self.settings.pipeline.max_addresses_per_request
        if len(unique) > limit:
            raise TooManyAddressesError(len(unique), limit)
        chain, provider_names = self.registry.validate(chain_id, self.provider_order)

        semaphore = asyncio.Semaphore(self.settings.pipeline.fanout_width)
        deadline = self.settings.pipeline.request_timeout_seconds
        scope = asyncio.timeout(deadline)
        try:
            async with scope:
                results = await asyncio.gather(
                    *(self._resolve_address(chain, address, provider_names, semaphore) for address in unique)
                )
        except TimeoutError as exc:
            if not scope.expired():
                raise
            self.observability.increment("contract_status.timeouts", tags={"chain_id": str(chain.chain_id)})
            LOGGER.warning("Request for %d addresses on %s exceeded %.1fs", len(unique), chain.label, deadline)
            raise RequestTimeoutError(deadline) from exc

        response = dict(zip(unique, results))
        self._record_request(chain, response, started)
        return response

    async def _resolve_address(
        self,
        chain: ChainConfig,
        address: str,
        provider_names: Sequence[str],
        semaphore: asyncio.Semaphore,
    ) -> ContractStatusResult:
        merged = await self._merged_metadata(chain, address, provider_names, semaphore)
        if merged.metadata is None:
            return ContractStatusResult(
                chain_id=chain.chain_id,
                contract_spam_status=None,
                message=merged.undetermined_message(),
                diagnostics=merged.diagnostics,
            )

        if not self.settings.classifier.enabled:
            return ContractStatusResult(
                chain_id=chain.chain_id,
                contract_spam_status=None,
                message=CLASSIFICATION_DISABLED_MESSAGE,
                source=merged.metadata.source,
                diagnostics=merged.diagnostics,
            )

        try:
            classification = await self.classifier.classify(chain, merged.metadata, limiter=semaphore)
        except ClassifierError as exc:
            LOGGER.warning("Classification failed for %s on %s: %s", address, chain.label, exc)
            return ContractStatusResult(
                chain_id=chain.chain_id,
                contract_spam_status=None,
                message=f"{CLASSIFICATION_UNAVAILABLE_PREFIX}: {exc}",
                source=merged.metadata.source,
                diagnostics=merged.diagnostics,
            )
        return ContractStatusResult(
            chain_id=chain.chain_id,
            contract_spam_status=classification.verdict,
            message=classification.message,
            source=merged.metadata.source,
            cached=classification.cached,
            diagnostics=merged.diagnostics,
        )

    async def _merged_metadata(
        self,
        chain: ChainConfig,
        address: str,
        provider_names: Sequence[str],
        semaphore: asyncio.Semaphore,
    ) -> MergedMetadata:
        if self.metadata_cache is not None:
            entry = self.metadata_cache.get(chain.chain_id, address)
            if entry is not None:
                self.observability.increment("metadata_cache", tags={"result": "hit"})
                return MergedMetadata(metadata=entry.metadata, cached=True)
            self.observability.increment("metadata_cache", tags={"result": "miss"})

        outcomes = await asyncio.gather(
            *(self._fetch(self.providers[name], chain, address, semaphore) for name in provider_names)
        )
        merged = merge_provider_results(zip(provider_names, outcomes))
        if self.metadata_cache is not None and merged.cacheable:
            self.metadata_cache.put(chain.chain_id, address, merged.metadata)
        return merged

    async def _fetch(
        self,
        provider: ContractMetadataProvider,
        chain: ChainConfig,
        address: str,
        semaphore: asyncio.Semaphore,
    ) -> ProviderOutcome:
        started = time.perf_counter()
        try:
            metadata = await provider.fetch_metadata(chain, address, limiter=semaphore)
        except ProviderError as exc:
            if isinstance(exc, ProviderUnauthorized):
                LOGGER.error("%s rejected credentials for %s on %s: %s", provider.name, address, chain.label, exc.detail)
            elif not isinstance(exc, ProviderNotFound):
                LOGGER.warning("%s failed for %s on %s: %s", provider.name, address, chain.label, exc.detail)
            self._record_fetch(provider.name, exc.kind, started)
            return exc
        self._record_fetch(provider.name, "success", started)
        return metadata

    def _record_fetch(self, provider: str, outcome: str, started: float) -> None:
        tags = {"provider": provider, "outcome": outcome}
        self.observability.increment("provider.fetch", tags=tags)
        self.observability.record_timing("provider.fetch_ms", (time.perf_counter() - started) * 1000.0, tags=tags)

    def _record_request(self, chain: ChainConfig, response: Mapping[str, ContractStatusResult], started: float) -> None:
        duration_ms = (time.perf_counter() - started) * 1000.0
        spam = sum(1 for result in response.values() if result.contract_spam_status is True)
        legitimate = sum(1 for result in response.values() if result.contract_spam_status is False)
        undetermined = len(response) - spam - legitimate
        tags = {"chain_id": str(chain.chain_id)}
        self.observability.increment("contract_status.addresses", value=len(response), tags=tags)
        self.observability.record_timing("contract_status.request_ms", duration_ms, tags=tags)
        self.observability.emit_event(
            "contract_status.completed",
            chain_id=chain.chain_id,
            addresses=len(response),
            spam=spam,
            legitimate=legitimate,
            undetermined=undetermined,
            duration_ms=round(duration_ms, 2),
        )

    async def aclose(self) -> None:
        for provider in self.providers.values():
            await provider.aclose()
        await self.classifier.aclose()


__all__ = [
    "ContractStatusResult",
    "ContractStatusService",
    "MergedMetadata",
    "merge_provider_results",
    "CLASSIFICATION_DISABLED_MESSAGE",
    "NO_DATA_MESSAGE",
    "PROVIDERS_FAILED_MESSAGE",
]
