"""Concurrent health probing across every enabled dependency."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Literal, Mapping, Sequence

from spamwatch.chains import ChainRegistry
from spamwatch.classification import SpamClassifier
from spamwatch.observability import Observability, get_observability
from spamwatch.providers import ContractMetadataProvider, DependencyHealth
from spamwatch.settings import Settings, get_settings

LOGGER = logging.getLogger(__name__)

OverallStatus = Literal["up", "degraded"]


@dataclass(frozen=True, slots=True)
class ServiceHealth:
    status: OverallStatus
    dependencies: Dict[str, DependencyHealth]
    checked_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "dependencies": {name: health.to_dict() for name, health in self.dependencies.items()},
            "checked_at": self.checked_at.isoformat(),
        }


class HealthAggregator:
    """Check providers and the classifier concurrently and merge one snapshot.

    A provider is checked once if it is enabled on at least one enabled chain.
    Each check is bounded by the dependency's own health-check timeout; a
    check that times out or raises is reported as down rather than failing
    the snapshot.
    """

    def __init__(
        self,
        *,
        settings: Settings | None = None,
        registry: ChainRegistry | None = None,
        providers: Mapping[str, ContractMetadataProvider] | Sequence[ContractMetadataProvider] = (),
        classifier: SpamClassifier | None = None,
        observability: Observability | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.registry = registry or ChainRegistry.from_settings(self.settings)
        if isinstance(providers, Mapping):
            self.providers: Dict[str, ContractMetadataProvider] = dict(providers)
        else:
            self.providers = {provider.name: provider for provider in providers}
        self.classifier = classifier
        self.observability = observability or get_observability(component="health", settings=self.settings)

    def checked_providers(self) -> List[ContractMetadataProvider]:
        chains = self.registry.supported()
        return [
            provider
            for name, provider in sorted(self.providers.items())
            if any(chain.provider_enabled(name) for chain in chains)
        ]

    async def snapshot(self) -> ServiceHealth:
        checks: List[tuple[str, Callable[[], Awaitable[DependencyHealth]], float]] = [
            (provider.name, provider.health_check, provider.health_check_timeout_seconds)
            for provider in self.checked_providers()
        ]
        if self.classifier is not None and self.settings.classifier.enabled:
            checks.append(("classifier", self.classifier.health_check, self.classifier.health_check_timeout_seconds))

        results = await asyncio.gather(*(self._ping(name, check, timeout) for name, check, timeout in checks))
        dependencies = {health.name: health for health in results}
        status: OverallStatus = "up" if all(health.is_up for health in results) else "degraded"
        for health in results:
            self.observability.increment("health.dependency", tags={"dependency": health.name, "status": health.status})
        if status == "degraded":
            down = {name: health.reason for name, health in dependencies.items() if not health.is_up}
            self.observability.emit_event("health.degraded", dependencies=down)
        return ServiceHealth(status=status, dependencies=dependencies, checked_at=datetime.now(timezone.utc))

    async def _ping(
        self,
        name: str,
        check: Callable[[], Awaitable[DependencyHealth]],
        timeout_seconds: float,
    ) -> DependencyHealth:
        started = time.perf_counter()
        try:
            result = await asyncio.wait_for(check(), timeout=timeout_seconds)
        except TimeoutError:
            return DependencyHealth.down(
                name,
                f"timed out after {timeout_seconds:g}s",
                latency_ms=round((time.perf_counter() - started) * 1000.0, 2),
            )
        except Exception as exc:
            LOGGER.warning("Health check for %s raised", name, exc_info=True)
            return DependencyHealth.down(
                name,
                str(exc) or type(exc).__name__,
                latency_ms=round((time.perf_counter() - started) * 1000.0, 2),
            )
        if result.name != name:
            result = DependencyHealth(name=name, status=result.status, reason=result.reason, latency_ms=result.latency_ms)
        return result


__all__ = ["HealthAggregator", "ServiceHealth"]
