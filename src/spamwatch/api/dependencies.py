"""FastAPI dependency providers backed by one process-wide service container."""

from __future__ import annotations

import logging

from fastapi import Depends, HTTPException, Request, status

from spamwatch.chains import ChainRegistry
from spamwatch.services.contract_status import ContractStatusService
from spamwatch.services.factories import ServiceContainer, build_service_container
from spamwatch.services.health import HealthAggregator
from spamwatch.settings import Settings, get_settings

LOGGER = logging.getLogger(__name__)

_CONTAINER: ServiceContainer | None = None


def get_container() -> ServiceContainer:
    """Return the shared service container, building it on first use."""

    global _CONTAINER
    if _CONTAINER is None:
        _CONTAINER = build_service_container(get_settings())
        LOGGER.info("Service container ready with providers: %s", ", ".join(_CONTAINER.providers) or "none")
    return _CONTAINER


async def shutdown_container() -> None:
    """Close outbound clients held by the shared container, if one was built."""

    global _CONTAINER
    if _CONTAINER is None:
        return
    container, _CONTAINER = _CONTAINER, None
    await container.aclose()


def get_contract_status_service() -> ContractStatusService:
    """Dependency provider returning the shared ContractStatusService instance."""

    return get_container().contract_status


def get_health_aggregator() -> HealthAggregator:
    """Dependency provider returning the shared HealthAggregator instance."""

    return get_container().health


def get_chain_registry() -> ChainRegistry:
    """Dependency provider returning the shared ChainRegistry instance."""

    return get_container().registry


def require_api_key(
    request: Request,
    settings: Settings = Depends(get_settings),
) -> None:
    """Enforce the shared API key when ``api.require_api_key`` is enabled."""

    config = settings.api
    if not config.require_api_key:
        return
    if not config.key:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="API key not configured")
    provided_key = request.headers.get(config.header_name)
    if not provided_key:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=f"Missing {config.header_name}")
    if provided_key != config.key:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid API key")
