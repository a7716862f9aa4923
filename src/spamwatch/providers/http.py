"""Shared httpx plumbing for HTTP metadata providers."""

from __future__ import annotations

import logging
import time
from typing import Any, AsyncContextManager, Dict, Mapping

import httpx

from spamwatch.chains import ChainConfig, ProviderChainConfig
from spamwatch.errors import (
    ProviderError,
    ProviderNotFound,
    ProviderRateLimited,
    ProviderTimeout,
    ProviderUnauthorized,
    ProviderUnavailable,
)
from spamwatch.settings import Settings, get_settings
from spamwatch.util.addresses import normalize_address
from spamwatch.util.retry import BackoffPolicy, retry_async

from .base import ContractMetadata, DependencyHealth

LOGGER = logging.getLogger(__name__)
USER_AGENT = "spamwatch/0.1"


def _is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, ProviderError) and exc.retryable


class HttpMetadataProvider:
    """Base class handling timeouts, status mapping and retries.

    Subclasses set ``name`` and implement ``_fetch_once`` and ``_ping``.
    Per-chain overrides from the chain registry win over the provider-wide
    timeout, attempt budget and base URL.
    """

    name = "http"

    def __init__(
        self,
        *,
        base_url: str,
        timeout_seconds: float,
        health_check_timeout_seconds: float,
        max_attempts: int,
        settings: Settings | None = None,
        client: httpx.AsyncClient | None = None,
        headers: Mapping[str, str] | None = None,
        auth: httpx.Auth | tuple[str, str] | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.health_check_timeout_seconds = health_check_timeout_seconds
        self.max_attempts = max_attempts
        self._owns_client = client is None
        default_headers = {"User-Agent": USER_AGENT, **dict(headers or {})}
        if client is None:
            client = httpx.AsyncClient(headers=default_headers, auth=auth)
        else:
            client.headers.update(default_headers)
            if auth is not None:
                client.auth = auth
        self._client = client

    # ------------------------------------------------------------------
    # Public protocol
    # ------------------------------------------------------------------

    async def fetch_metadata(
        self, chain: ChainConfig, address: str, *, limiter: AsyncContextManager | None = None
    ) -> ContractMetadata:
        normalized = normalize_address(address)
        chain_config = self._chain_config(chain)
        if not chain_config.enabled:
            raise ProviderError(self.name, f"disabled for {chain.label}")
        policy = BackoffPolicy.from_settings(self.settings, max_attempts=chain_config.max_attempts or self.max_attempts)
        return await retry_async(
            lambda: self._fetch_once(chain, chain_config, normalized),
            policy=policy,
            is_retryable=_is_retryable,
            label=f"{self.name} fetch {normalized}",
            limiter=limiter,
        )

    async def health_check(self) -> DependencyHealth:
        started = time.perf_counter()
        try:
            await self._ping(self.health_check_timeout_seconds)
        except ProviderError as exc:
            if isinstance(exc, ProviderUnauthorized):
                LOGGER.error("%s health check failed: credentials rejected", self.name)
            return DependencyHealth.down(self.name, exc.detail, latency_ms=_elapsed_ms(started))
        return DependencyHealth.up(self.name, latency_ms=_elapsed_ms(started))

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    # ------------------------------------------------------------------
    # Subclass hooks
    # ------------------------------------------------------------------

    async def _fetch_once(
        self, chain: ChainConfig, chain_config: ProviderChainConfig, address: str
    ) -> ContractMetadata:  # pragma: no cover - interface only
        raise NotImplementedError

    async def _ping(self, timeout_seconds: float) -> None:  # pragma: no cover - interface only
        raise NotImplementedError

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _chain_config(self, chain: ChainConfig) -> ProviderChainConfig:
        config = chain.provider(self.name)
        if config is None:
            raise ProviderError(self.name, f"not configured for {chain.label}")
        return config

    def _timeout_for(self, chain_config: ProviderChainConfig) -> float:
        return chain_config.timeout_seconds or self.timeout_seconds

    def _base_url_for(self, chain_config: ProviderChainConfig) -> str:
        return (chain_config.base_url or self.base_url).rstrip("/")

    async def _request(self, method: str, url: str, *, timeout: float, **kwargs: Any) -> httpx.Response:
        try:
            response = await self._client.request(method, url, timeout=timeout, **kwargs)
        except httpx.TimeoutException as exc:
            raise ProviderTimeout(self.name, f"timed out after {timeout:g}s") from exc
        except httpx.HTTPError as exc:
            raise ProviderUnavailable(self.name, f"transport error: {exc}") from exc
        self._raise_for_status(response)
        return response

    def _raise_for_status(self, response: httpx.Response) -> None:
        status = response.status_code
        if status < 400:
            return
        if status == 404:
            raise ProviderNotFound(self.name, "contract not found")
        if status in (401, 403):
            raise ProviderUnauthorized(self.name, f"credentials rejected (HTTP {status})")
        if status == 429:
            raise ProviderRateLimited(self.name, "rate limit exceeded")
        if status == 408 or status >= 500:
            raise ProviderUnavailable(self.name, f"upstream returned HTTP {status}")
        raise ProviderError(self.name, f"unexpected HTTP {status}: {response.text[:200]}")

    def _json(self, response: httpx.Response) -> Dict[str, Any]:
        try:
            payload = response.json()
        except ValueError as exc:
            raise ProviderUnavailable(self.name, "response body is not valid JSON") from exc
        if not isinstance(payload, dict):
            raise ProviderUnavailable(self.name, "response body is not a JSON object")
        return payload


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000.0, 2)


__all__ = ["HttpMetadataProvider", "USER_AGENT"]
