"""Moralis NFT API metadata provider."""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Mapping

import httpx

from spamwatch.chains import ChainConfig, ProviderChainConfig
from spamwatch.errors import ProviderError, ProviderNotFound
from spamwatch.settings import Settings, get_settings

from .base import ContractMetadata, TokenStandard
from .http import HttpMetadataProvider

LOGGER = logging.getLogger(__name__)


def _parse_raw_metadata(raw: Any) -> Dict[str, Any]:
    """Moralis returns token metadata either as an object or a JSON-encoded string."""

    if isinstance(raw, Mapping):
        return dict(raw)
    if isinstance(raw, str) and raw.strip():
        try:
            decoded = json.loads(raw)
        except json.JSONDecodeError:
            return {}
        if isinstance(decoded, dict):
            return decoded
    return {}


class MoralisProvider(HttpMetadataProvider):
    """Look up a contract through the first NFT Moralis indexes for it."""

    name = "moralis"

    def __init__(self, *, settings: Settings | None = None, client: httpx.AsyncClient | None = None) -> None:
        settings = settings or get_settings()
        config = settings.moralis
        headers = {"Accept": "application/json"}
        if config.api_key:
            headers["X-API-Key"] = config.api_key
        else:
            LOGGER.warning("Moralis API key is not configured; requests will be rejected upstream")
        super().__init__(
            base_url=config.base_url,
            timeout_seconds=config.timeout_seconds,
            health_check_timeout_seconds=config.health_check_timeout_seconds,
            max_attempts=config.max_attempts,
            settings=settings,
            client=client,
            headers=headers,
        )

    async def _fetch_once(self, chain: ChainConfig, chain_config: ProviderChainConfig, address: str) -> ContractMetadata:
        if not chain_config.namespace:
            raise ProviderError(self.name, f"no Moralis chain slug configured for {chain.label}")
        params = {
            "chain": chain_config.namespace,
            "format": "decimal",
            "limit": 1,
            "normalizeMetadata": "true",
        }
        response = await self._request(
            "GET",
            f"{self._base_url_for(chain_config)}/nft/{address}",
            params=params,
            timeout=self._timeout_for(chain_config),
        )
        payload = self._json(response)
        items = payload.get("result") or []
        if not items:
            raise ProviderNotFound(self.name, f"no NFT data for {address} on {chain.label}")
        return self._to_metadata(chain, address, items[0])

    async def _ping(self, timeout_seconds: float) -> None:
        await self._request("GET", f"{self.base_url}/info/endpointWeights", timeout=timeout_seconds)

    def _to_metadata(self, chain: ChainConfig, address: str, item: Mapping[str, Any]) -> ContractMetadata:
        normalized = item.get("normalized_metadata") if isinstance(item.get("normalized_metadata"), Mapping) else {}
        raw_metadata = _parse_raw_metadata(item.get("metadata"))
        description = normalized.get("description") or raw_metadata.get("description")
        additional: Dict[str, Any] = {}
        for key in ("token_id", "token_hash", "possible_spam", "verified_collection", "collection_category"):
            if item.get(key) is not None:
                additional[key] = item[key]
        if raw_metadata:
            additional["metadata"] = raw_metadata
        verified = item.get("verified_collection")
        return ContractMetadata(
            address=address,
            chain_id=chain.chain_id,
            name=item.get("name"),
            symbol=item.get("symbol"),
            contract_type=TokenStandard.parse(item.get("contract_type")),
            description=description if isinstance(description, str) else None,
            total_supply=None,
            is_verified=verified if isinstance(verified, bool) else None,
            source=self.name,
            additional_data=additional,
        )


__all__ = ["MoralisProvider"]
