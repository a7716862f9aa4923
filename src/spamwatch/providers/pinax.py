"""Pinax SQL endpoint metadata provider."""

from __future__ import annotations

import logging
from typing import Any, Dict, Mapping

import httpx

from spamwatch.chains import ChainConfig, ProviderChainConfig
from spamwatch.errors import ProviderError, ProviderNotFound, ProviderUnavailable
from spamwatch.settings import Settings, get_settings

from .base import ContractMetadata, TokenStandard
from .http import HttpMetadataProvider

LOGGER = logging.getLogger(__name__)

_HEALTH_QUERY = "SELECT 1 FORMAT JSON"

_METADATA_QUERY = """
WITH contract_metadata AS (
    SELECT symbol, name, contract, 'ERC1155' AS standard FROM `{db}`.erc1155_metadata_by_contract
    WHERE contract = '{address}'

    UNION ALL

    SELECT symbol, name, contract, 'ERC721' AS standard FROM `{db}`.erc721_metadata_by_contract
    WHERE contract = '{address}'
)
SELECT
    cm.symbol,
    cm.name,
    cm.standard,
    nm.description
FROM contract_metadata cm
LEFT JOIN `{db}`.nft_metadata nm
ON cm.contract = nm.contract
LIMIT 1
FORMAT JSON
"""


def build_metadata_query(db_name: str, address: str) -> str:
    """Render the lookup query; ``address`` must already be normalized."""

    if "`" in db_name:
        raise ValueError(f"invalid Pinax database name: {db_name!r}")
    return _METADATA_QUERY.format(db=db_name, address=address)


class PinaxProvider(HttpMetadataProvider):
    """Query Pinax NFT token tables over its HTTP SQL interface."""

    name = "pinax"

    def __init__(self, *, settings: Settings | None = None, client: httpx.AsyncClient | None = None) -> None:
        settings = settings or get_settings()
        config = settings.pinax
        auth = None
        if config.api_user and config.api_auth:
            auth = (config.api_user, config.api_auth)
        else:
            LOGGER.warning("Pinax credentials are not configured; requests will be rejected upstream")
        super().__init__(
            base_url=config.endpoint,
            timeout_seconds=config.timeout_seconds,
            health_check_timeout_seconds=config.health_check_timeout_seconds,
            max_attempts=config.max_attempts,
            settings=settings,
            client=client,
            headers={"Content-Type": "text/plain", "Accept": "application/json"},
            auth=auth,
        )
        self.default_db_name = config.db_name

    async def _fetch_once(self, chain: ChainConfig, chain_config: ProviderChainConfig, address: str) -> ContractMetadata:
        db_name = chain_config.namespace or self.default_db_name
        try:
            query = build_metadata_query(db_name, address)
        except ValueError as exc:
            raise ProviderError(self.name, str(exc)) from exc
        LOGGER.debug("Pinax query for %s on %s against %s", address, chain.label, db_name)
        response = await self._request(
            "POST",
            self._base_url_for(chain_config),
            content=query.encode("utf-8"),
            timeout=self._timeout_for(chain_config),
        )
        payload = self._json(response)
        if payload.get("error"):
            raise ProviderUnavailable(self.name, f"SQL error: {payload['error']}")
        rows = payload.get("data") or []
        if not rows:
            raise ProviderNotFound(self.name, f"no NFT metadata for {address} on {chain.label}")
        return self._to_metadata(chain, address, rows[0], db_name)

    async def _ping(self, timeout_seconds: float) -> None:
        response = await self._request("POST", self.base_url, content=_HEALTH_QUERY.encode("utf-8"), timeout=timeout_seconds)
        payload = self._json(response)
        if payload.get("error"):
            raise ProviderUnavailable(self.name, f"SQL error: {payload['error']}")

    def _to_metadata(self, chain: ChainConfig, address: str, row: Mapping[str, Any], db_name: str) -> ContractMetadata:
        additional: Dict[str, Any] = {"database": db_name}
        description = row.get("description")
        return ContractMetadata(
            address=address,
            chain_id=chain.chain_id,
            name=row.get("name"),
            symbol=row.get("symbol"),
            contract_type=TokenStandard.parse(row.get("standard")),
            description=description if isinstance(description, str) else None,
            source=self.name,
            additional_data=additional,
        )


__all__ = ["PinaxProvider", "build_metadata_query"]
