"""Contract spam status API router."""

from __future__ import annotations

import logging
from typing import Dict, List, Union

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from spamwatch.api.dependencies import get_chain_registry, get_contract_status_service, require_api_key
from spamwatch.chains import ChainRegistry
from spamwatch.services.contract_status import ContractStatusService

router = APIRouter(prefix="/v1", tags=["contracts"])
LOGGER = logging.getLogger(__name__)


class ContractStatusRequest(BaseModel):
    """Batch of contract addresses on one chain."""

    chain_id: Union[int, str] = Field(description="Numeric chain ID, or a chain name or alias such as 'MATIC'")
    addresses: List[str] = Field(default_factory=list)


class ContractStatusEntry(BaseModel):
    chain_id: int
    contract_spam_status: bool | None
    message: str


class ChainSummary(BaseModel):
    chain_id: int
    name: str
    aliases: List[str] = Field(default_factory=list)
    providers: List[str] = Field(default_factory=list)


class ChainListResponse(BaseModel):
    chains: List[ChainSummary]
    count: int


@router.post(
    "/contract/status",
    response_model=Dict[str, ContractStatusEntry],
    dependencies=[Depends(require_api_key)],
)
async def contract_status(
    payload: ContractStatusRequest,
    service: ContractStatusService = Depends(get_contract_status_service),
) -> Dict[str, ContractStatusEntry]:
    """Return a spam verdict for every unique address in the request."""

    chain_id = payload.chain_id
    if not isinstance(chain_id, int):
        chain_id = service.registry.parse(chain_id).chain_id
    results = await service.handle(chain_id, payload.addresses)
    return {address: ContractStatusEntry(**result.to_dict()) for address, result in results.items()}


@router.get("/chains", response_model=ChainListResponse)
def list_chains(registry: ChainRegistry = Depends(get_chain_registry)) -> ChainListResponse:
    """List enabled chains and the providers that serve each of them."""

    chains = [
        ChainSummary(
            chain_id=chain.chain_id,
            name=chain.name,
            aliases=list(chain.aliases),
            providers=sorted(name for name in chain.providers if chain.provider_enabled(name)),
        )
        for chain in registry.supported()
    ]
    return ChainListResponse(chains=chains, count=len(chains))
