"""Provider contract, shared metadata model and health snapshot types."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, AsyncContextManager, Dict, Literal, Protocol, runtime_checkable

from pydantic import BaseModel, Field, field_validator

from spamwatch.chains import ChainConfig
from spamwatch.util.addresses import normalize_address


class TokenStandard(str, Enum):
    """Contract interface reported by a provider."""

    ERC20 = "ERC20"
    ERC721 = "ERC721"
    ERC1155 = "ERC1155"
    CONTRACT = "CONTRACT"
    UNKNOWN = "UNKNOWN"

    @classmethod
    def parse(cls, value: object) -> "TokenStandard":
        if isinstance(value, cls):
            return value
        text = str(value or "").strip().upper().replace("-", "")
        try:
            return cls(text)
        except ValueError:
            return cls.UNKNOWN


def _clean_text(value: str | None) -> str | None:
    if value is None:
        return None
    stripped = str(value).strip()
    return stripped or None


class ContractMetadata(BaseModel):
    """Normalized contract metadata returned by any provider."""

    address: str
    chain_id: int
    name: str | None = None
    symbol: str | None = None
    contract_type: TokenStandard = TokenStandard.UNKNOWN
    description: str | None = None
    total_supply: str | None = None
    holder_count: int | None = None
    is_verified: bool | None = None
    source: str
    additional_data: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("address", mode="before")
    @classmethod
    def _normalize_address(cls, value: object) -> str:
        return normalize_address(value)

    @field_validator("contract_type", mode="before")
    @classmethod
    def _parse_standard(cls, value: object) -> TokenStandard:
        return TokenStandard.parse(value)

    @field_validator("name", "symbol", "description", mode="before")
    @classmethod
    def _strip_text(cls, value: object) -> object:
        if isinstance(value, str):
            return _clean_text(value)
        return value

    def classification_view(self) -> Dict[str, Any]:
        """Provider-independent fields fed to the classifier and its cache key.

        ``source`` and ``additional_data`` are excluded so that the
        same contract described identically by two providers maps to one view.
        """

        return {
            "chain_id": self.chain_id,
            "address": self.address,
            "name": self.name,
            "symbol": self.symbol,
            "description": self.description,
            "contract_type": self.contract_type.value,
        }


HealthState = Literal["up", "down"]


@dataclass(frozen=True, slots=True)
class DependencyHealth:
    """Result of probing one dependency."""

    name: str
    status: HealthState
    reason: str | None = None
    latency_ms: float | None = None

    @classmethod
    def up(cls, name: str, *, latency_ms: float | None = None) -> "DependencyHealth":
        return cls(name=name, status="up", latency_ms=latency_ms)

    @classmethod
    def down(cls, name: str, reason: str, *, latency_ms: float | None = None) -> "DependencyHealth":
        return cls(name=name, status="down", reason=reason, latency_ms=latency_ms)

    @property
    def is_up(self) -> bool:
        return self.status == "up"

    def to_dict(self) -> Dict[str, Any]:
        return {"status": self.status, "reason": self.reason, "latency_ms": self.latency_ms}


@runtime_checkable
class ContractMetadataProvider(Protocol):
    """Source of contract metadata for the aggregation pipeline.

    ``fetch_metadata`` raises :class:`spamwatch.errors.ProviderError`
    subclasses; ``ProviderNotFound`` means the provider answered but has no
    record of the contract. ``limiter`` is held for each outbound attempt.
    """

    name: str
    health_check_timeout_seconds: float

    async def fetch_metadata(
        self, chain: ChainConfig, address: str, *, limiter: AsyncContextManager | None = None
    ) -> ContractMetadata:
        ...

    async def health_check(self) -> DependencyHealth:
        ...

    async def aclose(self) -> None:
        ...


__all__ = [
    "ContractMetadata",
    "ContractMetadataProvider",
    "DependencyHealth",
    "HealthState",
    "TokenStandard",
]
