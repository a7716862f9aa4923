"""Tests for the contract status and chain listing routes."""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from spamwatch.api.app import REQUEST_LOG, create_app
from spamwatch.api.dependencies import get_chain_registry, get_contract_status_service
from spamwatch.chains import ChainRegistry
from spamwatch.classification import SPAM_MESSAGE, ClassificationResult
from spamwatch.errors import ProviderNotFound, RequestTimeoutError
from spamwatch.providers import ContractMetadata
from spamwatch.services.contract_status import NO_DATA_MESSAGE, ContractStatusService
from spamwatch.settings import get_settings

SPAM_ADDRESS = "0x" + "12" * 20
EMPTY_ADDRESS = "0x" + "34" * 20


class _StubProvider:
    name = "moralis"
    health_check_timeout_seconds = 1.0

    async def fetch_metadata(self, chain, address: str, *, limiter=None) -> ContractMetadata:
        if address == SPAM_ADDRESS:
            return ContractMetadata(address=address, chain_id=chain.chain_id, source=self.name, name="Free Airdrop")
        raise ProviderNotFound(self.name, "no record")

    async def health_check(self):  # pragma: no cover - not used here
        raise NotImplementedError

    async def aclose(self) -> None:
        return None


class _StubClassifier:
    async def classify(self, chain, metadata, *, limiter=None) -> ClassificationResult:
        return ClassificationResult(verdict=True, message=SPAM_MESSAGE, cached=False, fingerprint="fp")

    async def aclose(self) -> None:
        return None


class _TimingOutService:
    registry = ChainRegistry()

    async def handle(self, chain_id, addresses):
        raise RequestTimeoutError(60.0)


@pytest.fixture
def api(make_settings):
    """Build an app wired to stub providers and return ``(client, app, settings)``."""

    def _build(**overrides):
        overrides.setdefault("api", {"rate_limit_per_minute": 0})
        settings = make_settings(**overrides)
        registry = ChainRegistry.from_settings(settings)
        service = ContractStatusService(
            settings=settings,
            registry=registry,
            providers=[_StubProvider()],
            classifier=_StubClassifier(),
        )
        app = create_app(settings)
        app.dependency_overrides[get_settings] = lambda: settings
        app.dependency_overrides[get_contract_status_service] = lambda: service
        app.dependency_overrides[get_chain_registry] = lambda: registry
        return TestClient(app), app

    REQUEST_LOG.clear()
    yield _build
    REQUEST_LOG.clear()


def test_contract_status_returns_verdict_per_address(api) -> None:
    client, app = api()

    response = client.post(
        "/v1/contract/status",
        json={"chain_id": 1, "addresses": [SPAM_ADDRESS, EMPTY_ADDRESS, SPAM_ADDRESS.upper().replace("0X", "0x")]},
    )

    assert response.status_code == 200
    assert response.json() == {
        SPAM_ADDRESS: {"chain_id": 1, "contract_spam_status": True, "message": SPAM_MESSAGE},
        EMPTY_ADDRESS: {"chain_id": 1, "contract_spam_status": None, "message": NO_DATA_MESSAGE},
    }
    app.dependency_overrides.clear()


def test_chain_can_be_given_by_alias(api) -> None:
    client, app = api()

    response = client.post("/v1/contract/status", json={"chain_id": "MATIC", "addresses": [SPAM_ADDRESS]})

    assert response.status_code == 200
    assert response.json()[SPAM_ADDRESS]["chain_id"] == 137
    app.dependency_overrides.clear()


def test_unsupported_chain_is_rejected(api) -> None:
    client, app = api()

    response = client.post("/v1/contract/status", json={"chain_id": 999, "addresses": [SPAM_ADDRESS]})

    assert response.status_code == 400
    body = response.json()
    assert body["reason"] == "unknown"
    assert body["chain_id"] == 999
    assert body["detail"].startswith("unsupported chain ID: 999")
    app.dependency_overrides.clear()


def test_disabled_chain_is_rejected(api) -> None:
    client, app = api()

    response = client.post("/v1/contract/status", json={"chain_id": 10, "addresses": [SPAM_ADDRESS]})

    assert response.status_code == 400
    assert response.json()["reason"] == "disabled"
    app.dependency_overrides.clear()


@pytest.mark.parametrize(
    "payload",
    [
        {"chain_id": 1, "addresses": []},
        {"chain_id": 1, "addresses": ["0xnothex"]},
        {"chain_id": "dogechain", "addresses": [SPAM_ADDRESS]},
    ],
)
def test_bad_requests_return_400(api, payload) -> None:
    client, app = api()

    response = client.post("/v1/contract/status", json=payload)

    assert response.status_code == 400
    assert response.json()["detail"]
    app.dependency_overrides.clear()


def test_request_timeout_returns_504(api) -> None:
    client, app = api()
    app.dependency_overrides[get_contract_status_service] = lambda: _TimingOutService()

    response = client.post("/v1/contract/status", json={"chain_id": 1, "addresses": [SPAM_ADDRESS]})

    assert response.status_code == 504
    assert "60s" in response.json()["detail"]
    app.dependency_overrides.clear()


def test_list_chains(api) -> None:
    client, app = api()

    response = client.get("/v1/chains")

    assert response.status_code == 200
    body = response.json()
    assert body["count"] == 5
    polygon = next(chain for chain in body["chains"] if chain["chain_id"] == 137)
    assert polygon["aliases"] == ["MATIC"]
    assert polygon["providers"] == ["moralis", "pinax"]
    app.dependency_overrides.clear()


def test_request_id_is_echoed(api) -> None:
    client, app = api()

    echoed = client.get("/v1/chains", headers={"X-Request-ID": "req-123"})
    minted = client.get("/v1/chains")

    assert echoed.headers["X-Request-ID"] == "req-123"
    assert minted.headers["X-Request-ID"]
    app.dependency_overrides.clear()


def test_rate_limit_returns_429(api) -> None:
    client, app = api(api={"rate_limit_per_minute": 2})

    statuses = [client.get("/v1/chains").status_code for _ in range(3)]

    assert statuses == [200, 200, 429]
    app.dependency_overrides.clear()


def test_api_key_is_enforced_when_required(api) -> None:
    client, app = api(api={"rate_limit_per_minute": 0, "require_api_key": True, "key": "secret"})
    payload = {"chain_id": 1, "addresses": [SPAM_ADDRESS]}

    missing = client.post("/v1/contract/status", json=payload)
    wrong = client.post("/v1/contract/status", json=payload, headers={"X-API-KEY": "nope"})
    accepted = client.post("/v1/contract/status", json=payload, headers={"X-API-KEY": "secret"})

    assert missing.status_code == 401
    assert wrong.status_code == 403
    assert accepted.status_code == 200
    app.dependency_overrides.clear()
