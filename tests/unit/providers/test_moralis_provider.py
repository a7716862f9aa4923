"""Tests for the Moralis metadata provider."""

from __future__ import annotations

import httpx
import pytest

from spamwatch.chains import ChainRegistry
from spamwatch.errors import (
    InvalidAddressError,
    ProviderError,
    ProviderNotFound,
    ProviderRateLimited,
    ProviderTimeout,
    ProviderUnauthorized,
    ProviderUnavailable,
)
from spamwatch.providers import MoralisProvider, TokenStandard

ADDRESS = "0x" + "ab" * 20

NFT_PAYLOAD = {
    "result": [
        {
            "token_address": ADDRESS,
            "token_id": "1",
            "contract_type": "ERC721",
            "name": "  Free Airdrop Pass ",
            "symbol": "CLAIM",
            "token_hash": "abc123",
            "possible_spam": True,
            "verified_collection": False,
            "metadata": '{"name": "Pass #1", "description": "Visit claim-now.io to redeem"}',
            "normalized_metadata": {"name": "Pass #1", "description": None},
        }
    ]
}


class _Recorder:
    """MockTransport handler that replays queued responses and records requests."""

    def __init__(self, *responses) -> None:
        self.responses = list(responses)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        outcome = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def _provider(make_settings, handler, **moralis) -> MoralisProvider:
    settings = make_settings(moralis={"api_key": "test-key", **moralis})
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return MoralisProvider(settings=settings, client=client)


@pytest.mark.anyio
async def test_fetch_maps_nft_payload(make_settings) -> None:
    recorder = _Recorder(httpx.Response(200, json=NFT_PAYLOAD))
    provider = _provider(make_settings, recorder)
    chain = ChainRegistry().resolve(137)

    metadata = await provider.fetch_metadata(chain, ADDRESS.upper().replace("0X", "0x"))

    assert metadata.address == ADDRESS
    assert metadata.chain_id == 137
    assert metadata.name == "Free Airdrop Pass"
    assert metadata.symbol == "CLAIM"
    assert metadata.contract_type is TokenStandard.ERC721
    assert metadata.description == "Visit claim-now.io to redeem"
    assert metadata.is_verified is False
    assert metadata.source == "moralis"
    assert metadata.additional_data["possible_spam"] is True
    assert metadata.additional_data["metadata"]["name"] == "Pass #1"

    request = recorder.requests[0]
    assert request.method == "GET"
    assert request.url.path == f"/api/v2/nft/{ADDRESS}"
    assert request.url.params["chain"] == "polygon"
    assert request.url.params["limit"] == "1"
    assert request.headers["X-API-Key"] == "test-key"
    assert request.headers["User-Agent"].startswith("spamwatch/")


@pytest.mark.anyio
async def test_empty_result_is_not_found(make_settings) -> None:
    provider = _provider(make_settings, _Recorder(httpx.Response(200, json={"result": []})))

    with pytest.raises(ProviderNotFound) as excinfo:
        await provider.fetch_metadata(ChainRegistry().resolve(1), ADDRESS)

    assert excinfo.value.provider == "moralis"
    assert excinfo.value.kind == "not_found"


@pytest.mark.anyio
@pytest.mark.parametrize(
    ("status", "error_type"),
    [
        (404, ProviderNotFound),
        (401, ProviderUnauthorized),
        (403, ProviderUnauthorized),
        (400, ProviderError),
    ],
)
async def test_non_retryable_statuses_fail_after_one_call(make_settings, status, error_type) -> None:
    recorder = _Recorder(httpx.Response(status, json={"message": "nope"}))
    provider = _provider(make_settings, recorder)

    with pytest.raises(error_type):
        await provider.fetch_metadata(ChainRegistry().resolve(1), ADDRESS)

    assert len(recorder.requests) == 1


@pytest.mark.anyio
async def test_transient_failures_are_retried(make_settings) -> None:
    recorder = _Recorder(
        httpx.Response(503),
        httpx.Response(429),
        httpx.Response(200, json=NFT_PAYLOAD),
    )
    provider = _provider(make_settings, recorder)

    metadata = await provider.fetch_metadata(ChainRegistry().resolve(1), ADDRESS)

    assert metadata.symbol == "CLAIM"
    assert len(recorder.requests) == 3


@pytest.mark.anyio
async def test_retry_budget_exhaustion_surfaces_last_error(make_settings) -> None:
    recorder = _Recorder(httpx.Response(429))
    provider = _provider(make_settings, recorder, max_attempts=2)

    with pytest.raises(ProviderRateLimited):
        await provider.fetch_metadata(ChainRegistry().resolve(1), ADDRESS)

    assert len(recorder.requests) == 2


@pytest.mark.anyio
async def test_timeouts_map_to_provider_timeout(make_settings) -> None:
    recorder = _Recorder(httpx.ReadTimeout("slow upstream"))
    provider = _provider(make_settings, recorder, max_attempts=1)

    with pytest.raises(ProviderTimeout):
        await provider.fetch_metadata(ChainRegistry().resolve(1), ADDRESS)


@pytest.mark.anyio
async def test_invalid_json_is_unavailable(make_settings) -> None:
    recorder = _Recorder(httpx.Response(200, text="<html>maintenance</html>"))
    provider = _provider(make_settings, recorder, max_attempts=1)

    with pytest.raises(ProviderUnavailable):
        await provider.fetch_metadata(ChainRegistry().resolve(1), ADDRESS)


@pytest.mark.anyio
async def test_chain_override_controls_slug_and_base_url(make_settings) -> None:
    recorder = _Recorder(httpx.Response(200, json=NFT_PAYLOAD))
    settings = make_settings(
        moralis={"api_key": "test-key"},
        chains={"1": {"providers": {"moralis": {"namespace": "0x1", "base_url": "https://moralis.test/api"}}}},
    )
    provider = MoralisProvider(settings=settings, client=httpx.AsyncClient(transport=httpx.MockTransport(recorder)))

    await provider.fetch_metadata(ChainRegistry.from_settings(settings).resolve(1), ADDRESS)

    request = recorder.requests[0]
    assert request.url.host == "moralis.test"
    assert request.url.params["chain"] == "0x1"


@pytest.mark.anyio
async def test_chain_disabled_for_provider_is_rejected(make_settings) -> None:
    recorder = _Recorder(httpx.Response(200, json=NFT_PAYLOAD))
    settings = make_settings(chains={"1": {"providers": {"moralis": {"enabled": False}}}})
    provider = _provider(make_settings, recorder)

    with pytest.raises(ProviderError):
        await provider.fetch_metadata(ChainRegistry.from_settings(settings).resolve(1), ADDRESS)

    assert recorder.requests == []


@pytest.mark.anyio
async def test_malformed_address_is_rejected_before_request(make_settings) -> None:
    recorder = _Recorder(httpx.Response(200, json=NFT_PAYLOAD))
    provider = _provider(make_settings, recorder)

    with pytest.raises(InvalidAddressError):
        await provider.fetch_metadata(ChainRegistry().resolve(1), "0x1234")

    assert recorder.requests == []


@pytest.mark.anyio
async def test_health_check_up(make_settings) -> None:
    recorder = _Recorder(httpx.Response(200, json=[{"endpoint": "/nft/{address}", "weight": 5}]))
    provider = _provider(make_settings, recorder)

    health = await provider.health_check()

    assert health.is_up
    assert health.name == "moralis"
    assert recorder.requests[0].url.path == "/api/v2/info/endpointWeights"


@pytest.mark.anyio
async def test_health_check_reports_rejected_credentials(make_settings, caplog) -> None:
    provider = _provider(make_settings, _Recorder(httpx.Response(401)))

    with caplog.at_level("ERROR"):
        health = await provider.health_check()

    assert health.status == "down"
    assert "credentials rejected" in health.reason
    assert any("credentials rejected" in record.getMessage() for record in caplog.records)


@pytest.mark.anyio
async def test_health_check_reports_transport_errors(make_settings) -> None:
    provider = _provider(make_settings, _Recorder(httpx.ConnectError("connection refused")))

    health = await provider.health_check()

    assert health.status == "down"
    assert "transport error" in health.reason
