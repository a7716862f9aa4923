"""Unit tests for the chain registry."""

from __future__ import annotations

import pytest

from spamwatch.chains import ChainConfig, ChainRegistry, ProviderChainConfig
from spamwatch.errors import ChainNotSupportedError


def test_default_table_enables_expected_chains() -> None:
    registry = ChainRegistry()

    assert [chain.chain_id for chain in registry.supported()] == [1, 137, 8453, 42161, 43114]
    assert 10 in registry
    assert 56 in registry
    assert len(registry) == 7


def test_resolve_returns_enabled_chain() -> None:
    chain = ChainRegistry().resolve(137)

    assert chain.name == "Polygon"
    assert chain.label == "Polygon (ID: 137)"
    assert chain.provider("moralis").namespace == "polygon"
    assert chain.provider_enabled("pinax")


def test_resolve_unknown_chain_lists_supported_ids() -> None:
    with pytest.raises(ChainNotSupportedError) as excinfo:
        ChainRegistry().resolve(999)

    assert excinfo.value.reason == "unknown"
    assert excinfo.value.chain_id == 999
    message = str(excinfo.value)
    assert message.startswith("unsupported chain ID: 999")
    assert "1 (Ethereum)" in message
    assert "137 (Polygon)" in message
    assert "Optimism" not in message


def test_resolve_disabled_chain_reports_planned() -> None:
    with pytest.raises(ChainNotSupportedError) as excinfo:
        ChainRegistry().resolve(10)

    assert excinfo.value.reason == "disabled"
    assert str(excinfo.value) == "Optimism (ID: 10) is planned for future implementation"


def test_validate_filters_providers_and_keeps_order() -> None:
    chain = ChainConfig(
        chain_id=5,
        name="Testnet",
        providers={
            "moralis": ProviderChainConfig(enabled=False),
            "pinax": ProviderChainConfig(namespace="testnet"),
        },
    )
    registry = ChainRegistry([chain])

    resolved, usable = registry.validate(5, ["moralis", "pinax", "other"])

    assert resolved is chain
    assert usable == ["pinax"]


def test_validate_without_usable_providers_raises() -> None:
    registry = ChainRegistry()

    with pytest.raises(ChainNotSupportedError) as excinfo:
        registry.validate(1, [])

    assert excinfo.value.reason == "no_providers"
    assert "Ethereum (ID: 1)" in str(excinfo.value)


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        (1, 1),
        ("137", 137),
        (" polygon ", 137),
        ("MATIC", 137),
        ("uni", 1),
        ("eth", 1),
        ("avax", 43114),
        ("ARB", 42161),
    ],
)
def test_parse_accepts_ids_names_and_aliases(value, expected) -> None:
    assert ChainRegistry().parse(value).chain_id == expected


def test_parse_unknown_name() -> None:
    with pytest.raises(ChainNotSupportedError) as excinfo:
        ChainRegistry().parse("dogechain")

    assert excinfo.value.chain_id is None
    assert excinfo.value.reason == "unknown"
    assert "unsupported chain name: dogechain" in str(excinfo.value)


def test_parse_alias_of_disabled_chain() -> None:
    with pytest.raises(ChainNotSupportedError) as excinfo:
        ChainRegistry().parse("BSC")

    assert excinfo.value.reason == "disabled"
    assert excinfo.value.chain_id == 56


def test_duplicate_chain_ids_are_rejected() -> None:
    with pytest.raises(ValueError):
        ChainRegistry([ChainConfig(chain_id=1, name="A"), ChainConfig(chain_id=1, name="B")])


def test_settings_overrides_are_merged(make_settings) -> None:
    settings = make_settings(
        chains={
            "10": {"enabled": True},
            "137": {"providers": {"moralis": {"enabled": False}}},
            "250": {"name": "Fantom", "providers": {"pinax": {"namespace": "fantom:nft"}}},
        }
    )

    registry = ChainRegistry.from_settings(settings)

    assert registry.resolve(10).name == "Optimism"
    polygon = registry.resolve(137)
    assert not polygon.provider_enabled("moralis")
    assert polygon.provider("pinax").timeout_seconds == 25
    assert polygon.provider("pinax").namespace == "matic:evm-nft-tokens@v0.6.2"

    with pytest.raises(ChainNotSupportedError) as excinfo:
        registry.resolve(250)
    assert excinfo.value.reason == "disabled"
    fantom = {chain.chain_id: chain for chain in registry.all()}[250]
    assert fantom.name == "Fantom"
    assert fantom.providers["pinax"].namespace == "fantom:nft"


def test_new_chain_can_be_enabled_by_override(make_settings) -> None:
    settings = make_settings(
        chains={"250": {"name": "Fantom", "enabled": True, "aliases": ["FTM"], "providers": {"pinax": {"namespace": "ftm"}}}}
    )

    registry = ChainRegistry.from_settings(settings)
    chain, usable = registry.validate(registry.parse("ftm").chain_id, ["moralis", "pinax"])

    assert chain.chain_id == 250
    assert usable == ["pinax"]
