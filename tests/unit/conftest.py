"""Shared fixtures for spamwatch unit tests."""

from __future__ import annotations

from typing import Any, Callable, Dict

import pytest

from spamwatch.observability import reset_observability_cache
from spamwatch.settings import Settings


def _merge(base: Dict[str, Any], overrides: Dict[str, Any]) -> Dict[str, Any]:
    merged = dict(base)
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


@pytest.fixture(autouse=True)
def _reset_metrics_backends():
    reset_observability_cache()
    yield
    reset_observability_cache()


@pytest.fixture
def make_settings() -> Callable[..., Settings]:
    """Build isolated settings with instant retries, the mock classifier and no metadata cache."""

    def _make(**overrides: Any) -> Settings:
        base: Dict[str, Any] = {
            "env": "test",
            "retry": {"base_delay_seconds": 0.0, "max_delay_seconds": 0.0, "jitter": False},
            "classifier": {"provider": "mock"},
            "metadata_cache": {"enabled": False},
            "observability": {"structured_logging": False, "statsd_host": None, "otlp_endpoint": None},
        }
        return Settings(**_merge(base, overrides))

    return _make


@pytest.fixture
def anyio_backend() -> str:
    """The service is built on asyncio primitives; run anyio-marked tests on asyncio only."""
    return "asyncio"
