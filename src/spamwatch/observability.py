"""Logging setup, structured pipeline events and lightweight metrics."""

from __future__ import annotations

import json
import logging
import socket
import threading
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, Mapping, Protocol, Sequence, Tuple

from opentelemetry import metrics as otel_metrics
from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader

from spamwatch.settings import Settings, get_settings

_LOGGER = logging.getLogger("spamwatch.observability")
_METRICS_BACKEND_LOCK = threading.Lock()
_SHARED_BACKENDS: "Tuple[MetricsBackend, ...] | None" = None
_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


class MetricsBackend(Protocol):
    def increment(self, metric: str, *, value: float, tags: Mapping[str, str] | None) -> None:
        ...

    def record_timing(self, metric: str, *, value_ms: float, tags: Mapping[str, str] | None) -> None:
        ...


def configure_logging(settings: Settings | None = None) -> None:
    """Apply the configured log level to the ``spamwatch`` logger tree."""

    resolved = settings or get_settings()
    level = logging.getLevelName(resolved.log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO
    logging.basicConfig(level=level, format=_LOG_FORMAT)
    logging.getLogger("spamwatch").setLevel(level)


class Observability:
    """Emit structured events and StatsD/OTel-compatible metrics for one component."""

    def __init__(
        self,
        *,
        settings: Settings,
        component: str | None = None,
        metrics_backends: Sequence[MetricsBackend] = (),
        logger: logging.Logger | None = None,
    ) -> None:
        self.settings = settings
        self.component = component or "core"
        self._logger = logger or _LOGGER
        self._structured_logging = bool(settings.observability.structured_logging)
        self._backends = tuple(metrics_backends)

    def emit_event(self, event: str, **fields: Any) -> None:
        """Log a pipeline event, as JSON when structured logging is on."""

        payload = {
            "event": event,
            "component": self.component,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            **fields,
        }
        if self._structured_logging:
            self._logger.info(json.dumps(payload, default=_serialize))
        else:
            self._logger.info("%s | %s", event, payload)

    def increment(self, metric: str, *, value: float = 1.0, tags: Mapping[str, str] | None = None) -> None:
        normalized = _normalize_tags(tags)
        for backend in self._backends:
            backend.increment(metric, value=value, tags=normalized)

    def record_timing(self, metric: str, value_ms: float, *, tags: Mapping[str, str] | None = None) -> None:
        normalized = _normalize_tags(tags)
        for backend in self._backends:
            backend.record_timing(metric, value_ms=value_ms, tags=normalized)

    @contextmanager
    def timer(self, metric: str, *, tags: Mapping[str, str] | None = None) -> Iterator[None]:
        """Record the wall time of the ``with`` block, even when it raises."""

        started = time.perf_counter()
        try:
            yield
        finally:
            self.record_timing(metric, (time.perf_counter() - started) * 1000.0, tags=tags)


def get_observability(*, component: str | None = None, settings: Settings | None = None) -> Observability:
    """Return an :class:`Observability` instance for the requested component."""

    resolved = settings or get_settings()
    backends = _shared_metrics_backends(resolved)
    return Observability(settings=resolved, component=component, metrics_backends=backends, logger=_LOGGER)


def reset_observability_cache() -> None:
    """Reset cached metrics backends (used in tests)."""

    global _SHARED_BACKENDS
    with _METRICS_BACKEND_LOCK:
        _SHARED_BACKENDS = None


# ---------------------------------------------------------------------------
# Metrics backends
# ---------------------------------------------------------------------------


class _StatsdBackend:
    """Fire-and-forget StatsD client over UDP with DogStatsD-style tags."""

    def __init__(self, *, host: str, port: int, prefix: str) -> None:
        self.prefix = prefix
        self._address = (host, port)
        self._socket = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)

    def increment(self, metric: str, *, value: float, tags: Mapping[str, str] | None) -> None:
        self._send(metric, value, metric_type="c", tags=tags)

    def record_timing(self, metric: str, *, value_ms: float, tags: Mapping[str, str] | None) -> None:
        self._send(metric, value_ms, metric_type="ms", tags=tags)

    def _send(self, metric: str, value: float, *, metric_type: str, tags: Mapping[str, str] | None) -> None:
        scoped = f"{self.prefix}.{metric}" if self.prefix else metric
        payload = f"{scoped}:{_format_number(value)}|{metric_type}"
        if tags:
            payload = f"{payload}|#" + ",".join(f"{key}:{val}" for key, val in sorted(tags.items()))
        try:
            self._socket.sendto(payload.encode("utf-8"), self._address)
        except OSError:  # pragma: no cover - UDP send failures are non-fatal
            _LOGGER.debug("StatsD send failed for metric %s", metric, exc_info=True)


class _OtelMetricsBackend:
    """OpenTelemetry counters and histograms exported over OTLP/gRPC."""

    def __init__(self, *, endpoint: str, service_name: str) -> None:
        self._counters: Dict[str, Any] = {}
        self._histograms: Dict[str, Any] = {}
        exporter = OTLPMetricExporter(endpoint=endpoint, insecure=endpoint.startswith("http://"))
        provider = MeterProvider(metric_readers=[PeriodicExportingMetricReader(exporter)])
        otel_metrics.set_meter_provider(provider)
        self._meter = otel_metrics.get_meter(service_name or "spamwatch")

    def increment(self, metric: str, *, value: float, tags: Mapping[str, str] | None) -> None:
        instrument = self._counters.get(metric)
        if instrument is None:
            instrument = self._meter.create_counter(metric)
            self._counters[metric] = instrument
        instrument.add(value, attributes=dict(tags or {}))

    def record_timing(self, metric: str, *, value_ms: float, tags: Mapping[str, str] | None) -> None:
        instrument = self._histograms.get(metric)
        if instrument is None:
            instrument = self._meter.create_histogram(metric, unit="ms")
            self._histograms[metric] = instrument
        instrument.record(value_ms, attributes=dict(tags or {}))


def _shared_metrics_backends(settings: Settings) -> Tuple[MetricsBackend, ...]:
    """Build the StatsD/OTel backends once per process from the first settings seen."""

    global _SHARED_BACKENDS
    with _METRICS_BACKEND_LOCK:
        if _SHARED_BACKENDS is not None:
            return _SHARED_BACKENDS
        config = settings.observability
        backends: list[MetricsBackend] = []
        if config.statsd_host:
            backends.append(_StatsdBackend(host=config.statsd_host, port=config.statsd_port, prefix=config.statsd_prefix))
        if config.otlp_endpoint:
            backends.append(_OtelMetricsBackend(endpoint=config.otlp_endpoint, service_name=config.service_name))
        _SHARED_BACKENDS = tuple(backends)
        return _SHARED_BACKENDS


# ---------------------------------------------------------------------------
# Serialization helpers
# ---------------------------------------------------------------------------


def _serialize(value: Any) -> Any:
    if isinstance(value, (set, frozenset)):
        return sorted(value, key=str)
    return str(value)


def _normalize_tags(tags: Mapping[str, str] | None) -> Mapping[str, str] | None:
    if not tags:
        return None
    normalized = {str(key): str(value) for key, value in tags.items() if value is not None}
    return normalized or None


def _format_number(value: float) -> str:
    formatted = f"{value:.6f}".rstrip("0").rstrip(".")
    return formatted or "0"


__all__ = ["MetricsBackend", "Observability", "configure_logging", "get_observability", "reset_observability_cache"]
