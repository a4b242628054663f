from __future__ import annotations

from dataclasses import dataclass

from prometheus_client import CollectorRegistry, Counter, Histogram, start_http_server

requests_total = Counter(
    "provider_requests_total",
    "Logical provider requests by outcome",
    labelnames=["provider", "status"],
)

request_latency_seconds = Histogram(
    "provider_request_latency_seconds",
    "Provider request latency",
    buckets=[0.1, 0.3, 0.5, 1, 2, 5, 10, 30, 60],
    labelnames=["provider"],
)

stream_requests_total = Counter(
    "provider_stream_requests_total",
    "Streaming completions opened",
    labelnames=["provider"],
)

stream_tokens_total = Counter(
    "provider_stream_tokens_total",
    "Tokens delivered by streaming completions",
    labelnames=["provider"],
)

transport_retries_total = Counter(
    "provider_transport_retries_total",
    "Retry attempts scheduled by the transport",
    labelnames=["provider", "reason"],
)

cascade_resolutions_total = Counter(
    "cascade_resolutions_total",
    "Fallback cascade resolutions by tier",
    labelnames=["operation", "tier"],
)


@dataclass(frozen=True)
class MetricsSnapshot:
    requests: int
    failures: int
    stream_requests: int
    stream_tokens: int


class ClientMetrics:
    """Monotonic counters owned by one client instance.

    Each instance keeps a private registry so snapshots are exact per client,
    and mirrors every increment into the process-wide counters above.
    """

    def __init__(self, provider: str):
        self.provider = provider
        self._registry = CollectorRegistry(auto_describe=True)
        self._requests = Counter("client_requests_total", "Successful requests", registry=self._registry)
        self._failures = Counter("client_failures_total", "Failed requests", registry=self._registry)
        self._stream_requests = Counter("client_stream_requests_total", "Stream requests", registry=self._registry)
        self._stream_tokens = Counter("client_stream_tokens_total", "Stream tokens", registry=self._registry)

    def record_request(self) -> None:
        self._requests.inc()
        requests_total.labels(provider=self.provider, status="success").inc()

    def record_failure(self) -> None:
        self._failures.inc()
        requests_total.labels(provider=self.provider, status="error").inc()

    def record_stream_request(self) -> None:
        self._stream_requests.inc()
        stream_requests_total.labels(provider=self.provider).inc()

    def record_stream_tokens(self, count: int = 1) -> None:
        if count <= 0:
            return
        self._stream_tokens.inc(count)
        stream_tokens_total.labels(provider=self.provider).inc(count)

    def record_retry(self, reason: str) -> None:
        transport_retries_total.labels(provider=self.provider, reason=reason).inc()

    def _value(self, name: str) -> int:
        return int(self._registry.get_sample_value(name) or 0)

    def snapshot(self) -> MetricsSnapshot:
        return MetricsSnapshot(
            requests=self._value("client_requests_total"),
            failures=self._value("client_failures_total"),
            stream_requests=self._value("client_stream_requests_total"),
            stream_tokens=self._value("client_stream_tokens_total"),
        )


class CascadeMetrics:
    """Per-cascade tier counters; mirrored into ``cascade_resolutions_total``."""

    def __init__(self) -> None:
        self._registry = CollectorRegistry(auto_describe=True)
        self._resolutions = Counter(
            "tier_resolutions_total",
            "Resolutions by tier",
            labelnames=["tier"],
            registry=self._registry,
        )

    def record(self, operation: str, tier: str) -> None:
        self._resolutions.labels(tier=tier).inc()
        cascade_resolutions_total.labels(operation=operation, tier=tier).inc()

    def count(self, tier: str) -> int:
        return int(self._registry.get_sample_value("tier_resolutions_total", {"tier": tier}) or 0)

    def snapshot(self) -> dict[str, int]:
        return {tier: self.count(tier) for tier in ("primary", "secondary", "fallback")}


def maybe_start_metrics(*, enable: bool, bind: str, port: int) -> None:
    if not enable:
        return
    start_http_server(port, addr=bind)
