from __future__ import annotations

from typing import Literal

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, generate_latest


VerificationOutcome = Literal["accepted", "rejected", "reused"]


class Metrics:
    def __init__(self, *, registry: CollectorRegistry | None = None) -> None:
        self._registry = registry or CollectorRegistry(auto_describe=True)

        self._codes_generated_total = Counter(
            "totp_code_generated_total",
            "Total TOTP codes produced.",
            labelnames=("algorithm",),
            registry=self._registry,
        )
        self._errors_total = Counter(
            "totp_code_errors_total",
            "Total failed code generations and verifications by error code.",
            labelnames=("code",),
            registry=self._registry,
        )
        self._verifications_total = Counter(
            "totp_code_verifications_total",
            "Total code verifications by outcome.",
            labelnames=("outcome",),
            registry=self._registry,
        )
        self._generation_latency_seconds = Histogram(
            "totp_code_generation_latency_seconds",
            "Time spent decoding the secret and computing a code.",
            # 10us .. 100ms
            buckets=(0.00001, 0.00005, 0.0001, 0.0005, 0.001, 0.005, 0.01, 0.05, 0.1),
            registry=self._registry,
        )
        self._cache_entries = Gauge(
            "totp_code_cache_entries",
            "Identities currently tracked by the replay cache.",
            registry=self._registry,
        )
        self._cache_evictions_total = Counter(
            "totp_code_cache_evictions_total",
            "Replay cache entries evicted after their window elapsed.",
            registry=self._registry,
        )

    @property
    def registry(self) -> CollectorRegistry:
        return self._registry

    def render(self) -> bytes:
        return generate_latest(self._registry)

    def observe_code_generated(self, algorithm: str, latency_seconds: float | None = None) -> None:
        self._codes_generated_total.labels(algorithm=algorithm or "unknown").inc()
        if latency_seconds is not None and latency_seconds >= 0:
            self._generation_latency_seconds.observe(latency_seconds)

    def observe_error(self, code: str) -> None:
        self._errors_total.labels(code=code or "unknown").inc()

    def observe_verification(self, outcome: VerificationOutcome) -> None:
        self._verifications_total.labels(outcome=outcome).inc()

    def set_cache_entries(self, size: int) -> None:
        self._cache_entries.set(max(0, size))

    def observe_cache_evictions(self, count: int) -> None:
        if count > 0:
            self._cache_evictions_total.inc(count)
