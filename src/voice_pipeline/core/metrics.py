"""
Prometheus Metrics for the Voice Pipeline.

All metrics live on a private CollectorRegistry so the module can be
imported any number of times (tests, the CLI, the server) without
duplicate-registration errors in the default registry.

Metrics Exposed:
    voice_requests_total               - Pipeline requests by operation, provider, outcome
    voice_request_duration_seconds     - Request latency by operation
    voice_provider_attempts_total      - Individual vendor calls by provider and outcome
    voice_circuit_state                - Breaker state per provider (0=closed, 1=half_open, 2=open)
    voice_rate_limit_rejections_total  - Rate limit rejections by operation
    voice_credits_charged_total        - Credits charged by operation type
    voice_profile_cache_hits_total     - Voice profile cache hits
    voice_profile_cache_misses_total   - Voice profile cache misses

Usage:
    from voice_pipeline.core.metrics import metrics

    metrics.record_request("tts", "cloudPrimary", "success", duration=1.2)
    metrics.set_circuit_state("cloudPrimary", "open")

    content, content_type = metrics.get_metrics_response()

Prometheus Scrape Config Example:
    scrape_configs:
      - job_name: 'voice-pipeline'
        static_configs:
          - targets: ['localhost:8000']
        metrics_path: '/metrics'
"""
from __future__ import annotations

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

_CIRCUIT_STATE_VALUES = {"closed": 0, "half_open": 1, "open": 2}


class PipelineMetrics:
    """
    Pipeline metrics collector.

    Thread Safety:
        Prometheus metric operations are thread-safe.

    Example:
        >>> from voice_pipeline.core.metrics import metrics
        >>> metrics.record_credits("TTS_GENERATE", 28)
    """

    def __init__(self):
        self._registry = CollectorRegistry()

        self._requests_total = Counter(
            "voice_requests_total",
            "Total pipeline requests",
            ["operation", "provider", "outcome"],
            registry=self._registry,
        )
        self._request_duration = Histogram(
            "voice_request_duration_seconds",
            "Pipeline request duration in seconds",
            ["operation"],
            buckets=(0.05, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0),
            registry=self._registry,
        )
        self._provider_attempts = Counter(
            "voice_provider_attempts_total",
            "Individual vendor calls",
            ["provider", "outcome"],
            registry=self._registry,
        )
        self._circuit_state = Gauge(
            "voice_circuit_state",
            "Circuit breaker state (0=closed, 1=half_open, 2=open)",
            ["provider"],
            registry=self._registry,
        )
        self._rate_limit_rejections = Counter(
            "voice_rate_limit_rejections_total",
            "Requests rejected by the rate limiter",
            ["operation"],
            registry=self._registry,
        )
        self._credits_charged = Counter(
            "voice_credits_charged_total",
            "Credits charged",
            ["operation_type"],
            registry=self._registry,
        )
        self._cache_hits = Counter(
            "voice_profile_cache_hits_total",
            "Voice profile cache hits",
            registry=self._registry,
        )
        self._cache_misses = Counter(
            "voice_profile_cache_misses_total",
            "Voice profile cache misses",
            registry=self._registry,
        )

    def record_request(self, operation: str, provider: str, outcome: str, duration: float) -> None:
        """
        Record a finished pipeline request.

        Args:
            operation: "tts" or "clone"
            provider: ProviderKind value, or "none" when no vendor was chosen
            outcome: "success" or the error kind
            duration: Wall time in seconds
        """
        self._requests_total.labels(operation=operation, provider=provider, outcome=outcome).inc()
        self._request_duration.labels(operation=operation).observe(duration)

    def record_provider_attempt(self, provider: str, outcome: str) -> None:
        self._provider_attempts.labels(provider=provider, outcome=outcome).inc()

    def set_circuit_state(self, provider: str, state: str) -> None:
        self._circuit_state.labels(provider=provider).set(_CIRCUIT_STATE_VALUES.get(state, 0))

    def record_rate_limited(self, operation: str) -> None:
        self._rate_limit_rejections.labels(operation=operation).inc()

    def record_credits(self, operation_type: str, amount: int) -> None:
        if amount > 0:
            self._credits_charged.labels(operation_type=operation_type).inc(amount)

    def record_cache(self, result: str) -> None:
        """Record a voice profile cache "hit" or "miss"."""
        if result == "hit":
            self._cache_hits.inc()
        else:
            self._cache_misses.inc()

    def get_metrics_response(self) -> tuple[bytes, str]:
        """
        Get metrics in Prometheus text format.

        Returns:
            Tuple of (content_bytes, content_type)
        """
        return generate_latest(self._registry), CONTENT_TYPE_LATEST


# Global metrics instance
metrics = PipelineMetrics()
