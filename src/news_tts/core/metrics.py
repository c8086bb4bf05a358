"""
Prometheus Metrics for the Synthesis Pipeline.

Metrics Exposed:
    news_tts_provider_calls_total         - Provider calls by operation and outcome
    news_tts_provider_duration_seconds    - Provider call latency
    news_tts_retries_total                - Retries by call class
    news_tts_circuit_state                - Circuit state per call class (0=closed, 1=half_open, 2=open)
    news_tts_rate_limit_wait_seconds      - Time spent waiting for a rate-limiter lease
    news_tts_rate_limit_timeouts_total    - Rate-limiter acquisitions that timed out
    news_tts_batches_total                - Batches by result kind (empty/single/merge/error)
    news_tts_items_total                  - Items processed by source (synthesized/saved) and status
    news_tts_merges_total                 - Merge jobs by outcome
    news_tts_merge_duration_seconds       - Merge job duration
    news_tts_merge_jobs_active            - Merge jobs currently running
    news_tts_notifications_failed_total   - Notification deliveries that failed

Usage:
    from news_tts.core.metrics import metrics

    metrics.record_provider_call("synthesize", "success", 1.2)
    metrics.record_retry("synthesis")
    metrics.set_circuit_state("synthesis", "open")

    content, content_type = metrics.get_metrics_response()

Each NewsTTSMetrics instance owns a private CollectorRegistry, so tests can
create throwaway instances without clashing with the global one.
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

_CIRCUIT_STATE_VALUES = {
    "closed": 0,
    "half_open": 1,
    "open": 2,
}


class NewsTTSMetrics:
    """
    Metrics collection using prometheus_client.

    Attributes:
        enabled: Whether metric updates are recorded.
    """

    def __init__(self, enabled: bool = True):
        self._enabled = enabled
        self._registry = CollectorRegistry()
        self._setup_metrics()

    def _setup_metrics(self) -> None:
        self._provider_calls = Counter(
            "news_tts_provider_calls_total",
            "Total provider calls",
            ["operation", "outcome"],
            registry=self._registry,
        )
        self._provider_duration = Histogram(
            "news_tts_provider_duration_seconds",
            "Provider call duration in seconds",
            ["operation"],
            buckets=(0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0),
            registry=self._registry,
        )
        self._retries = Counter(
            "news_tts_retries_total",
            "Total retries by call class",
            ["call_class"],
            registry=self._registry,
        )
        self._circuit_state = Gauge(
            "news_tts_circuit_state",
            "Circuit breaker state (0=closed, 1=half_open, 2=open)",
            ["call_class"],
            registry=self._registry,
        )
        self._rate_limit_wait = Histogram(
            "news_tts_rate_limit_wait_seconds",
            "Time spent waiting for a rate-limiter lease",
            buckets=(0.001, 0.01, 0.1, 0.5, 1.0, 5.0, 30.0),
            registry=self._registry,
        )
        self._rate_limit_timeouts = Counter(
            "news_tts_rate_limit_timeouts_total",
            "Rate-limiter acquisitions that timed out",
            registry=self._registry,
        )
        self._batches = Counter(
            "news_tts_batches_total",
            "Total batches by result kind",
            ["kind"],
            registry=self._registry,
        )
        self._items = Counter(
            "news_tts_items_total",
            "Total items processed",
            ["source", "status"],
            registry=self._registry,
        )
        self._merges = Counter(
            "news_tts_merges_total",
            "Total merge jobs by outcome",
            ["outcome"],
            registry=self._registry,
        )
        self._merge_duration = Histogram(
            "news_tts_merge_duration_seconds",
            "Merge job duration in seconds",
            buckets=(1.0, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0),
            registry=self._registry,
        )
        self._merge_jobs_active = Gauge(
            "news_tts_merge_jobs_active",
            "Merge jobs currently running",
            registry=self._registry,
        )
        self._notifications_failed = Counter(
            "news_tts_notifications_failed_total",
            "Notification deliveries that failed",
            ["sink"],
            registry=self._registry,
        )

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def registry(self) -> CollectorRegistry:
        return self._registry

    def record_provider_call(self, operation: str, outcome: str, duration: float) -> None:
        """
        Record a completed provider call.

        Args:
            operation: "synthesize" or "get_voice"
            outcome: "success", "transient" or "permanent"
            duration: Call duration in seconds
        """
        if not self._enabled:
            return
        self._provider_calls.labels(operation=operation, outcome=outcome).inc()
        self._provider_duration.labels(operation=operation).observe(duration)

    def record_retry(self, call_class: str) -> None:
        if not self._enabled:
            return
        self._retries.labels(call_class=call_class).inc()

    def set_circuit_state(self, call_class: str, state: str) -> None:
        if not self._enabled:
            return
        self._circuit_state.labels(call_class=call_class).set(_CIRCUIT_STATE_VALUES.get(state, 0))

    def record_rate_limit_wait(self, seconds: float) -> None:
        if not self._enabled:
            return
        self._rate_limit_wait.observe(seconds)

    def record_rate_limit_timeout(self) -> None:
        if not self._enabled:
            return
        self._rate_limit_timeouts.inc()

    def record_batch(self, kind: str) -> None:
        if not self._enabled:
            return
        self._batches.labels(kind=kind).inc()

    def record_item(self, source: str, status: str) -> None:
        if not self._enabled:
            return
        self._items.labels(source=source, status=status).inc()

    def record_merge(self, outcome: str, duration: float) -> None:
        if not self._enabled:
            return
        self._merges.labels(outcome=outcome).inc()
        self._merge_duration.observe(duration)

    def set_merge_jobs_active(self, count: int) -> None:
        if not self._enabled:
            return
        self._merge_jobs_active.set(count)

    def record_notification_failure(self, sink: str) -> None:
        if not self._enabled:
            return
        self._notifications_failed.labels(sink=sink).inc()

    def sample(self, name: str, labels: dict | None = None) -> float:
        """Current value of a sample (0.0 if absent). Used by health output and tests."""
        value = self._registry.get_sample_value(name, labels or {})
        return float(value) if value is not None else 0.0

    def get_metrics_response(self) -> tuple[bytes, str]:
        """
        Get metrics in Prometheus format.

        Returns:
            Tuple of (content_bytes, content_type)
        """
        return generate_latest(self._registry), CONTENT_TYPE_LATEST


# Global singleton metrics instance
metrics = NewsTTSMetrics()
