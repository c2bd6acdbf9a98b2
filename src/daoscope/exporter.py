"""
Prometheus metrics exporter for daoscope.

Pulls status from the rate limiter, retry executor, cache and the last
reconciliation report. The only label is `source` (a closed set of five
upstreams) or `status` for reconciliation outcomes; never proposal ids,
addresses or URLs.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from prometheus_client import Counter, Gauge
from prometheus_client.registry import CollectorRegistry

from daoscope.contracts.models import ReconciliationStatus

if TYPE_CHECKING:
    from daoscope.cache import TTLCache
    from daoscope.connectors.rate_limiter import RateLimiter
    from daoscope.connectors.retry import RetryExecutor
    from daoscope.contracts.models import ReconciliationReport


# Labels that would cause cardinality explosion
FORBIDDEN_LABELS = frozenset(
    {
        "address",
        "proposal_id",
        "query_id",
        "execution_id",
        "url",
        "endpoint",
        "space",
    }
)


class MetricsExporter:
    """
    Prometheus exporter for fetch-layer and reconciliation health.

    Usage:
        registry = CollectorRegistry()
        exporter = MetricsExporter(registry=registry)
        exporter.update(rate_limiter=limiter, retry_executor=executor, cache=cache)
        # generate_latest(registry) -> bytes for a /metrics endpoint
    """

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        self._registry = registry or CollectorRegistry()

        self._requests_admitted = Counter(
            "daoscope_source_requests_admitted",
            "Requests admitted by the rate limiter",
            ["source"],
            registry=self._registry,
        )
        self._requests_waited = Counter(
            "daoscope_source_requests_waited",
            "Requests that waited for a rate limiter slot",
            ["source"],
            registry=self._registry,
        )
        self._window_in_use = Gauge(
            "daoscope_source_window_in_use",
            "Reservations in the current rate limit window",
            ["source"],
            registry=self._registry,
        )
        self._retries = Counter(
            "daoscope_source_retries",
            "Retry attempts scheduled by the retry executor",
            ["source"],
            registry=self._registry,
        )
        self._failures = Counter(
            "daoscope_source_failures",
            "Operations that ended in an error after retries",
            ["source"],
            registry=self._registry,
        )
        self._cache_hits = Counter(
            "daoscope_cache_hits",
            "TTL cache hits",
            registry=self._registry,
        )
        self._cache_misses = Counter(
            "daoscope_cache_misses",
            "TTL cache misses",
            registry=self._registry,
        )
        self._cache_entries = Gauge(
            "daoscope_cache_entries",
            "Entries currently stored (including not yet evicted expired ones)",
            registry=self._registry,
        )
        self._reconciliation_comparisons = Gauge(
            "daoscope_reconciliation_comparisons",
            "Comparisons in the last reconciliation report by status",
            ["status"],
            registry=self._registry,
        )
        self._reconciliation_duration_ms = Gauge(
            "daoscope_reconciliation_duration_ms",
            "Duration of the last reconciliation run in milliseconds",
            registry=self._registry,
        )

        # Last seen values for counter increments (counters are monotonic)
        self._last_admitted: dict[str, int] = {}
        self._last_waited: dict[str, int] = {}
        self._last_retries: dict[str, int] = {}
        self._last_failures: dict[str, int] = {}
        self._last_cache_hits = 0
        self._last_cache_misses = 0

    @property
    def registry(self) -> CollectorRegistry:
        return self._registry

    @staticmethod
    def _advance(counter: Counter, last: dict[str, int], source: str, value: int) -> None:
        delta = value - last.get(source, 0)
        if delta > 0:
            counter.labels(source=source).inc(delta)
        last[source] = value

    def update(
        self,
        rate_limiter: RateLimiter | None = None,
        retry_executor: RetryExecutor | None = None,
        cache: TTLCache | None = None,
        report: ReconciliationReport | None = None,
    ) -> None:
        """
        Sync metrics from component state.

        Call on every scrape or on a timer.
        """
        if rate_limiter is not None:
            for source, status in rate_limiter.get_status().items():
                self._advance(
                    self._requests_admitted, self._last_admitted, source, status["admitted"]
                )
                self._advance(self._requests_waited, self._last_waited, source, status["waited"])
                self._window_in_use.labels(source=source).set(status["in_window"])

        if retry_executor is not None:
            for source, status in retry_executor.get_status().items():
                self._advance(self._retries, self._last_retries, source, status["retries"])
                self._advance(self._failures, self._last_failures, source, status["failures"])

        if cache is not None:
            stats = cache.get_stats()
            hits_delta = stats["hits"] - self._last_cache_hits
            if hits_delta > 0:
                self._cache_hits.inc(hits_delta)
            self._last_cache_hits = stats["hits"]
            misses_delta = stats["misses"] - self._last_cache_misses
            if misses_delta > 0:
                self._cache_misses.inc(misses_delta)
            self._last_cache_misses = stats["misses"]
            self._cache_entries.set(stats["total"])

        if report is not None:
            counts = dict.fromkeys(ReconciliationStatus, 0)
            for comparison in report.comparisons.values():
                counts[comparison.status] += 1
            for status, count in counts.items():
                self._reconciliation_comparisons.labels(status=status.value).set(count)
            self._reconciliation_duration_ms.set(report.duration_ms)
