"""Counters for the redirect resolver and the click pipeline.

Counters are reached through an injected ``MetricsSink`` rather than module
globals, so every pipeline (and every test) can own its own registry.

Counter Names
=============
::
    click_worker_received_total    events taken off the queue
    click_worker_processed_total   events persisted
    click_worker_retried_total     retry attempts (one per backoff sleep)
    click_worker_failed_total      events that exhausted their retries
    click_worker_dropped_total     failed + permanent-error discards
    click_queue_dropped_total      events rejected because the queue was full
    redirect_cache_hits_total      resolver cache hits
    redirect_cache_misses_total    resolver cache misses (including cache errors)
"""

from typing import Protocol

from prometheus_client import REGISTRY, CollectorRegistry, Counter

__all__ = [
    "ALL_COUNTERS",
    "CACHE_HITS",
    "CACHE_MISSES",
    "CLICK_DROPPED",
    "CLICK_FAILED",
    "CLICK_PROCESSED",
    "CLICK_RECEIVED",
    "CLICK_RETRIED",
    "MetricsSink",
    "PrometheusMetrics",
    "QUEUE_DROPPED",
]

CLICK_RECEIVED = "click_worker_received_total"
CLICK_PROCESSED = "click_worker_processed_total"
CLICK_RETRIED = "click_worker_retried_total"
CLICK_FAILED = "click_worker_failed_total"
CLICK_DROPPED = "click_worker_dropped_total"
QUEUE_DROPPED = "click_queue_dropped_total"
CACHE_HITS = "redirect_cache_hits_total"
CACHE_MISSES = "redirect_cache_misses_total"

ALL_COUNTERS: dict[str, str] = {
    CLICK_RECEIVED: "Click events received from the queue by the worker",
    CLICK_PROCESSED: "Click events persisted successfully",
    CLICK_RETRIED: "Retry attempts after transient storage errors",
    CLICK_FAILED: "Click events that exhausted all retry attempts",
    CLICK_DROPPED: "Click events discarded (retries exhausted or permanent error)",
    QUEUE_DROPPED: "Click events rejected because the queue was full",
    CACHE_HITS: "Redirect lookups served from cache",
    CACHE_MISSES: "Redirect lookups that fell back to the link store",
}


class MetricsSink(Protocol):
    def increment(self, name: str, amount: int = 1) -> None: ...


class PrometheusMetrics:
    """MetricsSink backed by prometheus_client counters.

    Args:
        registry: Registry to register the counters on. Defaults to the global
            registry scraped by the /metrics endpoint; pass a fresh
            ``CollectorRegistry()`` for isolated pipelines.
    """

    def __init__(self, registry: CollectorRegistry | None = None):
        self._registry = registry if registry is not None else REGISTRY
        self._counters: dict[str, Counter] = {}
        for name, documentation in ALL_COUNTERS.items():
            # prometheus_client appends "_total" itself.
            self._counters[name] = Counter(name.removesuffix("_total"), documentation, registry=self._registry)

    def increment(self, name: str, amount: int = 1) -> None:
        self._counters[name].inc(amount)

    def value(self, name: str) -> float:
        sample = self._registry.get_sample_value(name)
        return sample if sample is not None else 0.0

    def snapshot(self) -> dict[str, float]:
        return {name: self.value(name) for name in self._counters}
