"""Prometheus metrics for the TripNotes cache layer.

Provides process-wide metrics:
- Cache metrics (hits, misses, writes, invalidations per fragment kind)
- Read path outcomes (fast path, assembled, store fallback)
- Store operation latency

Usage:
    from tripnotes.observability.metrics import record_cache_hit

    record_cache_hit("item")
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from prometheus_client import REGISTRY, Counter, Histogram, generate_latest

from tripnotes.config import settings

logger = logging.getLogger(__name__)

# Store calls are single-row or single-trip queries
STORE_LATENCY_BUCKETS = (0.001, 0.0025, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5)


@dataclass
class MetricsRegistry:
    """Holds the cache layer's Prometheus series; all None while disabled."""

    # Cache metrics
    cache_hits_total: Any = None
    cache_misses_total: Any = None
    cache_writes_total: Any = None
    cache_invalidations_total: Any = None
    kv_errors_total: Any = None

    # Read path
    trip_loads_total: Any = None
    assemblies_total: Any = None

    # Store
    store_operation_duration_seconds: Any = None

    _initialized: bool = field(default=False, repr=False)
    _registry: Any = field(default=None, repr=False)

    def initialize(self) -> None:
        """Register every series with the default Prometheus registry, once."""
        if self._initialized:
            return
        self._initialized = True

        if not settings.enable_metrics:
            logger.info("Cache metrics disabled by configuration")
            return

        self._registry = REGISTRY
        by_kind = ["kind"]
        self.cache_hits_total = Counter("tripnotes_cache_hits_total", "Cache hits", by_kind)
        self.cache_misses_total = Counter("tripnotes_cache_misses_total", "Cache misses", by_kind)
        self.cache_writes_total = Counter("tripnotes_cache_writes_total", "Cache writes", by_kind)
        self.cache_invalidations_total = Counter(
            "tripnotes_cache_invalidations_total", "Whole-trip entries marked stale"
        )
        self.kv_errors_total = Counter(
            "tripnotes_kv_errors_total",
            "KV transport failures absorbed by the cache layer",
            ["operation"],
        )
        self.trip_loads_total = Counter(
            "tripnotes_trip_loads_total", "Trip loads by the path that served them", ["source"]
        )
        self.assemblies_total = Counter(
            "tripnotes_assemblies_total",
            "Attempts to rebuild a trip from cached fragments",
            ["outcome"],
        )
        self.store_operation_duration_seconds = Histogram(
            "tripnotes_store_operation_duration_seconds",
            "Authoritative store operation latency in seconds",
            ["operation"],
            buckets=STORE_LATENCY_BUCKETS,
        )
        logger.info("Registered cache metrics with Prometheus")

    def generate_latest(self) -> bytes:
        """Exposition-format text, or a comment line when metrics are off."""
        if self._registry is None:
            return b"# tripnotes metrics disabled\n"
        return generate_latest(self._registry)


metrics_registry = MetricsRegistry()


def get_metrics() -> MetricsRegistry:
    """The process-wide registry, registering its series on first use."""
    metrics_registry.initialize()
    return metrics_registry


def _series(name: str) -> Any:
    # None when metrics are disabled
    return getattr(get_metrics(), name)


def record_cache_hit(kind: str) -> None:
    if (series := _series("cache_hits_total")) is not None:
        series.labels(kind=kind).inc()


def record_cache_miss(kind: str) -> None:
    if (series := _series("cache_misses_total")) is not None:
        series.labels(kind=kind).inc()


def record_cache_write(kind: str) -> None:
    if (series := _series("cache_writes_total")) is not None:
        series.labels(kind=kind).inc()


def record_cache_invalidation() -> None:
    if (series := _series("cache_invalidations_total")) is not None:
        series.inc()


def record_kv_error(operation: str) -> None:
    if (series := _series("kv_errors_total")) is not None:
        series.labels(operation=operation).inc()


def record_trip_load(source: str) -> None:
    """Count which read path served a trip.

    Args:
        source: "fast_path", "assembled", "store" or "not_found"
    """
    if (series := _series("trip_loads_total")) is not None:
        series.labels(source=source).inc()


def record_assembly(outcome: str) -> None:
    """Count an assembly attempt.

    Args:
        outcome: "assembled", "incomplete" (metadata or shape missing) or
            "partial" (fewer days cached than the shape lists)
    """
    if (series := _series("assemblies_total")) is not None:
        series.labels(outcome=outcome).inc()


def record_store_operation(operation: str, duration: float) -> None:
    """Observe authoritative store latency.

    Args:
        operation: Store operation (fetch_tree, fetch_shape, apply, ...)
        duration: Seconds
    """
    if (series := _series("store_operation_duration_seconds")) is not None:
        series.labels(operation=operation).observe(duration)
