"""Per-instance cache counters.

Each ComponentCache owns a CacheMetrics, so separate caches (for example one
per test) never share counts. Every event is also forwarded to the
process-wide Prometheus counters.
"""

from __future__ import annotations

from dataclasses import dataclass

from tripnotes.observability.metrics import (
    record_cache_hit,
    record_cache_invalidation,
    record_cache_miss,
    record_cache_write,
)


@dataclass(frozen=True)
class CacheStats:
    """Point-in-time copy of the counters."""

    hits: int
    misses: int
    writes: int
    invalidations: int

    @property
    def total(self) -> int:
        return self.hits + self.misses

    @property
    def hit_rate(self) -> float:
        """Hits as a percentage of reads (0.0 when nothing was read)."""
        return (self.hits / self.total) * 100 if self.total else 0.0

    def to_dict(self) -> dict[str, int | str]:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "writes": self.writes,
            "invalidations": self.invalidations,
            "total": self.total,
            "hitRate": f"{self.hit_rate:.2f}%",
        }


class CacheMetrics:
    """Mutable hit/miss/write/invalidation counters."""

    def __init__(self) -> None:
        self._hits = 0
        self._misses = 0
        self._writes = 0
        self._invalidations = 0

    def hit(self, kind: str) -> None:
        self._hits += 1
        record_cache_hit(kind)

    def miss(self, kind: str) -> None:
        self._misses += 1
        record_cache_miss(kind)

    def write(self, kind: str) -> None:
        self._writes += 1
        record_cache_write(kind)

    def invalidate(self) -> None:
        self._invalidations += 1
        record_cache_invalidation()

    def snapshot(self) -> CacheStats:
        return CacheStats(
            hits=self._hits,
            misses=self._misses,
            writes=self._writes,
            invalidations=self._invalidations,
        )

    def reset(self) -> None:
        self._hits = self._misses = self._writes = self._invalidations = 0
