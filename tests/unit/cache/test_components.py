"""Tests for the per-fragment component cache."""

from datetime import UTC, datetime

import pytest

from tests.factories import FakeBridge, make_activity, make_day, make_gem, make_metadata
from tripnotes.cache.components import ComponentCache, FragmentKind
from tripnotes.cache.keys import CacheKeys
from tripnotes.cache.transport import BridgeKvTransport
from tripnotes.cache.ttl import TtlPolicy
from tripnotes.core.ids import Provisional


@pytest.fixture
def cache(transport: BridgeKvTransport, keys: CacheKeys) -> ComponentCache:
    return ComponentCache(transport, keys=keys)


class TestComponentCacheRoundTrip:
    """Encode, store, retrieve, decode."""

    @pytest.mark.asyncio
    async def test_metadata_round_trip_keeps_nulls_and_datetimes(
        self, cache: ComponentCache
    ) -> None:
        """Optional fields and timestamps survive the trip through the KV store."""
        metadata = make_metadata(
            description=None,
            season="spring",
            published_at=datetime(2026, 4, 2, 8, 0, 0, 123456, tzinfo=UTC),
        )

        await cache.set_metadata(metadata)
        cached = await cache.get_metadata("t1")

        assert cached == metadata
        assert cached is not None and cached.description is None

    @pytest.mark.asyncio
    async def test_activity_cached_with_gems(self, cache: ComponentCache) -> None:
        """Activities carry their gems in the cache entry."""
        activity = make_activity("a1", "d1", gems=[make_gem("g1", "a1"), make_gem("g2", "a1")])

        await cache.set_item(activity)

        cached = await cache.get_item("a1")
        assert cached is not None
        assert [g.id for g in cached.gems] == ["g1", "g2"]

    @pytest.mark.asyncio
    async def test_day_cached_without_activities(self, cache: ComponentCache) -> None:
        """Days are cached as content only; activities live under their own keys."""
        day = make_day("d1", activities=[make_activity("a1", "d1")])

        await cache.set_section(day)

        cached = await cache.get_section("d1")
        assert cached is not None
        assert cached.title == "Day 1"
        assert cached.activities == []

    @pytest.mark.asyncio
    async def test_absent_fragment(self, cache: ComponentCache) -> None:
        """Missing keys are a miss, not an error."""
        assert await cache.get(FragmentKind.ITEM, "nope") is None


class TestComponentCacheTtl:
    """TTL class selection."""

    @pytest.mark.asyncio
    async def test_ttl_classes(self, cache: ComponentCache, bridge: FakeBridge) -> None:
        """Metadata, idle and active-edit fragments use their own TTLs."""
        await cache.set_metadata(make_metadata())
        await cache.set_section(make_day("d1"))
        await cache.set_item(make_activity("a1", "d1"), active_edit=True)

        assert bridge.ttls["trip:meta:v3:t1"] == 3600
        assert bridge.ttls["trip:day:v3:d1"] == 1800
        assert bridge.ttls["trip:activity:v3:a1"] == 300

    @pytest.mark.asyncio
    async def test_custom_ttl_policy(
        self, transport: BridgeKvTransport, keys: CacheKeys, bridge: FakeBridge
    ) -> None:
        """TTL classes are tunable."""
        cache = ComponentCache(transport, keys=keys, ttl=TtlPolicy(structural=60, active_edit=5))

        await cache.set_section(make_day("d1"))
        await cache.set_section(make_day("d2", day_number=2), active_edit=True)

        assert bridge.ttls["trip:day:v3:d1"] == 60
        assert bridge.ttls["trip:day:v3:d2"] == 5


class TestComponentCacheFailures:
    """Transport failures never reach the caller."""

    @pytest.mark.asyncio
    async def test_get_fails_open(self, cache: ComponentCache, bridge: FakeBridge) -> None:
        """A failing transport reads as a miss."""
        await cache.set_item(make_activity("a1", "d1"))
        bridge.fail = True

        assert await cache.get_item("a1") is None

    @pytest.mark.asyncio
    async def test_set_failure_is_swallowed(
        self, cache: ComponentCache, bridge: FakeBridge
    ) -> None:
        """A failing write reports False instead of raising."""
        bridge.fail = True

        assert await cache.set_item(make_activity("a1", "d1")) is False

    @pytest.mark.asyncio
    async def test_refused_write_is_not_a_write(
        self, cache: ComponentCache, bridge: FakeBridge
    ) -> None:
        """A bridge answering ok=false is treated like an unreachable one."""
        bridge.reject_writes = True

        assert await cache.set_item(make_activity("a1", "d1")) is False
        assert await cache.set_metadata(make_metadata()) is False

        assert cache.metrics.snapshot().writes == 0
        assert bridge.values == {}

    @pytest.mark.asyncio
    async def test_refused_write_with_document_reports_no_invalidation(
        self, cache: ComponentCache, bridge: FakeBridge
    ) -> None:
        bridge.reject_writes = True

        await cache.set_item(make_activity("a1", "d1"), document_id="t1")

        assert cache.metrics.snapshot().invalidations == 0

    @pytest.mark.asyncio
    async def test_undecodable_entry_is_a_miss(
        self, cache: ComponentCache, bridge: FakeBridge
    ) -> None:
        """Corrupt entries are ignored."""
        bridge.values["trip:activity:v3:a1"] = '{"id": "a1"}'

        assert await cache.get_item("a1") is None

    def test_provisional_id_rejected(self, cache: ComponentCache) -> None:
        """Provisional ids never key a cache entry."""
        with pytest.raises(ValueError, match="Provisional"):
            cache.key_for(FragmentKind.ITEM, Provisional(local_id="temp-1"))


class TestComponentCacheBatch:
    """Concurrent batch reads."""

    @pytest.mark.asyncio
    async def test_get_many_returns_only_resolved(self, cache: ComponentCache) -> None:
        """Missing ids are simply absent from the result."""
        await cache.set_item(make_activity("a1", "d1"))
        await cache.set_item(make_activity("a3", "d1", order_index=3))

        found = await cache.get_items(["a1", "a2", "a3"])

        assert set(found) == {"a1", "a3"}

    @pytest.mark.asyncio
    async def test_get_many_empty(self, cache: ComponentCache) -> None:
        """An empty id list needs no requests."""
        assert await cache.get_sections([]) == {}


class TestComponentCacheEvictAndStaleness:
    """Eviction and staleness side effects."""

    @pytest.mark.asyncio
    async def test_evict(self, cache: ComponentCache, bridge: FakeBridge) -> None:
        """Evicted fragments read as a miss; the tombstone expires in a second."""
        await cache.set_item(make_activity("a1", "d1"))

        await cache.evict(FragmentKind.ITEM, "a1")

        assert await cache.get_item("a1") is None
        assert bridge.ttls["trip:activity:v3:a1"] == 1

    @pytest.mark.asyncio
    async def test_set_with_document_marks_stale(
        self, cache: ComponentCache, bridge: FakeBridge
    ) -> None:
        """Naming the trip on a write advances its freshness epoch."""
        await cache.set_item(make_activity("a1", "d1"), document_id="t1")

        assert bridge.values.get("trip:stale:v3:t1")

    @pytest.mark.asyncio
    async def test_set_without_document_leaves_epoch(
        self, cache: ComponentCache, bridge: FakeBridge
    ) -> None:
        """Read-through writes do not touch freshness."""
        await cache.set_item(make_activity("a1", "d1"))

        assert "trip:stale:v3:t1" not in bridge.values


class TestComponentCacheMetrics:
    """Per-instance counters."""

    @pytest.mark.asyncio
    async def test_counts_hits_misses_writes(self, cache: ComponentCache) -> None:
        """Each operation is counted on the owning instance."""
        await cache.set_item(make_activity("a1", "d1"))
        await cache.get_item("a1")
        await cache.get_item("a2")

        stats = cache.metrics.snapshot()
        assert (stats.hits, stats.misses, stats.writes) == (1, 1, 1)
        assert stats.hit_rate == 50.0

    @pytest.mark.asyncio
    async def test_instances_are_isolated(
        self, transport: BridgeKvTransport, keys: CacheKeys
    ) -> None:
        """Two caches never share counts."""
        first = ComponentCache(transport, keys=keys)
        second = ComponentCache(transport, keys=keys)

        await first.get_item("a1")

        assert first.metrics.snapshot().misses == 1
        assert second.metrics.snapshot().misses == 0
