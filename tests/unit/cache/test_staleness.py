"""Tests for the freshness marker and the whole-trip fast path."""

import pytest

from tests.factories import FakeBridge, make_day, make_metadata
from tripnotes.cache.keys import CacheKeys
from tripnotes.cache.staleness import Freshness, StalenessController, WholeDocumentCache
from tripnotes.cache.transport import BridgeKvTransport
from tripnotes.core.model import Trip


@pytest.fixture
def staleness(transport: BridgeKvTransport, keys: CacheKeys) -> StalenessController:
    return StalenessController(transport, keys=keys)


@pytest.fixture
def fast_path(transport: BridgeKvTransport, staleness: StalenessController) -> WholeDocumentCache:
    return WholeDocumentCache(transport, staleness)


def _trip(title: str = "Tokyo") -> Trip:
    days = [make_day("d1"), make_day("d2", day_number=2)]
    return Trip.from_parts(make_metadata(title=title), days)


async def _cache_fresh(
    staleness: StalenessController, fast_path: WholeDocumentCache, trip: Trip
) -> None:
    epoch = await staleness.ensure_epoch(trip.id, await staleness.current_epoch(trip.id))
    await fast_path.set(trip, epoch)


class TestFreshnessStates:
    """MISSING -> FRESH -> STALE -> FRESH."""

    @pytest.mark.asyncio
    async def test_missing_before_population(self, fast_path: WholeDocumentCache) -> None:
        """Nothing cached yet reads as MISSING."""
        assert await fast_path.freshness("t1") is Freshness.MISSING

    @pytest.mark.asyncio
    async def test_fresh_after_population(
        self, staleness: StalenessController, fast_path: WholeDocumentCache
    ) -> None:
        """The first population is FRESH and served."""
        trip = _trip()
        await _cache_fresh(staleness, fast_path, trip)

        lookup = await fast_path.lookup("t1")

        assert lookup.freshness is Freshness.FRESH
        assert lookup.trip == trip

    @pytest.mark.asyncio
    async def test_stale_short_circuits_unexpired_entry(
        self, staleness: StalenessController, fast_path: WholeDocumentCache, bridge: FakeBridge
    ) -> None:
        """After mark_stale the entry is still stored but no longer served."""
        await _cache_fresh(staleness, fast_path, _trip())

        await staleness.mark_stale("t1")

        assert "trip:full:v3:t1" in bridge.values
        assert await fast_path.get("t1") is None
        assert await fast_path.freshness("t1") is Freshness.STALE

    @pytest.mark.asyncio
    async def test_recache_makes_fresh_again(
        self, staleness: StalenessController, fast_path: WholeDocumentCache
    ) -> None:
        """Re-caching under the current epoch serves the new payload."""
        await _cache_fresh(staleness, fast_path, _trip("Old"))
        await staleness.mark_stale("t1")

        await _cache_fresh(staleness, fast_path, _trip("New"))

        trip = await fast_path.get("t1")
        assert trip is not None and trip.title == "New"


class TestMarkStale:
    """mark_stale semantics."""

    @pytest.mark.asyncio
    async def test_idempotent(
        self, staleness: StalenessController, fast_path: WholeDocumentCache
    ) -> None:
        """Marking stale twice is observably the same as once."""
        await _cache_fresh(staleness, fast_path, _trip())

        await staleness.mark_stale("t1")
        once = await fast_path.lookup("t1")
        await staleness.mark_stale("t1")
        twice = await fast_path.lookup("t1")

        assert once.trip is None and twice.trip is None
        assert once.freshness is twice.freshness is Freshness.STALE

    @pytest.mark.asyncio
    async def test_failure_is_swallowed(
        self, staleness: StalenessController, bridge: FakeBridge
    ) -> None:
        """A transport outage does not fail the caller and is not counted."""
        bridge.fail = True

        assert await staleness.mark_stale("t1") is False
        assert staleness.metrics.snapshot().invalidations == 0

    @pytest.mark.asyncio
    async def test_counts_successful_marks(self, staleness: StalenessController) -> None:
        assert await staleness.mark_stale("t1") is True
        assert staleness.metrics.snapshot().invalidations == 1

    @pytest.mark.asyncio
    async def test_refused_marker_keeps_old_entry_servable_and_reports_it(
        self, staleness: StalenessController, fast_path: WholeDocumentCache, bridge: FakeBridge
    ) -> None:
        """A marker write the bridge answers with ok=false is a failed mark."""
        await _cache_fresh(staleness, fast_path, _trip())
        bridge.reject_writes = True

        assert await staleness.mark_stale("t1") is False

        assert staleness.metrics.snapshot().invalidations == 0
        assert await fast_path.freshness("t1") is Freshness.FRESH

    @pytest.mark.asyncio
    async def test_uses_marker_ttl(
        self, staleness: StalenessController, bridge: FakeBridge
    ) -> None:
        """The marker outlives the whole-trip entry it guards."""
        await staleness.mark_stale("t1")

        assert bridge.ttls["trip:stale:v3:t1"] >= 900


class TestEpochOrdering:
    """A reader that started before a write never wins afterwards."""

    @pytest.mark.asyncio
    async def test_slow_reader_cannot_publish_old_payload(
        self, staleness: StalenessController, fast_path: WholeDocumentCache
    ) -> None:
        """A rebuild tagged with a pre-write epoch stays unservable."""
        await staleness.mark_stale("t1")
        observed = await staleness.current_epoch("t1")
        assert observed is not None

        # A save lands while the reader is still assembling
        await staleness.mark_stale("t1")
        await fast_path.set(_trip("Before the save"), observed)

        assert await fast_path.get("t1") is None

    @pytest.mark.asyncio
    async def test_ensure_epoch_keeps_observed(self, staleness: StalenessController) -> None:
        """An observed epoch is reused, not replaced."""
        assert await staleness.ensure_epoch("t1", "abc") == "abc"

    @pytest.mark.asyncio
    async def test_ensure_epoch_creates_marker(self, staleness: StalenessController) -> None:
        """With no marker yet, one is created and returned."""
        epoch = await staleness.ensure_epoch("t1", None)

        assert await staleness.current_epoch("t1") == epoch


class TestFastPathFailures:
    """Transport failures degrade to a miss."""

    @pytest.mark.asyncio
    async def test_unreadable_marker_is_a_miss(
        self, staleness: StalenessController, fast_path: WholeDocumentCache, bridge: FakeBridge
    ) -> None:
        """Without a readable marker the payload is never trusted."""
        await _cache_fresh(staleness, fast_path, _trip())
        del bridge.values["trip:stale:v3:t1"]

        assert await fast_path.get("t1") is None

    @pytest.mark.asyncio
    async def test_transport_down(
        self, staleness: StalenessController, fast_path: WholeDocumentCache, bridge: FakeBridge
    ) -> None:
        """A failing bridge is a miss, and writes report False."""
        await _cache_fresh(staleness, fast_path, _trip())
        bridge.fail = True

        assert await fast_path.get("t1") is None
        assert await fast_path.set(_trip(), "epoch") is False

    @pytest.mark.asyncio
    async def test_evict(
        self, staleness: StalenessController, fast_path: WholeDocumentCache
    ) -> None:
        """An evicted entry reads as MISSING."""
        await _cache_fresh(staleness, fast_path, _trip())

        await fast_path.evict("t1")

        assert await fast_path.freshness("t1") is Freshness.MISSING
