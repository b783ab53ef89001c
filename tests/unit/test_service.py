"""Tests for the service facade and its wiring."""

import pytest
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tests.factories import FakeBridge, seed_trip
from tripnotes.cache.invalidation import ChangeType, DocumentChanged
from tripnotes.cache.keys import CacheKeys
from tripnotes.cache.staleness import Freshness
from tripnotes.cache.transport import BridgeKvTransport, RedisKvTransport
from tripnotes.config import Settings
from tripnotes.errors import InvalidChangeError
from tripnotes.persistence.store import TripStore
from tripnotes.persistence.tables import ActivityTable
from tripnotes.service import TripCacheService, create_service


@pytest.fixture
async def seeded(session_factory: async_sessionmaker[AsyncSession]) -> None:
    await seed_trip(session_factory)


class TestInvalidation:
    """Explicit invalidation of a trip."""

    @pytest.mark.asyncio
    async def test_invalidate_document(self, service: TripCacheService, seeded: None) -> None:
        received: list[DocumentChanged] = []

        async def capture(message: DocumentChanged) -> None:
            received.append(message)

        service.notifier.add_handler(capture)
        await service.load_document("t1")
        await service.drain()

        await service.invalidate_document("t1")

        assert await service.freshness("t1") is Freshness.MISSING
        assert [m.type for m in received] == [ChangeType.INVALIDATED]

    @pytest.mark.asyncio
    async def test_out_of_band_change_is_served_after_invalidation(
        self,
        service: TripCacheService,
        session_factory: async_sessionmaker[AsyncSession],
        seeded: None,
    ) -> None:
        """A row changed behind the cache's back is read fresh once invalidated."""
        await service.load_document("t1")
        await service.drain()

        async with session_factory() as session:
            await session.execute(
                update(ActivityTable)
                .where(ActivityTable.id == "t1-d1-a1")
                .values(description="NEW")
            )
            await session.commit()

        await service.invalidate_document("t1")

        trip = await service.load_document("t1")
        assert trip is not None
        assert trip.days[0].activities[0].description == "NEW"

    @pytest.mark.asyncio
    async def test_every_layer_evicted(
        self, service: TripCacheService, bridge: FakeBridge, seeded: None
    ) -> None:
        await service.load_document("t1")
        await service.drain()

        await service.invalidate_document("t1")

        for key in (
            "trip:full:v3:t1",
            "trip:structure:v3:t1",
            "trip:meta:v3:t1",
            "trip:day:v3:t1-d1",
            "trip:day:v3:t1-d2",
            "trip:activity:v3:t1-d1-a1",
            "trip:activity:v3:t1-d2-a2",
        ):
            assert bridge.values[key] == "", key
        assert bridge.values["trip:stale:v3:t1"] != ""

    @pytest.mark.asyncio
    async def test_without_cached_shape(
        self, service: TripCacheService, bridge: FakeBridge, seeded: None
    ) -> None:
        """Only the trip-level entries are known without a shape."""
        await service.invalidate_document("t1")

        assert bridge.values["trip:meta:v3:t1"] == ""
        assert "trip:day:v3:t1-d1" not in bridge.values


class TestWarmAfterSave:
    """The whole trip can be re-cached in the background after a save."""

    @pytest.mark.asyncio
    async def test_warm_after_save(
        self,
        store: TripStore,
        transport: BridgeKvTransport,
        keys: CacheKeys,
        seeded: None,
    ) -> None:
        service = TripCacheService(store, transport, keys=keys, warm_after_save=True)

        await service.save_changes(
            "t1", {"activities": {"updated": [{"id": "t1-d1-a1", "description": "X"}]}}, "u1"
        )
        await service.drain()

        assert await service.freshness("t1") is Freshness.FRESH
        trip = await service.fast_path.get("t1")
        assert trip is not None and trip.days[0].activities[0].description == "X"

    @pytest.mark.asyncio
    async def test_off_by_default(self, service: TripCacheService, seeded: None) -> None:
        await service.save_changes("t1", {"metadata": {"title": "Kyoto"}}, "u1")
        await service.drain()

        assert await service.freshness("t1") is Freshness.MISSING


class TestFacade:
    @pytest.mark.asyncio
    async def test_save_rejects_malformed_bundle(
        self, service: TripCacheService, seeded: None
    ) -> None:
        with pytest.raises(InvalidChangeError):
            await service.save_changes("t1", {"days": "everything"}, "u1")

    @pytest.mark.asyncio
    async def test_stats_count_reads(self, service: TripCacheService, seeded: None) -> None:
        await service.load_document("t1")
        await service.drain()
        await service.load_document("t1")

        stats = service.stats()
        assert stats.hits >= 1
        assert stats.misses >= 1
        assert stats.writes > 0

    @pytest.mark.asyncio
    async def test_health_check(self, service: TripCacheService, bridge: FakeBridge) -> None:
        assert await service.health_check() == {"kv": True, "store": True}
        bridge.fail = True
        assert await service.health_check() == {"kv": False, "store": True}


class TestCreateService:
    def test_from_settings(self) -> None:
        config = Settings(
            KV_BACKEND="redis",
            CACHE_VERSION="v4",
            CACHE_TTL_ACTIVE_EDIT=120,
            WARM_AFTER_SAVE=False,
        )

        service = create_service(config)

        assert isinstance(service.transport, RedisKvTransport)
        assert service.keys.activity("a1") == "trip:activity:v4:a1"
        assert service.ttl.active_edit == 120
