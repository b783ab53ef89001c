"""Per-fragment cache: trip metadata, days and activities.

Each fragment lives under its own key with its own TTL class. Reads fail
open (any transport error is a miss, so the caller falls back to the store)
and writes are best effort (errors are logged, never raised): the cache must
never fail the caller's primary operation.
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Union, cast

from tripnotes.cache.keys import CacheKeys
from tripnotes.cache.metrics import CacheMetrics
from tripnotes.cache.staleness import StalenessController
from tripnotes.cache.transport import TOMBSTONE, TOMBSTONE_TTL, KvTransport, store_value
from tripnotes.cache.ttl import TtlPolicy
from tripnotes.core.canonicalize import decode_fragment, encode_fragment
from tripnotes.core.ids import Durable, Provisional
from tripnotes.core.model import Activity, TripDay, TripMetadata
from tripnotes.errors import KvTransportError
from tripnotes.observability.metrics import record_kv_error

logger = logging.getLogger(__name__)

Fragment = Union[TripMetadata, TripDay, Activity]
FragmentRef = Union[str, Durable, Provisional]


class FragmentKind(str, Enum):
    """Individually cached fragment kinds."""

    METADATA = "metadata"
    SECTION = "section"
    ITEM = "item"


_FRAGMENT_MODELS: dict[FragmentKind, type[Fragment]] = {
    FragmentKind.METADATA: TripMetadata,
    FragmentKind.SECTION: TripDay,
    FragmentKind.ITEM: Activity,
}


def store_id_of(fragment_id: FragmentRef) -> str:
    """Cache keys are always durable store ids."""
    if isinstance(fragment_id, Provisional):
        raise ValueError(f"Provisional id {fragment_id.local_id!r} cannot key a cache entry")
    if isinstance(fragment_id, Durable):
        return fragment_id.store_id
    return fragment_id


class ComponentCache:
    """Fragment-level cache operations with TTL classes.

    Args:
        transport: KV transport
        keys: Key schema (defaults to the configured cache version)
        ttl: TTL classes
        metrics: Counters owned by this cache instance
        staleness: Used to mark a trip stale after a write that names it
    """

    def __init__(
        self,
        transport: KvTransport,
        keys: CacheKeys | None = None,
        ttl: TtlPolicy | None = None,
        metrics: CacheMetrics | None = None,
        staleness: StalenessController | None = None,
    ):
        self.transport = transport
        self.keys = keys or CacheKeys()
        self.ttl = ttl or TtlPolicy()
        self.metrics = metrics or CacheMetrics()
        self.staleness = staleness or StalenessController(
            transport, keys=self.keys, ttl=self.ttl, metrics=self.metrics
        )

    # -------------------------------------------------------------------------
    # Generic operations
    # -------------------------------------------------------------------------

    def key_for(self, kind: FragmentKind, fragment_id: FragmentRef) -> str:
        store_id = store_id_of(fragment_id)
        if kind is FragmentKind.METADATA:
            return self.keys.metadata(store_id)
        if kind is FragmentKind.SECTION:
            return self.keys.day(store_id)
        return self.keys.activity(store_id)

    def ttl_for(self, kind: FragmentKind, active_edit: bool = False) -> int:
        if kind is FragmentKind.METADATA:
            return self.ttl.metadata
        return self.ttl.active_edit if active_edit else self.ttl.structural

    async def get(self, kind: FragmentKind, fragment_id: FragmentRef) -> Fragment | None:
        """Get one fragment. Transport and decode errors count as a miss."""
        key = self.key_for(kind, fragment_id)
        try:
            raw = await self.transport.get(key)
        except KvTransportError as e:
            record_kv_error("get")
            logger.warning(f"Cache read failed for {key}: {e}")
            self.metrics.miss(kind.value)
            return None

        if not raw:
            self.metrics.miss(kind.value)
            return None

        try:
            fragment = decode_fragment(_FRAGMENT_MODELS[kind], raw)
        except ValueError as e:
            logger.warning(f"Discarding undecodable cache entry {key}: {e}")
            self.metrics.miss(kind.value)
            return None

        self.metrics.hit(kind.value)
        return fragment

    async def set(
        self,
        kind: FragmentKind,
        fragment_id: FragmentRef,
        fragment: Fragment,
        *,
        active_edit: bool = False,
        document_id: str | None = None,
    ) -> bool:
        """Cache one fragment.

        ``active_edit`` selects the short TTL class for days and activities
        being edited. When ``document_id`` is given the trip is marked stale
        afterwards, whether or not the write itself succeeded.

        Returns:
            True if the transport accepted the write.
        """
        key = self.key_for(kind, fragment_id)
        if isinstance(fragment, TripDay):
            fragment = fragment.without_activities()

        written = False
        try:
            value = encode_fragment(fragment)
            await store_value(self.transport, key, value, self.ttl_for(kind, active_edit))
            self.metrics.write(kind.value)
            written = True
        except KvTransportError as e:
            record_kv_error("set")
            logger.error(f"Cache write failed for {key}: {e}")

        if document_id is not None:
            await self.staleness.mark_stale(document_id)
        return written

    async def get_many(
        self, kind: FragmentKind, fragment_ids: list[str]
    ) -> dict[str, Fragment]:
        """Fetch fragments concurrently.

        Ids that are absent or fail to resolve are left out of the result.
        """
        unique_ids = list(dict.fromkeys(fragment_ids))
        results = await asyncio.gather(
            *(self.get(kind, fragment_id) for fragment_id in unique_ids),
            return_exceptions=True,
        )

        found: dict[str, Fragment] = {}
        for fragment_id, result in zip(unique_ids, results):
            if isinstance(result, BaseException):
                logger.error(f"Unexpected error fetching {kind.value} {fragment_id}: {result}")
            elif result is not None:
                found[fragment_id] = result
        return found

    async def evict(
        self,
        kind: FragmentKind,
        fragment_id: FragmentRef,
        *,
        document_id: str | None = None,
    ) -> None:
        """Drop a fragment by overwriting it with a short-lived tombstone."""
        key = self.key_for(kind, fragment_id)
        try:
            await store_value(self.transport, key, TOMBSTONE, TOMBSTONE_TTL)
        except KvTransportError as e:
            record_kv_error("set")
            logger.warning(f"Cache eviction failed for {key}: {e}")

        if document_id is not None:
            await self.staleness.mark_stale(document_id)

    # -------------------------------------------------------------------------
    # Typed helpers
    # -------------------------------------------------------------------------

    async def get_metadata(self, trip_id: str) -> TripMetadata | None:
        return cast("TripMetadata | None", await self.get(FragmentKind.METADATA, trip_id))

    async def set_metadata(
        self, metadata: TripMetadata, *, document_id: str | None = None
    ) -> bool:
        return await self.set(
            FragmentKind.METADATA, metadata.id, metadata, document_id=document_id
        )

    async def get_metadata_many(self, trip_ids: list[str]) -> dict[str, TripMetadata]:
        return cast("dict[str, TripMetadata]", await self.get_many(FragmentKind.METADATA, trip_ids))

    async def get_section(self, day_id: str) -> TripDay | None:
        return cast("TripDay | None", await self.get(FragmentKind.SECTION, day_id))

    async def set_section(
        self, day: TripDay, *, active_edit: bool = False, document_id: str | None = None
    ) -> bool:
        return await self.set(
            FragmentKind.SECTION, day.id, day, active_edit=active_edit, document_id=document_id
        )

    async def get_sections(self, day_ids: list[str]) -> dict[str, TripDay]:
        return cast("dict[str, TripDay]", await self.get_many(FragmentKind.SECTION, day_ids))

    async def get_item(self, activity_id: str) -> Activity | None:
        return cast("Activity | None", await self.get(FragmentKind.ITEM, activity_id))

    async def set_item(
        self, activity: Activity, *, active_edit: bool = False, document_id: str | None = None
    ) -> bool:
        return await self.set(
            FragmentKind.ITEM,
            activity.id,
            activity,
            active_edit=active_edit,
            document_id=document_id,
        )

    async def get_items(self, activity_ids: list[str]) -> dict[str, Activity]:
        return cast("dict[str, Activity]", await self.get_many(FragmentKind.ITEM, activity_ids))
