"""Freshness tracking for the whole-trip fast path.

Each trip has a freshness marker holding a random epoch. The whole-trip
entry is stored together with the epoch that was current when its content
was read. The entry is FRESH while its epoch equals the marker; any
component write calls ``mark_stale``, which writes a new epoch and so turns
every earlier entry STALE before its TTL runs out. Re-caching the trip
under the new epoch makes it FRESH again.

A reader that started before a write can never make its older payload
servable afterwards: its entry carries the old epoch.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from uuid import uuid4

from tripnotes.cache.keys import CacheKeys
from tripnotes.cache.metrics import CacheMetrics
from tripnotes.cache.transport import TOMBSTONE, TOMBSTONE_TTL, KvTransport, store_value
from tripnotes.cache.ttl import TtlPolicy
from tripnotes.core.canonicalize import decode_fragment, encode_fragment
from tripnotes.core.model import StrictModel, Trip
from tripnotes.errors import KvTransportError
from tripnotes.observability.metrics import record_kv_error

logger = logging.getLogger(__name__)


class Freshness(str, Enum):
    """Observable state of a trip's whole-trip entry."""

    FRESH = "fresh"
    STALE = "stale"
    MISSING = "missing"


def new_epoch() -> str:
    return uuid4().hex


class StalenessController:
    """Reads and advances the per-trip freshness epoch."""

    def __init__(
        self,
        transport: KvTransport,
        keys: CacheKeys | None = None,
        ttl: TtlPolicy | None = None,
        metrics: CacheMetrics | None = None,
    ):
        self.transport = transport
        self.keys = keys or CacheKeys()
        self.ttl = ttl or TtlPolicy()
        self.metrics = metrics or CacheMetrics()

    async def mark_stale(self, document_id: str) -> bool:
        """Advance the epoch so no existing whole-trip entry is served.

        Calling it twice is observably the same as calling it once.

        Returns:
            False if the marker write failed; earlier entries may still be served.
        """
        key = self.keys.stale(document_id)
        try:
            await store_value(self.transport, key, new_epoch(), self.ttl.freshness_marker)
        except KvTransportError as e:
            record_kv_error("set")
            logger.error(f"Failed to mark trip {document_id} stale: {e}")
            return False
        self.metrics.invalidate()
        logger.debug(f"Marked trip {document_id} stale")
        return True

    async def current_epoch(self, document_id: str) -> str | None:
        """The current epoch, or None if absent or unreadable."""
        try:
            value = await self.transport.get(self.keys.stale(document_id))
        except KvTransportError as e:
            record_kv_error("get")
            logger.warning(f"Failed to read freshness of trip {document_id}: {e}")
            return None
        return value or None

    async def ensure_epoch(self, document_id: str, observed: str | None) -> str:
        """Epoch to tag a whole-trip entry with, read before its content.

        When no marker exists yet (first population) one is created. If that
        write fails the returned epoch matches no marker, so the entry built
        with it is never served.
        """
        if observed:
            return observed
        epoch = new_epoch()
        try:
            await store_value(
                self.transport, self.keys.stale(document_id), epoch, self.ttl.freshness_marker
            )
        except KvTransportError as e:
            record_kv_error("set")
            logger.warning(f"Failed to initialize freshness of trip {document_id}: {e}")
        return epoch


class CachedTrip(StrictModel):
    """Whole-trip entry as stored in the KV store."""

    epoch: str
    trip: Trip


@dataclass
class FastPathLookup:
    """Result of a fast path read.

    ``epoch`` is the marker seen during the read; a caller rebuilding the
    trip after a miss tags its new entry with it.
    """

    trip: Trip | None
    epoch: str | None
    freshness: Freshness


class WholeDocumentCache:
    """The fully assembled trip, guarded by the freshness marker."""

    KIND = "full"

    def __init__(
        self,
        transport: KvTransport,
        staleness: StalenessController,
        keys: CacheKeys | None = None,
        ttl: TtlPolicy | None = None,
        metrics: CacheMetrics | None = None,
    ):
        self.transport = transport
        self.staleness = staleness
        self.keys = keys or staleness.keys
        self.ttl = ttl or staleness.ttl
        self.metrics = metrics or staleness.metrics

    async def lookup(self, document_id: str) -> FastPathLookup:
        """Return the cached trip only if it is FRESH."""
        epoch, raw = await asyncio.gather(
            self.staleness.current_epoch(document_id),
            self._read(document_id),
        )

        if not raw:
            self.metrics.miss(self.KIND)
            return FastPathLookup(trip=None, epoch=epoch, freshness=Freshness.MISSING)

        try:
            entry = decode_fragment(CachedTrip, raw)
        except ValueError as e:
            logger.warning(f"Discarding undecodable whole-trip entry for {document_id}: {e}")
            self.metrics.miss(self.KIND)
            return FastPathLookup(trip=None, epoch=epoch, freshness=Freshness.MISSING)

        if epoch is None or entry.epoch != epoch:
            logger.debug(f"Whole-trip entry for {document_id} is stale, skipping")
            self.metrics.miss(self.KIND)
            return FastPathLookup(trip=None, epoch=epoch, freshness=Freshness.STALE)

        self.metrics.hit(self.KIND)
        return FastPathLookup(trip=entry.trip, epoch=epoch, freshness=Freshness.FRESH)

    async def get(self, document_id: str) -> Trip | None:
        return (await self.lookup(document_id)).trip

    async def set(self, trip: Trip, epoch: str) -> bool:
        """Cache ``trip`` under ``epoch``. Failures are logged, never raised."""
        key = self.keys.full_trip(trip.id)
        value = encode_fragment(CachedTrip(epoch=epoch, trip=trip))
        try:
            await store_value(self.transport, key, value, self.ttl.whole_document)
        except KvTransportError as e:
            record_kv_error("set")
            logger.error(f"Failed to cache whole trip {trip.id}: {e}")
            return False
        self.metrics.write(self.KIND)
        return True

    async def freshness(self, document_id: str) -> Freshness:
        return (await self.lookup(document_id)).freshness

    async def evict(self, document_id: str) -> None:
        try:
            await store_value(
                self.transport, self.keys.full_trip(document_id), TOMBSTONE, TOMBSTONE_TTL
            )
        except KvTransportError as e:
            record_kv_error("set")
            logger.warning(f"Failed to evict whole trip {document_id}: {e}")

    async def _read(self, document_id: str) -> str | None:
        try:
            return await self.transport.get(self.keys.full_trip(document_id))
        except KvTransportError as e:
            record_kv_error("get")
            logger.warning(f"Failed to read whole trip {document_id}: {e}")
            return None
