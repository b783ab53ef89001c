"""Structure index: the cached id graph of each trip."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from tripnotes.cache.keys import CacheKeys
from tripnotes.cache.staleness import StalenessController
from tripnotes.cache.transport import TOMBSTONE, TOMBSTONE_TTL, KvTransport, store_value
from tripnotes.cache.ttl import TtlPolicy
from tripnotes.core.canonicalize import decode_fragment, encode_fragment
from tripnotes.core.model import TripShape
from tripnotes.errors import KvTransportError
from tripnotes.observability.metrics import record_kv_error

if TYPE_CHECKING:
    from tripnotes.persistence.store import TripStore

logger = logging.getLogger(__name__)


class StructureIndex:
    """Stores trip shapes apart from fragment content.

    Shapes are rebuilt from the store after additions, deletions and moves;
    content edits leave the shape untouched.
    """

    KIND = "structure"

    def __init__(
        self,
        transport: KvTransport,
        store: TripStore,
        staleness: StalenessController,
        keys: CacheKeys | None = None,
        ttl: TtlPolicy | None = None,
    ):
        self.transport = transport
        self.store = store
        self.staleness = staleness
        self.keys = keys or staleness.keys
        self.ttl = ttl or staleness.ttl
        self.metrics = staleness.metrics

    async def get(self, document_id: str) -> TripShape | None:
        key = self.keys.structure(document_id)
        try:
            raw = await self.transport.get(key)
        except KvTransportError as e:
            record_kv_error("get")
            logger.warning(f"Failed to read shape of trip {document_id}: {e}")
            self.metrics.miss(self.KIND)
            return None

        if not raw:
            self.metrics.miss(self.KIND)
            return None
        try:
            shape = decode_fragment(TripShape, raw)
        except ValueError as e:
            logger.warning(f"Discarding undecodable shape for trip {document_id}: {e}")
            self.metrics.miss(self.KIND)
            return None

        self.metrics.hit(self.KIND)
        return shape

    async def set(self, document_id: str, shape: TripShape) -> bool:
        key = self.keys.structure(document_id)
        try:
            await store_value(self.transport, key, encode_fragment(shape), self.ttl.structure)
        except KvTransportError as e:
            record_kv_error("set")
            logger.error(f"Failed to cache shape of trip {document_id}: {e}")
            return False
        self.metrics.write(self.KIND)
        return True

    async def evict(self, document_id: str) -> None:
        key = self.keys.structure(document_id)
        try:
            await store_value(self.transport, key, TOMBSTONE, TOMBSTONE_TTL)
        except KvTransportError as e:
            record_kv_error("set")
            logger.warning(f"Failed to evict shape of trip {document_id}: {e}")

    async def rebuild(self, document_id: str) -> TripShape | None:
        """Re-read the id graph from the store and overwrite the cached shape.

        The trip is marked stale afterwards. Store errors propagate.

        Returns:
            The new shape, or None if the trip no longer exists.
        """
        shape = await self.store.fetch_shape(document_id)
        if shape is None:
            logger.info(f"Trip {document_id} no longer exists, shape not rebuilt")
            await self.staleness.mark_stale(document_id)
            return None

        await self.set(document_id, shape)
        await self.staleness.mark_stale(document_id)
        logger.debug(
            f"Rebuilt shape of trip {document_id}: {len(shape.day_ids)} days, "
            f"{len(shape.activity_map)} activities"
        )
        return shape
