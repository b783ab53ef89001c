"""TripCacheService: the interface the page and editor layers consume.

Wires the transport, caches, store, loader and orchestrator together.

Usage:
    service = get_service()

    trip = await service.load_document(trip_id)
    result = await service.save_changes(trip_id, bundle, user_id=user_id)
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from pydantic import ValidationError

from tripnotes.cache.assembler import Assembler
from tripnotes.cache.components import ComponentCache, FragmentKind
from tripnotes.cache.invalidation import ChangeNotifier, ChangeType, DocumentChanged
from tripnotes.cache.keys import CacheKeys
from tripnotes.cache.metrics import CacheMetrics, CacheStats
from tripnotes.cache.staleness import Freshness, StalenessController, WholeDocumentCache
from tripnotes.cache.structure import StructureIndex
from tripnotes.cache.transport import KvTransport, create_kv_transport
from tripnotes.cache.ttl import TtlPolicy
from tripnotes.config import Settings, settings
from tripnotes.core.model import Activity, ChangeBundle, Trip, TripDay, TripMetadata
from tripnotes.editor.orchestrator import SaveResult, WriteThroughOrchestrator
from tripnotes.errors import InvalidChangeError
from tripnotes.loader import TripLoader
from tripnotes.observability.logging import configure_logging
from tripnotes.persistence.db import close_db
from tripnotes.persistence.store import TripStore
from tripnotes.tasks import BackgroundTasks

logger = logging.getLogger(__name__)


class TripCacheService:
    """Granular trip cache in front of the trip store.

    Args:
        store: Authoritative store
        transport: KV transport shared by every cache layer
        keys: Key schema
        ttl: TTL classes
        warm_after_save: Re-cache the whole trip in the background after saves
    """

    def __init__(
        self,
        store: TripStore,
        transport: KvTransport,
        keys: CacheKeys | None = None,
        ttl: TtlPolicy | None = None,
        warm_after_save: bool = False,
    ):
        self.store = store
        self.transport = transport
        self.keys = keys or CacheKeys()
        self.ttl = ttl or TtlPolicy()
        self.metrics = CacheMetrics()
        self.tasks = BackgroundTasks()
        self.notifier = ChangeNotifier()

        self.staleness = StalenessController(transport, self.keys, self.ttl, self.metrics)
        self.components = ComponentCache(
            transport, self.keys, self.ttl, self.metrics, staleness=self.staleness
        )
        self.structure = StructureIndex(transport, store, self.staleness)
        self.fast_path = WholeDocumentCache(transport, self.staleness)
        self.assembler = Assembler(self.components, self.structure)
        self.loader = TripLoader(
            store,
            self.components,
            self.structure,
            self.staleness,
            self.fast_path,
            self.assembler,
            self.tasks,
        )
        self.orchestrator = WriteThroughOrchestrator(
            store, self.components, self.structure, self.staleness, self.notifier
        )

        if warm_after_save:
            self.notifier.add_handler(self._warm_after_change)

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def load_document(self, document_id: str) -> Trip | None:
        return await self.loader.load_document(document_id)

    async def load_document_metadata_only(self, document_id: str) -> TripMetadata | None:
        return await self.loader.load_document_metadata_only(document_id)

    async def load_metadata_batch(self, document_ids: list[str]) -> dict[str, TripMetadata]:
        return await self.loader.load_metadata_batch(document_ids)

    async def load_section(self, day_id: str) -> TripDay | None:
        return await self.loader.load_section(day_id)

    def prefetch_section(self, day_id: str, document_id: str) -> None:
        self.loader.prefetch_section(day_id, document_id)

    async def freshness(self, document_id: str) -> Freshness:
        return await self.fast_path.freshness(document_id)

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    async def save_changes(
        self,
        document_id: str,
        changes: ChangeBundle | dict[str, Any],
        user_id: str | None,
    ) -> SaveResult:
        """Apply an editor change bundle. Raw dicts are validated first."""
        if not isinstance(changes, ChangeBundle):
            try:
                changes = ChangeBundle.model_validate(changes)
            except ValidationError as e:
                raise InvalidChangeError(f"invalid change bundle: {e}") from e
        return await self.orchestrator.apply(document_id, changes, user_id)

    async def set_item_field(
        self, activity_id: str, field_name: str, value: Any, user_id: str | None
    ) -> Activity:
        return await self.orchestrator.set_item_field(activity_id, field_name, value, user_id)

    async def set_section_field(
        self, day_id: str, field_name: str, value: Any, user_id: str | None
    ) -> TripDay:
        return await self.orchestrator.set_section_field(day_id, field_name, value, user_id)

    async def invalidate_document(self, document_id: str) -> None:
        """Drop every cached layer of a trip, e.g. after an out-of-band change.

        Days and activities are found through the cached shape, which is
        read before anything is evicted. The next read goes to the store.
        """
        shape = await self.structure.get(document_id)
        evictions = [
            self.fast_path.evict(document_id),
            self.structure.evict(document_id),
            self.components.evict(FragmentKind.METADATA, document_id),
        ]
        if shape is not None:
            evictions.extend(
                self.components.evict(FragmentKind.SECTION, day_id) for day_id in shape.day_ids
            )
            evictions.extend(
                self.components.evict(FragmentKind.ITEM, activity_id)
                for activity_id in shape.all_activity_ids()
            )
        await asyncio.gather(*evictions)
        await self.staleness.mark_stale(document_id)

        logger.info(f"Invalidated trip {document_id}: {len(evictions)} cache entries evicted")
        await self.notifier.publish(
            DocumentChanged(type=ChangeType.INVALIDATED, document_id=document_id)
        )

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def stats(self) -> CacheStats:
        return self.metrics.snapshot()

    async def health_check(self) -> dict[str, bool]:
        """Reachability of the KV store and the authoritative store."""
        kv, store = await asyncio.gather(self.transport.health_check(), self.store.health_check())
        return {"kv": kv, "store": store}

    async def drain(self) -> None:
        """Wait for background cache work to finish."""
        await self.tasks.drain()

    async def close(self) -> None:
        await self.tasks.drain()
        await self.transport.close()

    async def _warm_after_change(self, message: DocumentChanged) -> None:
        if message.type is ChangeType.INVALIDATED:
            return
        self.tasks.spawn(
            self.loader.warm(message.document_id), name=f"warm-{message.document_id}"
        )


def create_service(config: Settings | None = None) -> TripCacheService:
    """Build a service from settings."""
    config = config or settings
    return TripCacheService(
        store=TripStore(),
        transport=create_kv_transport(config),
        keys=CacheKeys(config.cache_version),
        ttl=TtlPolicy.from_settings(config),
        warm_after_save=config.warm_after_save,
    )


# Module-level service (initialized lazily)
_service: TripCacheService | None = None


def get_service() -> TripCacheService:
    """Get or create the process-wide service."""
    global _service
    if _service is None:
        configure_logging(json_format=settings.log_json, level=settings.log_level)
        _service = create_service()
        logger.info(f"TripNotes cache service started (env={settings.env})")
    return _service


async def close_service() -> None:
    """Drain background work and close the process-wide service."""
    global _service
    if _service is not None:
        await _service.close()
        await close_db()
        _service = None
