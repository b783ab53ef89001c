"""Read path for trips.

``load_document`` tries, in order:

1. the whole-trip fast path (served only while FRESH)
2. assembly from the structure index and component cache
3. the authoritative store

A store read returns immediately; fragments, shape and the whole-trip entry
are repopulated in a background task whose failure is only logged.

The freshness epoch is read (or created) before any content is read, and a
rebuilt whole-trip entry is tagged with it. A save that lands while the
rebuild is in flight changes the epoch, so the rebuilt entry is never served.
"""

from __future__ import annotations

import asyncio
import logging

from tripnotes.cache.assembler import Assembler
from tripnotes.cache.components import ComponentCache
from tripnotes.cache.staleness import StalenessController, WholeDocumentCache
from tripnotes.cache.structure import StructureIndex
from tripnotes.core.model import Trip, TripDay, TripMetadata, TripShape
from tripnotes.observability.metrics import record_trip_load
from tripnotes.persistence.store import TripStore
from tripnotes.tasks import BackgroundTasks

logger = logging.getLogger(__name__)


class TripLoader:
    """Cache-first reads with fallback to the store."""

    def __init__(
        self,
        store: TripStore,
        components: ComponentCache,
        structure: StructureIndex,
        staleness: StalenessController,
        fast_path: WholeDocumentCache,
        assembler: Assembler,
        tasks: BackgroundTasks | None = None,
    ):
        self.store = store
        self.components = components
        self.structure = structure
        self.staleness = staleness
        self.fast_path = fast_path
        self.assembler = assembler
        self.tasks = tasks or BackgroundTasks()

    # -------------------------------------------------------------------------
    # Whole trip
    # -------------------------------------------------------------------------

    async def load_document(self, document_id: str) -> Trip | None:
        """Load a full trip. None only if the store does not have it.

        Store errors propagate; cache errors never do.
        """
        lookup = await self.fast_path.lookup(document_id)
        if lookup.trip is not None:
            record_trip_load("fast_path")
            return lookup.trip

        epoch = await self.staleness.ensure_epoch(document_id, lookup.epoch)

        trip = await self.assembler.assemble(document_id)
        if trip is not None:
            record_trip_load("assembled")
            self.tasks.spawn(self.fast_path.set(trip, epoch), name=f"cache-full-{document_id}")
            return trip

        logger.debug(f"Trip {document_id} not assembled from cache, reading store")
        trip = await self.store.fetch_tree(document_id)
        if trip is None:
            record_trip_load("not_found")
            return None

        record_trip_load("store")
        self.tasks.spawn(self.populate(trip, epoch), name=f"populate-{document_id}")
        return trip

    async def warm(self, document_id: str) -> None:
        """Rebuild the whole-trip entry now unless it is already FRESH."""
        lookup = await self.fast_path.lookup(document_id)
        if lookup.trip is not None:
            return

        epoch = await self.staleness.ensure_epoch(document_id, lookup.epoch)
        trip = await self.assembler.assemble(document_id)
        if trip is not None:
            await self.fast_path.set(trip, epoch)
            return

        trip = await self.store.fetch_tree(document_id)
        if trip is not None:
            await self.populate(trip, epoch)

    async def populate(self, trip: Trip, epoch: str) -> None:
        """Write every cache layer from a trip read from the store."""
        writes = [
            self.components.set_metadata(trip.metadata()),
            self.structure.set(trip.id, TripShape.from_trip(trip)),
            self.fast_path.set(trip, epoch),
        ]
        for day in trip.days:
            writes.append(self.components.set_section(day))
            writes.extend(self.components.set_item(activity) for activity in day.activities)

        results = await asyncio.gather(*writes, return_exceptions=True)
        failed = [r for r in results if isinstance(r, BaseException) or r is False]
        if failed:
            logger.warning(f"Repopulated trip {trip.id} with {len(failed)} failed cache writes")
        else:
            logger.debug(f"Repopulated trip {trip.id}: {len(writes)} cache entries")

    # -------------------------------------------------------------------------
    # Metadata
    # -------------------------------------------------------------------------

    async def load_document_metadata_only(self, document_id: str) -> TripMetadata | None:
        metadata = await self.components.get_metadata(document_id)
        if metadata is not None:
            return metadata

        metadata = await self.store.fetch_metadata(document_id)
        if metadata is not None:
            self.tasks.spawn(
                self.components.set_metadata(metadata), name=f"cache-meta-{document_id}"
            )
        return metadata

    async def load_metadata_batch(self, document_ids: list[str]) -> dict[str, TripMetadata]:
        """Metadata for several trips; unknown ids are left out.

        Cached entries are fetched concurrently, and the rest come from one
        store query.
        """
        unique_ids = list(dict.fromkeys(document_ids))
        cached = await self.components.get_metadata_many(unique_ids)
        missing = [document_id for document_id in unique_ids if document_id not in cached]

        loaded: dict[str, TripMetadata] = {}
        if missing:
            loaded = await self.store.fetch_metadata_many(missing)
            for metadata in loaded.values():
                self.tasks.spawn(
                    self.components.set_metadata(metadata), name=f"cache-meta-{metadata.id}"
                )

        found = {**cached, **loaded}
        return {
            document_id: found[document_id]
            for document_id in unique_ids
            if document_id in found
        }

    # -------------------------------------------------------------------------
    # Single day
    # -------------------------------------------------------------------------

    async def load_section(self, day_id: str) -> TripDay | None:
        """Load one day with its activities.

        Served from cache only when the day, the trip shape and every
        activity listed for the day are cached; otherwise read from the store.
        """
        day = await self._assemble_section(day_id)
        if day is not None:
            return day

        day = await self.store.fetch_section(day_id)
        if day is not None:
            self.tasks.spawn(self._populate_section(day), name=f"populate-day-{day_id}")
        return day

    def prefetch_section(self, day_id: str, document_id: str) -> None:
        """Warm a day's cache entries in the background."""
        self.tasks.spawn(self._prefetch_section(day_id, document_id), name=f"prefetch-{day_id}")

    async def _assemble_section(self, day_id: str) -> TripDay | None:
        day = await self.components.get_section(day_id)
        if day is None:
            return None

        shape = await self.structure.get(day.trip_id)
        if shape is None or day_id not in shape.day_map:
            return None

        activity_ids = shape.activity_ids_for(day_id)
        activities = await self.components.get_items(activity_ids)
        if len(activities) != len(set(activity_ids)):
            logger.debug(
                f"Day {day_id}: {len(activities)} of {len(activity_ids)} activities cached"
            )
            return None
        return day.model_copy(update={"activities": [activities[a] for a in activity_ids]})

    async def _prefetch_section(self, day_id: str, document_id: str) -> None:
        if await self.components.get_section(day_id) is not None:
            return

        day = await self.store.fetch_section(day_id)
        if day is None or day.trip_id != document_id:
            logger.info(f"Not prefetching day {day_id}: not part of trip {document_id}")
            return
        await self._populate_section(day)

    async def _populate_section(self, day: TripDay) -> None:
        await asyncio.gather(
            self.components.set_section(day),
            *(self.components.set_item(activity) for activity in day.activities),
        )
