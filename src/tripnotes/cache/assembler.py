"""Rebuild a full trip from the structure index and the component cache.

Assembly runs in three strictly sequenced waves:

1. metadata and shape, concurrently
2. every day listed by the shape, in one concurrent fan-out
3. every activity of every day, in one concurrent fan-out

Missing metadata, a missing shape or any missing day aborts assembly (the
caller falls back to the store). A missing activity only drops that
activity from its day.
"""

from __future__ import annotations

import asyncio
import logging

from tripnotes.cache.components import ComponentCache
from tripnotes.cache.structure import StructureIndex
from tripnotes.core.model import Activity, Trip, TripDay, TripShape
from tripnotes.observability.metrics import record_assembly

logger = logging.getLogger(__name__)


class Assembler:
    """Produces a Trip from cached fragments, or None if the cache is incomplete."""

    def __init__(self, components: ComponentCache, structure: StructureIndex):
        self.components = components
        self.structure = structure

    async def assemble(self, document_id: str) -> Trip | None:
        metadata, shape = await asyncio.gather(
            self.components.get_metadata(document_id),
            self.structure.get(document_id),
        )
        if metadata is None or shape is None:
            logger.debug(
                f"Cannot assemble trip {document_id}: "
                f"metadata {'hit' if metadata else 'miss'}, shape {'hit' if shape else 'miss'}"
            )
            record_assembly("incomplete")
            return None

        days = await self.components.get_sections(shape.day_ids)
        if len(days) != len(set(shape.day_ids)):
            logger.info(
                f"Cannot assemble trip {document_id}: "
                f"{len(days)} of {len(shape.day_ids)} days cached"
            )
            record_assembly("partial")
            return None

        activities = await self.components.get_items(shape.all_activity_ids())

        ordered_days = [
            self._attach(document_id, days[day_id], shape, activities)
            for day_id in shape.day_ids
        ]
        record_assembly("assembled")
        return Trip.from_parts(metadata, ordered_days)

    def _attach(
        self,
        document_id: str,
        day: TripDay,
        shape: TripShape,
        activities: dict[str, Activity],
    ) -> TripDay:
        """Give ``day`` its activities in shape order, skipping unresolved ones."""
        attached: list[Activity] = []
        for activity_id in shape.activity_ids_for(day.id):
            activity = activities.get(activity_id)
            if activity is None:
                logger.warning(
                    f"Activity {activity_id} of day {day.id} (trip {document_id}) "
                    f"not cached, assembling without it"
                )
                continue
            attached.append(activity)
        return day.model_copy(update={"activities": attached})
