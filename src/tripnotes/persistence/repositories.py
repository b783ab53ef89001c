"""Repository for the trip tree.

Reads return Pydantic models with children in position order. Writes keep
positions dense (1..N) and delete children explicitly before their parent:
gems, then activities, then the day.

Every write is scoped to a trip: a fragment id that belongs to another trip
is treated exactly like one that does not exist.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from sqlalchemy import delete, select
from sqlalchemy import inspect as sa_inspect
from sqlalchemy.ext.asyncio import AsyncSession

from tripnotes.core.model import Activity, Gem, Trip, TripDay, TripMetadata, TripShape
from tripnotes.core.model.trip import TripStatus
from tripnotes.persistence.tables import (
    ActivityTable,
    GemTable,
    TripDayTable,
    TripTable,
    new_id,
    utcnow,
)

# Model field name -> mapped attribute, where they differ
_GEM_ATTRIBUTES = {"metadata": "gem_metadata"}


@dataclass
class Written:
    """A fragment that was inserted or updated.

    ``renumbered`` lists siblings whose position changed as a side effect.
    """

    id: str
    parent_id: str
    renumbered: list[str] = field(default_factory=list)


@dataclass
class Removed:
    """A deleted fragment plus everything deleted with it."""

    id: str
    parent_id: str
    activity_ids: list[str] = field(default_factory=list)
    gem_ids: list[str] = field(default_factory=list)
    renumbered: list[str] = field(default_factory=list)


# -----------------------------------------------------------------------------
# Row <-> model conversion
# -----------------------------------------------------------------------------


def _columns(row: Any) -> dict[str, Any]:
    return {attr.key: getattr(row, attr.key) for attr in sa_inspect(type(row)).column_attrs}


def metadata_from_row(row: TripTable) -> TripMetadata:
    return TripMetadata.model_validate(_columns(row))


def gem_from_row(row: GemTable) -> Gem:
    data = _columns(row)
    data["metadata"] = data.pop("gem_metadata")
    return Gem.model_validate(data)


def activity_from_row(row: ActivityTable, gems: list[Gem]) -> Activity:
    return Activity.model_validate({**_columns(row), "gems": gems})


def day_from_row(row: TripDayTable, activities: list[Activity]) -> TripDay:
    return TripDay.model_validate({**_columns(row), "activities": activities})


def _assign(row: Any, fields: dict[str, Any], renames: dict[str, str] | None = None) -> None:
    renames = renames or {}
    for name, value in fields.items():
        setattr(row, renames.get(name, name), value.value if isinstance(value, Enum) else value)


def _insertion_index(sibling_count: int, position: int | None) -> int:
    """0-based index for a requested 1-based position; None or overflow appends."""
    if position is None:
        return sibling_count
    return max(0, min(position - 1, sibling_count))


def _renumber(rows: Sequence[Any], attribute: str) -> list[str]:
    """Assign positions 1..N in list order. Returns ids whose position changed."""
    changed = []
    for position, row in enumerate(rows, start=1):
        if getattr(row, attribute) != position:
            setattr(row, attribute, position)
            changed.append(row.id)
    return changed


class TripRepository:
    """Trip tree operations within one session."""

    def __init__(self, session: AsyncSession):
        self.session = session

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def fetch_metadata(self, trip_id: str) -> TripMetadata | None:
        row = await self.session.get(TripTable, trip_id)
        return metadata_from_row(row) if row is not None else None

    async def fetch_metadata_many(self, trip_ids: list[str]) -> dict[str, TripMetadata]:
        if not trip_ids:
            return {}
        stmt = select(TripTable).where(TripTable.id.in_(trip_ids))
        rows = (await self.session.execute(stmt)).scalars().all()
        return {row.id: metadata_from_row(row) for row in rows}

    async def fetch_tree(self, trip_id: str) -> Trip | None:
        """Full trip with days, activities and gems in position order."""
        row = await self.session.get(TripTable, trip_id)
        if row is None:
            return None
        days = await self._hydrate_days(await self._day_rows(trip_id))
        return Trip.from_parts(metadata_from_row(row), days)

    async def fetch_section(self, day_id: str) -> TripDay | None:
        """One day with its activities and their gems."""
        row = await self.session.get(TripDayTable, day_id)
        if row is None:
            return None
        return (await self._hydrate_days([row]))[0]

    async def fetch_sections(self, day_ids: list[str]) -> dict[str, TripDay]:
        if not day_ids:
            return {}
        stmt = select(TripDayTable).where(TripDayTable.id.in_(day_ids))
        rows = list((await self.session.execute(stmt)).scalars().all())
        return {day.id: day for day in await self._hydrate_days(rows)}

    async def fetch_activities(self, activity_ids: list[str]) -> dict[str, Activity]:
        if not activity_ids:
            return {}
        stmt = select(ActivityTable).where(ActivityTable.id.in_(activity_ids))
        rows = (await self.session.execute(stmt)).scalars().all()
        gems = await self._gems_by_activity([row.id for row in rows])
        return {row.id: activity_from_row(row, gems.get(row.id, [])) for row in rows}

    async def fetch_shape(self, trip_id: str) -> TripShape | None:
        """Id graph of a trip, without loading any content columns."""
        exists = await self.session.execute(select(TripTable.id).where(TripTable.id == trip_id))
        if exists.scalar_one_or_none() is None:
            return None

        day_stmt = (
            select(TripDayTable.id)
            .where(TripDayTable.trip_id == trip_id)
            .order_by(TripDayTable.day_number, TripDayTable.created_at)
        )
        day_ids = list((await self.session.execute(day_stmt)).scalars().all())

        day_map: dict[str, list[str]] = {day_id: [] for day_id in day_ids}
        activity_map: dict[str, list[str]] = {}
        if day_ids:
            activity_stmt = (
                select(ActivityTable.id, ActivityTable.day_id)
                .where(ActivityTable.day_id.in_(day_ids))
                .order_by(ActivityTable.order_index, ActivityTable.created_at)
            )
            for activity_id, day_id in (await self.session.execute(activity_stmt)).all():
                day_map[day_id].append(activity_id)
                activity_map[activity_id] = []

        if activity_map:
            gem_stmt = (
                select(GemTable.id, GemTable.activity_id)
                .where(GemTable.activity_id.in_(list(activity_map)))
                .order_by(GemTable.created_at, GemTable.id)
            )
            for gem_id, activity_id in (await self.session.execute(gem_stmt)).all():
                activity_map[activity_id].append(gem_id)

        return TripShape(
            trip_id=trip_id, day_ids=day_ids, day_map=day_map, activity_map=activity_map
        )

    # -------------------------------------------------------------------------
    # Ownership lookups
    # -------------------------------------------------------------------------

    async def get_owner_id(self, trip_id: str) -> str | None:
        stmt = select(TripTable.creator_id).where(TripTable.id == trip_id)
        return (await self.session.execute(stmt)).scalar_one_or_none()

    async def get_day_trip_id(self, day_id: str) -> str | None:
        stmt = select(TripDayTable.trip_id).where(TripDayTable.id == day_id)
        return (await self.session.execute(stmt)).scalar_one_or_none()

    async def get_activity_trip_id(self, activity_id: str) -> str | None:
        stmt = (
            select(TripDayTable.trip_id)
            .join(ActivityTable, ActivityTable.day_id == TripDayTable.id)
            .where(ActivityTable.id == activity_id)
        )
        return (await self.session.execute(stmt)).scalar_one_or_none()

    # -------------------------------------------------------------------------
    # Trip
    # -------------------------------------------------------------------------

    async def update_trip(self, trip_id: str, fields: dict[str, Any]) -> bool:
        """Apply changed scalar fields. Returns False if the trip does not exist."""
        row = await self.session.get(TripTable, trip_id)
        if row is None:
            return False
        _assign(row, fields)
        if fields.get("status") == TripStatus.PUBLISHED and row.published_at is None:
            row.published_at = utcnow()
        row.updated_at = utcnow()
        await self.session.flush()
        return True

    # -------------------------------------------------------------------------
    # Days
    # -------------------------------------------------------------------------

    async def insert_day(
        self,
        trip_id: str,
        values: dict[str, Any],
        position: int | None = None,
        store_id: str | None = None,
    ) -> Written:
        """Insert a day at ``position`` (appended when None), shifting later days."""
        siblings = await self._day_rows(trip_id)
        row = TripDayTable(id=store_id or new_id(), trip_id=trip_id, day_number=0)
        _assign(row, values)
        self.session.add(row)

        siblings.insert(_insertion_index(len(siblings), position), row)
        renumbered = _renumber(siblings, "day_number")
        await self.session.flush()
        return Written(id=row.id, parent_id=trip_id, renumbered=_others(renumbered, row.id))

    async def update_day(self, trip_id: str, day_id: str, fields: dict[str, Any]) -> Written | None:
        """Apply changed fields; a new ``day_number`` moves the day."""
        row = await self._day_in_trip(trip_id, day_id)
        if row is None:
            return None

        fields = dict(fields)
        position = fields.pop("day_number", None)
        _assign(row, fields)
        row.updated_at = utcnow()

        renumbered: list[str] = []
        if position is not None and position != row.day_number:
            siblings = [day for day in await self._day_rows(trip_id) if day.id != row.id]
            siblings.insert(_insertion_index(len(siblings), position), row)
            renumbered = _others(_renumber(siblings, "day_number"), row.id)

        await self.session.flush()
        return Written(id=row.id, parent_id=trip_id, renumbered=renumbered)

    async def delete_day(self, trip_id: str, day_id: str) -> Removed | None:
        """Delete a day with its activities and their gems, then close the gap."""
        row = await self._day_in_trip(trip_id, day_id)
        if row is None:
            return None

        activity_stmt = select(ActivityTable.id).where(ActivityTable.day_id == day_id)
        activity_ids = list((await self.session.execute(activity_stmt)).scalars().all())
        gem_ids = await self._delete_gems_of(activity_ids)
        if activity_ids:
            await self.session.execute(
                delete(ActivityTable).where(ActivityTable.id.in_(activity_ids))
            )
        await self.session.delete(row)
        await self.session.flush()

        renumbered = _renumber(await self._day_rows(trip_id), "day_number")
        await self.session.flush()
        return Removed(
            id=day_id,
            parent_id=trip_id,
            activity_ids=activity_ids,
            gem_ids=gem_ids,
            renumbered=renumbered,
        )

    # -------------------------------------------------------------------------
    # Activities
    # -------------------------------------------------------------------------

    async def insert_activity(
        self,
        trip_id: str,
        day_id: str,
        values: dict[str, Any],
        position: int | None = None,
        store_id: str | None = None,
    ) -> Written | None:
        """Insert an activity into a day of this trip. None if the day is not in the trip."""
        if await self._day_in_trip(trip_id, day_id) is None:
            return None

        siblings = await self._activity_rows(day_id)
        row = ActivityTable(id=store_id or new_id(), day_id=day_id, order_index=0)
        _assign(row, values)
        self.session.add(row)

        siblings.insert(_insertion_index(len(siblings), position), row)
        renumbered = _renumber(siblings, "order_index")
        await self.session.flush()
        return Written(id=row.id, parent_id=day_id, renumbered=_others(renumbered, row.id))

    async def update_activity(
        self, trip_id: str, activity_id: str, fields: dict[str, Any]
    ) -> Written | None:
        """Apply changed fields; a new ``order_index`` moves the activity in its day."""
        row = await self._activity_in_trip(trip_id, activity_id)
        if row is None:
            return None

        fields = dict(fields)
        position = fields.pop("order_index", None)
        _assign(row, fields)
        row.updated_at = utcnow()

        renumbered: list[str] = []
        if position is not None and position != row.order_index:
            siblings = [a for a in await self._activity_rows(row.day_id) if a.id != row.id]
            siblings.insert(_insertion_index(len(siblings), position), row)
            renumbered = _others(_renumber(siblings, "order_index"), row.id)

        await self.session.flush()
        return Written(id=row.id, parent_id=row.day_id, renumbered=renumbered)

    async def delete_activity(self, trip_id: str, activity_id: str) -> Removed | None:
        """Delete an activity and its gems, then close the gap in its day."""
        row = await self._activity_in_trip(trip_id, activity_id)
        if row is None:
            return None

        day_id = row.day_id
        gem_ids = await self._delete_gems_of([activity_id])
        await self.session.delete(row)
        await self.session.flush()

        renumbered = _renumber(await self._activity_rows(day_id), "order_index")
        await self.session.flush()
        return Removed(id=activity_id, parent_id=day_id, gem_ids=gem_ids, renumbered=renumbered)

    # -------------------------------------------------------------------------
    # Gems
    # -------------------------------------------------------------------------

    async def insert_gem(
        self,
        trip_id: str,
        activity_id: str,
        values: dict[str, Any],
        store_id: str | None = None,
    ) -> Written | None:
        if await self._activity_in_trip(trip_id, activity_id) is None:
            return None

        row = GemTable(id=store_id or new_id(), activity_id=activity_id)
        _assign(row, values, _GEM_ATTRIBUTES)
        self.session.add(row)
        await self.session.flush()
        return Written(id=row.id, parent_id=activity_id)

    async def update_gem(self, trip_id: str, gem_id: str, fields: dict[str, Any]) -> Written | None:
        row = await self._gem_in_trip(trip_id, gem_id)
        if row is None:
            return None
        _assign(row, fields, _GEM_ATTRIBUTES)
        await self.session.flush()
        return Written(id=row.id, parent_id=row.activity_id)

    async def delete_gem(self, trip_id: str, gem_id: str) -> Removed | None:
        row = await self._gem_in_trip(trip_id, gem_id)
        if row is None:
            return None
        activity_id = row.activity_id
        await self.session.delete(row)
        await self.session.flush()
        return Removed(id=gem_id, parent_id=activity_id)

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    async def _day_rows(self, trip_id: str) -> list[TripDayTable]:
        stmt = (
            select(TripDayTable)
            .where(TripDayTable.trip_id == trip_id)
            .order_by(TripDayTable.day_number, TripDayTable.created_at)
        )
        return list((await self.session.execute(stmt)).scalars().all())

    async def _activity_rows(self, day_id: str) -> list[ActivityTable]:
        stmt = (
            select(ActivityTable)
            .where(ActivityTable.day_id == day_id)
            .order_by(ActivityTable.order_index, ActivityTable.created_at)
        )
        return list((await self.session.execute(stmt)).scalars().all())

    async def _day_in_trip(self, trip_id: str, day_id: str) -> TripDayTable | None:
        stmt = select(TripDayTable).where(
            TripDayTable.id == day_id, TripDayTable.trip_id == trip_id
        )
        return (await self.session.execute(stmt)).scalar_one_or_none()

    async def _activity_in_trip(self, trip_id: str, activity_id: str) -> ActivityTable | None:
        stmt = (
            select(ActivityTable)
            .join(TripDayTable, ActivityTable.day_id == TripDayTable.id)
            .where(ActivityTable.id == activity_id, TripDayTable.trip_id == trip_id)
        )
        return (await self.session.execute(stmt)).scalar_one_or_none()

    async def _gem_in_trip(self, trip_id: str, gem_id: str) -> GemTable | None:
        stmt = (
            select(GemTable)
            .join(ActivityTable, GemTable.activity_id == ActivityTable.id)
            .join(TripDayTable, ActivityTable.day_id == TripDayTable.id)
            .where(GemTable.id == gem_id, TripDayTable.trip_id == trip_id)
        )
        return (await self.session.execute(stmt)).scalar_one_or_none()

    async def _delete_gems_of(self, activity_ids: list[str]) -> list[str]:
        if not activity_ids:
            return []
        stmt = select(GemTable.id).where(GemTable.activity_id.in_(activity_ids))
        gem_ids = list((await self.session.execute(stmt)).scalars().all())
        if gem_ids:
            await self.session.execute(delete(GemTable).where(GemTable.id.in_(gem_ids)))
        return gem_ids

    async def _hydrate_days(self, rows: Sequence[TripDayTable]) -> list[TripDay]:
        activities = await self._activities_by_day([row.id for row in rows])
        return [day_from_row(row, activities.get(row.id, [])) for row in rows]

    async def _activities_by_day(self, day_ids: list[str]) -> dict[str, list[Activity]]:
        if not day_ids:
            return {}
        stmt = (
            select(ActivityTable)
            .where(ActivityTable.day_id.in_(day_ids))
            .order_by(ActivityTable.order_index, ActivityTable.created_at)
        )
        rows = (await self.session.execute(stmt)).scalars().all()
        gems = await self._gems_by_activity([row.id for row in rows])

        grouped: dict[str, list[Activity]] = {}
        for row in rows:
            grouped.setdefault(row.day_id, []).append(activity_from_row(row, gems.get(row.id, [])))
        return grouped

    async def _gems_by_activity(self, activity_ids: list[str]) -> dict[str, list[Gem]]:
        if not activity_ids:
            return {}
        stmt = (
            select(GemTable)
            .where(GemTable.activity_id.in_(activity_ids))
            .order_by(GemTable.created_at, GemTable.id)
        )
        grouped: dict[str, list[Gem]] = {}
        for row in (await self.session.execute(stmt)).scalars().all():
            grouped.setdefault(row.activity_id, []).append(gem_from_row(row))
        return grouped


def _others(ids: list[str], own_id: str) -> list[str]:
    return [i for i in ids if i != own_id]
