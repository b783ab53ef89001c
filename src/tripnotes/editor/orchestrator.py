"""Write-through orchestrator for editor saves.

A save is applied to the store in one transaction:

1. the caller is checked against the trip owner (nothing is touched otherwise)
2. metadata, then days, then activities, then gems; for each kind the
   additions, then the updates, then the deletions
3. provisional ids are bound to store ids as each addition is inserted, so
   children added in the same bundle can reference their new parent

Only after the commit are caches touched: refreshed entries for every
fragment whose content or position changed, evictions for everything
deleted (cascades included), a shape rebuild when fragments were added,
removed or moved, and finally the trip is marked stale. Cache propagation
is best effort; a failure there is logged and never fails the save.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any

from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError

from tripnotes.cache.components import ComponentCache, FragmentKind
from tripnotes.cache.invalidation import ChangeNotifier, ChangeType, DocumentChanged
from tripnotes.cache.staleness import StalenessController
from tripnotes.cache.structure import StructureIndex
from tripnotes.core.ids import Durable, IdRemap, Provisional
from tripnotes.core.model import (
    Activity,
    ActivityUpdate,
    ChangeBundle,
    DayUpdate,
    StrictModel,
    TripDay,
    TripMetadata,
)
from tripnotes.core.model.changes import ActivityChanges, DayChanges, GemChanges
from tripnotes.errors import (
    AuthorizationError,
    InvalidChangeError,
    TripNotFoundError,
    UnresolvedProvisionalIdError,
)
from tripnotes.observability.logging import LogContext
from tripnotes.persistence.repositories import Removed, TripRepository, Written
from tripnotes.persistence.store import TripStore

logger = logging.getLogger(__name__)

# Fields the single-field fast paths may change; positions go through bundles
ITEM_FIELDS = frozenset(
    {
        "description",
        "title",
        "time_block",
        "start_time",
        "end_time",
        "location_name",
        "location_lat",
        "location_lng",
        "activity_type",
        "estimated_cost",
    }
)
SECTION_FIELDS = frozenset({"title", "subtitle", "summary"})


@dataclass
class SaveResult:
    """Outcome of a successful save.

    ``id_map`` maps every provisional id in the bundle to its new store id.
    """

    success: bool
    id_map: dict[str, str] = field(default_factory=dict)
    structural: bool = False


@dataclass
class _Propagation:
    """Cache work collected while a bundle is persisted."""

    metadata: bool = False
    # A sibling changed position, so the cached shape order is out of date
    moved: bool = False
    days: set[str] = field(default_factory=set)
    activities: set[str] = field(default_factory=set)
    deleted_days: set[str] = field(default_factory=set)
    deleted_activities: set[str] = field(default_factory=set)

    fresh_metadata: TripMetadata | None = None
    fresh_days: dict[str, TripDay] = field(default_factory=dict)
    fresh_activities: dict[str, Activity] = field(default_factory=dict)

    def wrote_day(self, written: Written) -> None:
        self.days.add(written.id)
        self.days.update(written.renumbered)
        self.moved = self.moved or bool(written.renumbered)

    def wrote_activity(self, written: Written) -> None:
        self.activities.add(written.id)
        self.activities.update(written.renumbered)
        self.moved = self.moved or bool(written.renumbered)

    def removed_day(self, removed: Removed) -> None:
        self.deleted_days.add(removed.id)
        self.deleted_activities.update(removed.activity_ids)
        self.days.update(removed.renumbered)

    def removed_activity(self, removed: Removed) -> None:
        self.deleted_activities.add(removed.id)
        self.activities.update(removed.renumbered)

    async def load(self, repo: TripRepository, document_id: str) -> None:
        """Read the new content of everything to refresh, before the commit."""
        self.days -= self.deleted_days
        self.activities -= self.deleted_activities
        if self.metadata:
            self.fresh_metadata = await repo.fetch_metadata(document_id)
        self.fresh_days = await repo.fetch_sections(sorted(self.days))
        self.fresh_activities = await repo.fetch_activities(sorted(self.activities))

    def fragment_ids(self) -> list[str]:
        return sorted(self.days | self.activities | self.deleted_days | self.deleted_activities)


def _new_store_id(fragment_id: Provisional | Durable) -> str | None:
    # Editor-generated durable ids are kept; provisional ones get a store id
    return fragment_id.store_id if isinstance(fragment_id, Durable) else None


def _bind(remap: IdRemap, fragment_id: Provisional | Durable, store_id: str) -> None:
    if isinstance(fragment_id, Provisional):
        remap.bind(fragment_id, store_id)


def _editable_field(model: type[StrictModel], allowed: frozenset[str], field_name: str) -> str:
    """Map a field name or its camelCase alias to a whitelisted field name."""
    for name, info in model.model_fields.items():
        if field_name in (name, info.alias) and name in allowed:
            return name
    raise InvalidChangeError(f"{field_name!r} cannot be edited individually")


class WriteThroughOrchestrator:
    """Applies editor changes to the store and then to every cache layer."""

    def __init__(
        self,
        store: TripStore,
        components: ComponentCache,
        structure: StructureIndex,
        staleness: StalenessController,
        notifier: ChangeNotifier | None = None,
    ):
        self.store = store
        self.components = components
        self.structure = structure
        self.staleness = staleness
        self.notifier = notifier

    async def authorize(self, document_id: str, user_id: str | None) -> None:
        """Raise unless ``user_id`` owns the trip."""
        owner_id = await self.store.get_owner_id(document_id)
        if owner_id is None:
            raise TripNotFoundError("trip", document_id)
        if user_id is None or owner_id != user_id:
            raise AuthorizationError(document_id, user_id)

    # -------------------------------------------------------------------------
    # Bundle saves
    # -------------------------------------------------------------------------

    async def apply(
        self, document_id: str, changes: ChangeBundle, user_id: str | None
    ) -> SaveResult:
        """Persist ``changes`` and propagate them to the caches.

        Raises:
            TripNotFoundError: the trip, or a fragment being updated, does not exist
            AuthorizationError: ``user_id`` does not own the trip
            InvalidChangeError: the bundle references an unknown or foreign parent,
                or a provisional id that was never added
            SQLAlchemyError: the store rejected the write (nothing was cached)
        """
        with LogContext(document_id=document_id, user_id=user_id):
            await self.authorize(document_id, user_id)
            if changes.is_empty:
                logger.debug(f"Empty change bundle for trip {document_id}")
                return SaveResult(success=True)

            remap = IdRemap()
            plan = _Propagation()
            async with self.store.transaction() as repo:
                await self._persist(repo, document_id, changes, remap, plan)
                await plan.load(repo, document_id)

            structural = changes.is_structural or plan.moved
            logger.info(
                f"Saved trip {document_id}: {len(plan.days)} days and "
                f"{len(plan.activities)} activities changed, "
                f"{len(plan.deleted_days)} days and {len(plan.deleted_activities)} "
                f"activities deleted"
            )

            await self._propagate(document_id, plan, structural)
            await self._publish(
                DocumentChanged(
                    type=ChangeType.SAVED,
                    document_id=document_id,
                    structural=structural,
                    user_id=user_id,
                    fragment_ids=plan.fragment_ids(),
                )
            )
            return SaveResult(success=True, id_map=remap.as_dict(), structural=structural)

    async def _persist(
        self,
        repo: TripRepository,
        document_id: str,
        changes: ChangeBundle,
        remap: IdRemap,
        plan: _Propagation,
    ) -> None:
        if changes.metadata is not None:
            fields = changes.metadata.changed_fields()
            if fields:
                if not await repo.update_trip(document_id, fields):
                    raise TripNotFoundError("trip", document_id)
                plan.metadata = True

        await self._persist_days(repo, document_id, changes.days, remap, plan)
        await self._persist_activities(repo, document_id, changes.activities, remap, plan)
        await self._persist_gems(repo, document_id, changes.gems, remap, plan)

    async def _persist_days(
        self,
        repo: TripRepository,
        document_id: str,
        days: DayChanges,
        remap: IdRemap,
        plan: _Propagation,
    ) -> None:
        for draft in days.added:
            written = await repo.insert_day(
                document_id,
                draft.model_dump(exclude={"id", "day_number"}),
                position=draft.day_number,
                store_id=_new_store_id(draft.id),
            )
            _bind(remap, draft.id, written.id)
            plan.wrote_day(written)

        for update in days.updated:
            day_id = remap.resolve(update.id)
            updated = await repo.update_day(document_id, day_id, update.changed_fields())
            if updated is None:
                raise TripNotFoundError("day", day_id)
            plan.wrote_day(updated)

        for fragment_id in days.deleted:
            day_id = remap.resolve(fragment_id)
            removed = await repo.delete_day(document_id, day_id)
            if removed is None:
                logger.info(f"Day {day_id} already deleted, skipping")
                continue
            plan.removed_day(removed)

    async def _persist_activities(
        self,
        repo: TripRepository,
        document_id: str,
        activities: ActivityChanges,
        remap: IdRemap,
        plan: _Propagation,
    ) -> None:
        for draft in activities.added:
            day_id = remap.resolve(draft.day_id)
            written = await repo.insert_activity(
                document_id,
                day_id,
                draft.model_dump(exclude={"id", "day_id", "order_index"}),
                position=draft.order_index,
                store_id=_new_store_id(draft.id),
            )
            if written is None:
                raise InvalidChangeError(f"day {day_id} is not part of trip {document_id}")
            _bind(remap, draft.id, written.id)
            plan.wrote_activity(written)

        for update in activities.updated:
            activity_id = remap.resolve(update.id)
            updated = await repo.update_activity(document_id, activity_id, update.changed_fields())
            if updated is None:
                raise TripNotFoundError("activity", activity_id)
            plan.wrote_activity(updated)

        for fragment_id in activities.deleted:
            activity_id = remap.resolve(fragment_id)
            removed = await repo.delete_activity(document_id, activity_id)
            if removed is None:
                logger.info(f"Activity {activity_id} already deleted, skipping")
                continue
            plan.removed_activity(removed)

    async def _persist_gems(
        self,
        repo: TripRepository,
        document_id: str,
        gems: GemChanges,
        remap: IdRemap,
        plan: _Propagation,
    ) -> None:
        # A gem is cached inside its activity, so every gem change refreshes the parent
        for draft in gems.added:
            activity_id = remap.resolve(draft.activity_id)
            written = await repo.insert_gem(
                document_id,
                activity_id,
                draft.model_dump(exclude={"id", "activity_id"}),
                store_id=_new_store_id(draft.id),
            )
            if written is None:
                raise InvalidChangeError(
                    f"activity {activity_id} is not part of trip {document_id}"
                )
            _bind(remap, draft.id, written.id)
            plan.activities.add(activity_id)

        for update in gems.updated:
            gem_id = remap.resolve(update.id)
            updated = await repo.update_gem(document_id, gem_id, update.changed_fields())
            if updated is None:
                raise TripNotFoundError("gem", gem_id)
            plan.activities.add(updated.parent_id)

        for fragment_id in gems.deleted:
            gem_id = remap.resolve(fragment_id)
            removed = await repo.delete_gem(document_id, gem_id)
            if removed is None:
                logger.info(f"Gem {gem_id} already deleted, skipping")
                continue
            plan.activities.add(removed.parent_id)

    async def _propagate(self, document_id: str, plan: _Propagation, structural: bool) -> None:
        writes: list[Any] = []
        if plan.fresh_metadata is not None:
            writes.append(self.components.set_metadata(plan.fresh_metadata))
        for day in plan.fresh_days.values():
            writes.append(self.components.set_section(day, active_edit=True))
        for activity in plan.fresh_activities.values():
            writes.append(self.components.set_item(activity, active_edit=True))
        for day_id in plan.deleted_days:
            writes.append(self.components.evict(FragmentKind.SECTION, day_id))
        for activity_id in plan.deleted_activities:
            writes.append(self.components.evict(FragmentKind.ITEM, activity_id))

        results = await asyncio.gather(*writes, return_exceptions=True)
        for result in results:
            if isinstance(result, BaseException):
                logger.error(f"Cache propagation failed for trip {document_id}: {result}")

        if structural:
            try:
                await self.structure.rebuild(document_id)
            except SQLAlchemyError as e:
                logger.error(f"Shape rebuild failed for trip {document_id}: {e}")

        await self.staleness.mark_stale(document_id)

    # -------------------------------------------------------------------------
    # Single-field fast paths
    # -------------------------------------------------------------------------

    async def set_item_field(
        self, activity_id: str, field_name: str, value: Any, user_id: str | None
    ) -> Activity:
        """Change one whitelisted field of an activity.

        Writes the store, then only that activity's cache entry (short TTL),
        then marks the trip stale. The shape is never rebuilt.
        """
        name = _editable_field(ActivityUpdate, ITEM_FIELDS, field_name)
        update = self._validated(ActivityUpdate, activity_id, name, value)

        document_id = await self.store.get_activity_trip_id(activity_id)
        if document_id is None:
            raise TripNotFoundError("activity", activity_id)

        with LogContext(document_id=document_id, user_id=user_id):
            await self.authorize(document_id, user_id)
            async with self.store.transaction() as repo:
                updated = await repo.update_activity(
                    document_id, activity_id, update.changed_fields()
                )
                if updated is None:
                    raise TripNotFoundError("activity", activity_id)
                activity = (await repo.fetch_activities([activity_id]))[activity_id]

            await self.components.set_item(activity, active_edit=True)
            await self.staleness.mark_stale(document_id)
            logger.debug(f"Set {name} on activity {activity_id}")
            await self._publish(
                DocumentChanged(
                    type=ChangeType.FIELD_EDITED,
                    document_id=document_id,
                    user_id=user_id,
                    fragment_ids=[activity_id],
                )
            )
            return activity

    async def set_section_field(
        self, day_id: str, field_name: str, value: Any, user_id: str | None
    ) -> TripDay:
        """Change one whitelisted field of a day. Same contract as set_item_field."""
        name = _editable_field(DayUpdate, SECTION_FIELDS, field_name)
        update = self._validated(DayUpdate, day_id, name, value)

        document_id = await self.store.get_day_trip_id(day_id)
        if document_id is None:
            raise TripNotFoundError("day", day_id)

        with LogContext(document_id=document_id, user_id=user_id):
            await self.authorize(document_id, user_id)
            async with self.store.transaction() as repo:
                if await repo.update_day(document_id, day_id, update.changed_fields()) is None:
                    raise TripNotFoundError("day", day_id)
                day = (await repo.fetch_sections([day_id]))[day_id]

            await self.components.set_section(day, active_edit=True)
            await self.staleness.mark_stale(document_id)
            logger.debug(f"Set {name} on day {day_id}")
            await self._publish(
                DocumentChanged(
                    type=ChangeType.FIELD_EDITED,
                    document_id=document_id,
                    user_id=user_id,
                    fragment_ids=[day_id],
                )
            )
            return day

    @staticmethod
    def _validated(
        model: type[ActivityUpdate] | type[DayUpdate], fragment_id: str, name: str, value: Any
    ) -> Any:
        try:
            update = model.model_validate({"id": fragment_id, name: value})
        except ValidationError as e:
            raise InvalidChangeError(f"invalid value for {name}: {e}") from e
        if isinstance(update.id, Provisional):
            raise UnresolvedProvisionalIdError(update.id.local_id)
        return update

    async def _publish(self, message: DocumentChanged) -> None:
        if self.notifier is not None:
            await self.notifier.publish(message)
