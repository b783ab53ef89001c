"""Change bundles sent by the editor on save.

A bundle lists, per fragment kind, the fragments that were added, updated
or deleted since the last save. Updates carry only the fields that
changed; which fields those are is taken from ``model_fields_set``.
"""

from __future__ import annotations

from typing import Any, ClassVar, Generic, TypeVar

from pydantic import Field, model_validator

from tripnotes.core.ids import FragmentId
from tripnotes.core.model import StrictModel
from tripnotes.core.model.trip import GemType, TripStatus


class _PartialUpdate(StrictModel):
    """Base for updates where an omitted field means "unchanged"."""

    # Fields that are NOT NULL in the store and so may be omitted but not nulled
    required_fields: ClassVar[frozenset[str]] = frozenset()

    @model_validator(mode="after")
    def _reject_null_required(self) -> Any:
        for name in self.required_fields & self.model_fields_set:
            if getattr(self, name) is None:
                raise ValueError(f"{name} cannot be null")
        return self

    def changed_fields(self) -> dict[str, Any]:
        """Field name -> new value for every field the editor sent, minus the id."""
        return {
            name: getattr(self, name) for name in sorted(self.model_fields_set) if name != "id"
        }


class MetadataPatch(_PartialUpdate):
    """Changed scalar fields of a trip."""

    required_fields: ClassVar[frozenset[str]] = frozenset(
        {"title", "subtitle", "destination", "duration_days", "price_cents", "currency", "status"}
    )

    title: str | None = None
    subtitle: str | None = None
    description: str | None = None
    destination: str | None = None
    duration_days: int | None = Field(default=None, alias="durationDays")
    price_cents: int | None = Field(default=None, alias="priceCents", ge=0)
    currency: str | None = None
    status: TripStatus | None = None
    season: str | None = None
    budget_range: str | None = Field(default=None, alias="budgetRange")
    trip_style: str | None = Field(default=None, alias="tripStyle")
    cover_image_url: str | None = Field(default=None, alias="coverImageUrl")


class DayDraft(StrictModel):
    """A day created in the editor.

    ``day_number`` is the requested position; when omitted the day is
    appended after the existing days.
    """

    id: FragmentId
    day_number: int | None = Field(default=None, alias="dayNumber", ge=1)
    title: str
    subtitle: str | None = None
    summary: str | None = None


class DayUpdate(_PartialUpdate):
    required_fields: ClassVar[frozenset[str]] = frozenset({"title", "day_number"})

    id: FragmentId
    day_number: int | None = Field(default=None, alias="dayNumber", ge=1)
    title: str | None = None
    subtitle: str | None = None
    summary: str | None = None


class ActivityDraft(StrictModel):
    """An activity created in the editor.

    ``day_id`` may be the provisional id of a day added in the same bundle.
    """

    id: FragmentId
    day_id: FragmentId = Field(..., alias="dayId")
    order_index: int | None = Field(default=None, alias="orderIndex", ge=1)
    time_block: str = Field(..., alias="timeBlock")
    description: str
    title: str | None = None
    start_time: str | None = Field(default=None, alias="startTime")
    end_time: str | None = Field(default=None, alias="endTime")
    location_name: str | None = Field(default=None, alias="locationName")
    location_lat: str | None = Field(default=None, alias="locationLat")
    location_lng: str | None = Field(default=None, alias="locationLng")
    activity_type: str | None = Field(default=None, alias="activityType")
    estimated_cost: str | None = Field(default=None, alias="estimatedCost")


class ActivityUpdate(_PartialUpdate):
    required_fields: ClassVar[frozenset[str]] = frozenset(
        {"time_block", "description", "order_index"}
    )

    id: FragmentId
    order_index: int | None = Field(default=None, alias="orderIndex", ge=1)
    time_block: str | None = Field(default=None, alias="timeBlock")
    description: str | None = None
    title: str | None = None
    start_time: str | None = Field(default=None, alias="startTime")
    end_time: str | None = Field(default=None, alias="endTime")
    location_name: str | None = Field(default=None, alias="locationName")
    location_lat: str | None = Field(default=None, alias="locationLat")
    location_lng: str | None = Field(default=None, alias="locationLng")
    activity_type: str | None = Field(default=None, alias="activityType")
    estimated_cost: str | None = Field(default=None, alias="estimatedCost")


class GemDraft(StrictModel):
    id: FragmentId
    activity_id: FragmentId = Field(..., alias="activityId")
    gem_type: GemType = Field(..., alias="gemType")
    title: str
    description: str
    insider_info: str | None = Field(default=None, alias="insiderInfo")
    metadata: dict[str, Any] | None = None


class GemUpdate(_PartialUpdate):
    required_fields: ClassVar[frozenset[str]] = frozenset({"gem_type", "title", "description"})

    id: FragmentId
    gem_type: GemType | None = Field(default=None, alias="gemType")
    title: str | None = None
    description: str | None = None
    insider_info: str | None = Field(default=None, alias="insiderInfo")
    metadata: dict[str, Any] | None = None


DraftT = TypeVar("DraftT", bound=StrictModel)
UpdateT = TypeVar("UpdateT", bound=StrictModel)


class FragmentChanges(StrictModel, Generic[DraftT, UpdateT]):
    """Added, updated and deleted fragments of one kind."""

    added: list[DraftT] = Field(default_factory=list)
    updated: list[UpdateT] = Field(default_factory=list)
    deleted: list[FragmentId] = Field(default_factory=list)

    @property
    def is_structural(self) -> bool:
        return bool(self.added or self.deleted)

    @property
    def is_empty(self) -> bool:
        return not (self.added or self.updated or self.deleted)


DayChanges = FragmentChanges[DayDraft, DayUpdate]
ActivityChanges = FragmentChanges[ActivityDraft, ActivityUpdate]
GemChanges = FragmentChanges[GemDraft, GemUpdate]


class ChangeBundle(StrictModel):
    """Everything the editor changed in one save."""

    metadata: MetadataPatch | None = None
    days: DayChanges = Field(default_factory=DayChanges)
    activities: ActivityChanges = Field(default_factory=ActivityChanges)
    gems: GemChanges = Field(default_factory=GemChanges)

    @property
    def is_structural(self) -> bool:
        """True when the bundle adds or removes fragments.

        Updates that move a day or activity also change the shape; that is only
        known once the store has applied them.
        """
        return self.days.is_structural or self.activities.is_structural or self.gems.is_structural

    @property
    def is_empty(self) -> bool:
        has_metadata = self.metadata is not None and bool(self.metadata.model_fields_set)
        return not has_metadata and self.days.is_empty and self.activities.is_empty and (
            self.gems.is_empty
        )
