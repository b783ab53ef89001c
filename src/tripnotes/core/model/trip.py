"""Trip tree models: Trip, TripDay, Activity, Gem."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import Field

from tripnotes.core.model import StrictModel


class TripStatus(str, Enum):
    """Publication state of a trip."""

    DRAFT = "draft"
    PUBLISHED = "published"
    ARCHIVED = "archived"


class GemType(str, Enum):
    """Kind of annotation attached to an activity."""

    HIDDEN_GEM = "hidden_gem"
    TIP = "tip"
    WARNING = "warning"


class Gem(StrictModel):
    """Leaf annotation on an activity."""

    id: str
    activity_id: str = Field(..., alias="activityId")
    gem_type: GemType = Field(..., alias="gemType")
    title: str
    description: str
    insider_info: str | None = Field(default=None, alias="insiderInfo")
    metadata: dict[str, Any] | None = None
    created_at: datetime | None = Field(default=None, alias="createdAt")


class Activity(StrictModel):
    """An activity within a day.

    ``order_index`` is the 1-based position inside the owning day.
    """

    id: str
    day_id: str = Field(..., alias="dayId")
    order_index: int = Field(..., alias="orderIndex", ge=1)
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
    gems: list[Gem] = Field(default_factory=list)
    created_at: datetime | None = Field(default=None, alias="createdAt")
    updated_at: datetime | None = Field(default=None, alias="updatedAt")


class TripDay(StrictModel):
    """A day of a trip.

    ``day_number`` is the 1-based position inside the trip. When a day is
    held in the component cache its ``activities`` list is empty; the
    activities are cached individually and attached on assembly.
    """

    id: str
    trip_id: str = Field(..., alias="tripId")
    day_number: int = Field(..., alias="dayNumber", ge=1)
    title: str
    subtitle: str | None = None
    summary: str | None = None
    activities: list[Activity] = Field(default_factory=list)
    created_at: datetime | None = Field(default=None, alias="createdAt")
    updated_at: datetime | None = Field(default=None, alias="updatedAt")

    def without_activities(self) -> TripDay:
        """Content-only copy for the component cache."""
        return self.model_copy(update={"activities": []})


class TripMetadata(StrictModel):
    """Scalar fields of a trip."""

    id: str
    creator_id: str = Field(..., alias="creatorId")
    title: str
    subtitle: str
    description: str | None = None
    destination: str
    duration_days: int = Field(..., alias="durationDays")
    price_cents: int = Field(..., alias="priceCents")
    currency: str = "USD"
    status: TripStatus = TripStatus.DRAFT
    season: str | None = None
    budget_range: str | None = Field(default=None, alias="budgetRange")
    trip_style: str | None = Field(default=None, alias="tripStyle")
    cover_image_url: str | None = Field(default=None, alias="coverImageUrl")
    published_at: datetime | None = Field(default=None, alias="publishedAt")
    created_at: datetime = Field(..., alias="createdAt")
    updated_at: datetime = Field(..., alias="updatedAt")


class Trip(TripMetadata):
    """A complete trip: metadata plus ordered days."""

    days: list[TripDay] = Field(default_factory=list)

    @property
    def section_count(self) -> int:
        return len(self.days)

    def metadata(self) -> TripMetadata:
        """Scalar part of the trip, without days."""
        return TripMetadata.model_validate(self.model_dump(exclude={"days"}))

    @classmethod
    def from_parts(cls, metadata: TripMetadata, days: list[TripDay]) -> Trip:
        return cls.model_validate({**metadata.model_dump(), "days": days})
