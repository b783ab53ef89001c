"""Trip shape: the id graph of a trip without any content."""

from __future__ import annotations

from datetime import UTC, datetime

from pydantic import Field

from tripnotes.core.model import StrictModel
from tripnotes.core.model.trip import Trip


class TripShape(StrictModel):
    """Ordered day ids and, per day, ordered activity ids.

    The shape only describes what the store held when it was built. It is
    never consulted to decide whether a fragment exists.
    """

    trip_id: str = Field(..., alias="tripId")
    day_ids: list[str] = Field(default_factory=list, alias="dayIds")
    day_map: dict[str, list[str]] = Field(default_factory=dict, alias="dayMap")
    activity_map: dict[str, list[str]] = Field(default_factory=dict, alias="activityMap")
    version: int = 1
    last_modified: datetime = Field(default_factory=lambda: datetime.now(UTC), alias="lastModified")

    @classmethod
    def from_trip(cls, trip: Trip) -> TripShape:
        return cls(
            trip_id=trip.id,
            day_ids=[day.id for day in trip.days],
            day_map={day.id: [a.id for a in day.activities] for day in trip.days},
            activity_map={
                a.id: [g.id for g in a.gems] for day in trip.days for a in day.activities
            },
        )

    def activity_ids_for(self, day_id: str) -> list[str]:
        return self.day_map.get(day_id, [])

    def all_activity_ids(self) -> list[str]:
        """Every activity id, in day order then position order."""
        return [a for day_id in self.day_ids for a in self.activity_ids_for(day_id)]
