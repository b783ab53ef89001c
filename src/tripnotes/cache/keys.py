"""Cache key schema for TripNotes.

Key format: {prefix}:{entity}:{version}:{identifier}

Where:
- prefix: "trip" (namespace shared with the editor's other KV users)
- entity: "meta", "day", "activity" (fragments), "full" (assembled trip),
  "structure" (trip shape), "stale" (freshness epoch)
- version: cache schema version; bumping it orphans every existing entry
- identifier: durable store id of the trip or fragment
"""

from __future__ import annotations

from typing import Literal

from tripnotes.config import settings

EntityType = Literal["meta", "day", "activity", "full", "structure", "stale"]


class CacheKeys:
    """Cache key generator following consistent naming convention."""

    PREFIX = "trip"

    def __init__(self, version: str | None = None):
        self.version = version or settings.cache_version

    def _key(self, entity: EntityType, identifier: str) -> str:
        return f"{self.PREFIX}:{entity}:{self.version}:{identifier}"

    def metadata(self, trip_id: str) -> str:
        """Key for trip scalar fields."""
        return self._key("meta", trip_id)

    def day(self, day_id: str) -> str:
        """Key for one day's content (without its activities)."""
        return self._key("day", day_id)

    def activity(self, activity_id: str) -> str:
        """Key for one activity, including its gems."""
        return self._key("activity", activity_id)

    def full_trip(self, trip_id: str) -> str:
        """Key for the fully assembled trip (fast path)."""
        return self._key("full", trip_id)

    def structure(self, trip_id: str) -> str:
        """Key for the trip shape."""
        return self._key("structure", trip_id)

    def stale(self, trip_id: str) -> str:
        """Key for the trip's freshness epoch."""
        return self._key("stale", trip_id)

    @classmethod
    def parse_key(cls, key: str) -> dict[str, str] | None:
        """Parse a cache key into its components.

        Returns None if the key doesn't match the expected format.
        """
        parts = key.split(":", 3)
        if len(parts) != 4 or parts[0] != cls.PREFIX:
            return None

        return {
            "prefix": parts[0],
            "entity": parts[1],
            "version": parts[2],
            "identifier": parts[3],
        }
