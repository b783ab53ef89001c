"""Trip domain models.

A trip is the aggregate root of a tree: trip -> days -> activities -> gems.
All models use Pydantic v2; JSON field names are camelCase aliases and
snake_case names are accepted on input.
"""

from pydantic import BaseModel


class StrictModel(BaseModel):
    """Base model for all trip domain models.

    extra="forbid" rejects unknown fields. We don't use strict=True because
    it prevents string-to-enum and string-to-datetime coercion, which is
    needed when decoding cached JSON.
    """

    model_config = {
        "extra": "forbid",
        "populate_by_name": True,
        "validate_default": True,
    }


# StrictModel must be defined before the submodules import it
# ruff: noqa: E402
from tripnotes.core.model.changes import (
    ActivityDraft,
    ActivityUpdate,
    ChangeBundle,
    DayDraft,
    DayUpdate,
    FragmentChanges,
    GemDraft,
    GemUpdate,
    MetadataPatch,
)
from tripnotes.core.model.shape import TripShape
from tripnotes.core.model.trip import (
    Activity,
    Gem,
    GemType,
    Trip,
    TripDay,
    TripMetadata,
    TripStatus,
)

__all__ = [
    "StrictModel",
    # Trip tree
    "Trip",
    "TripMetadata",
    "TripStatus",
    "TripDay",
    "Activity",
    "Gem",
    "GemType",
    "TripShape",
    # Change bundles
    "ChangeBundle",
    "FragmentChanges",
    "MetadataPatch",
    "DayDraft",
    "DayUpdate",
    "ActivityDraft",
    "ActivityUpdate",
    "GemDraft",
    "GemUpdate",
]
