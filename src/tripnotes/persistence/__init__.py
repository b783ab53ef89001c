"""Persistence layer for TripNotes.

This module provides:
- Async PostgreSQL engine and session factory
- SQLAlchemy ORM models for trips, days, activities and gems
- TripRepository with dense position maintenance and explicit cascade delete
- TripStore, the authoritative store facade used by the cache layer
"""

from tripnotes.persistence.db import (
    close_db,
    get_engine,
    get_session_factory,
    init_db,
    session_context,
)
from tripnotes.persistence.repositories import Removed, TripRepository, Written
from tripnotes.persistence.store import TripStore
from tripnotes.persistence.tables import (
    ActivityTable,
    Base,
    GemTable,
    TripDayTable,
    TripTable,
)

__all__ = [
    # DB
    "get_engine",
    "get_session_factory",
    "session_context",
    "init_db",
    "close_db",
    # Tables
    "Base",
    "TripTable",
    "TripDayTable",
    "ActivityTable",
    "GemTable",
    # Repository and store
    "TripRepository",
    "TripStore",
    "Written",
    "Removed",
]
