"""Authoritative store facade used by the cache layer.

Each read opens its own short session. Writes go through ``transaction()``,
which yields a TripRepository and commits when the block exits cleanly or
rolls back and re-raises on any error.

Usage:
    store = TripStore()

    async with store.transaction() as repo:
        written = await repo.insert_day(trip_id, {"title": "Arrival"})
"""

from __future__ import annotations

import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tripnotes.core.model import Trip, TripDay, TripMetadata, TripShape
from tripnotes.observability.metrics import record_store_operation
from tripnotes.persistence.db import get_session_factory, session_context
from tripnotes.persistence.db import health_check as db_health_check
from tripnotes.persistence.repositories import TripRepository


class TripStore:
    """Reads and transactional writes against the trip tables."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None):
        self._session_factory = session_factory

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        return self._session_factory or get_session_factory()

    @asynccontextmanager
    async def _scope(self, operation: str) -> AsyncIterator[TripRepository]:
        start = time.perf_counter()
        async with session_context(self.session_factory) as session:
            yield TripRepository(session)
        record_store_operation(operation, time.perf_counter() - start)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[TripRepository]:
        async with self._scope("transaction") as repo:
            yield repo

    async def fetch_tree(self, trip_id: str) -> Trip | None:
        async with self._scope("fetch_tree") as repo:
            return await repo.fetch_tree(trip_id)

    async def fetch_metadata(self, trip_id: str) -> TripMetadata | None:
        async with self._scope("fetch_metadata") as repo:
            return await repo.fetch_metadata(trip_id)

    async def fetch_metadata_many(self, trip_ids: list[str]) -> dict[str, TripMetadata]:
        async with self._scope("fetch_metadata_many") as repo:
            return await repo.fetch_metadata_many(trip_ids)

    async def fetch_section(self, day_id: str) -> TripDay | None:
        async with self._scope("fetch_section") as repo:
            return await repo.fetch_section(day_id)

    async def fetch_shape(self, trip_id: str) -> TripShape | None:
        async with self._scope("fetch_shape") as repo:
            return await repo.fetch_shape(trip_id)

    async def get_owner_id(self, trip_id: str) -> str | None:
        async with self._scope("get_owner_id") as repo:
            return await repo.get_owner_id(trip_id)

    async def get_day_trip_id(self, day_id: str) -> str | None:
        async with self._scope("get_day_trip_id") as repo:
            return await repo.get_day_trip_id(day_id)

    async def get_activity_trip_id(self, activity_id: str) -> str | None:
        async with self._scope("get_activity_trip_id") as repo:
            return await repo.get_activity_trip_id(activity_id)

    async def health_check(self) -> bool:
        return await db_health_check(self.session_factory)
