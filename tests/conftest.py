"""Global pytest configuration and fixtures.

Provides an in-memory KV bridge (served through httpx.MockTransport) and an
in-memory SQLite store, so every layer runs for real without a network.
"""

from __future__ import annotations

from collections.abc import AsyncIterator

import httpx
import pytest
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from tests.factories import FakeBridge
from tripnotes.cache.keys import CacheKeys
from tripnotes.cache.transport import BridgeKvTransport
from tripnotes.persistence.db import init_db
from tripnotes.persistence.store import TripStore
from tripnotes.service import TripCacheService


@pytest.fixture
def bridge() -> FakeBridge:
    return FakeBridge()


@pytest.fixture
async def transport(bridge: FakeBridge) -> AsyncIterator[BridgeKvTransport]:
    client = httpx.AsyncClient(transport=httpx.MockTransport(bridge.handler))
    kv = BridgeKvTransport(
        base_url="http://bridge.test",
        client_id="client-id",
        client_secret="client-secret",
        api_key="api-key",
        client=client,
    )
    yield kv
    await kv.close()


@pytest.fixture
def keys() -> CacheKeys:
    return CacheKeys("v3")


@pytest.fixture
async def engine() -> AsyncIterator[AsyncEngine]:
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def store(session_factory: async_sessionmaker[AsyncSession]) -> TripStore:
    return TripStore(session_factory)


@pytest.fixture
async def service(
    store: TripStore, transport: BridgeKvTransport, keys: CacheKeys
) -> AsyncIterator[TripCacheService]:
    svc = TripCacheService(store, transport, keys=keys)
    yield svc
    await svc.drain()
