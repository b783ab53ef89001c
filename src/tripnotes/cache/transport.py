"""KV transports for the TripNotes cache.

Two implementations of the same get/set-with-TTL contract:
- BridgeKvTransport: the authenticated HTTP bridge in front of Redis
  (``GET /get/{key}``, ``POST /set``, ``GET /health``)
- RedisKvTransport: a direct redis-py async connection

Both raise KvTransportError on any failure. Callers in the cache layer
decide what a failure means (miss on read, logged no-op on write).
"""

from __future__ import annotations

from collections.abc import Awaitable
from typing import TYPE_CHECKING, Protocol, cast
from urllib.parse import quote

import httpx
import redis.asyncio as redis
from redis.exceptions import RedisError

from tripnotes.config import Settings, settings
from tripnotes.errors import KvTransportError

if TYPE_CHECKING:
    from redis.asyncio import Redis

# Written in place of a value to evict it; the KV contract has no delete
TOMBSTONE = ""
TOMBSTONE_TTL = 1


class KvTransport(Protocol):
    """Minimal contract the cache layer needs from a KV store."""

    async def get(self, key: str) -> str | None: ...

    async def set(self, key: str, value: str, ttl_seconds: int) -> bool: ...

    async def health_check(self) -> bool: ...

    async def close(self) -> None: ...


async def store_value(transport: KvTransport, key: str, value: str, ttl_seconds: int) -> None:
    """Write through ``transport``, raising KvTransportError if the store refuses it.

    A refused write (bridge ``{"ok": false}``, Redis SET returning nothing)
    is handled by callers exactly like an unreachable store.
    """
    if not await transport.set(key, value, ttl_seconds):
        raise KvTransportError("set", key, "write not acknowledged")


class BridgeKvTransport:
    """Client for the HTTP Redis bridge.

    Values are opaque strings. Every request carries the Cloudflare Access
    service-token headers and, when configured, an API key.
    """

    def __init__(
        self,
        base_url: str,
        client_id: str,
        client_secret: str,
        api_key: str | None = None,
        timeout: float = 2.0,
        client: httpx.AsyncClient | None = None,
    ):
        headers = {
            "content-type": "application/json",
            "CF-Access-Client-Id": client_id,
            "CF-Access-Client-Secret": client_secret,
        }
        if api_key:
            headers["X-API-Key"] = api_key

        self.base_url = base_url.rstrip("/")
        self._client = client or httpx.AsyncClient(base_url=self.base_url, timeout=timeout)
        self._headers = headers

    async def get(self, key: str) -> str | None:
        """Fetch a value; ``None`` when the key is absent or expired."""
        data = await self._request("GET", f"/get/{quote(key, safe='')}", key=key)
        value = data.get("value")
        if value is not None and not isinstance(value, str):
            raise KvTransportError("get", key, f"unexpected value type {type(value).__name__}")
        return value

    async def set(self, key: str, value: str, ttl_seconds: int) -> bool:
        """Store a value with a TTL. Returns the bridge's ``ok`` flag."""
        data = await self._request(
            "POST",
            "/set",
            key=key,
            json={"key": key, "value": value, "ttl_seconds": ttl_seconds},
        )
        return bool(data.get("ok", False))

    async def health_check(self) -> bool:
        """Check that the bridge and its Redis are up."""
        try:
            data = await self._request("GET", "/health", key=None)
        except KvTransportError:
            return False
        return data.get("redis") == "up"

    async def close(self) -> None:
        await self._client.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        key: str | None,
        json: dict[str, object] | None = None,
    ) -> dict[str, object]:
        operation = path.strip("/").split("/", 1)[0] or method.lower()
        try:
            response = await self._client.request(
                method, f"{self.base_url}{path}", headers=self._headers, json=json
            )
        except httpx.HTTPError as exc:
            raise KvTransportError(operation, key, str(exc) or type(exc).__name__) from exc

        if response.status_code >= 300:
            raise KvTransportError(
                operation, key, f"status {response.status_code}: {response.text[:200]}"
            )

        try:
            payload = response.json()
        except ValueError as exc:
            raise KvTransportError(operation, key, "response is not JSON") from exc
        if not isinstance(payload, dict):
            raise KvTransportError(operation, key, "response is not a JSON object")
        return cast(dict[str, object], payload)


class RedisKvTransport:
    """Direct Redis transport with the same contract as the bridge."""

    def __init__(self, client: Redis):
        self.client = client

    async def get(self, key: str) -> str | None:
        try:
            value = await self.client.get(key)
        except RedisError as exc:
            raise KvTransportError("get", key, str(exc)) from exc
        if value is None:
            return None
        return value.decode("utf-8") if isinstance(value, bytes) else str(value)

    async def set(self, key: str, value: str, ttl_seconds: int) -> bool:
        try:
            result = await self.client.setex(key, ttl_seconds, value)
        except RedisError as exc:
            raise KvTransportError("set", key, str(exc)) from exc
        return bool(result)

    async def health_check(self) -> bool:
        try:
            await cast(Awaitable[bool], self.client.ping())
            return True
        except RedisError:
            return False

    async def close(self) -> None:
        await self.client.close()


def create_kv_transport(config: Settings | None = None) -> KvTransport:
    """Build the transport selected by ``kv_backend``."""
    config = config or settings
    if config.kv_backend == "redis":
        client = redis.from_url(  # type: ignore[no-untyped-call]
            config.redis_url,
            encoding="utf-8",
            decode_responses=False,
            socket_timeout=config.kv_timeout,
            socket_connect_timeout=config.kv_timeout,
        )
        return RedisKvTransport(client)

    if config.kv_backend != "bridge":
        raise ValueError(f"Unknown KV backend: {config.kv_backend}")
    if not config.redis_bridge_base:
        raise ValueError("REDIS_BRIDGE_BASE environment variable is required")
    if not config.cf_access_client_id:
        raise ValueError("CF_ACCESS_CLIENT_ID environment variable is required")
    if not config.cf_access_client_secret:
        raise ValueError("CF_ACCESS_CLIENT_SECRET environment variable is required")

    return BridgeKvTransport(
        base_url=config.redis_bridge_base,
        client_id=config.cf_access_client_id,
        client_secret=config.cf_access_client_secret,
        api_key=config.bridge_api_key,
        timeout=config.kv_timeout,
    )


# Module-level transport (initialized lazily)
_transport: KvTransport | None = None


def get_kv_transport() -> KvTransport:
    """Get or create the process-wide KV transport."""
    global _transport
    if _transport is None:
        _transport = create_kv_transport()
    return _transport


async def close_kv_transport() -> None:
    """Close the process-wide KV transport."""
    global _transport
    if _transport is not None:
        await _transport.close()
        _transport = None
