import asyncio
import time
from typing import Callable, Optional, Protocol

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from app.core.config import Settings, settings as default_settings
from app.core.exceptions.errors import CacheUnavailable
from app.utils.logging import get_logger

# Anything the redis client can raise when the server is unreachable or slow
CACHE_ERRORS = (RedisError, OSError, asyncio.TimeoutError)


class CacheStore(Protocol):
    """Volatile key-value store holding serialized snapshots."""

    async def get(self, key: str) -> Optional[bytes]: ...

    async def set_with_ttl(self, key: str, value: bytes, ttl_seconds: int) -> None: ...

    async def delete(self, key: str) -> None: ...


class RedisCacheStore:
    def __init__(
        self,
        url: str,
        socket_timeout: float | None = 2.0,
        client_factory=aioredis.from_url,
    ):
        self.url = url
        self.socket_timeout = socket_timeout
        self.client_factory = client_factory
        self._redis: aioredis.Redis | None = None
        self.logger = get_logger("cache")

    @property
    def connected(self) -> bool:
        return self._redis is not None

    async def connect(self):
        """Connect once; later calls reuse the existing client."""
        if self._redis is not None:
            return
        self._redis = self.client_factory(
            self.url,
            socket_timeout=self.socket_timeout,
            socket_connect_timeout=self.socket_timeout,
        )
        # the client reconnects lazily, so a failed ping here is not fatal
        await self.ping()
        self.logger.info(f"Connected to Redis at {self.url}")

    async def ping(self) -> bool:
        try:
            return bool(await self._client("ping").ping())
        except CACHE_ERRORS as exc:
            raise CacheUnavailable(str(exc), operation="ping") from exc

    def _client(self, operation: str, key: str | None = None) -> aioredis.Redis:
        if self._redis is None:
            raise CacheUnavailable(
                "Redis client is not connected", operation=operation, identifier=key
            )
        return self._redis

    async def get(self, key: str) -> Optional[bytes]:
        try:
            return await self._client("get", key).get(key)
        except CACHE_ERRORS as exc:
            raise CacheUnavailable(str(exc), operation="get", identifier=key) from exc

    async def set_with_ttl(self, key: str, value: bytes, ttl_seconds: int) -> None:
        try:
            await self._client("set", key).set(key, value, ex=ttl_seconds)
        except CACHE_ERRORS as exc:
            raise CacheUnavailable(str(exc), operation="set", identifier=key) from exc

    async def delete(self, key: str) -> None:
        try:
            await self._client("delete", key).delete(key)
        except CACHE_ERRORS as exc:
            raise CacheUnavailable(
                str(exc), operation="delete", identifier=key
            ) from exc

    async def close(self):
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None


class InMemoryCacheStore:
    """Process-local cache with per-entry expiry.

    Expired entries are dropped lazily on ``get``. ``clock`` must be
    monotonic; tests pass a fake one to move time forward.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._entries: dict[str, tuple[bytes, float]] = {}

    @property
    def connected(self) -> bool:
        return True

    async def connect(self):
        return None

    async def ping(self) -> bool:
        return True

    async def get(self, key: str) -> Optional[bytes]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            return None
        return value

    async def set_with_ttl(self, key: str, value: bytes, ttl_seconds: int) -> None:
        self._entries[key] = (value, self._clock() + ttl_seconds)

    async def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    async def close(self):
        self._entries.clear()

    def __contains__(self, key: str) -> bool:
        entry = self._entries.get(key)
        return entry is not None and self._clock() < entry[1]

    def __len__(self) -> int:
        return sum(1 for key in list(self._entries) if key in self)


def build_cache_store(settings: Settings = default_settings):
    if settings.CACHE_TYPE == "redis":
        return RedisCacheStore(settings.REDIS_URL)
    return InMemoryCacheStore()
