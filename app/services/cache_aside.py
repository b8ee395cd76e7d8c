"""Read-through / write-invalidate access to a backing store.

Reads check the cache first and populate it on a miss. Writes go to the
backing store and then delete the cache entry; entries are never updated in
place. The cache is allowed to be stale or absent, never authoritative:

    EMPTY --miss+populate--> POPULATED --invalidate|expire--> EMPTY

Reads fail open on any cache problem. Backing store failures propagate.
"""

import asyncio
from contextlib import asynccontextmanager
from dataclasses import asdict, dataclass
from typing import Any, Generic, Mapping, Optional, Type, TypeVar

from pydantic import BaseModel, ValidationError
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    RetryError,
    retry_if_exception_type,
    stop_after_attempt,
    wait_fixed,
)

from app.core.exceptions.errors import (
    CacheUnavailable,
    EmptyUpdateError,
    MalformedCacheEntry,
    StoreUnavailable,
    UnknownFieldError,
)
from app.db.repository import BackingStore
from app.db.schemas.product import WriteResult
from app.utils.caching import CacheStore
from app.utils.logging import get_logger

EntityT = TypeVar("EntityT", bound=BaseModel)

DEFAULT_TTL_SECONDS = 3600


class KeyLocks:
    """One ``asyncio.Lock`` per key, dropped once nobody holds or waits on it."""

    def __init__(self):
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, key: str):
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if not self._users[key]:
                del self._users[key]
                del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)


@dataclass
class CacheStats:
    hits: int = 0
    misses: int = 0
    cache_errors: int = 0
    malformed: int = 0
    invalidations: int = 0
    invalidation_failures: int = 0

    def as_dict(self) -> dict:
        return asdict(self)


class CacheAsideAccessor(Generic[EntityT]):
    """Cache-aside access to one entity type.

    Both collaborators are borrowed: the accessor never connects or closes
    them. A read miss holds the key's lock across fetch and populate, and a
    write holds it across update and invalidate, so within this process a
    populate cannot land between a write's commit and its invalidation.
    """

    def __init__(
        self,
        store: BackingStore[EntityT],
        cache: CacheStore,
        schema: Type[EntityT],
        key_prefix: str,
        separator: str = "_",
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        invalidation_attempts: int = 3,
        invalidation_retry_wait: float = 0.05,
    ):
        if not separator or separator in key_prefix:
            raise ValueError("separator must be non-empty and absent from key_prefix")
        if ttl_seconds < 1:
            raise ValueError("ttl_seconds must be positive")
        if invalidation_attempts < 1:
            raise ValueError("invalidation_attempts must be at least 1")
        self.store = store
        self.cache = cache
        self.schema = schema
        self.key_prefix = key_prefix
        self.separator = separator
        self.ttl_seconds = ttl_seconds
        self.invalidation_attempts = invalidation_attempts
        self.invalidation_retry_wait = invalidation_retry_wait
        self.locks = KeyLocks()
        self._stats = CacheStats()
        self.logger = get_logger("cache")

    def cache_key(self, identifier: Any) -> str:
        return f"{self.key_prefix}{self.separator}{identifier}"

    def stats(self) -> CacheStats:
        return CacheStats(**self._stats.as_dict())

    async def read(self, identifier: Any) -> Optional[EntityT]:
        key = self.cache_key(identifier)

        cached = await self._read_cached(key, identifier)
        if cached is not None:
            self._stats.hits += 1
            self.logger.debug(f"Cache hit for {key}")
            return cached

        self._stats.misses += 1
        self.logger.debug(f"Cache miss for {key}, fetching from backing store")
        async with self.locks.hold(key):
            entity = await self.store.find_by_id(identifier)
            if entity is None:
                self.logger.info(f"{self.key_prefix} {identifier} not found")
                return None
            await self._populate(key, identifier, entity)
        return entity

    async def write(self, identifier: Any, updates: Mapping[str, Any]) -> WriteResult:
        """Apply ``updates`` and invalidate the cached copy.

        An empty update raises ``EmptyUpdateError``. Unknown field names
        raise ``UnknownFieldError`` before either store is touched.
        ``affected == 0`` means the identifier does not exist and the cache
        was left alone.
        """
        if not updates:
            raise EmptyUpdateError(operation="write", identifier=identifier)
        unknown = set(updates) - self.store.updatable_fields
        if unknown:
            raise UnknownFieldError(unknown, operation="write", identifier=identifier)

        key = self.cache_key(identifier)
        async with self.locks.hold(key):
            try:
                affected = await self.store.update_by_id(identifier, updates)
            except StoreUnavailable:
                # the update may or may not have committed; dropping the entry is always safe
                await self._invalidate(key, identifier, record=False)
                raise
            if not affected:
                self.logger.info(
                    f"{self.key_prefix} {identifier} not found for update"
                )
                return WriteResult(identifier=identifier, affected=0)
            invalidated = await self._invalidate(key, identifier)

        self.logger.info(
            f"{self.key_prefix} {identifier} updated "
            f"(fields={sorted(updates)}, invalidated={invalidated})"
        )
        return WriteResult(
            identifier=identifier, affected=affected, invalidated=invalidated
        )

    async def invalidate(self, identifier: Any) -> bool:
        """Drop the cached copy after a change made outside ``write``."""
        key = self.cache_key(identifier)
        async with self.locks.hold(key):
            return await self._invalidate(key, identifier)

    async def _read_cached(self, key: str, identifier: Any) -> Optional[EntityT]:
        try:
            raw = await self.cache.get(key)
        except CacheUnavailable as exc:
            self._stats.cache_errors += 1
            self.logger.warning(f"Cache read failed for {key}, using backing store: {exc}")
            return None
        if raw is None:
            return None

        try:
            return self._deserialize(raw, identifier)
        except MalformedCacheEntry as exc:
            self._stats.malformed += 1
            self.logger.warning(f"Dropping malformed cache entry {key}: {exc.__cause__}")
            await self._delete_quietly(key)
            return None

    def _deserialize(self, raw: bytes, identifier: Any) -> EntityT:
        try:
            return self.schema.model_validate_json(raw)
        except ValidationError as exc:
            raise MalformedCacheEntry(operation="read", identifier=identifier) from exc

    async def _populate(self, key: str, identifier: Any, entity: EntityT):
        payload = entity.model_dump_json().encode("utf-8")
        try:
            await self.cache.set_with_ttl(key, payload, self.ttl_seconds)
        except CacheUnavailable as exc:
            self._stats.cache_errors += 1
            self.logger.warning(f"Could not cache {key}: {exc}")
            return
        self.logger.debug(f"Cached {key} for {self.ttl_seconds}s")

    async def _invalidate(self, key: str, identifier: Any, record: bool = True) -> bool:
        """Delete ``key`` with a bounded number of attempts.

        Returns False when every attempt failed; the entry then lives until
        its TTL runs out. ``record=False`` leaves the stats untouched, for
        deletes that follow a failed write.
        """
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.invalidation_attempts),
            wait=wait_fixed(self.invalidation_retry_wait),
            retry=retry_if_exception_type(CacheUnavailable),
            before_sleep=self._log_invalidation_retry,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    await self.cache.delete(key)
        except RetryError as exc:
            if record:
                self._stats.invalidation_failures += 1
            self.logger.warning(
                f"Invalidation of {key} failed after {self.invalidation_attempts} "
                f"attempts, entry may be stale for up to {self.ttl_seconds}s: "
                f"{exc.last_attempt.exception()}"
            )
            return False
        if record:
            self._stats.invalidations += 1
        self.logger.debug(f"Invalidated {key}")
        return True

    def _log_invalidation_retry(self, retry_state: RetryCallState):
        self.logger.warning(
            f"Invalidation attempt {retry_state.attempt_number} failed: "
            f"{retry_state.outcome.exception()}"
        )

    async def _delete_quietly(self, key: str):
        try:
            await self.cache.delete(key)
        except CacheUnavailable as exc:
            self._stats.cache_errors += 1
            self.logger.warning(f"Could not delete {key}: {exc}")
