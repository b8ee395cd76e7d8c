import asyncio
import os
import tempfile
from collections import Counter

# Must be set before app.core.config builds its settings
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["CACHE_TYPE"] = "inmemory"
os.environ["SEED_ON_STARTUP"] = "true"
os.environ["INVALIDATION_RETRY_WAIT"] = "0"
os.environ["LOG_DIR"] = tempfile.mkdtemp(prefix="catalog-logs-")

import pytest
from fastapi.testclient import TestClient

from app.core.exceptions.errors import CacheUnavailable, StoreUnavailable
from app.db.repository import ProductRepository
from app.db.schemas.product import ProductRead
from app.db.seed import SAMPLE_PRODUCTS, seed_products
from app.db.session import Database
from app.services.cache_aside import CacheAsideAccessor
from app.utils.caching import InMemoryCacheStore

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class FakeProductStore:
    """Dict-backed backing store that counts calls.

    Set ``gate`` to an ``asyncio.Event`` to hold ``find_by_id`` after it has
    taken its snapshot; ``find_started`` fires at that point.
    """

    updatable_fields = frozenset({"name", "price", "stock"})

    def __init__(self, rows):
        self.rows = {row["product_id"]: dict(row) for row in rows}
        self.find_calls = 0
        self.update_calls = 0
        self.unavailable = False
        self.gate: asyncio.Event | None = None
        self.find_started = asyncio.Event()

    async def find_by_id(self, identifier):
        self.find_calls += 1
        if self.unavailable:
            raise StoreUnavailable(operation="find", identifier=identifier)
        row = self.rows.get(identifier)
        snapshot = ProductRead(**row) if row else None
        self.find_started.set()
        if self.gate is not None:
            await self.gate.wait()
        return snapshot

    async def update_by_id(self, identifier, fields):
        self.update_calls += 1
        if self.unavailable:
            raise StoreUnavailable(operation="update", identifier=identifier)
        row = self.rows.get(identifier)
        if row is None:
            return 0
        row.update(fields)
        return 1


class FlakyCache:
    """Wraps a cache store and fails chosen operations on demand."""

    def __init__(self, inner: InMemoryCacheStore):
        self.inner = inner
        self.calls = Counter()
        self._failures: dict[str, int | None] = {}

    def fail(self, operation: str, times: int | None = None):
        """Fail ``operation`` the next ``times`` calls, or forever if None."""
        self._failures[operation] = times

    def _maybe_fail(self, operation: str, key: str):
        self.calls[operation] += 1
        if operation not in self._failures:
            return
        remaining = self._failures[operation]
        if remaining is not None:
            if remaining <= 0:
                return
            self._failures[operation] = remaining - 1
        raise CacheUnavailable("injected failure", operation=operation, identifier=key)

    async def get(self, key):
        self._maybe_fail("get", key)
        return await self.inner.get(key)

    async def set_with_ttl(self, key, value, ttl_seconds):
        self._maybe_fail("set", key)
        await self.inner.set_with_ttl(key, value, ttl_seconds)

    async def delete(self, key):
        self._maybe_fail("delete", key)
        await self.inner.delete(key)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def memory_cache(clock):
    return InMemoryCacheStore(clock=clock)


@pytest.fixture
def cache(memory_cache):
    return FlakyCache(memory_cache)


@pytest.fixture
def store():
    return FakeProductStore(SAMPLE_PRODUCTS)


@pytest.fixture
def accessor(store, cache):
    return CacheAsideAccessor(
        store=store,
        cache=cache,
        schema=ProductRead,
        key_prefix="product",
        separator="_",
        ttl_seconds=3600,
        invalidation_attempts=3,
        invalidation_retry_wait=0,
    )


@pytest.fixture
async def database():
    db = Database(TEST_DATABASE_URL)
    await db.init_db()
    await seed_products(ProductRepository(db.SessionLocal))
    yield db
    await db.dispose()


@pytest.fixture
def client():
    """TestClient running the full lifespan against a fresh seeded database."""
    from main import app

    with TestClient(app) as test_client:
        yield test_client
