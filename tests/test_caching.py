import pytest
from fakeredis import FakeServer, aioredis as fake_aioredis
from pydantic import ValidationError

from app.core.config import Settings
from app.core.exceptions.errors import CacheUnavailable
from app.db.schemas.product import ProductRead
from app.services.cache_aside import CacheAsideAccessor
from app.utils.caching import InMemoryCacheStore, RedisCacheStore, build_cache_store

# Nothing listens on port 1
UNREACHABLE_REDIS = "redis://127.0.0.1:1/0"


@pytest.fixture
async def fake_redis():
    client = fake_aioredis.FakeRedis(server=FakeServer())
    yield client
    await client.aclose()


@pytest.fixture
async def redis_store(fake_redis):
    store = RedisCacheStore("redis://fake", client_factory=lambda url, **kwargs: fake_redis)
    await store.connect()
    return store


async def test_inmemory_delete_missing_key_is_noop(memory_cache):
    await memory_cache.delete("product_1")
    await memory_cache.set_with_ttl("product_1", b"{}", 10)
    await memory_cache.delete("product_1")
    await memory_cache.delete("product_1")
    assert await memory_cache.get("product_1") is None


async def test_inmemory_entry_expires(memory_cache, clock):
    await memory_cache.set_with_ttl("k", b"v", 5)
    clock.advance(4.9)
    assert await memory_cache.get("k") == b"v"
    clock.advance(0.1)
    assert await memory_cache.get("k") is None


async def test_redis_commands_before_connect_are_unavailable():
    cache = RedisCacheStore(UNREACHABLE_REDIS)

    with pytest.raises(CacheUnavailable) as exc_info:
        await cache.get("product_1")
    assert exc_info.value.operation == "get"


async def test_redis_unreachable_wraps_errors():
    cache = RedisCacheStore(UNREACHABLE_REDIS, socket_timeout=0.5)

    with pytest.raises(CacheUnavailable):
        await cache.connect()
    # connect-or-reuse: the client is kept and a second connect is a no-op
    assert cache.connected
    await cache.connect()

    with pytest.raises(CacheUnavailable):
        await cache.get("product_1")
    with pytest.raises(CacheUnavailable):
        await cache.set_with_ttl("product_1", b"{}", 60)
    with pytest.raises(CacheUnavailable):
        await cache.delete("product_1")

    await cache.close()
    assert not cache.connected


def test_build_cache_store_follows_settings():
    assert isinstance(build_cache_store(Settings(CACHE_TYPE="inmemory")), InMemoryCacheStore)
    redis_store = build_cache_store(Settings(CACHE_TYPE="REDIS", REDIS_URL=UNREACHABLE_REDIS))
    assert isinstance(redis_store, RedisCacheStore)
    assert redis_store.url == UNREACHABLE_REDIS


@pytest.mark.parametrize(
    "overrides",
    [
        {"CACHE_TYPE": "memcached"},
        {"BACKING_STORE": "cassandra"},
        {"CACHE_TTL_SECONDS": 0},
        {"INVALIDATION_ATTEMPTS": 0},
        {"CACHE_KEY_PREFIX": "my_product", "CACHE_KEY_SEPARATOR": "_"},
        {"CACHE_KEY_SEPARATOR": ""},
    ],
)
def test_settings_validation(overrides):
    with pytest.raises(ValidationError):
        Settings(**overrides)


async def test_redis_set_get_delete(redis_store, fake_redis):
    assert await redis_store.ping() is True

    await redis_store.set_with_ttl("product_101", b'{"product_id": 101}', 60)

    assert await redis_store.get("product_101") == b'{"product_id": 101}'
    assert 0 < await fake_redis.ttl("product_101") <= 60

    await redis_store.delete("product_101")
    await redis_store.delete("product_101")
    assert await redis_store.get("product_101") is None
    assert await redis_store.get("product_999") is None


async def test_redis_connect_is_reused(fake_redis):
    created = []

    def client_factory(url, **kwargs):
        created.append(url)
        return fake_redis

    store = RedisCacheStore("redis://fake", client_factory=client_factory)
    await store.connect()
    await store.connect()

    assert created == ["redis://fake"]


async def test_accessor_over_redis(redis_store, store):
    accessor = CacheAsideAccessor(
        store=store, cache=redis_store, schema=ProductRead, key_prefix="product"
    )

    first = await accessor.read(101)
    assert await accessor.read(101) == first
    assert store.find_calls == 1

    await accessor.write(101, {"stock": 55})
    assert await redis_store.get("product_101") is None
    assert (await accessor.read(101)).stock == 55
    assert await accessor.read(999) is None
    assert await redis_store.get("product_999") is None
