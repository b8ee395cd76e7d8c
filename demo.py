import asyncio
from decimal import Decimal
import time

from app.core.config import settings
from app.core.lifespan import build_accessor, build_backing_store
from app.db.seed import seed_products
from app.utils.caching import build_cache_store
from app.utils.logging import configure_logging


async def timed(label: str, coro):
    started = time.perf_counter()
    result = await coro
    print(f"{label}: {result!r}")
    print(f"Time taken: {(time.perf_counter() - started) * 1000:.2f} ms\n")
    return result


async def run_demo(product_id: int = 101):
    """Read twice, update, read again, then read a missing product."""
    configure_logging()
    database, repository = build_backing_store(settings)
    cache = build_cache_store(settings)
    try:
        await database.init_db()
        await cache.connect()
        accessor = build_accessor(repository, cache)
        # reseeding changes the store, so stale cached copies go too
        await seed_products(repository, accessor=accessor)

        print("--- First request (expected: cache miss, backing store read) ---")
        await timed("Product", accessor.read(product_id))

        print("--- Second request (expected: cache hit) ---")
        await timed("Product", accessor.read(product_id))

        print("--- Updating product and invalidating cache ---")
        await timed(
            "Write",
            accessor.write(product_id, {"price": Decimal("1250.00"), "stock": 55}),
        )

        print("--- Third request (expected: cache miss after invalidation) ---")
        await timed("Product", accessor.read(product_id))

        print("--- Missing product (expected: not found, nothing cached) ---")
        await timed("Product", accessor.read(999))

        print(f"Cache stats: {accessor.stats().as_dict()}")
    finally:
        await cache.close()
        await database.dispose()


if __name__ == "__main__":
    asyncio.run(run_demo())
