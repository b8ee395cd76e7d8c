from contextlib import asynccontextmanager
from fastapi import FastAPI

from app.core.config import Settings, settings
from app.core.exceptions.errors import CacheUnavailable
from app.db.mongo import MongoDatabase, MongoProductRepository
from app.db.repository import ProductRepository
from app.db.schemas.product import ProductRead
from app.db.seed import seed_products
from app.db.session import Database
from app.services.cache_aside import CacheAsideAccessor
from app.utils.caching import build_cache_store
from app.utils.logging import configure_logging, get_logger


def build_backing_store(config: Settings = settings):
    """Return ``(handle, repository)``; the caller owns the handle's lifecycle."""
    if config.BACKING_STORE == "mongo":
        handle = MongoDatabase(
            config.MONGO_URL, config.MONGO_DATABASE, config.MONGO_COLLECTION
        )
        return handle, MongoProductRepository(handle.connect())
    handle = Database(config.DATABASE_URL, echo=config.DEBUG)
    return handle, ProductRepository(handle.connect())


def build_accessor(repository, cache, config: Settings = settings) -> CacheAsideAccessor:
    return CacheAsideAccessor(
        store=repository,
        cache=cache,
        schema=ProductRead,
        key_prefix=config.CACHE_KEY_PREFIX,
        separator=config.CACHE_KEY_SEPARATOR,
        ttl_seconds=config.CACHE_TTL_SECONDS,
        invalidation_attempts=config.INVALIDATION_ATTEMPTS,
        invalidation_retry_wait=config.INVALIDATION_RETRY_WAIT,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    configure_logging()
    logger = get_logger("startup")

    database, repository = build_backing_store(settings)
    await database.init_db()

    cache = build_cache_store(settings)
    try:
        await cache.connect()
    except CacheUnavailable as exc:
        # reads fall through to the database until the cache comes back
        logger.warning(f"Cache unavailable at startup, continuing without it: {exc}")

    accessor = build_accessor(repository, cache)
    if settings.SEED_ON_STARTUP:
        await seed_products(repository, accessor=accessor)

    app.state.database = database
    app.state.cache = cache
    app.state.accessor = accessor
    logger.info(f"Startup: {app.title} v{app.version} starting...")
    yield
    # Shutdown
    await cache.close()
    await database.dispose()
    logger.info("Shutdown: App shutting down...")
