from fastapi import FastAPI, Request

from app.api.v1.router import router as v1_router
from app.core.config import settings
from app.core.exceptions.errors import CacheUnavailable
from app.core.exceptions.handlers import register_exception_handlers
from app.core.lifespan import lifespan
from app.core.logging import setup_early_logging
from app.core.middlewares import LogRequestsMiddleware
from app.core.responses import send_success

# Setup early logging for startup errors
setup_early_logging()

app = FastAPI(
    title=settings.APP_NAME,
    version=settings.PROJECT_VERSION,
    debug=settings.DEBUG,
    lifespan=lifespan,
    openapi_tags=[
        {"name": "products", "description": "Cached product lookups and updates"},
        {"name": "cache", "description": "Cache statistics"},
    ],
)

app.add_middleware(LogRequestsMiddleware)

# Register all exception handlers
register_exception_handlers(app)

# Include API routers
app.include_router(v1_router)


@app.get("/health")
async def health_check(request: Request):
    try:
        cache_ok = await request.app.state.cache.ping()
    except CacheUnavailable:
        cache_ok = False
    return send_success(
        message="OK",
        data={
            "status": "healthy" if cache_ok else "degraded",
            "cache": "up" if cache_ok else "down",
            "version": settings.PROJECT_VERSION,
        },
    )
