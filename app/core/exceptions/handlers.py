from fastapi import Request, status
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
import traceback

from app.core.exceptions.errors import (
    CacheAsideError,
    CacheUnavailable,
    EmptyUpdateError,
    InvalidValueError,
    StoreUnavailable,
    UnknownFieldError,
)
from app.core.responses import send_error
from app.utils.logging import get_logger


def _error_response(status_code: int, message: str, data=None):
    return send_error(
        message=message, data=data, status_code=status_code
    ).to_json_response()


def register_exception_handlers(app):
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger = get_logger()
        logger.error(
            f"Unhandled exception for {request.method} {request.url}: {exc}\n"
            f"Traceback: {traceback.format_exc()}"
        )
        return _error_response(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            "An unexpected error occurred.",
            {"detail": str(exc)},
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ):
        logger = get_logger()
        raw_errors = exc.errors()
        logger.warning(
            f"Validation error for {request.method} {request.url}: {raw_errors}"
        )

        friendly_errors = {}
        for error in raw_errors:
            field = ".".join(map(str, error["loc"]))
            if field.startswith("body."):
                field = field.replace("body.", "")
            friendly_errors[field] = error["msg"]

        return _error_response(
            status.HTTP_422_UNPROCESSABLE_ENTITY,
            "Validation failed",
            {"errors": friendly_errors},
        )

    @app.exception_handler(UnknownFieldError)
    @app.exception_handler(EmptyUpdateError)
    @app.exception_handler(InvalidValueError)
    async def update_rejected_handler(request: Request, exc: CacheAsideError):
        logger = get_logger()
        logger.warning(f"Rejected update for {request.method} {request.url}: {exc}")
        return _error_response(
            status.HTTP_422_UNPROCESSABLE_ENTITY, exc.message, exc.details
        )

    @app.exception_handler(StoreUnavailable)
    @app.exception_handler(CacheUnavailable)
    async def unavailable_handler(request: Request, exc: CacheAsideError):
        logger = get_logger()
        logger.error(
            f"Dependency failure for {request.method} {request.url}: {exc}\n"
            f"Cause: {exc.__cause__!r}"
        )
        return _error_response(
            status.HTTP_503_SERVICE_UNAVAILABLE, exc.message, exc.details
        )

    @app.exception_handler(CacheAsideError)
    async def cache_aside_error_handler(request: Request, exc: CacheAsideError):
        logger = get_logger()
        logger.error(f"Cache-aside error for {request.method} {request.url}: {exc}")
        return _error_response(
            status.HTTP_500_INTERNAL_SERVER_ERROR, exc.message, exc.details
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        logger = get_logger()
        logger.warning(
            f"HTTP {exc.status_code} for {request.method} {request.url}: {exc.detail}"
        )
        return _error_response(exc.status_code, exc.detail)
