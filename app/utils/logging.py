import os
from loguru import logger
from app.core.config import settings

LOG_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level} | {extra[component]} | {message}"

logger.configure(extra={"component": "app"})

_configured = False


def configure_logging(log_dir: str | None = None, level: str | None = None):
    """Attach the file sinks once; later calls are no-ops."""
    global _configured
    if _configured:
        return logger

    log_dir = log_dir or settings.LOG_DIR
    level = level or settings.LOG_LEVEL
    os.makedirs(log_dir, exist_ok=True)

    # Main app log
    logger.add(
        os.path.join(log_dir, "app.log"),
        rotation="10 MB",
        level=level,
        enqueue=True,
        backtrace=True,
        diagnose=False,
        format=LOG_FORMAT,
    )

    # Degraded cache / failed invalidation log
    logger.add(
        os.path.join(log_dir, "cache.log"),
        rotation="10 MB",
        level="WARNING",
        enqueue=True,
        backtrace=True,
        diagnose=False,
        format=LOG_FORMAT,
        filter=lambda record: record["extra"].get("component") == "cache",
    )

    # Startup log
    startup_log_path = os.path.join(log_dir, "startup", "startup.log")
    os.makedirs(os.path.dirname(startup_log_path), exist_ok=True)
    logger.add(
        startup_log_path,
        rotation="10 MB",
        level="INFO",
        enqueue=True,
        format=LOG_FORMAT,
        filter=lambda record: record["extra"].get("component") == "startup",
    )

    _configured = True
    return logger


def get_logger(component: str | None = None):
    """Return the global logger, optionally bound to a component name."""
    if component:
        return logger.bind(component=component)
    return logger
