"""
Logging setup for kubeferry.

Thin layer over loguru. Modules obtain a logger bound to their own name with
``get_logger(__name__)``; ``configure_logging`` installs the sinks once at
startup.
"""

import sys
import traceback

from loguru import logger

from kubeferry.config import config
from kubeferry.models.enums import LogLevel

_LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{extra[component]}</cyan> - <level>{message}</level>"
)

_LEVEL_MAP = {
    LogLevel.FULL: "TRACE",
    LogLevel.DEBUG: "DEBUG",
    LogLevel.INFO: "INFO",
    LogLevel.WARNING: "WARNING",
}

logger.configure(extra={"component": "kubeferry"})


def get_logger(name: str):
    """
    Get a logger bound to a component name.

    Args:
        name: Usually the calling module's ``__name__``.
    """
    return logger.bind(component=name)


def configure_logging(level: LogLevel | None = None, log_file: str | None = None):
    """
    Replace the default loguru sink with kubeferry's format.

    Args:
        level: Verbosity level (defaults to ``config.LOG_LEVEL``). FULL also
            enables variable-level tracebacks.
        log_file: Optional file to receive the same records.
    """
    level = LogLevel(level or config.LOG_LEVEL)
    loguru_level = _LEVEL_MAP[level]
    full = level == LogLevel.FULL

    logger.remove()
    logger.add(
        sys.stderr,
        level=loguru_level,
        format=_LOG_FORMAT,
        backtrace=full,
        diagnose=full,
    )
    if log_file:
        logger.add(
            log_file,
            level=loguru_level,
            format=_LOG_FORMAT,
            rotation="10 MB",
            backtrace=full,
            diagnose=full,
        )


def format_traceback(e: BaseException) -> str:
    """Format an exception with its traceback for debug logging."""
    return "".join(traceback.format_exception(type(e), e, e.__traceback__))
