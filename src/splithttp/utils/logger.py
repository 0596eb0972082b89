"""
Logging setup for splithttp.

All modules log through loguru. Records emitted by the standard library
``logging`` module (uvicorn, asyncio) are intercepted and routed into loguru
so the server produces a single, consistently formatted stream.

Usage:
    from splithttp.utils.logger import get_logger

    logger = get_logger(__name__)
    logger.info("Something happened")
"""

import inspect
import logging
import sys
import traceback

from loguru import logger as _logger

from splithttp.models.enums import LogLevel

# =============================================================================
# Formats
# =============================================================================

LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{extra[name]}</cyan> - <level>{message}</level>"
)

FILE_LOG_FORMAT = (
    "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {extra[name]} - {message}"
)

_LOGURU_LEVELS = {
    LogLevel.FULL: "TRACE",
    LogLevel.DEBUG: "DEBUG",
    LogLevel.INFO: "INFO",
    LogLevel.WARNING: "WARNING",
}

_logger.configure(extra={"name": "splithttp"})


# =============================================================================
# Standard Library Interception
# =============================================================================


class InterceptHandler(logging.Handler):
    """Forward standard library log records to loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = _logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Find the caller outside of the logging module so loguru reports
        # the right origin.
        frame, depth = inspect.currentframe(), 0
        while frame and (depth == 0 or frame.f_code.co_filename == logging.__file__):
            frame = frame.f_back
            depth += 1

        _logger.bind(name=record.name).opt(depth=depth, exception=record.exc_info).log(
            level, record.getMessage()
        )


# =============================================================================
# Public API
# =============================================================================


def configure_logging(level: LogLevel = LogLevel.INFO, log_file: str = "") -> None:
    """
    Configure loguru sinks and intercept standard library logging.

    Args:
        level: Verbosity level for all sinks.
        log_file: Optional path of a rotating log file.
    """
    loguru_level = _LOGURU_LEVELS.get(level, "INFO")

    _logger.remove()
    _logger.add(
        sys.stderr,
        level=loguru_level,
        format=LOG_FORMAT,
        backtrace=level == LogLevel.FULL,
        diagnose=False,
    )

    if log_file:
        _logger.add(
            log_file,
            level=loguru_level,
            format=FILE_LOG_FORMAT,
            rotation="10 MB",
            retention=5,
            enqueue=True,
            diagnose=False,
        )

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access", "asyncio"):
        std_logger = logging.getLogger(name)
        std_logger.handlers = [InterceptHandler()]
        std_logger.propagate = False


def get_logger(name: str):
    """Get a loguru logger bound to a module name."""
    return _logger.bind(name=name)


def format_traceback(exc: BaseException) -> str:
    """Render an exception with its traceback as a string."""
    return "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
