"""
Logging setup for wsrelay.

All components log through loguru. Call configure_logging() once at
startup; modules obtain a bound logger with get_logger(__name__).

Standard library logging (uvicorn, websockets) is routed into loguru so
every record ends up in the same sinks with the same format.
"""

import logging
import sys

from loguru import logger as _logger

from wsrelay.models.enums import LogLevel

# =============================================================================
# Constants
# =============================================================================

LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{extra[name]}</cyan> - <level>{message}</level>"
)

LEVEL_MAP = {
    LogLevel.FULL: "TRACE",
    LogLevel.DEBUG: "DEBUG",
    LogLevel.INFO: "INFO",
    LogLevel.WARNING: "WARNING",
}


# =============================================================================
# Stdlib Interception
# =============================================================================


class InterceptHandler(logging.Handler):
    """Forward stdlib logging records to loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = _logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Walk back to the frame that issued the logging call
        frame, depth = logging.currentframe(), 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        _logger.bind(name=record.name).opt(
            depth=depth, exception=record.exc_info
        ).log(level, record.getMessage())


# =============================================================================
# Public API
# =============================================================================


def configure_logging(level: LogLevel = LogLevel.INFO, log_file: str = "") -> None:
    """
    Configure loguru sinks.

    Args:
        level: Verbosity level.
        log_file: Optional path of a rotating log file. Empty = console only.
    """
    loguru_level = LEVEL_MAP.get(level, "INFO")
    verbose = level == LogLevel.FULL

    _logger.remove()
    _logger.configure(extra={"name": "wsrelay"})
    _logger.add(
        sys.stderr,
        level=loguru_level,
        format=LOG_FORMAT,
        backtrace=verbose,
        diagnose=verbose,
    )

    if log_file:
        _logger.add(
            log_file,
            level=loguru_level,
            format=LOG_FORMAT,
            rotation="10 MB",
            retention=10,
            enqueue=True,
        )

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access", "websockets"):
        std_logger = logging.getLogger(name)
        std_logger.handlers = [InterceptHandler()]
        std_logger.propagate = False


def get_logger(name: str):
    """Return a loguru logger bound to the given module name."""
    return _logger.bind(name=name)
