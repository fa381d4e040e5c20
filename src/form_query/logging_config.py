"""
Logging configuration for FQL.

Every module logs through ``logging.getLogger(__name__)``; this module
installs the single stderr handler on the ``form_query`` package logger.
"""

import logging
import sys

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

PACKAGE_LOGGER = "form_query"


class FlushingStreamHandler(logging.StreamHandler):
    """StreamHandler that flushes after every emit."""

    def emit(self, record):
        super().emit(record)
        self.flush()


def _create_stderr_handler() -> logging.StreamHandler:
    """Create a stderr handler for console output with auto-flush."""
    handler = FlushingStreamHandler(sys.stderr)
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    return handler


def configure_logging(level: str | int = "WARNING") -> logging.Logger:
    """
    Configure the package logger.

    Safe to call more than once: the level is updated and the stderr
    handler is installed only the first time.

    Args:
        level: Level name (e.g. ``"DEBUG"``) or number

    Returns:
        The configured package logger
    """
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.WARNING

    logger = logging.getLogger(PACKAGE_LOGGER)
    logger.setLevel(level)

    if not any(isinstance(h, FlushingStreamHandler) for h in logger.handlers):
        logger.addHandler(_create_stderr_handler())
        logger.propagate = False

    return logger
