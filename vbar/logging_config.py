"""Logging configuration for vbar.

Two entry points:
- setup_logging(verbose, debug): short-lived CLI invocations
- setup_daemon_logging(): the bar process, level from $LOG_LEVEL

Everything goes to stderr; in i3bar mode stdout carries the status stream.
"""

import logging
import os
import sys

# Default log format
DEFAULT_FORMAT = "%(levelname)s: %(message)s"
VERBOSE_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
DEBUG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s:%(lineno)d: %(message)s"
DAEMON_FORMAT = "%(levelname)s [%(name)s] %(message)s"


class ColoredFormatter(logging.Formatter):
    """Colored log formatter for terminal output."""

    COLORS = {
        'DEBUG': '\033[36m',      # Cyan
        'INFO': '\033[32m',       # Green
        'WARNING': '\033[33m',    # Yellow
        'ERROR': '\033[31m',      # Red
        'CRITICAL': '\033[35m',   # Magenta
    }
    RESET = '\033[0m'

    def format(self, record):
        """Format log record with colors."""
        levelname = record.levelname
        if levelname in self.COLORS:
            record.levelname = f"{self.COLORS[levelname]}{levelname}{self.RESET}"
        try:
            return super().format(record)
        finally:
            record.levelname = levelname


def _formatter(log_format: str) -> logging.Formatter:
    # Use colored formatter if terminal supports it
    if sys.stderr.isatty():
        return ColoredFormatter(log_format)
    return logging.Formatter(log_format)


def setup_logging(verbose: bool = False, debug: bool = False) -> logging.Logger:
    """Configure logging for the vbar CLI.

    Args:
        verbose: Enable verbose logging (INFO level)
        debug: Enable debug logging (DEBUG level)

    Returns:
        Configured "vbar" logger
    """
    logger = logging.getLogger('vbar')

    # Remove existing handlers
    logger.handlers.clear()

    if debug:
        logger.setLevel(logging.DEBUG)
        log_format = DEBUG_FORMAT
    elif verbose:
        logger.setLevel(logging.INFO)
        log_format = VERBOSE_FORMAT
    else:
        logger.setLevel(logging.WARNING)
        log_format = DEFAULT_FORMAT

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(logger.level)
    handler.setFormatter(_formatter(log_format))
    logger.addHandler(handler)

    return logger


def setup_daemon_logging(verbose: bool = False, debug: bool = False) -> None:
    """Configure the root logger for a running bar.

    $LOG_LEVEL sets the level; --debug/--verbose override it.
    """
    if debug:
        log_level = "DEBUG"
    elif verbose:
        log_level = "INFO"
    else:
        log_level = os.environ.get("LOG_LEVEL", "INFO").upper()

    root_logger = logging.getLogger()
    try:
        root_logger.setLevel(log_level)
    except ValueError:
        root_logger.setLevel(logging.INFO)
        log_level = "INFO"

    # The CLI logger would print everything twice through the root handler
    vbar_logger = logging.getLogger('vbar')
    vbar_logger.handlers.clear()
    vbar_logger.setLevel(logging.NOTSET)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(_formatter(DAEMON_FORMAT))
    root_logger.addHandler(handler)

    logging.getLogger(__name__).info(f"Logging configured: level={log_level}")
