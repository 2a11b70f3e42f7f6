"""Logging configuration for sitetasks.

Call setup_logging() once from the CLI before any task runs. Library code
only asks for loggers through get_logger().
"""

from __future__ import annotations

import logging
import sys

LOG_FORMAT = "[%(asctime)s] %(levelname)s %(name)s: %(message)s"
DATE_FORMAT = "%H:%M:%S"

_handler: logging.StreamHandler | None = None


def setup_logging(verbose: bool = False) -> None:
    """Install a single stderr handler on the ``sitetasks`` logger.

    Calling it again only adjusts the level and re-targets the handler at
    the current ``sys.stderr``; handlers are never duplicated.

    Args:
        verbose: Log at DEBUG instead of INFO.
    """
    global _handler
    logger = logging.getLogger("sitetasks")
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    if _handler is not None:
        _handler.stream = sys.stderr
        return

    _handler = logging.StreamHandler(sys.stderr)
    _handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
    logger.addHandler(_handler)


def get_logger(name: str) -> logging.Logger:
    """Return a logger below the ``sitetasks`` namespace."""
    if not name.startswith("sitetasks"):
        name = f"sitetasks.{name}"
    return logging.getLogger(name)
