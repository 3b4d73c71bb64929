from __future__ import annotations

import logging
import sys


LOG_LEVELS = ("error", "warning", "info", "debug")
DEFAULT_LOG_LEVEL = "info"

_FORMAT = "[certbatch] %(levelname)s: %(message)s"


def setup_logging(level: str = DEFAULT_LOG_LEVEL) -> None:
    """Configure the ``certbatch`` logger tree for CLI use (stderr, one line per record)."""

    log_level = getattr(logging, level.upper(), logging.INFO)

    logger = logging.getLogger("certbatch")
    for h in list(logger.handlers):
        logger.removeHandler(h)
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(_FORMAT))
    logger.addHandler(handler)
    logger.setLevel(log_level)
    logger.propagate = False
