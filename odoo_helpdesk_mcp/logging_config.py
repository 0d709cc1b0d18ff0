"""Logging setup for the server process."""

import logging
import sys

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
VALID_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

logger = logging.getLogger(__name__)


def configure_logging(level: str = "INFO") -> None:
    """Configure the root logger on stderr.

    Unknown level names fall back to INFO with a warning. A handler is only
    added when the root logger has none, so repeated calls are harmless.

    Args:
        level: Logging level name (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    level_name = (level or "INFO").upper()
    invalid = level_name not in VALID_LEVELS
    if invalid:
        level_name = "INFO"

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level_name))

    if not root_logger.handlers:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root_logger.addHandler(handler)

    if invalid:
        logger.warning(
            "Invalid LOG_LEVEL '%s', defaulting to INFO. Valid values: %s",
            level,
            ", ".join(VALID_LEVELS),
        )
