"""Logging setup for the photo pairing package."""

import logging
import sys
from typing import Optional

PACKAGE_LOGGER = "photo_pairing"
DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(level: str = "INFO", format_string: Optional[str] = None) -> logging.Logger:
    """Attach a stdout handler to the package logger and set its level.

    Calling this again replaces the level and format instead of stacking
    handlers.

    Args:
        level: Logging level name (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        format_string: Custom format string (optional)

    Returns:
        The configured package logger
    """
    numeric_level = getattr(logging, str(level).upper(), logging.INFO)
    logger = logging.getLogger(PACKAGE_LOGGER)
    logger.setLevel(numeric_level)

    handler = next((h for h in logger.handlers if getattr(h, "_photo_pairing", False)), None)
    if handler is None:
        handler = logging.StreamHandler(sys.stdout)
        handler._photo_pairing = True
        logger.addHandler(handler)
    handler.setFormatter(logging.Formatter(format_string or DEFAULT_FORMAT))

    quiet_http_loggers()
    return logger


def quiet_http_loggers() -> None:
    """Keep per-connection logs from embedding downloads out of the output."""
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("requests").setLevel(logging.WARNING)
