"""Shared helpers for the photo pairing engine."""

from .logging import quiet_http_loggers, setup_logging
from .text import basename_key, basename_of, folder_key, optional_str, tokenize

__all__ = [
    "quiet_http_loggers",
    "setup_logging",
    "basename_key",
    "basename_of",
    "folder_key",
    "optional_str",
    "tokenize",
]
