"""Small string helpers shared by the scoring and selection modules."""

from __future__ import annotations

import re
from typing import Any, List, Optional

_SEPARATORS = re.compile(r"[_\-.]+")
_NON_ALNUM = re.compile(r"[^a-z0-9]+")


def tokenize(value: Any) -> List[str]:
    """Lower-case alphanumeric tokens; separators and punctuation split."""
    text = str(value or "").lower()
    text = _SEPARATORS.sub(" ", text)
    text = _NON_ALNUM.sub(" ", text)
    return [token for token in text.split(" ") if token]


def basename_of(value: Optional[str]) -> str:
    """Return the last path segment of a URL or path, without query string."""
    if not value:
        return ""
    trimmed = value.strip()
    if not trimmed:
        return ""
    no_query = trimmed.split("?")[0]
    return no_query.rstrip("/").split("/")[-1]


def basename_key(value: Optional[str]) -> str:
    """Normalized basename used as a lookup key."""
    return basename_of(value).lower()


def folder_key(value: Optional[str]) -> str:
    """Normalize a folder path: drop leading slashes and surrounding whitespace."""
    if not value:
        return ""
    return re.sub(r"^[\\/]+", "", value.strip()).strip()


def optional_str(value: Any) -> Optional[str]:
    """Coerce to a stripped string, or None for non-strings and blanks."""
    if isinstance(value, str):
        stripped = value.strip()
        return stripped or None
    return None
