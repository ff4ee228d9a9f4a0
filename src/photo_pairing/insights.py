"""Lookup from photo identity to the vision model's per-photo insight."""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Any, Dict, Iterable, Optional, Union

from .models import Photo, PhotoInsight
from .utils.text import basename_key

logger = logging.getLogger(__name__)


class InsightIndex:
    """Index insights by URL and by normalized basename.

    Vision output frequently echoes back a different URL form than the folder
    listing (share links, raw links, bare file names), so lookups fall back to
    the lower-cased basename. The first insight seen for a key wins.
    """

    def __init__(self) -> None:
        self._by_url: Dict[str, PhotoInsight] = {}
        self._by_basename: Dict[str, PhotoInsight] = {}

    @classmethod
    def build(cls, insights: Iterable[Union[PhotoInsight, Dict[str, Any]]]) -> "InsightIndex":
        index = cls()
        skipped = 0
        for raw in insights or []:
            insight = raw if isinstance(raw, PhotoInsight) else PhotoInsight.from_dict(raw)
            if insight is None:
                skipped += 1
                continue
            index.add(insight)
        if skipped:
            logger.debug(f"Skipped {skipped} insight entries without a usable URL")
        return index

    def add(self, insight: PhotoInsight) -> None:
        url = insight.url.strip()
        if url and url not in self._by_url:
            self._by_url[url] = insight
        base = basename_key(url)
        if base and base not in self._by_basename:
            self._by_basename[base] = insight

    def lookup(self, value: Optional[str]) -> Optional[PhotoInsight]:
        if not value:
            return None
        found = self._by_url.get(value.strip())
        if found is not None:
            return found
        base = basename_key(value)
        return self._by_basename.get(base) if base else None

    def for_photo(self, photo: Photo) -> Optional[PhotoInsight]:
        return self.lookup(photo.url) or self.lookup(photo.name)

    def enrich(self, photo: Photo) -> Photo:
        """Return a copy of ``photo`` with insight fields filled where missing."""
        insight = self.for_photo(photo)
        if insight is None:
            return photo

        ocr_text = photo.ocr_text
        if insight.ocr_text and len(insight.ocr_text) > len(ocr_text):
            ocr_text = insight.ocr_text

        has_visible_text = photo.has_visible_text
        if has_visible_text is None:
            has_visible_text = insight.has_visible_text
        if has_visible_text is None and ocr_text:
            has_visible_text = True

        return replace(
            photo,
            role=photo.role or insight.role,
            ocr_text=ocr_text,
            has_visible_text=has_visible_text,
            dominant_color=photo.dominant_color or insight.dominant_color,
        )

    def __len__(self) -> int:
        return len(self._by_url)
