"""Canonical ordering of each group's final photo list."""

from __future__ import annotations

import math
from typing import List, Mapping, Optional, Sequence

from .candidates import GroupCandidates, PhotoCatalog
from .config import OutputConfig, ScoringTables
from .models import Photo, PhotoRole
from .utils.text import tokenize


class OutputNormalizer:
    """Hero first, back second, the rest by similarity then filename/role bias."""

    def __init__(self, tables: Optional[ScoringTables] = None, output: Optional[OutputConfig] = None):
        self.tables = tables or ScoringTables()
        self.output = output or OutputConfig()

    def bias(self, photo: Optional[Photo], url: str) -> int:
        """Lower sorts earlier: front-looking photos lead, back-looking ones trail."""
        tokens = tokenize(photo.name if photo is not None and photo.name else url)
        bias = 0
        if any(token in self.tables.positive_name_tokens for token in tokens):
            bias -= 1
        if any(token in self.tables.negative_name_tokens for token in tokens):
            bias += 1
        role = photo.role if photo is not None else None
        if role is PhotoRole.FRONT:
            bias -= 2
        elif role is PhotoRole.BACK:
            bias += 2
        return bias

    def order(
        self,
        candidates: GroupCandidates,
        members: Sequence[str],
        catalog: PhotoCatalog,
        similarities: Optional[Mapping[str, float]] = None,
    ) -> List[str]:
        similarities = similarities or {}
        unique: List[str] = []
        for url in members:
            if url and url not in unique:
                unique.append(url)

        hero = candidates.group.hero_url if candidates.group.hero_url in unique else None
        back = candidates.group.back_url if candidates.group.back_url in unique else None
        if back == hero:
            back = None

        def sort_key(item):
            index, url = item
            photo = catalog.get(url)
            order = photo.order if photo is not None else math.inf
            return (-similarities.get(url, -math.inf), self.bias(photo, url), order, index)

        rest = [url for _, url in sorted(enumerate(unique), key=sort_key) if url not in (hero, back)]
        ordered = [url for url in (hero, back) if url] + rest

        ordered = ordered[: self.output.max_images]
        if candidates.pool_size <= 2:
            ordered = ordered[:2]
        return ordered
