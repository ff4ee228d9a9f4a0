"""Hero (front) and back photo selection for one group."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Tuple

from .candidates import GroupCandidates
from .config import EmbeddingConfig, ScoringTables
from .embedding.engine import EmbeddingSimilarityEngine
from .models import Photo, PhotoRole
from .similarity import cosine_similarity
from .utils.text import basename_key

logger = logging.getLogger(__name__)


@dataclass
class HeroBackChoice:
    hero: Optional[Photo] = None
    back: Optional[Photo] = None
    hero_reason: str = ""
    back_reason: str = ""

    @property
    def hero_url(self) -> Optional[str]:
        return self.hero.url if self.hero is not None else None

    @property
    def back_url(self) -> Optional[str]:
        return self.back.url if self.back is not None else None


class HeroBackSelector:
    """Pick a group's hero and back photos from its candidates.

    Each rule is tried in order and the first match wins. The choice is
    written back onto the group and, when an engine is given, registered as
    the group's similarity anchors.
    """

    def __init__(
        self,
        tables: Optional[ScoringTables] = None,
        embedding_config: Optional[EmbeddingConfig] = None,
    ):
        self.tables = tables or ScoringTables()
        self.embedding_config = embedding_config or EmbeddingConfig()

    def select(
        self,
        candidates: GroupCandidates,
        vectors: Optional[EmbeddingSimilarityEngine] = None,
    ) -> HeroBackChoice:
        group = candidates.group
        hero, hero_reason = self._pick_hero(candidates)
        back, back_reason = (None, "")
        if hero is not None:
            back, back_reason = self._pick_back(candidates, hero, vectors)

        choice = HeroBackChoice(hero=hero, back=back, hero_reason=hero_reason, back_reason=back_reason)
        group.hero_url = choice.hero_url
        group.back_url = choice.back_url
        if vectors is not None:
            vectors.set_anchors(group.group_id, choice.hero_url, choice.back_url)

        logger.debug(
            f"Group {group.group_id}: hero={choice.hero_url} ({hero_reason or 'none'}), "
            f"back={choice.back_url} ({back_reason or 'none'})"
        )
        return choice

    def _pick_hero(self, candidates: GroupCandidates) -> Tuple[Optional[Photo], str]:
        scoped = candidates.folder_photos

        for photo in scoped:
            if photo.role is PhotoRole.FRONT:
                return photo, "role"

        source_base = basename_key(candidates.group.source_image_url)
        if source_base:
            for photo in scoped:
                if photo.basename == source_base:
                    return photo, "source-hint"

        with_text = [photo for photo in scoped if photo.ocr_text.strip()]
        if with_text:
            longest = max(with_text, key=lambda photo: len(photo.ocr_text.strip()))
            return longest, "longest-ocr"

        if scoped:
            return scoped[0], "first-in-folder"
        if candidates.photos:
            return candidates.photos[0], "first-candidate"
        return None, ""

    def _pick_back(
        self,
        candidates: GroupCandidates,
        hero: Photo,
        vectors: Optional[EmbeddingSimilarityEngine],
    ) -> Tuple[Optional[Photo], str]:
        others: List[Photo] = [photo for photo in candidates.folder_photos if photo.url != hero.url]

        for photo in others:
            if photo.role is PhotoRole.BACK:
                return photo, "role"

        for photo in others:
            if self.tables.looks_like_back(photo.ocr_text, photo.name):
                return photo, "back-keywords"

        if vectors is not None and vectors.enabled:
            hero_vec = vectors.vector(hero.url)
            if hero_vec is not None:
                best: Optional[Photo] = None
                best_sim = self.embedding_config.back_min_similarity
                for photo in others:
                    sim = cosine_similarity(vectors.vector(photo.url), hero_vec)
                    if sim >= best_sim and (best is None or sim > best_sim):
                        best, best_sim = photo, sim
                if best is not None:
                    return best, f"similar-to-hero:{best_sim:.3f}"

        secondary = candidates.secondary_photo
        if secondary is not None and secondary.url != hero.url:
            return secondary, "secondary-hint"
        return None, ""
