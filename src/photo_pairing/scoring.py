"""Heuristic scoring of one photo for one proposed group.

The score is a plain sum of independent signals. Each signal that fires is
kept as a ``ScoreComponent`` so a diagnostic view can show why a photo
ranked where it did.
"""

from __future__ import annotations

from typing import List, Optional

from .config import ScoringTables
from .models import CandidateScore, Photo, ProposedGroup, ScoreComponent, SimilarityBreakdown
from .utils.text import basename_key, tokenize


def group_tokens(group: ProposedGroup, max_claims: int = 8) -> List[str]:
    """Distinct tokens of a group's brand, product, variant and leading claims."""
    parts = [group.brand or "", group.product or "", group.variant or ""]
    parts.extend(group.claims[:max_claims])
    tokens: List[str] = []
    for token in tokenize(" ".join(parts)):
        if token not in tokens:
            tokens.append(token)
    return tokens


class CandidateScorer:
    """Deterministic additive scorer.

    Args:
        tables: Keyword lists and weights; pass a custom ``ScoringTables``
            to retune without touching module state.
    """

    def __init__(self, tables: Optional[ScoringTables] = None):
        self.tables = tables or ScoringTables()

    def score(
        self,
        photo: Photo,
        group: ProposedGroup,
        similarity: Optional[SimilarityBreakdown] = None,
        embedding_contribution: float = 0.0,
    ) -> CandidateScore:
        t = self.tables
        components: List[ScoreComponent] = []

        def add(label: str, value: float, detail: Optional[str] = None) -> None:
            if value:
                components.append(ScoreComponent(label=label, value=value, detail=detail))

        name_tokens = tokenize(photo.name)
        photo_tokens = set(tokenize(photo.path)) | set(name_tokens)

        for token in group_tokens(group, t.max_claims):
            if token in photo_tokens:
                add("token-match", t.token_match_weight, token)

        for token in name_tokens:
            if token in t.positive_name_tokens:
                add("name-positive", t.positive_name_weight, token)
            if token in t.negative_name_tokens:
                add("name-negative", t.negative_name_weight, token)

        if photo.has_visible_text is True:
            add("visible-text", t.visible_text_bonus)
        elif photo.has_visible_text is False:
            add("no-visible-text", t.no_visible_text_penalty)

        if photo.role is not None and photo.role.value in t.role_weights:
            add("role", t.role_weights[photo.role.value], photo.role.value)

        if photo.dominant_color and photo.dominant_color in t.color_weights:
            add("color", t.color_weights[photo.dominant_color], photo.dominant_color)

        if self._was_suggested(photo, group):
            add("upstream-suggested", t.suggestion_bonus)

        confidence_bonus = round(min(1.0, max(0.0, group.confidence)) * t.max_confidence_bonus)
        add("group-confidence", confidence_bonus, f"{group.confidence:.2f}")

        if self.looks_like_thumbnail(photo):
            add("metadata-dummy", t.metadata_dummy_penalty)

        self._add_resolution(photo, add)
        self._add_aspect(photo, add)

        base = sum(c.value for c in components)
        return CandidateScore(
            photo_url=photo.url,
            group_id=group.group_id,
            base=base,
            embedding_contribution=embedding_contribution,
            similarity=similarity or SimilarityBreakdown(),
            components=components,
        )

    def looks_like_thumbnail(self, photo: Photo) -> bool:
        """Files that are tiny on disk or in pixels are usually placeholders."""
        t = self.tables
        if photo.size_bytes and photo.size_bytes < t.dummy_max_bytes:
            return True
        if photo.width and photo.height:
            return photo.width < t.dummy_min_edge_px or photo.height < t.dummy_min_edge_px
        return False

    @staticmethod
    def _was_suggested(photo: Photo, group: ProposedGroup) -> bool:
        if photo.url in group.images:
            return True
        base = photo.basename
        return bool(base) and any(base == basename_key(url) for url in group.images)

    def _add_resolution(self, photo: Photo, add) -> None:
        megapixels = photo.megapixels
        if megapixels is None:
            return
        detail = f"mp:{megapixels:.2f}"
        for minimum, weight in self.tables.resolution_bands:
            if megapixels >= minimum:
                add("resolution", weight, detail)
                return
        add("resolution", self.tables.low_resolution_penalty, detail)

    def _add_aspect(self, photo: Photo, add) -> None:
        aspect = photo.aspect_ratio
        if not aspect:
            return
        t = self.tables
        detail = f"ratio:{aspect:.2f}"
        if t.square_aspect[0] <= aspect <= t.square_aspect[1]:
            add("aspect", t.square_aspect_bonus, detail)
        elif t.near_square_aspect[0] <= aspect <= t.near_square_aspect[1]:
            add("aspect", t.near_square_aspect_bonus, detail)
        elif aspect <= t.extreme_aspect[0] or aspect >= t.extreme_aspect[1]:
            add("aspect", t.extreme_aspect_penalty, detail)
