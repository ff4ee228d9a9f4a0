"""Degraded-mode assignment used when no photo embeddings are available."""

from __future__ import annotations

import logging
from typing import Dict, List, Optional, Sequence

from .assignment import AssignmentOutcome
from .candidates import GroupCandidates
from .config import OutputConfig, ScoringTables

logger = logging.getLogger(__name__)


def _unique(urls) -> List[str]:
    result: List[str] = []
    for url in urls:
        if url and url not in result:
            result.append(url)
    return result


class FallbackAssigner:
    """Hero plus one back photo per group, from heuristics alone."""

    def __init__(self, tables: Optional[ScoringTables] = None, output: Optional[OutputConfig] = None):
        self.tables = tables or ScoringTables()
        self.output = output or OutputConfig()

    def second_photo(self, candidates: GroupCandidates) -> Optional[str]:
        """The photo placed after the hero: back, secondary hint, back-looking file, next photo."""
        hero = candidates.group.hero_url
        if not hero:
            return None

        back = candidates.group.back_url
        if back and back != hero:
            return back

        secondary = candidates.secondary_photo
        if secondary is not None and secondary.url != hero:
            return secondary.url

        for photo in candidates.folder_photos:
            if photo.url != hero and self.tables.looks_like_back(photo.ocr_text, photo.name):
                return photo.url

        for url in self._folder_urls(candidates):
            if url != hero:
                return url
        return None

    def preferred_order(self, candidates: GroupCandidates) -> List[str]:
        hero = candidates.group.hero_url
        if not hero:
            return []
        return _unique([hero, self.second_photo(candidates), *self._folder_urls(candidates)])

    def assign(self, groups: Sequence[GroupCandidates]) -> AssignmentOutcome:
        claims: Dict[str, str] = {}
        hero_conflicts = []

        for candidates in groups:
            hero = candidates.group.hero_url
            if not hero:
                continue
            holder = claims.get(hero)
            if holder is not None:
                hero_conflicts.append((hero, holder, candidates.group_id))
                logger.warning(f"Hero {hero} of group {candidates.group_id} already belongs to group {holder}")
                continue
            claims[hero] = candidates.group_id

        members: Dict[str, List[str]] = {}
        for candidates in groups:
            group_id = candidates.group_id
            kept = [url for url in self.preferred_order(candidates) if claims.get(url, group_id) == group_id]
            if self.output.strict_two_only:
                kept = kept[:2]
            for url in kept:
                claims.setdefault(url, group_id)
            members[group_id] = kept

            if len(kept) > 1 and candidates.group.back_url not in kept:
                candidates.group.back_url = kept[1]

        logger.info(
            f"Fallback assignment for {len(groups)} groups "
            f"({'strict two' if self.output.strict_two_only else 'all candidates'})"
        )
        return AssignmentOutcome(
            members=members,
            owner={url: group_id for url, group_id in claims.items() if url in members.get(group_id, [])},
            hero_conflicts=hero_conflicts,
        )

    @staticmethod
    def _folder_urls(candidates: GroupCandidates) -> List[str]:
        hinted = [candidates.secondary_photo] + list(candidates.supporting_photos)
        return _unique(
            [photo.url for photo in hinted if photo is not None]
            + [photo.url for photo in candidates.folder_photos]
        )
