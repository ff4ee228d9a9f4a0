"""Conflict-free assignment of photos to groups from visual similarity.

Resolution runs over one mutable ``AssignmentState`` in four stages:
hero seeding, a decisive pass for clear winners, backfill of groups below
their minimum target (with limited borrowing of photos owned elsewhere),
and conflict resolution that leaves every photo in exactly one group.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from functools import cmp_to_key
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from .config import AssignmentConfig
from .models import ProposedGroup, RankEntry, SimilarityRanking

logger = logging.getLogger(__name__)

MARGIN_EPSILON = 1e-9
TIE_TOLERANCE = 1e-6


def build_rankings(
    similarities: Mapping[str, Mapping[str, float]],
    group_order: Sequence[str],
    min_similarity: float,
) -> Dict[str, SimilarityRanking]:
    """Rank groups per photo by blended similarity.

    Args:
        similarities: photo URL -> {group_id: blended similarity}, in photo
            discovery order.
        group_order: Group ids in input order, used to break exact ties.
        min_similarity: Groups below this are left out of a photo's ranking.
    """
    position = {group_id: index for index, group_id in enumerate(group_order)}
    rankings: Dict[str, SimilarityRanking] = {}

    for url, per_group in similarities.items():
        entries = [
            RankEntry(group_id=group_id, similarity=float(sim))
            for group_id, sim in per_group.items()
            if sim >= min_similarity
        ]
        entries.sort(key=lambda e: (-e.similarity, position.get(e.group_id, len(position))))

        margins: Dict[str, float] = {}
        for entry in entries:
            others = [o.similarity for o in entries if o.group_id != entry.group_id]
            margins[entry.group_id] = entry.similarity - max(others) if others else 0.0

        rankings[url] = SimilarityRanking(photo_url=url, entries=entries, margins=margins)
    return rankings


class AssignmentStage(Enum):
    SEEDED = "seeded"
    DECISIVE = "decisive-assigned"
    BACKFILLED = "backfilled"
    RESOLVED = "conflict-resolved"


@dataclass
class AssignmentState:
    """group -> ordered members and photo -> owner, kept in step here only."""

    group_order: List[str]
    members: Dict[str, Dict[str, None]] = field(default_factory=dict)
    owner: Dict[str, str] = field(default_factory=dict)
    borrowed: Dict[str, int] = field(default_factory=dict)
    hero_locks: Dict[str, str] = field(default_factory=dict)
    stage: AssignmentStage = AssignmentStage.SEEDED

    @classmethod
    def for_groups(cls, group_ids: Iterable[str]) -> "AssignmentState":
        order = list(group_ids)
        return cls(
            group_order=order,
            members={group_id: {} for group_id in order},
            borrowed={group_id: 0 for group_id in order},
        )

    def size(self, group_id: str) -> int:
        return len(self.members[group_id])

    def holds(self, group_id: str, url: str) -> bool:
        return url in self.members[group_id]

    def claim(self, group_id: str, url: str) -> bool:
        """Add ``url`` to the group and record the group as its owner."""
        added = url not in self.members[group_id]
        self.members[group_id][url] = None
        self.owner[url] = group_id
        return added

    def borrow(self, group_id: str, url: str) -> bool:
        """Add ``url`` without taking ownership from its current owner."""
        if url in self.members[group_id]:
            return False
        self.members[group_id][url] = None
        self.borrowed[group_id] += 1
        return True

    def holders(self, url: str) -> List[str]:
        return [group_id for group_id in self.group_order if url in self.members[group_id]]

    def remove(self, group_id: str, url: str) -> None:
        self.members[group_id].pop(url, None)

    def member_urls(self) -> List[str]:
        seen: Dict[str, None] = {}
        for group_id in self.group_order:
            for url in self.members[group_id]:
                seen.setdefault(url, None)
        return list(seen)


@dataclass
class AssignmentOutcome:
    members: Dict[str, List[str]]
    owner: Dict[str, str]
    borrowed: Dict[str, int] = field(default_factory=dict)
    rebalanced: List[str] = field(default_factory=list)
    hero_conflicts: List[Tuple[str, str, str]] = field(default_factory=list)
    decisive: int = 0
    backfilled: int = 0

    @property
    def borrowed_total(self) -> int:
        return sum(self.borrowed.values())


class AssignmentResolver:
    """Resolve similarity rankings into exclusive group membership."""

    def __init__(self, config: Optional[AssignmentConfig] = None):
        self.config = config or AssignmentConfig()

    def resolve(
        self,
        rankings: Mapping[str, SimilarityRanking],
        groups: Sequence[ProposedGroup],
    ) -> AssignmentOutcome:
        state = AssignmentState.for_groups(group.group_id for group in groups)
        hero_conflicts = self._seed(state, groups)

        state.stage = AssignmentStage.DECISIVE
        decisive = self._assign_decisive(state, rankings)

        state.stage = AssignmentStage.BACKFILLED
        backfilled = self._backfill(state, rankings)

        state.stage = AssignmentStage.RESOLVED
        rebalanced = self._resolve_conflicts(state, rankings)

        for group_id in state.group_order:
            for url in state.members[group_id]:
                state.owner.setdefault(url, group_id)

        outcome = AssignmentOutcome(
            members={group_id: list(state.members[group_id]) for group_id in state.group_order},
            owner=dict(state.owner),
            borrowed=dict(state.borrowed),
            rebalanced=rebalanced,
            hero_conflicts=hero_conflicts,
            decisive=decisive,
            backfilled=backfilled,
        )
        logger.info(
            f"Assignment resolved: {decisive} decisive, {backfilled} backfilled, "
            f"{outcome.borrowed_total} borrowed, {len(rebalanced)} rebalanced"
        )
        return outcome

    def _seed(self, state: AssignmentState, groups: Sequence[ProposedGroup]) -> List[Tuple[str, str, str]]:
        conflicts: List[Tuple[str, str, str]] = []
        if not self.config.hero_lock:
            return conflicts
        for group in groups:
            hero = group.hero_url
            if not hero:
                continue
            holder = state.owner.get(hero)
            if holder is not None and holder != group.group_id:
                conflicts.append((hero, holder, group.group_id))
                logger.warning(f"Hero {hero} of group {group.group_id} already belongs to group {holder}")
                continue
            state.claim(group.group_id, hero)
            state.hero_locks[hero] = group.group_id
        return conflicts

    def _assign_decisive(self, state: AssignmentState, rankings: Mapping[str, SimilarityRanking]) -> int:
        assigned = 0
        for url, ranking in rankings.items():
            top = ranking.top
            if top is None or url in state.owner:
                continue
            runner_up = ranking.runner_up
            if runner_up is None or top.similarity - runner_up.similarity >= self.config.margin - MARGIN_EPSILON:
                state.claim(top.group_id, url)
                assigned += 1
        return assigned

    def _backfill(self, state: AssignmentState, rankings: Mapping[str, SimilarityRanking]) -> int:
        added = 0
        for group_id in state.group_order:
            remaining = self.config.min_assign - state.size(group_id)
            if remaining <= 0:
                continue

            for url, ranking in rankings.items():
                if remaining <= 0:
                    break
                if ranking.similarity_to(group_id) is None:
                    continue

                current = state.owner.get(url)
                if current is None:
                    if state.claim(group_id, url):
                        added += 1
                        remaining -= 1
                    continue
                if current == group_id:
                    continue
                if state.borrowed[group_id] >= self.config.max_duplicates_per_group:
                    continue
                if state.borrow(group_id, url):
                    remaining -= 1

            if remaining > 0:
                logger.debug(f"Group {group_id} still {remaining} short of min_assign={self.config.min_assign}")
        return added

    def _resolve_conflicts(self, state: AssignmentState, rankings: Mapping[str, SimilarityRanking]) -> List[str]:
        rebalanced: List[str] = []
        position = {group_id: index for index, group_id in enumerate(state.group_order)}

        urls = list(rankings)
        urls.extend(url for url in state.member_urls() if url not in rankings)

        for url in urls:
            holders = state.holders(url)
            if len(holders) == 1:
                state.owner[url] = holders[0]
            if len(holders) <= 1:
                continue

            keeper = state.hero_locks.get(url) if self.config.hero_lock else None
            if keeper is None or keeper not in holders:
                ranking = rankings.get(url)

                def similarity(group_id: str) -> float:
                    sim = ranking.similarity_to(group_id) if ranking is not None else None
                    return sim if sim is not None else 0.0

                def compare(a: str, b: str) -> int:
                    s1, s2 = similarity(a), similarity(b)
                    if abs(s2 - s1) > TIE_TOLERANCE:
                        return -1 if s1 > s2 else 1
                    c1, c2 = state.size(a), state.size(b)
                    if c1 != c2:
                        return c1 - c2
                    return position[a] - position[b]

                keeper = sorted(holders, key=cmp_to_key(compare))[0]

            state.owner[url] = keeper
            for group_id in holders:
                if group_id != keeper:
                    state.remove(group_id, url)
            rebalanced.append(url)
            logger.debug(f"Photo {url} held by {holders}; kept in {keeper}")
        return rebalanced
