"""End-to-end photo pairing.

Coordinates photo/insight coercion, candidate building, embedding warm-up,
hero/back selection, scoring, assignment (or the degraded fallback) and
output ordering for one folder run.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import replace
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union

from ..assignment import AssignmentOutcome, AssignmentResolver, build_rankings
from ..candidates import GroupCandidates, PhotoCatalog, build_group_candidates
from ..config import PairingConfig
from ..embedding import EmbeddingSimilarityEngine
from ..fallback import FallbackAssigner
from ..hero_back import HeroBackSelector
from ..insights import InsightIndex
from ..models import (
    CandidateScore,
    GroupResult,
    PairingMetrics,
    PairingResult,
    PairingWarning,
    Photo,
    PhotoInsight,
    ProposedGroup,
    SimilarityRanking,
    WarningCode,
)
from ..normalizer import OutputNormalizer
from ..scoring import CandidateScorer

logger = logging.getLogger(__name__)

PhotoInput = Union[Photo, Dict[str, Any]]
GroupInput = Union[ProposedGroup, Dict[str, Any]]
InsightInput = Union[PhotoInsight, Dict[str, Any]]


class PhotoPairingOrchestrator:
    """Repair an upstream product grouping into exclusive, ordered photo lists."""

    def __init__(self, config: Optional[PairingConfig] = None, embedding_provider: Any = None):
        self.config = config or PairingConfig()
        self.embedding_provider = embedding_provider

        tables = self.config.scoring
        self.scorer = CandidateScorer(tables)
        self.selector = HeroBackSelector(tables, self.config.embedding)
        self.resolver = AssignmentResolver(self.config.assignment)
        self.fallback = FallbackAssigner(tables, self.config.output)
        self.normalizer = OutputNormalizer(tables, self.config.output)

    def run_sync(self, *args: Any, **kwargs: Any) -> PairingResult:
        return asyncio.run(self.run(*args, **kwargs))

    async def run(
        self,
        photos: Iterable[PhotoInput],
        groups: Iterable[GroupInput],
        insights: Optional[Iterable[InsightInput]] = None,
        folder: str = "",
        include_diagnostics: bool = False,
    ) -> PairingResult:
        start_time = time.perf_counter()

        index = InsightIndex.build(insights or [])
        catalog = PhotoCatalog([index.enrich(photo) for photo in self._coerce_photos(photos)])
        group_list = self._coerce_groups(groups)
        candidates = [
            build_group_candidates(group, catalog, folder, self.config.candidates.folder_gate)
            for group in group_list
        ]
        logger.info(f"Pairing {len(catalog)} photos across {len(group_list)} groups (folder='{folder}')")

        # Phase 1: every vector resolved before any decision is made
        engine = EmbeddingSimilarityEngine(self.embedding_provider, self.config.embedding)
        await engine.warm(catalog)

        # Phase 2: synchronous selection, scoring and assignment
        for group_candidates in candidates:
            self.selector.select(group_candidates, engine)

        scores = self._score_matrix(catalog, group_list, engine)
        warnings: List[PairingWarning] = []
        rankings: Dict[str, SimilarityRanking] = {}

        if engine.enabled:
            similarities = {
                photo.url: {gid: scores[gid][photo.url].similarity.blended for gid in scores}
                for photo in catalog
            }
            rankings = build_rankings(
                similarities,
                [group.group_id for group in group_list],
                self.config.embedding.min_similarity,
            )
            outcome = self.resolver.resolve(rankings, group_list)
        else:
            warnings.append(self._embedding_warning(engine))
            outcome = self.fallback.assign(candidates)

        results: List[GroupResult] = []
        for group_candidates in candidates:
            group = group_candidates.group
            members = outcome.members.get(group.group_id, [])
            sims = {url: score.similarity.blended for url, score in scores[group.group_id].items()}
            images = self.normalizer.order(group_candidates, members, catalog, sims if engine.enabled else None)

            result = GroupResult(
                group_id=group.group_id,
                label=group.label,
                images=images,
                hero_url=group.hero_url if group.hero_url in images else None,
                back_url=group.back_url if group.back_url in images else None,
            )
            if include_diagnostics:
                result.scores = self._diagnostics(group_candidates, scores[group.group_id], rankings, images)
            results.append(result)

        warnings.extend(self._group_warnings(candidates, results, outcome, engine.enabled))

        placed = {url for result in results for url in result.images}
        orphans = [photo.url for photo in catalog if photo.url not in placed]

        metrics = PairingMetrics(
            total_photos=len(catalog),
            total_groups=len(group_list),
            embedding_calls=engine.calls,
            embedding_failures=engine.failures,
            decisive_assignments=outcome.decisive,
            backfilled_assignments=outcome.backfilled,
            borrowed_photos=outcome.borrowed_total,
            rebalanced_photos=len(outcome.rebalanced),
            processing_time_ms=int((time.perf_counter() - start_time) * 1000),
        )
        logger.info(
            f"Pairing complete: {len(placed)} placed, {len(orphans)} orphans, "
            f"{len(warnings)} warnings, embeddings={'on' if engine.enabled else 'off'}, "
            f"{metrics.processing_time_ms}ms"
        )
        return PairingResult(
            groups=results,
            orphans=orphans,
            warnings=warnings,
            embeddings_enabled=engine.enabled,
            metrics=metrics,
        )

    def _coerce_photos(self, photos: Iterable[PhotoInput]) -> List[Photo]:
        coerced: List[Photo] = []
        seen = set()
        for position, item in enumerate(photos):
            photo = replace(item) if isinstance(item, Photo) else Photo.from_dict(item, order=position)
            if photo is None:
                logger.debug(f"Skipping folder entry {position}: no usable URL")
                continue
            if photo.url in seen:
                continue
            seen.add(photo.url)
            coerced.append(photo)
        coerced.sort(key=lambda photo: photo.order)
        return coerced

    def _coerce_groups(self, groups: Iterable[GroupInput]) -> List[ProposedGroup]:
        coerced: List[ProposedGroup] = []
        seen_ids = set()
        for position, item in enumerate(groups):
            group = replace(item) if isinstance(item, ProposedGroup) else ProposedGroup.from_dict(item, position)
            if group.group_id in seen_ids:
                renamed = f"{group.group_id}_{position + 1}"
                logger.warning(f"Duplicate group id {group.group_id}; using {renamed}")
                group.group_id = renamed
            seen_ids.add(group.group_id)
            coerced.append(group)
        return coerced

    def _score_matrix(
        self,
        catalog: PhotoCatalog,
        groups: Sequence[ProposedGroup],
        engine: EmbeddingSimilarityEngine,
    ) -> Dict[str, Dict[str, CandidateScore]]:
        matrix: Dict[str, Dict[str, CandidateScore]] = {}
        for group in groups:
            row: Dict[str, CandidateScore] = {}
            for photo in catalog:
                similarity = engine.similarity(group.group_id, photo.url)
                row[photo.url] = self.scorer.score(
                    photo,
                    group,
                    similarity=similarity,
                    embedding_contribution=engine.contribution(similarity.blended),
                )
            matrix[group.group_id] = row
        return matrix

    @staticmethod
    def _diagnostics(
        candidates: GroupCandidates,
        row: Dict[str, CandidateScore],
        rankings: Dict[str, SimilarityRanking],
        images: List[str],
    ) -> List[CandidateScore]:
        urls = [photo.url for photo in candidates.photos]
        urls.extend(url for url in images if url not in urls)

        selected: List[CandidateScore] = []
        for url in urls:
            score = row[url]
            ranking = rankings.get(url)
            if ranking is not None:
                score.margin = ranking.margins.get(candidates.group_id)
            score.assigned = url in images
            selected.append(score)
        return sorted(selected, key=lambda s: s.total, reverse=True)

    def _embedding_warning(self, engine: EmbeddingSimilarityEngine) -> PairingWarning:
        if not self.config.embedding.enabled:
            reason = "disabled by configuration"
        elif not engine.has_provider:
            reason = "no embedding provider configured"
        else:
            reason = engine.last_error or "no photo embeddings could be fetched"
        return PairingWarning(
            code=WarningCode.EMBEDDING_UNAVAILABLE,
            message=f"Visual similarity unavailable ({reason}); using hero/back fallback pairing.",
        )

    def _group_warnings(
        self,
        candidates: Sequence[GroupCandidates],
        results: Sequence[GroupResult],
        outcome: AssignmentOutcome,
        embeddings_enabled: bool,
    ) -> List[PairingWarning]:
        warnings: List[PairingWarning] = []
        labels = {c.group_id: c.group.label for c in candidates}

        for photo_url, owner, rejected in outcome.hero_conflicts:
            warnings.append(PairingWarning(
                code=WarningCode.HERO_CONFLICT,
                message=f"Hero photo {photo_url} of {labels[rejected]} already belongs to {labels[owner]}.",
                group_id=rejected,
            ))

        if outcome.rebalanced:
            warnings.append(PairingWarning(
                code=WarningCode.REBALANCED_DUPLICATES,
                message=f"Rebalanced {len(outcome.rebalanced)} photos proposed for more than one group.",
            ))

        min_assign = self.config.assignment.min_assign
        for result in results:
            if not result.images:
                warnings.append(PairingWarning(
                    code=WarningCode.EMPTY_GROUP,
                    message=f"No hero photo found for {result.label}; leaving group images empty.",
                    group_id=result.group_id,
                ))
                continue
            assigned = len(outcome.members.get(result.group_id, []))
            if embeddings_enabled and assigned < min_assign:
                warnings.append(PairingWarning(
                    code=WarningCode.UNDERFILLED_GROUP,
                    message=f"{result.label} has {assigned} of {min_assign} target photos.",
                    group_id=result.group_id,
                ))

        for warning in warnings:
            logger.warning(warning.message)
        return warnings
