"""Memoized visual embeddings and per-group similarity blending."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

import numpy as np

from ..config import EmbeddingConfig
from ..models import Photo, SimilarityBreakdown
from ..similarity import coerce_vector, cosine_similarity, to_unit
from .provider import as_embed_callable, call_embed

logger = logging.getLogger(__name__)


class EmbeddingSimilarityEngine:
    """Fetch one embedding per photo and blend similarity to group anchors.

    Vectors are resolved up front (``warm``) into a plain lookup table; all
    similarity calls afterwards are synchronous table reads. A fetch failure
    is cached as ``None`` and never retried within the run. The engine counts
    as enabled once any single vector has been fetched.
    """

    def __init__(self, provider: Any = None, config: Optional[EmbeddingConfig] = None):
        self.config = config or EmbeddingConfig()
        use_provider = self.config.enabled and self.config.weight > 0
        self._embed = as_embed_callable(provider) if use_provider else None

        self._tasks: Dict[str, "asyncio.Future[Optional[np.ndarray]]"] = {}
        self._vectors: Dict[str, Optional[np.ndarray]] = {}
        self._anchors: Dict[str, Tuple[Optional[np.ndarray], Optional[np.ndarray]]] = {}

        self.dimension: Optional[int] = None
        self.calls = 0
        self.failures = 0
        self.last_error: Optional[str] = None

        if self._embed is None:
            reason = "no provider" if provider is None else "disabled by configuration"
            logger.info(f"Embedding similarity inactive ({reason})")

    @property
    def has_provider(self) -> bool:
        return self._embed is not None

    @property
    def enabled(self) -> bool:
        """True once at least one photo's vector was fetched successfully."""
        return self.dimension is not None

    async def vector_for(self, photo: Union[Photo, str]) -> Optional[np.ndarray]:
        """Return the photo's vector, fetching it at most once per run."""
        url = photo.url if isinstance(photo, Photo) else str(photo)
        if self._embed is None or not url:
            return None
        task = self._tasks.get(url)
        if task is None:
            # Registered before the first await so concurrent callers share it
            task = asyncio.ensure_future(self._fetch(url))
            self._tasks[url] = task
        vector = await task
        if isinstance(photo, Photo) and vector is not None and photo.embedding is None:
            photo.embedding = vector.tolist()
        return vector

    async def warm(self, photos: Iterable[Photo]) -> None:
        """Resolve vectors for all photos through a bounded worker pool."""
        if self._embed is None:
            return
        unique: List[Photo] = []
        seen = set()
        for photo in photos:
            if photo.url not in seen:
                seen.add(photo.url)
                unique.append(photo)

        semaphore = asyncio.Semaphore(self.config.max_workers)

        async def worker(photo: Photo) -> None:
            async with semaphore:
                await self.vector_for(photo)

        await asyncio.gather(*(worker(photo) for photo in unique))

        fetched = sum(1 for url in seen if self._vectors.get(url) is not None)
        logger.info(
            f"Embedding warm-up: {fetched}/{len(unique)} vectors available "
            f"({self.failures} failures, dim={self.dimension})"
        )
        if not self.enabled:
            logger.warning(f"Embedding engine disabled for this run: {self.last_error or 'no vectors fetched'}")

    async def _fetch(self, url: str) -> Optional[np.ndarray]:
        self.calls += 1
        try:
            raw = await call_embed(self._embed, url)
        except Exception as e:
            self._record_failure(url, f"{type(e).__name__}: {e}")
            return None

        vector = coerce_vector(raw)
        if vector is None:
            self._record_failure(url, "provider returned no usable vector")
            return None

        vector = to_unit(vector)
        if self.dimension is None:
            self.dimension = int(vector.shape[0])
        elif vector.shape[0] != self.dimension:
            logger.warning(
                f"Embedding for {url} has dimension {vector.shape[0]}, expected {self.dimension}; "
                "comparisons against it will score zero"
            )
        self._vectors[url] = vector
        return vector

    def _record_failure(self, url: str, message: str) -> None:
        self.failures += 1
        if self.last_error is None:
            self.last_error = message
        self._vectors[url] = None
        logger.warning(f"Embedding unavailable for {url}: {message}")

    def vector(self, url: Optional[str]) -> Optional[np.ndarray]:
        """Synchronous lookup into the resolved vector table."""
        if not url:
            return None
        return self._vectors.get(url)

    def set_anchors(self, group_id: str, hero_url: Optional[str], back_url: Optional[str]) -> None:
        """Record the hero/back vectors a group's similarities are measured against."""
        self._anchors[group_id] = (self.vector(hero_url), self.vector(back_url))

    def similarity(self, group_id: str, photo_url: str) -> SimilarityBreakdown:
        hero_vec, back_vec = self._anchors.get(group_id, (None, None))
        vec = self.vector(photo_url)
        if not self.enabled or vec is None or hero_vec is None:
            return SimilarityBreakdown(hero=0.0, back=None, blended=0.0)

        sim_hero = cosine_similarity(vec, hero_vec)
        if back_vec is None:
            return SimilarityBreakdown(hero=sim_hero, back=None, blended=sim_hero)

        sim_back = cosine_similarity(vec, back_vec)
        blended = self.config.hero_weight * sim_hero + self.config.back_weight * sim_back
        return SimilarityBreakdown(hero=sim_hero, back=sim_back, blended=blended)

    def passes(self, similarity: float) -> bool:
        return self.enabled and similarity >= self.config.min_similarity

    def contribution(self, similarity: float) -> float:
        """Score points contributed by a blended similarity."""
        if not self.passes(similarity):
            return 0
        return round(similarity * self.config.weight)
