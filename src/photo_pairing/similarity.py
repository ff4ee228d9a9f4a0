"""
Vector helpers for visual similarity.

Provider output arrives in several shapes (flat lists, single-row matrices,
``{"embeddings": ...}`` envelopes). Everything is coerced to a 1-D float32
unit vector once, so comparisons downstream are plain dot products.
"""

from __future__ import annotations

from typing import Any, Optional

import numpy as np


def coerce_vector(raw: Any) -> Optional[np.ndarray]:
    """
    Convert a provider response into a 1-D float32 vector.

    Returns None when the payload is empty, multi-row, or contains
    non-finite values.
    """
    if raw is None:
        return None
    if isinstance(raw, dict):
        return coerce_vector(raw.get("embeddings", raw.get("embedding")))
    try:
        array = np.asarray(raw, dtype=np.float32)
    except (TypeError, ValueError):
        return None

    if array.ndim == 2 and array.shape[0] == 1:
        array = array[0]
    if array.ndim != 1 or array.size == 0:
        return None
    if not np.isfinite(array).all():
        return None
    return array


def to_unit(vector: np.ndarray) -> np.ndarray:
    """Scale to unit length; a zero vector stays zero."""
    norm = float(np.linalg.norm(vector))
    if norm == 0.0:
        return np.zeros_like(vector, dtype=np.float32)
    return (vector / norm).astype(np.float32)


def cosine_similarity(vec1: Optional[np.ndarray], vec2: Optional[np.ndarray]) -> float:
    """
    Cosine similarity in [-1, 1].

    Missing vectors, mismatched dimensions and zero vectors all give 0.0.
    """
    if vec1 is None or vec2 is None:
        return 0.0
    if vec1.shape != vec2.shape:
        return 0.0
    norm1 = np.linalg.norm(vec1)
    norm2 = np.linalg.norm(vec2)
    if norm1 == 0 or norm2 == 0:
        return 0.0
    return float(np.dot(vec1, vec2) / (norm1 * norm2))
