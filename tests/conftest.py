"""Shared fixtures for photo pairing tests."""

import os
import sys
from typing import Dict, List, Optional, Sequence

import numpy as np
import pytest

# Allow running the suite from a checkout without installing the package
src_root = os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "src")
if src_root not in sys.path:
    sys.path.insert(0, src_root)

from photo_pairing.models import Photo, PhotoRole  # noqa: E402


def unit(values: Sequence[float]) -> List[float]:
    vec = np.asarray(values, dtype=np.float32)
    return (vec / np.linalg.norm(vec)).tolist()


def vector_with_cosine(cosine: float, dim: int = 4) -> List[float]:
    """A unit vector whose cosine to the first axis equals ``cosine``."""
    vec = np.zeros(dim, dtype=np.float32)
    vec[0] = cosine
    vec[1] = np.sqrt(max(0.0, 1.0 - cosine * cosine))
    return vec.tolist()


class StaticEmbedder:
    """Synchronous provider returning fixed vectors and recording calls."""

    def __init__(self, vectors: Dict[str, Optional[List[float]]], failing: Sequence[str] = ()):
        self.vectors = dict(vectors)
        self.failing = set(failing)
        self.calls: List[str] = []

    def embed(self, url: str):
        self.calls.append(url)
        if url in self.failing:
            raise RuntimeError(f"embedding backend rejected {url}")
        return self.vectors.get(url)


def make_photo(
    name: str,
    folder: str = "products/a",
    order: int = 0,
    role: Optional[PhotoRole] = None,
    ocr_text: str = "",
    **kwargs,
) -> Photo:
    return Photo(
        url=f"https://cdn.example.com/{folder}/{name}",
        name=name,
        path=f"/{folder}/{name}",
        folder=folder,
        order=order,
        role=role,
        ocr_text=ocr_text,
        **kwargs,
    )


@pytest.fixture
def static_embedder():
    return StaticEmbedder
