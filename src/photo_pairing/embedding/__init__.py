"""Visual embedding retrieval and similarity for photo pairing."""

from .engine import EmbeddingSimilarityEngine
from .provider import (
    EmbeddingProvider,
    EmbeddingProviderError,
    HuggingFaceImageEmbedder,
    as_embed_callable,
    call_embed,
)

__all__ = [
    "EmbeddingSimilarityEngine",
    "EmbeddingProvider",
    "EmbeddingProviderError",
    "HuggingFaceImageEmbedder",
    "as_embed_callable",
    "call_embed",
]
