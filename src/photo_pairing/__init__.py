"""Photo pairing engine.

Repairs an externally proposed grouping of product photos into an exclusive,
ordered hero/back/supporting list per product.
"""

from .config import PairingConfig, PairingConfigError, PairingConfigManager, ScoringTables, get_pairing_config
from .embedding import EmbeddingSimilarityEngine, HuggingFaceImageEmbedder
from .models import (
    GroupResult,
    PairingMetrics,
    PairingResult,
    PairingWarning,
    Photo,
    PhotoInsight,
    PhotoRole,
    ProposedGroup,
    WarningCode,
)
from .orchestrator import PhotoPairingOrchestrator

__version__ = "0.1.0"

__all__ = [
    "PairingConfig",
    "PairingConfigError",
    "PairingConfigManager",
    "ScoringTables",
    "get_pairing_config",
    "EmbeddingSimilarityEngine",
    "HuggingFaceImageEmbedder",
    "GroupResult",
    "PairingMetrics",
    "PairingResult",
    "PairingWarning",
    "Photo",
    "PhotoInsight",
    "PhotoRole",
    "ProposedGroup",
    "WarningCode",
    "PhotoPairingOrchestrator",
]
