from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from .utils.text import basename_key, folder_key, optional_str


__all__ = [
    "PhotoRole",
    "Photo",
    "PhotoInsight",
    "ProposedGroup",
    "ScoreComponent",
    "SimilarityBreakdown",
    "CandidateScore",
    "RankEntry",
    "SimilarityRanking",
    "WarningCode",
    "PairingWarning",
    "GroupResult",
    "PairingMetrics",
    "PairingResult",
]


class PhotoRole(Enum):
    FRONT = "front"
    BACK = "back"
    PACKAGING = "packaging"
    SIDE = "side"
    DETAIL = "detail"
    ACCESSORY = "accessory"
    OTHER = "other"
    UNKNOWN = "unknown"

    @classmethod
    def from_str(cls, value: Any) -> Optional["PhotoRole"]:
        if isinstance(value, PhotoRole):
            return value
        if not isinstance(value, str) or not value.strip():
            return None
        v = value.strip().lower()
        for m in cls:
            if m.value == v:
                return m
        return cls.UNKNOWN


def _optional_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number) or number <= 0:
        return None
    return int(number)


def _optional_bool(value: Any) -> Optional[bool]:
    return value if isinstance(value, bool) else None


def _str_list(value: Any) -> List[str]:
    if not isinstance(value, (list, tuple)):
        return []
    return [item.strip() for item in value if isinstance(item, str) and item.strip()]


def _nested(data: Dict[str, Any], *keys: str) -> Any:
    current: Any = data
    for key in keys:
        if not isinstance(current, dict):
            return None
        current = current.get(key)
    return current


def _first_str(data: Dict[str, Any], *keys: str) -> Optional[str]:
    for key in keys:
        found = optional_str(data.get(key))
        if found:
            return found
    return None


@dataclass
class Photo:
    """One photograph from the scanned folder.

    Built once at folder ingestion. Everything except ``embedding`` is treated
    as immutable; enrichment produces a copy.
    """

    url: str
    name: str = ""
    path: str = ""
    folder: str = ""
    order: int = 0
    ocr_text: str = ""
    role: Optional[PhotoRole] = None
    has_visible_text: Optional[bool] = None
    dominant_color: Optional[str] = None
    size_bytes: Optional[int] = None
    width: Optional[int] = None
    height: Optional[int] = None
    embedding: Optional[List[float]] = None

    @property
    def basename(self) -> str:
        return basename_key(self.url) or basename_key(self.name)

    @property
    def folder_key(self) -> str:
        return folder_key(self.folder)

    @property
    def megapixels(self) -> Optional[float]:
        if not self.width or not self.height:
            return None
        return (self.width * self.height) / 1_000_000

    @property
    def aspect_ratio(self) -> Optional[float]:
        if not self.width or not self.height:
            return None
        return self.width / self.height

    @classmethod
    def from_dict(cls, data: Dict[str, Any], order: Optional[int] = None) -> Optional["Photo"]:
        """Build a photo from a folder listing entry; returns None without a URL."""
        if not isinstance(data, dict):
            return None
        url = _first_str(data, "url", "link")
        if not url:
            return None
        name = _first_str(data, "name") or ""
        path = _first_str(data, "path", "path_display", "path_lower") or ""
        folder = _first_str(data, "folder")
        if folder is None and path:
            folder = path.rsplit("/", 1)[0] if "/" in path else ""

        width = _optional_int(data.get("width"))
        height = _optional_int(data.get("height"))
        if width is None or height is None:
            dims = _nested(data, "media_info", "metadata", "dimensions")
            if isinstance(dims, dict):
                width = _optional_int(dims.get("width"))
                height = _optional_int(dims.get("height"))

        raw_order = data.get("order")
        if isinstance(raw_order, int) and not isinstance(raw_order, bool):
            resolved_order = raw_order
        else:
            resolved_order = order if order is not None else 0

        return cls(
            url=url,
            name=name,
            path=path,
            folder=folder or "",
            order=resolved_order,
            ocr_text=_first_str(data, "ocr_text", "ocrText") or "",
            role=PhotoRole.from_str(data.get("role")),
            has_visible_text=_optional_bool(data.get("has_visible_text", data.get("hasVisibleText"))),
            dominant_color=(_first_str(data, "dominant_color", "dominantColor") or "").lower() or None,
            size_bytes=_optional_int(data.get("size", data.get("size_bytes"))),
            width=width,
            height=height,
        )


@dataclass
class PhotoInsight:
    """Per-photo output of the upstream vision model."""

    url: str
    role: Optional[PhotoRole] = None
    has_visible_text: Optional[bool] = None
    ocr_text: str = ""
    dominant_color: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Optional["PhotoInsight"]:
        if not isinstance(data, dict):
            return None
        url = _first_str(data, "url", "key", "name")
        if not url:
            return None

        parts: List[str] = []
        for key in ("ocr_text", "ocrText", "text"):
            found = optional_str(data.get(key))
            if found:
                parts.append(found)
        blocks = _str_list(data.get("textBlocks", data.get("text_blocks")))
        if blocks:
            parts.append(" ".join(blocks))
        ocr = data.get("ocr")
        if isinstance(ocr, dict):
            found = optional_str(ocr.get("text"))
            if found:
                parts.append(found)
            lines = _str_list(ocr.get("lines"))
            if lines:
                parts.append(" ".join(lines))

        color = _first_str(data, "dominant_color", "dominantColor")
        return cls(
            url=url,
            role=PhotoRole.from_str(data.get("role")),
            has_visible_text=_optional_bool(data.get("has_visible_text", data.get("hasVisibleText"))),
            ocr_text=" ".join(parts).strip(),
            dominant_color=color.lower() if color else None,
        )


@dataclass
class ProposedGroup:
    """A product grouping proposed by the vision model.

    ``hero_url`` and ``back_url`` are filled in during resolution.
    """

    group_id: str
    name: Optional[str] = None
    brand: Optional[str] = None
    product: Optional[str] = None
    variant: Optional[str] = None
    claims: List[str] = field(default_factory=list)
    confidence: float = 0.0
    images: List[str] = field(default_factory=list)
    folder: Optional[str] = None
    source_image_url: Optional[str] = None
    secondary_image_url: Optional[str] = None
    supporting_image_urls: List[str] = field(default_factory=list)
    hero_url: Optional[str] = None
    back_url: Optional[str] = None

    @property
    def label(self) -> str:
        return self.name or self.product or self.group_id

    @classmethod
    def from_dict(cls, data: Dict[str, Any], index: int = 0) -> "ProposedGroup":
        if not isinstance(data, dict):
            data = {}
        try:
            confidence = float(data.get("confidence", 0.0))
        except (TypeError, ValueError):
            confidence = 0.0
        if not math.isfinite(confidence):
            confidence = 0.0

        source = _first_str(data, "source_image_url", "scanSourceImageUrl", "sourceImageUrl", "primaryImageUrl")
        if source is None:
            scan = data.get("scan")
            if isinstance(scan, dict):
                source = _first_str(scan, "sourceImageUrl", "imageUrl")

        return cls(
            group_id=_first_str(data, "group_id", "groupId") or f"group_{index + 1}",
            name=_first_str(data, "name"),
            brand=_first_str(data, "brand"),
            product=_first_str(data, "product"),
            variant=_first_str(data, "variant"),
            claims=_str_list(data.get("claims")),
            confidence=min(1.0, max(0.0, confidence)),
            images=_str_list(data.get("images")),
            folder=_first_str(data, "folder"),
            source_image_url=source,
            secondary_image_url=_first_str(data, "secondary_image_url", "secondaryImageUrl"),
            supporting_image_urls=_str_list(data.get("supporting_image_urls", data.get("supportingImageUrls"))),
        )


@dataclass
class ScoreComponent:
    label: str
    value: float
    detail: Optional[str] = None


@dataclass
class SimilarityBreakdown:
    """Similarity of one photo to a group's anchor photos."""

    hero: float = 0.0
    back: Optional[float] = None
    blended: float = 0.0


@dataclass
class CandidateScore:
    """Score of one photo for one group, with its component breakdown."""

    photo_url: str
    group_id: str
    base: float = 0.0
    embedding_contribution: float = 0.0
    similarity: SimilarityBreakdown = field(default_factory=SimilarityBreakdown)
    components: List[ScoreComponent] = field(default_factory=list)
    margin: Optional[float] = None
    assigned: bool = False

    @property
    def total(self) -> float:
        return self.base + self.embedding_contribution

    def to_dict(self) -> Dict[str, Any]:
        return {
            "url": self.photo_url,
            "group_id": self.group_id,
            "base": self.base,
            "total": self.total,
            "embedding_contribution": self.embedding_contribution,
            "similarity": self.similarity.blended,
            "hero_similarity": self.similarity.hero,
            "back_similarity": self.similarity.back,
            "margin": self.margin,
            "assigned": self.assigned,
            "components": [
                {"label": c.label, "value": c.value, "detail": c.detail} for c in self.components
            ],
        }


@dataclass
class RankEntry:
    group_id: str
    similarity: float


@dataclass
class SimilarityRanking:
    """Groups a photo is similar to, best first, with per-group margins."""

    photo_url: str
    entries: List[RankEntry] = field(default_factory=list)
    margins: Dict[str, float] = field(default_factory=dict)

    @property
    def top(self) -> Optional[RankEntry]:
        return self.entries[0] if self.entries else None

    @property
    def runner_up(self) -> Optional[RankEntry]:
        return self.entries[1] if len(self.entries) > 1 else None

    def similarity_to(self, group_id: str) -> Optional[float]:
        for entry in self.entries:
            if entry.group_id == group_id:
                return entry.similarity
        return None


class WarningCode(Enum):
    EMPTY_GROUP = "empty_group"
    UNDERFILLED_GROUP = "underfilled_group"
    EMBEDDING_UNAVAILABLE = "embedding_unavailable"
    REBALANCED_DUPLICATES = "rebalanced_duplicates"
    HERO_CONFLICT = "hero_conflict"


@dataclass
class PairingWarning:
    code: WarningCode
    message: str
    group_id: Optional[str] = None

    def __str__(self) -> str:
        return self.message


@dataclass
class GroupResult:
    group_id: str
    label: str
    images: List[str] = field(default_factory=list)
    hero_url: Optional[str] = None
    back_url: Optional[str] = None
    scores: List[CandidateScore] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "group_id": self.group_id,
            "label": self.label,
            "images": list(self.images),
            "hero_url": self.hero_url,
            "back_url": self.back_url,
        }
        if self.scores:
            data["scores"] = [s.to_dict() for s in self.scores]
        return data


@dataclass
class PairingMetrics:
    """Counters for one pairing run."""

    total_photos: int = 0
    total_groups: int = 0
    embedding_calls: int = 0
    embedding_failures: int = 0
    decisive_assignments: int = 0
    backfilled_assignments: int = 0
    borrowed_photos: int = 0
    rebalanced_photos: int = 0
    processing_time_ms: int = 0


@dataclass
class PairingResult:
    groups: List[GroupResult]
    orphans: List[str]
    warnings: List[PairingWarning]
    embeddings_enabled: bool
    metrics: PairingMetrics = field(default_factory=PairingMetrics)

    def group(self, group_id: str) -> Optional[GroupResult]:
        for result in self.groups:
            if result.group_id == group_id:
                return result
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "groups": [g.to_dict() for g in self.groups],
            "orphans": list(self.orphans),
            "warnings": [
                {"code": w.code.value, "message": w.message, "group_id": w.group_id}
                for w in self.warnings
            ],
            "embeddings_enabled": self.embeddings_enabled,
            "metrics": dict(vars(self.metrics)),
        }
