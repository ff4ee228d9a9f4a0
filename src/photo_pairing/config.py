"""Configuration management for the photo pairing engine.

Tunables are grouped into dataclass sections that mirror the pipeline stages
(scoring tables, embedding similarity, assignment, output). Values come from
an optional YAML file and are then overridden from environment variables.
Out-of-range values are clamped rather than rejected so a bad deployment
setting degrades the heuristics instead of failing a scan.
"""

from __future__ import annotations

import logging
import math
import os
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, FrozenSet, List, Mapping, Optional, Tuple, Union

import yaml
from dotenv import load_dotenv

from .utils.logging import quiet_http_loggers, setup_logging


logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = "pairing_config.yaml"


class PairingConfigError(Exception):
    """Raised when the pairing configuration file cannot be read."""
    pass


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def _frozen_weights(values: Mapping[str, float]) -> Mapping[str, float]:
    return MappingProxyType({str(k).lower(): v for k, v in values.items()})


@dataclass(frozen=True)
class ScoringTables:
    """Keyword lists and weights used by the candidate scorer and selectors."""

    positive_name_tokens: FrozenSet[str] = frozenset({
        "front", "hero", "main", "primary", "01", "1", "cover",
        "label", "face", "pack", "box", "bag",
    })
    negative_name_tokens: FrozenSet[str] = frozenset({
        "back", "side", "barcode", "qrcode", "qr", "ingredients", "ingredient",
        "nutrition", "facts", "supplement", "panel", "blur", "blurry", "low",
        "res", "lowres", "placeholder", "dummy", "bw", "black", "white", "mono",
        "background", "bg",
    })
    role_weights: Mapping[str, float] = field(default_factory=lambda: _frozen_weights({
        "front": 12,
        "packaging": 8,
        "side": 4,
        "detail": -1,
        "accessory": -4,
        "back": -8,
        "other": 0,
    }))
    color_weights: Mapping[str, float] = field(default_factory=lambda: _frozen_weights({
        "black": -8,
        "white": -6,
        "gray": -5,
        "brown": -1,
        "red": 3,
        "orange": 3,
        "yellow": 3,
        "green": 3,
        "blue": 3,
        "purple": 2,
        "multi": 2,
    }))
    back_keywords: Tuple[str, ...] = (
        "supplement facts",
        "nutrition facts",
        "ingredients",
        "active ingredients",
        "directions",
        "drug facts",
    )
    filename_back_hints: Tuple[str, ...] = (
        "back", "facts", "ingredients", "supplement", "nutrition", "drug",
    )
    token_match_weight: float = 3
    max_claims: int = 8
    positive_name_weight: float = 12
    negative_name_weight: float = -10
    visible_text_bonus: float = 6
    no_visible_text_penalty: float = -5
    suggestion_bonus: float = 4
    max_confidence_bonus: float = 5
    metadata_dummy_penalty: float = -8
    dummy_max_bytes: int = 10 * 1024
    dummy_min_edge_px: int = 200
    # (minimum megapixels, weight), checked in order
    resolution_bands: Tuple[Tuple[float, float], ...] = ((3.5, 8), (2.0, 6), (1.0, 4), (0.6, 1))
    low_resolution_penalty: float = -6
    square_aspect: Tuple[float, float] = (0.8, 1.25)
    square_aspect_bonus: float = 3
    near_square_aspect: Tuple[float, float] = (0.6, 1.45)
    near_square_aspect_bonus: float = 1
    extreme_aspect: Tuple[float, float] = (0.45, 1.8)
    extreme_aspect_penalty: float = -4

    def looks_like_back(self, ocr_text: Optional[str], file_name: Optional[str]) -> bool:
        """True when OCR text or the file name carries a back-of-pack hint."""
        text = (ocr_text or "").lower()
        name = (file_name or "").lower()
        if any(keyword and keyword in text for keyword in self.back_keywords):
            return True
        return any(hint and hint in name for hint in self.filename_back_hints)


@dataclass
class EmbeddingConfig:
    """Configuration for visual similarity."""

    enabled: bool = True
    weight: float = 20.0
    min_similarity: float = 0.12
    hero_weight: float = 0.7
    back_weight: float = 0.3
    back_min_similarity: float = 0.35
    max_workers: int = 4

    def clamp(self) -> List[str]:
        adjustments: List[str] = []
        for name in ("min_similarity", "hero_weight", "back_weight", "back_min_similarity"):
            value = getattr(self, name)
            clamped = _clamp(value, 0.0, 1.0)
            if clamped != value:
                adjustments.append(f"embedding.{name} clamped from {value} to {clamped}")
                setattr(self, name, clamped)
        if self.weight < 0:
            adjustments.append(f"embedding.weight clamped from {self.weight} to 0.0")
            self.weight = 0.0
        if self.max_workers < 1:
            adjustments.append(f"embedding.max_workers clamped from {self.max_workers} to 1")
            self.max_workers = 1
        return adjustments


@dataclass
class AssignmentConfig:
    """Configuration for conflict-free assignment."""

    margin: float = 0.06
    min_assign: int = 3
    max_duplicates_per_group: int = 1
    hero_lock: bool = True

    def clamp(self) -> List[str]:
        adjustments: List[str] = []
        clamped = _clamp(self.margin, 0.0, 1.0)
        if clamped != self.margin:
            adjustments.append(f"assignment.margin clamped from {self.margin} to {clamped}")
            self.margin = clamped
        if self.min_assign < 0:
            adjustments.append(f"assignment.min_assign clamped from {self.min_assign} to 0")
            self.min_assign = 0
        if self.max_duplicates_per_group < 0:
            adjustments.append(
                f"assignment.max_duplicates_per_group clamped from {self.max_duplicates_per_group} to 0"
            )
            self.max_duplicates_per_group = 0
        return adjustments


@dataclass
class OutputConfig:
    """Configuration for per-group output lists."""

    max_images: int = 12
    strict_two_only: bool = True

    def clamp(self) -> List[str]:
        if self.max_images < 1:
            message = f"output.max_images clamped from {self.max_images} to 1"
            self.max_images = 1
            return [message]
        return []


@dataclass
class CandidateConfig:
    """Configuration for per-group candidate building."""

    folder_gate: bool = True

    def clamp(self) -> List[str]:
        return []


@dataclass
class MonitoringConfig:
    """Configuration for logging."""

    log_level: str = "INFO"
    log_to_stdout: bool = False

    def clamp(self) -> List[str]:
        valid_log_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        level = str(self.log_level).upper()
        if level not in valid_log_levels:
            message = f"monitoring.log_level {self.log_level!r} replaced with INFO"
            self.log_level = "INFO"
            return [message]
        self.log_level = level
        return []


@dataclass
class PairingConfig:
    """Complete configuration for a pairing run."""

    scoring: ScoringTables = field(default_factory=ScoringTables)
    embedding: EmbeddingConfig = field(default_factory=EmbeddingConfig)
    assignment: AssignmentConfig = field(default_factory=AssignmentConfig)
    output: OutputConfig = field(default_factory=OutputConfig)
    candidates: CandidateConfig = field(default_factory=CandidateConfig)
    monitoring: MonitoringConfig = field(default_factory=MonitoringConfig)

    def clamp(self) -> List[str]:
        """Clamp every section into range; returns and logs the adjustments."""
        adjustments: List[str] = []
        adjustments.extend(self.embedding.clamp())
        adjustments.extend(self.assignment.clamp())
        adjustments.extend(self.output.clamp())
        adjustments.extend(self.candidates.clamp())
        adjustments.extend(self.monitoring.clamp())
        for message in adjustments:
            logger.warning(message)
        return adjustments


# Environment variable -> (section, attribute, kind)
ENV_OVERRIDES: Dict[str, Tuple[str, str, str]] = {
    "USE_CLIP": ("embedding", "enabled", "bool"),
    "CLIP_WEIGHT": ("embedding", "weight", "float"),
    "CLIP_MIN_SIM": ("embedding", "min_similarity", "float"),
    "HERO_WEIGHT": ("embedding", "hero_weight", "float"),
    "BACK_WEIGHT": ("embedding", "back_weight", "float"),
    "BACK_MIN_SIM": ("embedding", "back_min_similarity", "float"),
    "CLIP_MAX_WORKERS": ("embedding", "max_workers", "int"),
    "CLIP_MARGIN": ("assignment", "margin", "float"),
    "SMARTDRAFT_MIN_ASSIGN": ("assignment", "min_assign", "int"),
    "SMARTDRAFT_MAX_DUPES": ("assignment", "max_duplicates_per_group", "int"),
    "HERO_LOCK": ("assignment", "hero_lock", "bool"),
    "STRICT_TWO_ONLY": ("output", "strict_two_only", "bool"),
    "FOLDER_GATE": ("candidates", "folder_gate", "bool"),
    "PAIRING_LOG_STDOUT": ("monitoring", "log_to_stdout", "bool"),
}


def _parse(raw: Any, kind: str) -> Any:
    """Convert a raw YAML/env value; returns None when it cannot be parsed."""
    if raw is None:
        return None
    if kind == "bool":
        if isinstance(raw, bool):
            return raw
        text = str(raw).strip().lower()
        if text in {"true", "1", "yes", "on"}:
            return True
        if text in {"false", "0", "no", "off"}:
            return False
        return None
    try:
        number = float(raw)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number):
        return None
    return int(number) if kind == "int" else number


def _coerce(raw: Any, kind: str, default: Any) -> Any:
    parsed = _parse(raw, kind)
    return default if parsed is None else parsed


class PairingConfigManager:
    """Manager for pairing configuration loading and validation."""

    def __init__(
        self,
        config_path: Union[str, Path] = DEFAULT_CONFIG_FILE,
        environ: Optional[Mapping[str, str]] = None,
        use_dotenv: bool = True,
    ) -> None:
        self.config_path = Path(config_path)
        self._environ = environ
        self._use_dotenv = use_dotenv
        self._config: Optional[PairingConfig] = None
        self._warnings: List[str] = []

    def load_config(self) -> PairingConfig:
        """Load configuration from YAML, apply env overrides, clamp into range."""
        raw: Dict[str, Any] = {}
        if self.config_path.exists():
            try:
                raw = yaml.safe_load(self.config_path.read_text(encoding="utf-8")) or {}
            except yaml.YAMLError as e:
                raise PairingConfigError(f"Invalid YAML in {self.config_path}: {e}") from e
            except (OSError, UnicodeDecodeError) as e:
                raise PairingConfigError(f"Cannot read {self.config_path}: {e}") from e
            if not isinstance(raw, dict):
                raise PairingConfigError(f"Top level of {self.config_path} must be a mapping")
        else:
            logger.info(f"Pairing config file not found: {self.config_path}, using defaults")

        config = PairingConfig(
            scoring=self._parse_scoring(raw.get("scoring") or {}),
            embedding=self._parse_section(EmbeddingConfig(), raw.get("embedding") or {}),
            assignment=self._parse_section(AssignmentConfig(), raw.get("assignment") or {}),
            output=self._parse_section(OutputConfig(), raw.get("output") or {}),
            candidates=self._parse_section(CandidateConfig(), raw.get("candidates") or {}),
            monitoring=self._parse_section(MonitoringConfig(), raw.get("monitoring") or {}),
        )

        self._apply_env_overrides(config)
        self._warnings.extend(config.clamp())
        self._config = config
        self._apply_logging_config()
        return config

    def _parse_section(self, section: Any, data: Dict[str, Any]) -> Any:
        if not isinstance(data, dict):
            self._warnings.append(f"Ignoring non-mapping config section for {type(section).__name__}")
            return section
        for f in fields(section):
            if f.name not in data:
                continue
            default = getattr(section, f.name)
            if isinstance(default, str):
                value = data[f.name] if isinstance(data[f.name], str) else default
            else:
                kind = "bool" if isinstance(default, bool) else "int" if isinstance(default, int) else "float"
                value = _coerce(data[f.name], kind, default)
            setattr(section, f.name, value)
        return section

    def _parse_scoring(self, data: Dict[str, Any]) -> ScoringTables:
        tables = ScoringTables()
        if not isinstance(data, dict):
            return tables
        updates: Dict[str, Any] = {}
        for name in ("positive_name_tokens", "negative_name_tokens"):
            if isinstance(data.get(name), list):
                updates[name] = frozenset(str(v).lower() for v in data[name])
        for name in ("back_keywords", "filename_back_hints"):
            if isinstance(data.get(name), list):
                updates[name] = tuple(str(v).strip().lower() for v in data[name] if str(v).strip())
        for name in ("role_weights", "color_weights"):
            value = data.get(name)
            if isinstance(value, dict):
                merged = dict(getattr(tables, name))
                for key, weight in value.items():
                    merged[str(key).lower()] = _coerce(weight, "float", 0.0)
                updates[name] = _frozen_weights(merged)
        for f in fields(tables):
            if f.name in updates or f.name not in data:
                continue
            default = getattr(tables, f.name)
            if isinstance(default, (int, float)) and not isinstance(default, bool):
                kind = "int" if isinstance(default, int) else "float"
                updates[f.name] = _coerce(data[f.name], kind, default)
        return replace(tables, **updates) if updates else tables

    def _apply_env_overrides(self, config: PairingConfig) -> None:
        if self._environ is None and self._use_dotenv:
            load_dotenv()
        environ = self._environ if self._environ is not None else os.environ

        for env_name, (section_name, attr, kind) in ENV_OVERRIDES.items():
            raw = environ.get(env_name)
            if raw is None or str(raw).strip() == "":
                continue
            value = _parse(raw, kind)
            if value is None:
                self._warnings.append(f"Ignoring unparseable {env_name}={raw!r}")
                continue
            setattr(getattr(config, section_name), attr, value)

        keywords = environ.get("BACK_KEYWORDS")
        if keywords:
            parsed = tuple(k.strip().lower() for k in keywords.split(",") if k.strip())
            if parsed:
                config.scoring = replace(config.scoring, back_keywords=parsed)

    def _apply_logging_config(self) -> None:
        """Apply logging configuration from monitoring config."""
        if self._config and self._config.monitoring.log_level:
            monitoring = self._config.monitoring
            if monitoring.log_to_stdout:
                setup_logging(monitoring.log_level)
            else:
                logging.getLogger("photo_pairing").setLevel(getattr(logging, monitoring.log_level, logging.INFO))
                quiet_http_loggers()

    def get_config(self) -> PairingConfig:
        """Get loaded configuration, loading if necessary."""
        if self._config is None:
            return self.load_config()
        return self._config

    def get_warnings(self) -> List[str]:
        """Get configuration loading warnings."""
        return self._warnings.copy()


def get_pairing_config(config_path: Optional[Union[str, Path]] = None) -> PairingConfig:
    """Convenience function to get pairing configuration."""
    manager = PairingConfigManager(config_path or DEFAULT_CONFIG_FILE)
    return manager.load_config()
