"""Settings for retrieval and review components."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml

from ..core.exceptions import ConfigError
from .defaults import DEFAULT_FOCUS_AREAS, DEFAULT_RELEVANCE_WEIGHTS


@dataclass
class HNSWSettings:
    """HNSW graph construction and query widths."""

    m: int = 16  # max neighbours above layer 0
    m_max0: int | None = None  # layer-0 cap, defaults to 2 * m
    ef_construction: int = 200
    ef_search: int = 50
    seed: int | None = None


@dataclass
class BM25Settings:
    """BM25+ parameters and tokenizer bounds."""

    k1: float = 1.5  # term frequency saturation
    b: float = 0.75  # length normalization
    delta: float = 0.5  # BM25+ lower bound for matching terms
    min_token_length: int = 2
    max_token_length: int = 50


@dataclass
class HybridSearchSettings:
    """Rank fusion, boosting, diversity and cache settings."""

    rrf_k: int = 60
    keyword_weight: float = 0.4
    semantic_weight: float = 0.6

    default_limit: int = 10
    expanded_limit: int = 50  # candidates fetched from each source

    exact_match_boost: float = 1.5
    filename_match_boost: float = 1.3
    code_structure_boost: float = 1.2
    recent_boost: float = 1.1
    recent_window_days: int = 7

    diversity_radius: float = 0.85  # max token Jaccard between kept results

    cache_max_size: int = 100
    cache_ttl_seconds: float = 300.0


@dataclass
class RelevanceSettings:
    """Signal weights for the relevance scorer (normalized on use)."""

    weights: dict[str, float] = field(
        default_factory=lambda: dict(DEFAULT_RELEVANCE_WEIGHTS)
    )


@dataclass
class GroupingSettings:
    """Thresholds for partitioning PR files into review units."""

    solo_risk_threshold: int = 300
    solo_change_threshold: int = 200
    max_files_per_group: int = 5
    max_lines_per_group: int = 300


@dataclass
class MultiPassSettings:
    """Multi-pass review orchestration settings."""

    max_concurrent: int = 3
    max_files_to_review: int = 50
    unit_timeout_seconds: float = 120.0
    retry_attempts: int = 1
    retry_delay_seconds: float = 2.0
    keepalive_interval_seconds: float = 25.0
    focus_areas: list[str] = field(default_factory=lambda: list(DEFAULT_FOCUS_AREAS))

    def __post_init__(self) -> None:
        if self.max_concurrent < 1:
            raise ConfigError(
                f"max_concurrent must be >= 1, got {self.max_concurrent}",
                {"max_concurrent": self.max_concurrent},
            )
        if self.retry_attempts < 0:
            raise ConfigError(
                f"retry_attempts must be >= 0, got {self.retry_attempts}",
                {"retry_attempts": self.retry_attempts},
            )


_SECTIONS: dict[str, type] = {
    "hnsw": HNSWSettings,
    "bm25": BM25Settings,
    "hybrid": HybridSearchSettings,
    "relevance": RelevanceSettings,
    "grouping": GroupingSettings,
    "multipass": MultiPassSettings,
}


def _build_section(cls: type, data: dict[str, Any] | None) -> Any:
    if not data:
        return cls()
    known = {f.name for f in fields(cls)}
    unknown = set(data) - known
    if unknown:
        raise ConfigError(
            f"Unknown {cls.__name__} keys: {sorted(unknown)}",
            {"section": cls.__name__, "keys": sorted(unknown)},
        )
    return cls(**data)


@dataclass
class Settings:
    """Complete repospector configuration."""

    hnsw: HNSWSettings = field(default_factory=HNSWSettings)
    bm25: BM25Settings = field(default_factory=BM25Settings)
    hybrid: HybridSearchSettings = field(default_factory=HybridSearchSettings)
    relevance: RelevanceSettings = field(default_factory=RelevanceSettings)
    grouping: GroupingSettings = field(default_factory=GroupingSettings)
    multipass: MultiPassSettings = field(default_factory=MultiPassSettings)

    @classmethod
    def load(cls, path: Path) -> Settings:
        """Load configuration from a YAML file.

        Args:
            path: Path to YAML configuration file

        Returns:
            Settings instance (defaults when the file does not exist)

        Raises:
            ConfigError: If the file is not valid YAML or has unknown keys
        """
        if not path.exists():
            return cls()

        try:
            with open(path) as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {path}: {e}", {"path": str(path)}) from e

        if not isinstance(data, dict):
            raise ConfigError(
                f"Expected a mapping at the top of {path}", {"path": str(path)}
            )
        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Settings:
        """Create settings from a dictionary of sections."""
        unknown = set(data) - set(_SECTIONS)
        if unknown:
            raise ConfigError(
                f"Unknown settings sections: {sorted(unknown)}",
                {"sections": sorted(unknown)},
            )
        try:
            return cls(
                **{
                    name: _build_section(section_cls, data.get(name))
                    for name, section_cls in _SECTIONS.items()
                }
            )
        except TypeError as e:
            raise ConfigError(f"Invalid settings: {e}") from e

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return asdict(self)

    def save(self, path: Path) -> None:
        """Save configuration to a YAML file."""
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            yaml.dump(self.to_dict(), f, default_flow_style=False, sort_keys=False)
