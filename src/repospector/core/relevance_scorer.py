"""Explainable multi-signal relevance scoring for search results.

Seven signals, each normalized to [0, 1], are combined with a weight map
that always sums to 1:

    semantic        vector similarity reported by the vector store
    keyword         BM25 score, saturating at 15
    exact_match     phrase match, else fraction of query terms present
    structure       class > interface > function > method > ... > other
    recency         step decay over 1 / 7 / 30 / 90 / 365 days
    file_relevance  file type, filename match, build-artifact penalty
    popularity      reference_count + import_count

Context boosts (language, test files, components, preferred file types)
multiply the weighted sum afterwards; the total is capped at 1.0. Every
score comes with its per-signal breakdown so callers can see why a result
ranked where it did.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from loguru import logger

from ..config.defaults import (
    DEFAULT_RELEVANCE_WEIGHTS,
    FILE_TYPE_SCORES,
    KEYWORD_SCORE_CEILING,
    STRUCTURE_SCORES,
    UNKNOWN_FILE_TYPE_SCORE,
)
from ..config.settings import RelevanceSettings
from ..utils.timestamps import age_in_days
from .exceptions import ConfigError

# Ordered: first match wins
_STRUCTURE_PATTERNS: list[tuple[str, re.Pattern[str]]] = [
    ("class", re.compile(r"^(export\s+)?(abstract\s+)?class\s+\w+", re.M)),
    ("interface", re.compile(r"^(export\s+)?interface\s+\w+", re.M)),
    (
        "function",
        re.compile(
            r"^(export\s+)?(async\s+)?(function|def)\s+\w+"
            r"|^(export\s+)?const\s+\w+\s*=\s*(async\s+)?\([^)]*\)\s*=>",
            re.M,
        ),
    ),
    (
        "method",
        re.compile(r"^\s*(public|private|protected|async)?\s*\w+\s*\([^)]*\)\s*[:{]", re.M),
    ),
    ("constant", re.compile(r"^(export\s+)?const\s+[A-Z_]+\s*=", re.M)),
    ("import", re.compile(r"^(import|from)\s+", re.M)),
    ("comment", re.compile(r"^(//|/\*|\*|#)", re.M)),
]

_RECENCY_STEPS = [(1, 1.0), (7, 0.9), (30, 0.7), (90, 0.5), (365, 0.3)]
_POPULARITY_STEPS = [(20, 1.0), (10, 0.9), (5, 0.8), (1, 0.7)]

_ARTIFACT_MARKERS = ("node_modules", "dist/", "build/", ".min.")
_SOURCE_DIR_MARKERS = ("/src/", "/lib/", "/app/")
_TEST_PATH_MARKERS = (".test.", ".spec.", "__tests__", "/tests/", "/test_")

LANGUAGE_BOOST = 1.1
TEST_FILE_BOOST = 1.2
COMPONENT_BOOST = 1.15
PREFERRED_TYPE_BOOST = 1.1


@dataclass(frozen=True)
class ScoringContext:
    """Caller context that enables multiplicative boosts."""

    language: str | None = None
    preferred_file_types: tuple[str, ...] = ()


@dataclass(frozen=True)
class RelevanceScore:
    """Total score plus the per-signal values and weights behind it."""

    total_score: float
    breakdown: dict[str, float]
    weights: dict[str, float] = field(default_factory=dict)


def detect_structure_type(content: str | None) -> str:
    """Classify a code chunk as class/interface/function/... or ``other``."""
    if not content:
        return "other"
    trimmed = content.strip()
    for name, pattern in _STRUCTURE_PATTERNS:
        if pattern.search(trimmed):
            return name
    return "other"


def _camel_case(term: str) -> str:
    return re.sub(r"[_-](\w)", lambda m: m.group(1).upper(), term)


def _file_path(result: Mapping[str, Any]) -> str:
    metadata = result.get("metadata") or {}
    return metadata.get("file_path") or result.get("file_path") or ""


class RelevanceScorer:
    """Weighted multi-signal scorer and re-ranker.

    Example:
        scorer = RelevanceScorer()
        ranked = scorer.rerank(
            [r.to_dict() for r in hybrid_results],
            "auth middleware",
            ScoringContext(language="python"),
        )
        ranked[0]["relevance_score"], ranked[0]["score_breakdown"]
    """

    def __init__(
        self,
        weights: Mapping[str, float] | None = None,
        now: Callable[[], datetime] | None = None,
        settings: RelevanceSettings | None = None,
    ) -> None:
        """Initialize the scorer.

        Args:
            weights: Partial weight overrides merged onto ``settings.weights``
            now: Clock for the recency signal; injectable for tests
            settings: Configured signal weights (defaults if omitted)

        Raises:
            ConfigError: If the merged weights name an unknown signal or are invalid
        """
        self._now = now or (lambda: datetime.now(UTC))
        self.settings = settings or RelevanceSettings()
        self.weights: dict[str, float] = dict(DEFAULT_RELEVANCE_WEIGHTS)
        self.set_weights({**self.settings.weights, **(weights or {})})

    # ── Weights ─────────────────────────────────────────────────────────

    def set_weights(self, new_weights: Mapping[str, float]) -> None:
        """Merge ``new_weights`` into the current map and renormalize to sum 1.

        Raises:
            ConfigError: On unknown signal names, negative weights, or a
                merged map whose weights sum to zero
        """
        unknown = set(new_weights) - set(DEFAULT_RELEVANCE_WEIGHTS)
        if unknown:
            raise ConfigError(
                f"Unknown relevance signals: {sorted(unknown)}",
                {"signals": sorted(unknown)},
            )
        negative = {k: v for k, v in new_weights.items() if v < 0}
        if negative:
            raise ConfigError("Relevance weights must be non-negative", {"weights": negative})

        merged = {**self.weights, **{k: float(v) for k, v in new_weights.items()}}
        total = sum(merged.values())
        if total <= 0:
            raise ConfigError("Relevance weights must not all be zero", {"weights": merged})

        self.weights = {k: v / total for k, v in merged.items()}
        logger.debug(f"Relevance weights set to {self.weights}")

    def get_weights(self) -> dict[str, float]:
        return dict(self.weights)

    # ── Scoring ─────────────────────────────────────────────────────────

    def score(
        self,
        result: Mapping[str, Any],
        query: str,
        context: ScoringContext | None = None,
    ) -> RelevanceScore:
        """Score one result against ``query``."""
        breakdown = {
            "semantic": self.score_semantic_similarity(result),
            "keyword": self.score_keyword_match(result),
            "exact_match": self.score_exact_match(result, query),
            "structure": self.score_code_structure(result),
            "recency": self.score_recency(result),
            "file_relevance": self.score_file_relevance(result, query),
            "popularity": self.score_popularity(result),
        }
        total = sum(breakdown[signal] * weight for signal, weight in self.weights.items())
        total = self.apply_context_boosts(total, result, query, context or ScoringContext())
        return RelevanceScore(total, breakdown, dict(self.weights))

    def rerank(
        self,
        results: Iterable[Mapping[str, Any]],
        query: str,
        context: ScoringContext | None = None,
    ) -> list[dict[str, Any]]:
        """Annotate results with ``relevance_score``/``score_breakdown`` and sort.

        Returns new dicts; the inputs are not modified.
        """
        scored = []
        for result in results:
            relevance = self.score(result, query, context)
            scored.append(
                {
                    **result,
                    "relevance_score": relevance.total_score,
                    "score_breakdown": relevance.breakdown,
                }
            )
        scored.sort(key=lambda r: r["relevance_score"], reverse=True)
        return scored

    # ── Signals ─────────────────────────────────────────────────────────

    @staticmethod
    def score_semantic_similarity(result: Mapping[str, Any]) -> float:
        similarity = result.get("similarity") or result.get("semantic_score") or 0.0
        return max(0.0, min(1.0, float(similarity)))

    @staticmethod
    def score_keyword_match(result: Mapping[str, Any]) -> float:
        raw = result.get("keyword_score") or result.get("bm25_score") or 0.0
        return max(0.0, min(float(raw) / KEYWORD_SCORE_CEILING, 1.0))

    @staticmethod
    def score_exact_match(result: Mapping[str, Any], query: str) -> float:
        """1.0 for a case-exact phrase hit, 0.8 case-insensitive, else term coverage."""
        content = result.get("content") or ""
        if not content or not query:
            return 0.0

        content_lower = content.lower()
        query_lower = query.lower()
        if query_lower in content_lower:
            return 1.0 if query in content else 0.8

        terms = query_lower.split()
        if not terms:
            return 0.0
        matched = sum(
            1
            for term in terms
            if term in content_lower or _camel_case(term).lower() in content_lower
        )
        return matched / len(terms)

    @staticmethod
    def score_code_structure(result: Mapping[str, Any]) -> float:
        metadata = result.get("metadata") or {}
        structure = (
            metadata.get("type")
            or result.get("structure_type")
            or detect_structure_type(result.get("content"))
        )
        return STRUCTURE_SCORES.get(structure, STRUCTURE_SCORES["other"])

    def score_recency(self, result: Mapping[str, Any]) -> float:
        metadata = result.get("metadata") or {}
        stamp = (
            metadata.get("last_modified")
            or result.get("last_modified")
            or result.get("timestamp")
        )
        age = age_in_days(stamp, now=self._now())
        if age is None:
            return 0.5  # neutral when unknown
        for days, value in _RECENCY_STEPS:
            if age < days:
                return value
        return 0.1

    @staticmethod
    def score_file_relevance(result: Mapping[str, Any], query: str) -> float:
        file_path = _file_path(result)
        file_name = file_path.rsplit("/", 1)[-1]
        extension = file_name.rsplit(".", 1)[-1].lower() if file_name else ""

        score = FILE_TYPE_SCORES.get(extension, UNKNOWN_FILE_TYPE_SCORE) * 0.4

        terms = query.lower().split()
        if terms:
            name_lower = file_name.lower()
            name_match = sum(1 for term in terms if term in name_lower) / len(terms)
            score += name_match * 0.4

        path_lower = file_path.lower()
        if any(marker in path_lower for marker in _ARTIFACT_MARKERS):
            score *= 0.3
        if any(marker in path_lower for marker in _SOURCE_DIR_MARKERS):
            score += 0.2

        return min(1.0, score)

    @staticmethod
    def score_popularity(result: Mapping[str, Any]) -> float:
        metadata = result.get("metadata") or {}
        usage = int(metadata.get("reference_count") or 0) + int(
            metadata.get("import_count") or 0
        )
        for threshold, value in _POPULARITY_STEPS:
            if usage >= threshold:
                return value
        return 0.5

    @staticmethod
    def apply_context_boosts(
        score: float,
        result: Mapping[str, Any],
        query: str,
        context: ScoringContext,
    ) -> float:
        """Multiply in context boosts and cap the result at 1.0."""
        metadata = result.get("metadata") or {}
        query_lower = query.lower()
        path_lower = _file_path(result).lower()
        file_name = path_lower.rsplit("/", 1)[-1]

        if context.language and metadata.get("language") == context.language:
            score *= LANGUAGE_BOOST

        if ("test" in query_lower or "spec" in query_lower) and (
            any(marker in path_lower for marker in _TEST_PATH_MARKERS)
            or file_name.startswith("test_")
        ):
            score *= TEST_FILE_BOOST

        if "component" in query_lower and (
            "component" in path_lower or path_lower.endswith((".jsx", ".tsx"))
        ):
            score *= COMPONENT_BOOST

        if context.preferred_file_types and "." in file_name:
            extension = file_name.rsplit(".", 1)[-1]
            preferred = {t.lower().lstrip(".") for t in context.preferred_file_types}
            if extension in preferred:
                score *= PREFERRED_TYPE_BOOST

        return min(1.0, score)
