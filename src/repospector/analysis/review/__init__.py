"""Multi-pass pull request review.

This package reviews a pull request in two LLM passes: one call per group
of related changed files, then one synthesis call over all per-file results.

Key Components:
- MultiPassReviewEngine: Orchestrates preparing -> grouping -> reviewing -> aggregating
- RiskBasedGroupingStrategy: Splits changed files into review units
- ParsedReview / FallbackReview: Structured or raw-text per-file result
- MultiPassResult: Final Markdown review plus per-file results

Usage:
    from repospector.analysis.review import MultiPassReviewEngine, PullRequestData

    engine = MultiPassReviewEngine(llm_client)
    result = await engine.execute(PullRequestData.from_dict(pr_json))

    for path in result.failed_files:
        print(f"not reviewed: {path}")
"""

from .grouping import FileGroupingStrategy, RiskBasedGroupingStrategy
from .models import (
    FallbackReview,
    FileVerdict,
    Finding,
    LLMSettings,
    MultiPassResult,
    ParsedReview,
    PerFileReview,
    PRFile,
    PullRequestData,
    ReviewContext,
    ReviewOptions,
    ReviewPhase,
    ReviewProgress,
    ReviewUnit,
    RiskLevel,
    Severity,
)
from .multipass_engine import MultiPassReviewEngine

__all__ = [
    "FallbackReview",
    "FileGroupingStrategy",
    "FileVerdict",
    "Finding",
    "LLMSettings",
    "MultiPassResult",
    "MultiPassReviewEngine",
    "ParsedReview",
    "PerFileReview",
    "PRFile",
    "PullRequestData",
    "ReviewContext",
    "ReviewOptions",
    "ReviewPhase",
    "ReviewProgress",
    "ReviewUnit",
    "RiskBasedGroupingStrategy",
    "RiskLevel",
    "Severity",
]
