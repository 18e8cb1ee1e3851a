"""Retrieval core: vector graph, keyword index, hybrid fusion and scoring."""

from .exceptions import (
    AggregationError,
    ConfigError,
    KeywordIndexError,
    LLMError,
    LLMTimeoutError,
    RepoSpectorError,
    ReviewError,
    SearchError,
    VectorIndexError,
)

__all__ = [
    "AggregationError",
    "ConfigError",
    "KeywordIndexError",
    "LLMError",
    "LLMTimeoutError",
    "RepoSpectorError",
    "ReviewError",
    "SearchError",
    "VectorIndexError",
]
