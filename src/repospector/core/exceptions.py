"""Typed exception hierarchy for repospector.

Hierarchy
---------
RepoSpectorError (base)
├── VectorIndexError       – HNSW graph persistence / deserialization errors
├── KeywordIndexError      – BM25 index build, search and import errors
├── SearchError            – search-time failures (fusion, vector store, etc.)
├── ConfigError            – configuration / validation errors
├── LLMError               – chat-completion collaborator failures
│   └── LLMTimeoutError
└── ReviewError            – multi-pass review failures
    └── AggregationError   – the final synthesis call failed

Malformed vectors and empty queries never raise; they degrade to maximal
distance or empty results. Only persistence, configuration and the final
aggregation step surface errors to callers.
"""

from typing import Any


class RepoSpectorError(Exception):
    """Base exception for repospector."""

    def __init__(self, message: str, context: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.context = context or {}


# ── Index layer ─────────────────────────────────────────────────────────


class VectorIndexError(RepoSpectorError):
    """HNSW graph could not be persisted or restored."""

    pass


class KeywordIndexError(RepoSpectorError):
    """BM25 keyword index operation failed."""

    pass


# ── Search layer ────────────────────────────────────────────────────────


class SearchError(RepoSpectorError):
    """Search-time failure (vector store, fusion, reranking)."""

    pass


# ── Configuration ───────────────────────────────────────────────────────


class ConfigError(RepoSpectorError):
    """Invalid configuration value."""

    pass


# ── LLM collaborator ────────────────────────────────────────────────────


class LLMError(RepoSpectorError):
    """Chat completion request failed."""

    pass


class LLMTimeoutError(LLMError):
    """Chat completion request timed out."""

    pass


# ── Review pipeline ─────────────────────────────────────────────────────


class ReviewError(RepoSpectorError):
    """Multi-pass review failed."""

    pass


class AggregationError(ReviewError):
    """Cross-file aggregation call failed; no partial result is returned."""

    pass
