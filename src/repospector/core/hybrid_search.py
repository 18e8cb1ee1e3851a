"""Hybrid keyword + semantic search with Reciprocal Rank Fusion.

Keyword (BM25) and semantic (vector) result lists are fused by rank, not by
raw score, so BM25's unbounded scores never need calibrating against cosine
similarity:

    fused = keyword_weight / (k + keyword_rank) + semantic_weight / (k + semantic_rank)

A source that did not return a document contributes nothing. Multiplicative
boosts (exact phrase, filename, code structure, recency) are applied after
fusion and recorded per result, then a greedy Jaccard pass drops
near-duplicate chunks.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from loguru import logger

from ..config.settings import BM25Settings, HybridSearchSettings
from ..utils.timestamps import age_in_days
from .bm25_backend import KeywordHit, KeywordIndex
from .search_cache import SearchCache, make_cache_key
from .vector_store import NullVectorStore, VectorMatch, VectorStore

_DEFINITION_START = re.compile(r"^(class|function|def|const|export)\s")
_STRUCTURAL_TYPES = {"class", "function"}


@dataclass(frozen=True)
class Boost:
    """A multiplicative boost applied to a fused score."""

    factor: float
    reason: str


@dataclass
class SearchResultEntry:
    """Per-document fusion state for a single search call."""

    doc_id: str
    content: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)
    keyword_rank: int | None = None
    semantic_rank: int | None = None
    keyword_score: float = 0.0
    semantic_score: float = 0.0
    fused_score: float = 0.0
    boosts: list[Boost] = field(default_factory=list)


@dataclass(frozen=True)
class HybridSearchResult:
    """Final ranked result returned to callers."""

    doc_id: str
    score: float
    content: str
    metadata: dict[str, Any]
    match_info: dict[str, Any]

    def to_dict(self) -> dict[str, Any]:
        """Flatten into the mapping shape consumed by RelevanceScorer."""
        return {
            "doc_id": self.doc_id,
            "score": self.score,
            "content": self.content,
            "metadata": self.metadata,
            "similarity": self.match_info.get("semantic_score", 0.0),
            "keyword_score": self.match_info.get("keyword_score", 0.0),
            "match_info": self.match_info,
        }


def content_similarity(first: str, second: str) -> float:
    """Jaccard similarity of lower-cased whitespace token sets."""
    if not first or not second:
        return 0.0
    tokens_a = set(first.lower().split())
    tokens_b = set(second.lower().split())
    union = tokens_a | tokens_b
    if not union:
        return 0.0
    return len(tokens_a & tokens_b) / len(union)


class HybridSearcher:
    """Fuses :class:`KeywordIndex` and a :class:`VectorStore` into one ranking.

    Example:
        searcher = HybridSearcher(vector_store=store)
        searcher.index_document("c1", "class AuthService: ...", {"file_path": "src/auth.py"})
        results = await searcher.search("AuthService login", repo_id="org/repo", limit=5)
        for result in results:
            print(result.doc_id, result.score, result.match_info["boosts"])
    """

    def __init__(
        self,
        settings: HybridSearchSettings | None = None,
        keyword_index: KeywordIndex | None = None,
        vector_store: VectorStore | None = None,
        bm25_settings: BM25Settings | None = None,
        now: Callable[[], datetime] | None = None,
        cache: SearchCache | None = None,
    ) -> None:
        """Initialize the searcher.

        Args:
            settings: Fusion, boost, diversity and cache settings
            keyword_index: Existing keyword index (a new one is created if omitted)
            vector_store: Semantic search collaborator (defaults to a null store)
            bm25_settings: Settings for a newly created keyword index
            now: Clock for recency boosts; injectable for tests
            cache: Result cache (built from ``settings`` if omitted)
        """
        self.settings = settings or HybridSearchSettings()
        self.keyword_index = keyword_index or KeywordIndex(bm25_settings)
        self.vector_store: VectorStore = vector_store or NullVectorStore()
        self._now = now or (lambda: datetime.now(UTC))
        self.cache = cache or SearchCache(
            max_size=self.settings.cache_max_size,
            ttl_seconds=self.settings.cache_ttl_seconds,
        )

    def set_vector_store(self, vector_store: VectorStore | None) -> None:
        self.vector_store = vector_store or NullVectorStore()
        self.cache.clear()

    # ── Indexing ────────────────────────────────────────────────────────

    def index_document(
        self, doc_id: str, content: str, metadata: dict[str, Any] | None = None
    ) -> None:
        """Add a document to the keyword index.

        Vectors are indexed through the vector store directly; this only
        covers the lexical side.
        """
        self.keyword_index.add_document(doc_id, content, metadata)
        self.cache.clear()

    def remove_document(self, doc_id: str) -> bool:
        removed = self.keyword_index.remove_document(doc_id)
        if removed:
            self.cache.clear()
        return removed

    def clear(self) -> None:
        self.keyword_index.clear()
        self.cache.clear()

    # ── Search ──────────────────────────────────────────────────────────

    async def search(
        self,
        query: str,
        repo_id: str,
        limit: int | None = None,
        use_semantic_search: bool = True,
        use_keyword_search: bool = True,
        filters: dict[str, Any] | None = None,
        boost_factors: dict[str, float] | None = None,
    ) -> list[HybridSearchResult]:
        """Run keyword and semantic search and fuse the rankings.

        Args:
            query: Search text
            repo_id: Repository scope for the vector store
            limit: Maximum results (defaults to ``settings.default_limit``)
            use_semantic_search: Query the vector store
            use_keyword_search: Query the keyword index
            filters: ``language`` / ``file_path`` filters passed to both sources
            boost_factors: Per-call overrides for ``exact_match``,
                ``filename_match``, ``code_structure`` and ``recent``

        Returns:
            Ranked, de-duplicated results. A blank query returns an empty list.
            A failing vector store degrades the call to keyword-only results.
        """
        if not query or not query.strip():
            return []

        limit = self.settings.default_limit if limit is None else limit
        cache_key = make_cache_key(
            repo_id,
            query,
            {
                "limit": limit,
                "use_semantic_search": use_semantic_search,
                "use_keyword_search": use_keyword_search,
                "filters": filters,
                "boost_factors": boost_factors,
            },
        )
        cached = self.cache.get(cache_key)
        if cached is not None:
            logger.debug(f"Hybrid search cache hit for '{query}'")
            return list(cached)

        expanded = self.settings.expanded_limit

        keyword_hits: list[KeywordHit] = []
        if use_keyword_search:
            keyword_hits = self.keyword_index.search(query, limit=expanded, filters=filters)

        semantic_hits: list[VectorMatch] = []
        if use_semantic_search:
            try:
                semantic_hits = await self.vector_store.search(
                    repo_id, query, expanded, filters
                )
            except Exception as e:
                logger.warning(
                    f"Semantic search failed for {repo_id}, falling back to keyword only: {e}"
                )

        fused = self.fuse_results(keyword_hits, semantic_hits, query, boost_factors)
        diverse = self.apply_diversity_filter(fused)

        results = [
            HybridSearchResult(
                doc_id=entry.doc_id,
                score=entry.fused_score,
                content=entry.content,
                metadata=entry.metadata,
                match_info={
                    "keyword_rank": entry.keyword_rank,
                    "semantic_rank": entry.semantic_rank,
                    "keyword_score": entry.keyword_score,
                    "semantic_score": entry.semantic_score,
                    "boosts": [
                        {"factor": b.factor, "reason": b.reason} for b in entry.boosts
                    ],
                },
            )
            for entry in diverse[:limit]
        ]

        logger.debug(
            f"Hybrid search '{query}': {len(keyword_hits)} keyword, "
            f"{len(semantic_hits)} semantic, {len(results)} returned"
        )
        self.cache.put(cache_key, results)
        return list(results)

    def fuse_results(
        self,
        keyword_hits: Sequence[KeywordHit],
        semantic_hits: Sequence[VectorMatch],
        query: str,
        boost_factors: dict[str, float] | None = None,
    ) -> list[SearchResultEntry]:
        """Weighted Reciprocal Rank Fusion followed by boosting.

        Ranks are 1-based positions within each input list.

        Returns:
            Entries sorted by descending fused score
        """
        settings = self.settings
        entries: dict[str, SearchResultEntry] = {}

        for rank, hit in enumerate(keyword_hits, start=1):
            entry = entries.get(hit.doc_id)
            if entry is None:
                doc = self.keyword_index.get_document(hit.doc_id)
                entry = SearchResultEntry(
                    doc_id=hit.doc_id,
                    content=doc.content if doc else "",
                    metadata=dict(doc.metadata if doc else hit.metadata or {}),
                )
                entries[hit.doc_id] = entry
            entry.keyword_rank = rank
            entry.keyword_score = hit.score

        for rank, match in enumerate(semantic_hits, start=1):
            entry = entries.get(match.id)
            if entry is None:
                entry = SearchResultEntry(
                    doc_id=match.id,
                    content=match.content or "",
                    metadata=dict(match.metadata or {}),
                )
                entries[match.id] = entry
            entry.semantic_rank = rank
            entry.semantic_score = match.similarity

        for entry in entries.values():
            keyword_rrf = (
                settings.keyword_weight / (settings.rrf_k + entry.keyword_rank)
                if entry.keyword_rank
                else 0.0
            )
            semantic_rrf = (
                settings.semantic_weight / (settings.rrf_k + entry.semantic_rank)
                if entry.semantic_rank
                else 0.0
            )
            entry.fused_score = keyword_rrf + semantic_rrf
            entry.boosts = self.calculate_boosts(entry, query, boost_factors)
            for boost in entry.boosts:
                entry.fused_score *= boost.factor

        return sorted(entries.values(), key=lambda e: e.fused_score, reverse=True)

    def calculate_boosts(
        self,
        entry: SearchResultEntry,
        query: str,
        boost_factors: dict[str, float] | None = None,
    ) -> list[Boost]:
        """Boosts earned by ``entry`` for ``query``.

        ``boost_factors`` overrides the configured multiplier per reason.
        """
        overrides = boost_factors or {}
        settings = self.settings
        boosts: list[Boost] = []

        content = (entry.content or "").lower()
        query_lower = query.lower()
        metadata = entry.metadata or {}

        if query_lower and query_lower in content:
            boosts.append(
                Boost(overrides.get("exact_match", settings.exact_match_boost), "exact_match")
            )

        file_name = (metadata.get("file_path") or "").rsplit("/", 1)[-1].lower()
        if file_name and any(term in file_name for term in query_lower.split()):
            boosts.append(
                Boost(
                    overrides.get("filename_match", settings.filename_match_boost),
                    "filename_match",
                )
            )

        if metadata.get("type") in _STRUCTURAL_TYPES or _DEFINITION_START.match(content):
            boosts.append(
                Boost(
                    overrides.get("code_structure", settings.code_structure_boost),
                    "code_structure",
                )
            )

        age = age_in_days(metadata.get("last_modified"), now=self._now())
        if age is not None and age < settings.recent_window_days:
            boosts.append(
                Boost(overrides.get("recent", settings.recent_boost), "recently_modified")
            )

        return boosts

    def apply_diversity_filter(
        self, entries: Sequence[SearchResultEntry]
    ) -> list[SearchResultEntry]:
        """Greedy near-duplicate suppression over an already sorted list.

        A candidate is kept only if its token Jaccard similarity to every kept
        entry is at most ``diversity_radius`` and its id is not already kept.
        Applying the filter to its own output changes nothing.
        """
        if len(entries) <= 1:
            return list(entries)

        radius = self.settings.diversity_radius
        kept = [entries[0]]
        seen = {entries[0].doc_id}
        for candidate in entries[1:]:
            if candidate.doc_id in seen:
                continue
            if any(
                content_similarity(candidate.content, existing.content) > radius
                for existing in kept
            ):
                continue
            kept.append(candidate)
            seen.add(candidate.doc_id)
        return kept

    # ── Maintenance ─────────────────────────────────────────────────────

    def clear_cache(self) -> None:
        self.cache.clear()

    def get_keyword_index_stats(self) -> dict[str, Any]:
        return self.keyword_index.get_stats()

    def export_keyword_index(self) -> dict[str, Any]:
        return self.keyword_index.to_dict()

    def import_keyword_index(self, data: dict[str, Any]) -> None:
        """Replace the keyword index with an exported one.

        Raises:
            KeywordIndexError: If ``data`` is malformed
        """
        self.keyword_index = KeywordIndex.from_dict(data)
        self.cache.clear()
