"""Unit tests for hybrid keyword + semantic search."""

from datetime import UTC, datetime, timedelta

import pytest

from repospector.config.settings import HybridSearchSettings
from repospector.core.bm25_backend import KeywordHit
from repospector.core.hybrid_search import (
    HybridSearcher,
    SearchResultEntry,
    content_similarity,
)
from repospector.core.vector_store import VectorMatch, VectorStore

NOW = datetime(2026, 1, 10, 12, 0, tzinfo=UTC)


class FakeVectorStore(VectorStore):
    """Returns canned matches and counts calls."""

    def __init__(self, matches=None, error=None):
        self.matches = matches or []
        self.error = error
        self.calls = 0

    async def search(self, repo_id, query, limit, filters=None):
        self.calls += 1
        if self.error:
            raise self.error
        return self.matches[:limit]


@pytest.fixture
def searcher():
    s = HybridSearcher(now=lambda: NOW)
    s.index_document(
        "auth",
        "class AuthService: def login(self, user): validate credentials",
        {"file_path": "src/auth/service.py", "language": "python", "type": "class"},
    )
    s.index_document(
        "cache",
        "lookup cached session tokens by key",
        {"file_path": "src/cache.py", "language": "python"},
    )
    s.index_document(
        "guide",
        "login instructions for operators",
        {"file_path": "docs/login.md", "language": "markdown"},
    )
    return s


def _entry(doc_id, content="plain words", **kwargs):
    return SearchResultEntry(doc_id=doc_id, content=content, **kwargs)


class TestFusion:
    def test_rrf_formula_without_boosts(self):
        searcher = HybridSearcher()
        fused = searcher.fuse_results(
            [KeywordHit("a", 5.0, {})],
            [VectorMatch("a", 0.9, "nothing special"), VectorMatch("b", 0.8, "other text")],
            "zzz",
        )

        scores = {e.doc_id: e.fused_score for e in fused}
        assert scores["a"] == pytest.approx(0.4 / 61 + 0.6 / 61)
        assert scores["b"] == pytest.approx(0.6 / 62)
        assert [e.doc_id for e in fused] == ["a", "b"]

    def test_better_rank_never_scores_lower(self):
        searcher = HybridSearcher()
        hits = [KeywordHit(f"d{i}", 10.0 - i, {}) for i in range(5)]

        fused = searcher.fuse_results(hits, [], "zzz")

        assert [e.doc_id for e in fused] == [f"d{i}" for i in range(5)]
        scores = [e.fused_score for e in fused]
        assert scores == sorted(scores, reverse=True)

    def test_agreement_between_sources_wins(self):
        searcher = HybridSearcher()
        fused = searcher.fuse_results(
            [KeywordHit("kw-only", 9.0, {}), KeywordHit("both", 3.0, {})],
            [VectorMatch("both", 0.7, "x"), VectorMatch("sem-only", 0.6, "y")],
            "zzz",
        )
        assert fused[0].doc_id == "both"

    def test_ranks_and_scores_recorded(self):
        searcher = HybridSearcher()
        fused = searcher.fuse_results(
            [KeywordHit("a", 4.2, {})], [VectorMatch("a", 0.75, "x")], "zzz"
        )
        assert fused[0].keyword_rank == 1
        assert fused[0].semantic_rank == 1
        assert fused[0].keyword_score == 4.2
        assert fused[0].semantic_score == 0.75


class TestBoosts:
    def test_exact_match_boost(self):
        searcher = HybridSearcher()
        boosts = searcher.calculate_boosts(
            _entry("a", "the retry budget is shared"), "retry budget"
        )
        assert [(b.reason, b.factor) for b in boosts] == [("exact_match", 1.5)]

    def test_filename_match_boost(self):
        searcher = HybridSearcher()
        boosts = searcher.calculate_boosts(
            _entry("a", "unrelated", metadata={"file_path": "src/Retry.py"}), "retry logic"
        )
        assert [b.reason for b in boosts] == ["filename_match"]

    def test_code_structure_boost_from_type_or_content(self):
        searcher = HybridSearcher()
        by_type = searcher.calculate_boosts(
            _entry("a", "body", metadata={"type": "function"}), "zzz"
        )
        by_content = searcher.calculate_boosts(_entry("b", "def handler(event): pass"), "zzz")
        assert [b.reason for b in by_type] == ["code_structure"]
        assert [b.reason for b in by_content] == ["code_structure"]

    def test_recency_boost_uses_injected_clock(self):
        searcher = HybridSearcher(now=lambda: NOW)
        recent = _entry("a", metadata={"last_modified": (NOW - timedelta(days=2)).isoformat()})
        stale = _entry("b", metadata={"last_modified": (NOW - timedelta(days=30)).isoformat()})

        assert [b.reason for b in searcher.calculate_boosts(recent, "zzz")] == [
            "recently_modified"
        ]
        assert searcher.calculate_boosts(stale, "zzz") == []

    def test_unparseable_timestamp_gives_no_boost(self):
        searcher = HybridSearcher(now=lambda: NOW)
        entry = _entry("a", metadata={"last_modified": "yesterday-ish"})
        assert searcher.calculate_boosts(entry, "zzz") == []

    def test_boost_factor_overrides(self):
        searcher = HybridSearcher()
        boosts = searcher.calculate_boosts(
            _entry("a", "def retry(): pass"),
            "retry",
            boost_factors={"exact_match": 3.0, "code_structure": 1.0},
        )
        assert {b.reason: b.factor for b in boosts} == {
            "exact_match": 3.0,
            "code_structure": 1.0,
        }

    def test_boosts_multiply_fused_score(self):
        searcher = HybridSearcher()
        fused = searcher.fuse_results([KeywordHit("a", 1.0, {})], [], "zzz")
        plain = fused[0].fused_score

        boosted = searcher.fuse_results(
            [], [VectorMatch("a", 0.9, "zzz appears here")], "zzz"
        )
        assert boosted[0].fused_score == pytest.approx(0.6 / 61 * 1.5)
        assert plain == pytest.approx(0.4 / 61)


class TestDiversity:
    def test_near_duplicates_are_dropped(self):
        searcher = HybridSearcher()
        entries = [
            _entry("a", "def load(path): return read(path)"),
            _entry("b", "def load(path): return read(path)"),
            _entry("c", "completely different content here"),
        ]
        assert [e.doc_id for e in searcher.apply_diversity_filter(entries)] == ["a", "c"]

    def test_filter_is_idempotent(self):
        searcher = HybridSearcher(HybridSearchSettings(diversity_radius=0.5))
        entries = [
            _entry("a", "alpha beta gamma delta"),
            _entry("b", "alpha beta gamma epsilon"),
            _entry("c", "alpha zeta"),
            _entry("d", "omega psi chi"),
        ]
        once = searcher.apply_diversity_filter(entries)
        twice = searcher.apply_diversity_filter(once)
        assert [e.doc_id for e in twice] == [e.doc_id for e in once]

    def test_duplicate_ids_are_dropped(self):
        searcher = HybridSearcher()
        entries = [_entry("a", "one two"), _entry("a", "three four")]
        assert len(searcher.apply_diversity_filter(entries)) == 1

    def test_content_similarity(self):
        assert content_similarity("a b c", "a b c") == 1.0
        assert content_similarity("a b", "c d") == 0.0
        assert content_similarity("", "a") == 0.0
        assert content_similarity("A b", "a B") == 1.0


class TestHybridSearch:
    @pytest.mark.asyncio
    async def test_blank_query_returns_nothing(self, searcher):
        assert await searcher.search("   ", repo_id="org/repo") == []
        assert await searcher.search("", repo_id="org/repo") == []

    @pytest.mark.asyncio
    async def test_keyword_only_search(self, searcher):
        results = await searcher.search("login", repo_id="org/repo", use_semantic_search=False)

        ids = [r.doc_id for r in results]
        assert set(ids) == {"auth", "guide"}
        assert all(r.match_info["semantic_rank"] is None for r in results)

    @pytest.mark.asyncio
    async def test_semantic_results_are_fused(self, searcher):
        searcher.set_vector_store(
            FakeVectorStore(
                [
                    VectorMatch("cache", 0.92, "lookup cached session tokens by key"),
                    VectorMatch("auth", 0.81, "class AuthService: ..."),
                ]
            )
        )

        results = await searcher.search("login", repo_id="org/repo")

        by_id = {r.doc_id: r for r in results}
        assert by_id["auth"].match_info["keyword_rank"] is not None
        assert by_id["auth"].match_info["semantic_rank"] == 2
        assert by_id["cache"].match_info["keyword_rank"] is None
        assert results[0].doc_id == "auth"

    @pytest.mark.asyncio
    async def test_semantic_failure_falls_back_to_keyword(self, searcher):
        searcher.set_vector_store(FakeVectorStore(error=RuntimeError("embedding backend down")))

        results = await searcher.search("login", repo_id="org/repo")

        assert {r.doc_id for r in results} == {"auth", "guide"}

    @pytest.mark.asyncio
    async def test_limit_is_applied(self, searcher):
        results = await searcher.search("login", repo_id="org/repo", limit=1)
        assert len(results) == 1

    @pytest.mark.asyncio
    async def test_filters_reach_keyword_index(self, searcher):
        results = await searcher.search(
            "login", repo_id="org/repo", filters={"language": "markdown"}
        )
        assert [r.doc_id for r in results] == ["guide"]

    @pytest.mark.asyncio
    async def test_result_to_dict_exposes_scores(self, searcher):
        searcher.set_vector_store(FakeVectorStore([VectorMatch("auth", 0.8, "x")]))

        (top, *_) = await searcher.search("login", repo_id="org/repo")
        flat = top.to_dict()

        assert flat["doc_id"] == "auth"
        assert flat["similarity"] == 0.8
        assert flat["keyword_score"] > 0
        assert {b["reason"] for b in flat["match_info"]["boosts"]} >= {"exact_match"}


class TestCaching:
    @pytest.mark.asyncio
    async def test_repeated_search_hits_cache(self, searcher):
        store = FakeVectorStore([VectorMatch("auth", 0.8, "x")])
        searcher.set_vector_store(store)

        first = await searcher.search("login", repo_id="org/repo")
        second = await searcher.search("login", repo_id="org/repo")

        assert store.calls == 1
        assert [r.doc_id for r in first] == [r.doc_id for r in second]
        assert searcher.cache.get_stats()["hits"] == 1

    @pytest.mark.asyncio
    async def test_different_options_are_cached_separately(self, searcher):
        store = FakeVectorStore()
        searcher.set_vector_store(store)

        await searcher.search("login", repo_id="org/repo", limit=5)
        await searcher.search("login", repo_id="org/repo", limit=2)

        assert store.calls == 2

    @pytest.mark.asyncio
    async def test_indexing_invalidates_cache(self, searcher):
        await searcher.search("session", repo_id="org/repo")

        searcher.index_document("sessions", "session store expiry", {"file_path": "src/session.py"})
        results = await searcher.search("session", repo_id="org/repo")

        assert "sessions" in {r.doc_id for r in results}

    @pytest.mark.asyncio
    async def test_removal_invalidates_cache(self, searcher):
        await searcher.search("login", repo_id="org/repo")

        assert searcher.remove_document("guide") is True
        results = await searcher.search("login", repo_id="org/repo")

        assert "guide" not in {r.doc_id for r in results}

    @pytest.mark.asyncio
    async def test_clear_cache(self, searcher):
        store = FakeVectorStore()
        searcher.set_vector_store(store)
        await searcher.search("login", repo_id="org/repo")

        searcher.clear_cache()
        await searcher.search("login", repo_id="org/repo")

        assert store.calls == 2


class TestKeywordIndexMaintenance:
    @pytest.mark.asyncio
    async def test_export_import_round_trip(self, searcher):
        exported = searcher.export_keyword_index()

        other = HybridSearcher()
        other.import_keyword_index(exported)

        assert other.get_keyword_index_stats() == searcher.get_keyword_index_stats()
        results = await other.search("login", repo_id="org/repo")
        assert {r.doc_id for r in results} == {"auth", "guide"}

    def test_clear(self, searcher):
        searcher.clear()
        assert searcher.get_keyword_index_stats()["total_documents"] == 0
