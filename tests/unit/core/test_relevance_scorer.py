"""Unit tests for the explainable relevance scorer."""

from datetime import UTC, datetime, timedelta

import pytest

from repospector.config.defaults import DEFAULT_RELEVANCE_WEIGHTS
from repospector.config.settings import RelevanceSettings, Settings
from repospector.core.exceptions import ConfigError
from repospector.core.relevance_scorer import (
    COMPONENT_BOOST,
    LANGUAGE_BOOST,
    TEST_FILE_BOOST,
    RelevanceScorer,
    ScoringContext,
    detect_structure_type,
)

NOW = datetime(2026, 3, 1, tzinfo=UTC)

SIGNALS = {
    "semantic",
    "keyword",
    "exact_match",
    "structure",
    "recency",
    "file_relevance",
    "popularity",
}


@pytest.fixture
def scorer():
    return RelevanceScorer(now=lambda: NOW)


def _result(**overrides):
    base = {
        "doc_id": "c1",
        "content": "def parse_config(path):\n    return load(path)",
        "similarity": 0.5,
        "keyword_score": 3.0,
        "metadata": {"file_path": "src/config/loader.py", "language": "python"},
    }
    base.update(overrides)
    return base


class TestWeights:
    def test_default_weights_sum_to_one(self, scorer):
        assert sum(scorer.get_weights().values()) == pytest.approx(1.0)
        assert set(scorer.get_weights()) == SIGNALS

    def test_set_weights_renormalizes(self, scorer):
        scorer.set_weights({"semantic": 2.0})

        weights = scorer.get_weights()
        assert sum(weights.values()) == pytest.approx(1.0)
        assert weights["semantic"] > DEFAULT_RELEVANCE_WEIGHTS["semantic"]

    def test_weights_passed_to_constructor(self):
        scorer = RelevanceScorer({"popularity": 0.0})
        assert scorer.get_weights()["popularity"] == 0.0
        assert sum(scorer.get_weights().values()) == pytest.approx(1.0)

    def test_weights_from_settings(self):
        settings = Settings.from_dict({"relevance": {"weights": {"popularity": 0.0, "semantic": 0.4}}})

        scorer = RelevanceScorer(settings=settings.relevance)

        weights = scorer.get_weights()
        assert weights["popularity"] == 0.0
        assert weights["semantic"] == pytest.approx(0.4)
        assert sum(weights.values()) == pytest.approx(1.0)

    def test_constructor_weights_override_settings(self):
        scorer = RelevanceScorer(
            {"semantic": 0.0}, settings=RelevanceSettings(weights={"semantic": 0.9})
        )
        assert scorer.get_weights()["semantic"] == 0.0

    def test_invalid_settings_weights_rejected(self):
        with pytest.raises(ConfigError, match="Unknown relevance signals"):
            RelevanceScorer(settings=RelevanceSettings(weights={"vibes": 1.0}))

    def test_unknown_signal_rejected(self, scorer):
        with pytest.raises(ConfigError, match="Unknown relevance signals"):
            scorer.set_weights({"vibes": 1.0})

    def test_negative_weight_rejected(self, scorer):
        with pytest.raises(ConfigError):
            scorer.set_weights({"keyword": -0.1})

    def test_all_zero_weights_rejected(self, scorer):
        with pytest.raises(ConfigError):
            scorer.set_weights(dict.fromkeys(SIGNALS, 0.0))

    def test_failed_update_keeps_previous_weights(self, scorer):
        before = scorer.get_weights()
        with pytest.raises(ConfigError):
            scorer.set_weights({"vibes": 1.0})
        assert scorer.get_weights() == before

    def test_get_weights_returns_copy(self, scorer):
        scorer.get_weights()["semantic"] = 99.0
        assert scorer.get_weights()["semantic"] != 99.0


class TestScore:
    def test_breakdown_has_every_signal(self, scorer):
        relevance = scorer.score(_result(), "parse config")
        assert set(relevance.breakdown) == SIGNALS
        assert all(0.0 <= v <= 1.0 for v in relevance.breakdown.values())
        assert sum(relevance.weights.values()) == pytest.approx(1.0)

    def test_total_is_weighted_sum_without_boosts(self, scorer):
        relevance = scorer.score(_result(), "parse config")
        expected = sum(
            relevance.breakdown[s] * relevance.weights[s] for s in relevance.breakdown
        )
        assert relevance.total_score == pytest.approx(expected)

    def test_total_is_capped_at_one(self):
        scorer = RelevanceScorer({"semantic": 1.0, **dict.fromkeys(SIGNALS - {"semantic"}, 0.0)})
        relevance = scorer.score(
            _result(similarity=1.0),
            "parse config",
            ScoringContext(language="python", preferred_file_types=("py",)),
        )
        assert relevance.total_score == 1.0

    def test_semantic_similarity_is_clamped(self, scorer):
        assert scorer.score_semantic_similarity({"similarity": 1.7}) == 1.0
        assert scorer.score_semantic_similarity({"similarity": -0.3}) == 0.0
        assert scorer.score_semantic_similarity({}) == 0.0

    def test_keyword_score_saturates(self, scorer):
        assert scorer.score_keyword_match({"keyword_score": 7.5}) == pytest.approx(0.5)
        assert scorer.score_keyword_match({"keyword_score": 400}) == 1.0
        assert scorer.score_keyword_match({"bm25_score": 15}) == 1.0

    def test_exact_match_levels(self, scorer):
        content = {"content": "class RetryPolicy:\n    max_attempts = 3"}
        assert scorer.score_exact_match(content, "RetryPolicy") == 1.0
        assert scorer.score_exact_match(content, "retrypolicy") == 0.8
        assert scorer.score_exact_match(content, "max_attempts backoff") == pytest.approx(0.5)
        assert scorer.score_exact_match({"content": ""}, "anything") == 0.0

    def test_exact_match_tries_camel_case_of_terms(self, scorer):
        result = {"content": "function loadUserProfile() {}"}
        assert scorer.score_exact_match(result, "load_user_profile") == 1.0

    def test_structure_from_metadata_overrides_content(self, scorer):
        result = _result(metadata={"type": "interface"})
        assert scorer.score_code_structure(result) == 0.9

    @pytest.mark.parametrize(
        ("content", "expected"),
        [
            ("class Foo:\n    pass", "class"),
            ("export interface Props {}", "interface"),
            ("async def handler(event):", "function"),
            ("const fetchUser = async (id) => {}", "function"),
            ("import os", "import"),
            ("# just a note", "comment"),
            ("x", "other"),
            ("", "other"),
        ],
    )
    def test_detect_structure_type(self, content, expected):
        assert detect_structure_type(content) == expected

    @pytest.mark.parametrize(
        ("age", "expected"),
        [
            (timedelta(hours=2), 1.0),
            (timedelta(days=3), 0.9),
            (timedelta(days=20), 0.7),
            (timedelta(days=60), 0.5),
            (timedelta(days=200), 0.3),
            (timedelta(days=900), 0.1),
        ],
    )
    def test_recency_steps(self, scorer, age, expected):
        result = {"metadata": {"last_modified": (NOW - age).isoformat()}}
        assert scorer.score_recency(result) == expected

    def test_recency_accepts_epoch_milliseconds(self, scorer):
        stamp = int((NOW - timedelta(hours=1)).timestamp() * 1000)
        assert scorer.score_recency({"timestamp": stamp}) == 1.0

    def test_unknown_recency_is_neutral(self, scorer):
        assert scorer.score_recency({}) == 0.5
        assert scorer.score_recency({"metadata": {"last_modified": "soon"}}) == 0.5

    def test_file_relevance(self, scorer):
        source = scorer.score_file_relevance(
            {"metadata": {"file_path": "app/src/config.py"}}, "config"
        )
        artifact = scorer.score_file_relevance(
            {"metadata": {"file_path": "dist/config.js"}}, "config"
        )
        docs = scorer.score_file_relevance({"metadata": {"file_path": "README.md"}}, "config")

        assert source == pytest.approx(1.0)
        assert artifact == pytest.approx(0.24)
        assert docs == pytest.approx(0.12)

    @pytest.mark.parametrize(
        ("references", "imports", "expected"),
        [(0, 0, 0.5), (1, 0, 0.7), (3, 2, 0.8), (6, 4, 0.9), (15, 10, 1.0)],
    )
    def test_popularity_steps(self, scorer, references, imports, expected):
        result = {"metadata": {"reference_count": references, "import_count": imports}}
        assert scorer.score_popularity(result) == expected


class TestContextBoosts:
    def test_language_boost(self, scorer):
        base = scorer.apply_context_boosts(0.5, _result(), "x", ScoringContext())
        boosted = scorer.apply_context_boosts(
            0.5, _result(), "x", ScoringContext(language="python")
        )
        assert base == 0.5
        assert boosted == pytest.approx(0.5 * LANGUAGE_BOOST)

    @pytest.mark.parametrize(
        "path",
        ["src/auth.test.ts", "src/__tests__/auth.js", "pkg/tests/auth.py", "test_auth.py"],
    )
    def test_test_file_boost(self, scorer, path):
        result = {"metadata": {"file_path": path}}
        boosted = scorer.apply_context_boosts(0.5, result, "auth test", ScoringContext())
        assert boosted == pytest.approx(0.5 * TEST_FILE_BOOST)

    def test_test_boost_needs_test_query(self, scorer):
        result = {"metadata": {"file_path": "pkg/tests/auth.py"}}
        assert scorer.apply_context_boosts(0.5, result, "auth", ScoringContext()) == 0.5

    def test_component_boost(self, scorer):
        result = {"metadata": {"file_path": "web/Button.tsx"}}
        boosted = scorer.apply_context_boosts(0.5, result, "button component", ScoringContext())
        assert boosted == pytest.approx(0.5 * COMPONENT_BOOST)

    def test_preferred_file_types_accept_dotted_names(self, scorer):
        result = {"metadata": {"file_path": "src/app.go"}}
        boosted = scorer.apply_context_boosts(
            0.5, result, "x", ScoringContext(preferred_file_types=(".go",))
        )
        assert boosted == pytest.approx(0.55)


class TestRerank:
    def test_rerank_sorts_and_annotates(self, scorer):
        strong = _result(doc_id="strong", similarity=0.95, keyword_score=12.0)
        weak = _result(
            doc_id="weak",
            similarity=0.1,
            keyword_score=0.2,
            content="unrelated prose",
            metadata={"file_path": "docs/notes.txt"},
        )

        ranked = scorer.rerank([weak, strong], "parse config")

        assert [r["doc_id"] for r in ranked] == ["strong", "weak"]
        assert set(ranked[0]["score_breakdown"]) == SIGNALS
        assert ranked[0]["relevance_score"] >= ranked[1]["relevance_score"]

    def test_rerank_does_not_mutate_inputs(self, scorer):
        original = _result()
        scorer.rerank([original], "parse config")
        assert "relevance_score" not in original

    def test_rerank_empty(self, scorer):
        assert scorer.rerank([], "anything") == []
