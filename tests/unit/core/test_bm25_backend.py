"""Unit tests for the BM25 keyword index."""

import pytest

from repospector.config.settings import BM25Settings
from repospector.core.bm25_backend import KeywordIndex, simple_stem
from repospector.core.exceptions import KeywordIndexError


@pytest.fixture
def index():
    idx = KeywordIndex()
    idx.add_document(
        "config",
        "def parse_config(path): return load_yaml(path)",
        {"file_path": "src/config.py", "language": "python"},
    )
    idx.add_document(
        "client",
        "class HttpClient { sendRequest(url) { return fetch(url) } }",
        {"file_path": "src/http/client.ts", "language": "typescript"},
    )
    idx.add_document(
        "retry",
        "def retry_request(fn, attempts): retry the request with backoff",
        {"file_path": "src/http/retry.py", "language": "python"},
    )
    return idx


class TestTokenizer:
    def test_splits_camel_and_snake_case(self):
        tokens = KeywordIndex().tokenize("parseConfig load_yaml_file", is_code=True)
        assert tokens == ["parse", "config", "load", "yaml", "file"]

    def test_drops_stop_words_numbers_and_short_tokens(self):
        tokens = KeywordIndex().tokenize("the 42 x value of a counter")
        assert tokens == ["value", "counter"]

    def test_code_keywords_only_dropped_in_code_mode(self):
        idx = KeywordIndex()
        assert "const" not in idx.tokenize("const limit = 10", is_code=True)
        assert "const" in idx.tokenize("const limit = 10", is_code=False)

    def test_respects_token_length_bounds(self):
        idx = KeywordIndex(BM25Settings(min_token_length=4, max_token_length=6))
        assert idx.tokenize("abc abcd abcdefgh") == ["abcd"]

    def test_empty_and_non_string_input(self):
        idx = KeywordIndex()
        assert idx.tokenize("") == []
        assert idx.tokenize(None) == []

    @pytest.mark.parametrize(
        ("word", "stem"),
        [
            ("authorization", "authorize"),
            ("validation", "validate"),
            ("parsing", "pars"),
            ("queries", "query"),
            ("handles", "handl"),
            ("cached", "cach"),
            ("quickly", "quick"),
            ("requests", "request"),
            ("class", "class"),
        ],
    )
    def test_simple_stem(self, word, stem):
        assert simple_stem(word) == stem


class TestKeywordSearch:
    def test_identifier_query_finds_matching_document(self, index):
        hits = index.search("parseConfig")
        assert hits[0].doc_id == "config"
        assert hits[0].score > 0
        assert hits[0].metadata["file_path"] == "src/config.py"

    def test_only_documents_sharing_a_term_are_returned(self, index):
        assert {hit.doc_id for hit in index.search("fetch url")} == {"client"}

    def test_scores_are_descending(self, index):
        hits = index.search("request retry")
        scores = [hit.score for hit in hits]
        assert scores == sorted(scores, reverse=True)
        assert hits[0].doc_id == "retry"

    def test_limit(self, index):
        assert len(index.search("request retry", limit=1)) == 1
        assert index.search("request", limit=0) == []

    def test_language_filter_is_exact(self, index):
        hits = index.search("request", filters={"language": "typescript"})
        assert [hit.doc_id for hit in hits] == ["client"]

    def test_file_path_filter_is_substring(self, index):
        hits = index.search("request", filters={"file_path": "http/retry"})
        assert [hit.doc_id for hit in hits] == ["retry"]

    def test_min_score(self, index):
        assert index.search("request", min_score=1e9) == []

    def test_query_without_terms_returns_nothing(self, index):
        assert index.search("the of and") == []
        assert index.search("") == []

    def test_unknown_terms_return_nothing(self, index):
        assert index.search("kubernetes") == []

    def test_empty_index(self):
        assert KeywordIndex().search("anything") == []


class TestKeywordMutation:
    def test_documents_without_terms_are_skipped(self):
        idx = KeywordIndex()
        idx.add_document("blank", "the a of")
        assert "blank" not in idx
        assert len(idx) == 0

    def test_re_adding_replaces_document(self, index):
        index.add_document("config", "def render_template(name): ...", {"language": "python"})

        assert len(index) == 3
        assert index.search("parse config") == []
        assert index.search("render template")[0].doc_id == "config"

    def test_remove_document(self, index):
        assert index.remove_document("client") is True
        assert index.remove_document("client") is False
        assert index.search("fetch") == []
        assert index.get_document("client") is None

    def test_search_reflects_additions_after_previous_search(self, index):
        index.search("request")
        index.add_document("pool", "connection pool for request reuse")

        assert "pool" in {hit.doc_id for hit in index.search("pool")}

    def test_clear(self, index):
        index.clear()
        assert len(index) == 0
        assert index.get_stats()["total_tokens"] == 0
        assert index.search("request") == []

    def test_stats(self, index):
        stats = index.get_stats()
        assert stats["total_documents"] == 3
        assert stats["unique_terms"] > 0
        assert stats["average_document_length"] == pytest.approx(stats["total_tokens"] / 3)

    def test_stats_track_removal(self, index):
        before = index.get_stats()["total_tokens"]
        removed_length = index.get_document("retry").length
        index.remove_document("retry")
        assert index.get_stats()["total_tokens"] == before - removed_length


class TestKeywordPersistence:
    def test_export_import_preserves_results(self, index):
        restored = KeywordIndex.from_dict(index.to_dict())

        assert len(restored) == len(index)
        assert [h.doc_id for h in restored.search("request retry")] == [
            h.doc_id for h in index.search("request retry")
        ]

    def test_import_keeps_settings(self):
        idx = KeywordIndex(BM25Settings(k1=1.2, min_token_length=3))
        idx.add_document("a", "token bucket limiter")

        restored = KeywordIndex.from_dict(idx.to_dict())

        assert restored.settings.k1 == 1.2
        assert restored.settings.min_token_length == 3

    def test_import_rejects_malformed_payload(self):
        with pytest.raises(KeywordIndexError):
            KeywordIndex.from_dict({"documents": [{"content": "no id"}]})
        with pytest.raises(KeywordIndexError):
            KeywordIndex.from_dict({})
