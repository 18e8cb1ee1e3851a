"""Tests for the typed exception hierarchy.

Validates:
- Class hierarchy is correct (isinstance checks)
- Exceptions carry a context dict
- Exceptions are exported from the package roots
"""

from __future__ import annotations

import pytest

# ---------------------------------------------------------------------------
# Hierarchy tests (no I/O, no async)
# ---------------------------------------------------------------------------


class TestExceptionHierarchy:
    """Verify the class hierarchy defined in core/exceptions.py."""

    def test_base_error_is_exception(self):
        from repospector.core.exceptions import RepoSpectorError

        assert isinstance(RepoSpectorError("base"), Exception)

    @pytest.mark.parametrize(
        "name",
        [
            "VectorIndexError",
            "KeywordIndexError",
            "SearchError",
            "ConfigError",
            "LLMError",
            "ReviewError",
        ],
    )
    def test_direct_subclasses_of_base(self, name):
        from repospector.core import exceptions

        cls = getattr(exceptions, name)
        assert issubclass(cls, exceptions.RepoSpectorError)

    def test_timeout_is_an_llm_error(self):
        from repospector.core.exceptions import LLMError, LLMTimeoutError

        assert isinstance(LLMTimeoutError("slow"), LLMError)

    def test_aggregation_error_is_a_review_error(self):
        from repospector.core.exceptions import AggregationError, ReviewError

        assert isinstance(AggregationError("synthesis failed"), ReviewError)

    def test_search_error_is_not_a_config_error(self):
        from repospector.core.exceptions import ConfigError, SearchError

        assert not isinstance(SearchError("x"), ConfigError)


class TestExceptionContext:
    def test_context_defaults_to_empty_dict(self):
        from repospector.core.exceptions import SearchError

        err = SearchError("boom")
        assert err.context == {}
        assert str(err) == "boom"

    def test_context_is_preserved(self):
        from repospector.core.exceptions import ConfigError

        err = ConfigError("bad m", {"m": 1})
        assert err.context == {"m": 1}

    def test_catching_base_catches_subclasses(self):
        from repospector.core.exceptions import AggregationError, RepoSpectorError

        with pytest.raises(RepoSpectorError):
            raise AggregationError("nope", {"failed_files": ["a.py"]})


class TestExports:
    def test_core_package_exports(self):
        import repospector.core as core

        for name in core.__all__:
            assert hasattr(core, name)
        assert "AggregationError" in core.__all__

    def test_root_package_exports_base_error(self):
        import repospector
        from repospector.core.exceptions import RepoSpectorError

        assert repospector.RepoSpectorError is RepoSpectorError
        assert repospector.__version__
