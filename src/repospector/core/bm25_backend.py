"""BM25 keyword index over code chunks using rank_bm25.

BM25 ranks documents by term frequency and inverse document frequency. It
complements vector similarity for identifier-style queries
(e.g. "parseConfig", "retry_delay") where exact tokens matter more than
meaning.

Key features:
- Code-aware tokenizer (camelCase / snake_case / dotted names split apart)
- English and language-keyword stop words, light suffix stemming
- Incremental add/remove; the BM25+ scorer is rebuilt lazily on next search
- Candidate generation through a term -> doc id postings map
- Export/import as plain dicts for persistence
"""

from __future__ import annotations

import re
from dataclasses import asdict, dataclass, field
from typing import Any, NamedTuple

from loguru import logger
from rank_bm25 import BM25Plus

from ..config.defaults import CODE_STOP_WORDS, STOP_WORDS
from ..config.settings import BM25Settings
from .exceptions import KeywordIndexError

_CAMEL_BOUNDARY = re.compile(r"([a-z])([A-Z])")
_CODE_PUNCTUATION = re.compile(r"[{}()\[\];:,]")
_NUMBER = re.compile(r"^\d+$")
_SIBILANT_STEM = re.compile(r"([sxz]|[cs]h)$")


@dataclass
class KeywordDocument:
    """A document held by the keyword index."""

    doc_id: str
    content: str
    tokens: list[str]
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def length(self) -> int:
        return len(self.tokens)


class KeywordHit(NamedTuple):
    """A scored keyword match."""

    doc_id: str
    score: float
    metadata: dict[str, Any]


def simple_stem(word: str) -> str:
    """Strip common English suffixes (a much reduced Porter stemmer)."""
    if len(word) > 7 and word.endswith("ization"):
        return word[:-7] + "ize"
    if len(word) > 5 and word.endswith("ation"):
        return word[:-5] + "ate"
    if len(word) > 4 and word.endswith("ing") and len(word) - 3 >= 3:
        return word[:-3]
    if len(word) > 4 and word.endswith("ies"):
        return word[:-3] + "y"
    if len(word) > 3 and word.endswith("es"):
        stem = word[:-2]
        if len(stem) >= 2 and not _SIBILANT_STEM.search(stem):
            return stem
    if len(word) > 3 and word.endswith("ed"):
        return word[:-2]
    if len(word) > 3 and word.endswith("ly"):
        return word[:-2]
    if len(word) > 4 and word.endswith("ness"):
        return word[:-4]
    if len(word) > 4 and word.endswith("ment"):
        return word[:-4]
    if len(word) > 3 and word.endswith("s") and not word.endswith("ss"):
        return word[:-1]
    return word


class KeywordIndex:
    """Incremental BM25+ keyword index.

    Example:
        index = KeywordIndex()
        index.add_document("c1", "def parse_config(path): ...", {"file_path": "src/config.py"})
        index.search("parse config", limit=5)
        # [KeywordHit(doc_id='c1', score=..., metadata={...})]
    """

    def __init__(self, settings: BM25Settings | None = None) -> None:
        self.settings = settings or BM25Settings()
        self._documents: dict[str, KeywordDocument] = {}
        self._postings: dict[str, set[str]] = {}
        self._total_tokens = 0

        self._bm25: BM25Plus | None = None
        self._positions: dict[str, int] = {}
        self._dirty = True

    def __len__(self) -> int:
        return len(self._documents)

    def __contains__(self, doc_id: object) -> bool:
        return doc_id in self._documents

    # ── Tokenization ────────────────────────────────────────────────────

    def tokenize(self, text: str, is_code: bool = False) -> list[str]:
        """Split text into normalized, stemmed terms.

        Args:
            text: Raw text
            is_code: Split identifiers on camelCase, underscores, dots and
                code punctuation, and drop language keywords

        Returns:
            List of terms (may be empty)
        """
        if not text or not isinstance(text, str):
            return []

        processed = text
        if is_code:
            processed = _CAMEL_BOUNDARY.sub(r"\1 \2", processed)
            processed = processed.replace("_", " ").replace(".", " ")
            processed = _CODE_PUNCTUATION.sub(" ", processed)

        tokens = []
        for token in processed.lower().split():
            if not (
                self.settings.min_token_length
                <= len(token)
                <= self.settings.max_token_length
            ):
                continue
            if _NUMBER.match(token):
                continue
            if token in STOP_WORDS or (is_code and token in CODE_STOP_WORDS):
                continue
            tokens.append(simple_stem(token))
        return tokens

    # ── Mutation ────────────────────────────────────────────────────────

    def add_document(
        self, doc_id: str, content: str, metadata: dict[str, Any] | None = None
    ) -> None:
        """Index a document, replacing any previous version with the same id.

        Documents that produce no terms are skipped.
        """
        metadata = metadata or {}
        is_code = metadata.get("is_code", True) is not False
        tokens = self.tokenize(content, is_code=is_code)
        if not tokens:
            logger.debug(f"BM25: skipping {doc_id}, no indexable terms")
            return

        if doc_id in self._documents:
            self.remove_document(doc_id)

        self._documents[doc_id] = KeywordDocument(doc_id, content, tokens, metadata)
        for term in set(tokens):
            self._postings.setdefault(term, set()).add(doc_id)
        self._total_tokens += len(tokens)
        self._dirty = True

    def remove_document(self, doc_id: str) -> bool:
        """Remove a document. Returns False if it was not indexed."""
        doc = self._documents.pop(doc_id, None)
        if doc is None:
            return False

        for term in set(doc.tokens):
            postings = self._postings.get(term)
            if postings is None:
                continue
            postings.discard(doc_id)
            if not postings:
                del self._postings[term]
        self._total_tokens -= doc.length
        self._dirty = True
        return True

    def clear(self) -> None:
        self._documents.clear()
        self._postings.clear()
        self._total_tokens = 0
        self._bm25 = None
        self._positions = {}
        self._dirty = True

    def get_document(self, doc_id: str) -> KeywordDocument | None:
        return self._documents.get(doc_id)

    # ── Search ──────────────────────────────────────────────────────────

    def _ensure_scorer(self) -> BM25Plus | None:
        if not self._dirty:
            return self._bm25

        if not self._documents:
            self._bm25 = None
            self._positions = {}
        else:
            doc_ids = list(self._documents)
            self._bm25 = BM25Plus(
                [self._documents[d].tokens for d in doc_ids],
                k1=self.settings.k1,
                b=self.settings.b,
                delta=self.settings.delta,
            )
            self._positions = {doc_id: i for i, doc_id in enumerate(doc_ids)}
            logger.debug(f"Rebuilt BM25 scorer over {len(doc_ids)} documents")
        self._dirty = False
        return self._bm25

    @staticmethod
    def _matches_filters(doc: KeywordDocument, filters: dict[str, Any] | None) -> bool:
        if not filters:
            return True
        language = filters.get("language")
        if language and doc.metadata.get("language") != language:
            return False
        path_fragment = filters.get("file_path")
        if path_fragment and path_fragment not in (doc.metadata.get("file_path") or ""):
            return False
        return True

    def search(
        self,
        query: str,
        limit: int = 10,
        filters: dict[str, Any] | None = None,
        min_score: float = 0.0,
    ) -> list[KeywordHit]:
        """Rank documents containing at least one query term.

        Args:
            query: Free-text or identifier query (tokenized as code)
            limit: Maximum number of hits
            filters: Optional ``language`` (exact) and ``file_path`` (substring)
            min_score: Drop hits scoring below this value

        Returns:
            Hits sorted by descending score

        Raises:
            KeywordIndexError: If scoring fails
        """
        terms = self.tokenize(query, is_code=True)
        if not terms or limit <= 0:
            return []

        candidates: dict[str, None] = {}
        for term in terms:
            for doc_id in self._postings.get(term, ()):
                candidates[doc_id] = None

        docs = [
            self._documents[doc_id]
            for doc_id in candidates
            if self._matches_filters(self._documents[doc_id], filters)
        ]
        if not docs:
            return []

        scorer = self._ensure_scorer()
        if scorer is None:
            return []

        try:
            scores = scorer.get_batch_scores(
                terms, [self._positions[doc.doc_id] for doc in docs]
            )
        except (KeyError, ValueError, ZeroDivisionError) as e:
            raise KeywordIndexError(
                f"BM25 search failed: {e}", {"query": query}
            ) from e

        hits = [
            KeywordHit(doc.doc_id, float(score), doc.metadata)
            for doc, score in zip(docs, scores, strict=True)
            if score >= min_score
        ]
        hits.sort(key=lambda hit: hit.score, reverse=True)
        return hits[:limit]

    # ── Introspection / persistence ─────────────────────────────────────

    def get_stats(self) -> dict[str, Any]:
        total = len(self._documents)
        return {
            "total_documents": total,
            "total_tokens": self._total_tokens,
            "unique_terms": len(self._postings),
            "average_document_length": self._total_tokens / total if total else 0.0,
        }

    def to_dict(self) -> dict[str, Any]:
        """Export documents and settings; terms are re-derived on import."""
        return {
            "settings": asdict(self.settings),
            "documents": [
                {"doc_id": d.doc_id, "content": d.content, "metadata": d.metadata}
                for d in self._documents.values()
            ],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> KeywordIndex:
        """Rebuild an index exported with :meth:`to_dict`.

        Raises:
            KeywordIndexError: If the payload is malformed
        """
        try:
            index = cls(BM25Settings(**data.get("settings", {})))
            for raw in data["documents"]:
                index.add_document(raw["doc_id"], raw["content"], raw.get("metadata"))
        except (KeyError, TypeError) as e:
            raise KeywordIndexError(f"Invalid keyword index payload: {e}") from e

        logger.debug(f"Imported keyword index with {len(index)} documents")
        return index
