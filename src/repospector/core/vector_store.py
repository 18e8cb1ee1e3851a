"""Repository-scoped semantic search on top of :class:`VectorIndex`.

The hybrid searcher depends only on the :class:`VectorStore` interface.
:class:`NullVectorStore` stands in when no embedding backend is configured,
so callers never branch on a missing store.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol

from loguru import logger

from ..config.settings import HNSWSettings
from .exceptions import SearchError
from .hnsw import VectorIndex
from .hnsw_store import HNSWStore

# Over-fetch factor when filters may discard graph hits
FILTER_OVERFETCH = 4


class EmbeddingFunction(Protocol):
    """Protocol for async embedding functions."""

    async def __call__(self, texts: list[str]) -> list[list[float]]:
        """Generate one embedding per input text."""
        ...


@dataclass(frozen=True)
class VectorMatch:
    """A semantic search hit."""

    id: str
    similarity: float
    content: str
    metadata: dict[str, Any] = field(default_factory=dict)


class VectorStore(ABC):
    """Abstract interface for semantic search collaborators."""

    @abstractmethod
    async def search(
        self,
        repo_id: str,
        query: str,
        limit: int,
        filters: dict[str, Any] | None = None,
    ) -> list[VectorMatch]:
        """Return up to ``limit`` matches by descending similarity."""
        ...


class NullVectorStore(VectorStore):
    """Vector store used when semantic search is not configured."""

    async def search(
        self,
        repo_id: str,
        query: str,
        limit: int,
        filters: dict[str, Any] | None = None,
    ) -> list[VectorMatch]:
        return []


def _passes_filters(metadata: dict[str, Any], filters: dict[str, Any] | None) -> bool:
    if not filters:
        return True
    language = filters.get("language")
    if language and metadata.get("language") != language:
        return False
    path_fragment = filters.get("file_path")
    if path_fragment and path_fragment not in (metadata.get("file_path") or ""):
        return False
    return True


class HNSWVectorStore(VectorStore):
    """One HNSW graph per repository plus the documents behind each vector.

    Example:
        store = HNSWVectorStore(embed=my_async_embedder)
        await store.add_documents("org/repo", [
            {"id": "c1", "content": "def login(user): ...", "metadata": {"file_path": "auth.py"}},
        ])
        matches = await store.search("org/repo", "user authentication", limit=5)
    """

    def __init__(
        self,
        embed: EmbeddingFunction,
        settings: HNSWSettings | None = None,
        store: HNSWStore | None = None,
    ) -> None:
        """Initialize the store.

        Args:
            embed: Async function mapping texts to embedding vectors
            settings: Graph parameters for newly created repository indexes
            store: Optional persistence backend for :meth:`save`/:meth:`load`
        """
        self.embed = embed
        self.settings = settings or HNSWSettings()
        self.store = store
        self._indexes: dict[str, VectorIndex] = {}
        self._documents: dict[str, dict[str, dict[str, Any]]] = {}

    def _index_for(self, repo_id: str) -> VectorIndex:
        index = self._indexes.get(repo_id)
        if index is None:
            index = VectorIndex(
                m=self.settings.m,
                m_max0=self.settings.m_max0,
                ef_construction=self.settings.ef_construction,
                ef_search=self.settings.ef_search,
                seed=self.settings.seed,
            )
            self._indexes[repo_id] = index
            self._documents[repo_id] = {}
        return index

    def get_index(self, repo_id: str) -> VectorIndex | None:
        return self._indexes.get(repo_id)

    async def add_documents(
        self, repo_id: str, documents: Sequence[dict[str, Any]]
    ) -> int:
        """Embed and insert documents.

        Each document is ``{"id", "content", "metadata"?, "vector"?}``; a
        precomputed ``vector`` skips the embedding call for that document.

        Returns:
            Number of documents inserted

        Raises:
            SearchError: If the embedding function fails or returns the
                wrong number of vectors
        """
        if not documents:
            return 0

        index = self._index_for(repo_id)
        pending = [doc for doc in documents if doc.get("vector") is None]
        vectors: dict[str, Any] = {
            doc["id"]: doc["vector"] for doc in documents if doc.get("vector") is not None
        }

        if pending:
            try:
                embedded = await self.embed([doc["content"] for doc in pending])
            except Exception as e:
                raise SearchError(
                    f"Embedding failed for {len(pending)} documents: {e}",
                    {"repo_id": repo_id},
                ) from e
            if len(embedded) != len(pending):
                raise SearchError(
                    f"Embedding function returned {len(embedded)} vectors "
                    f"for {len(pending)} documents",
                    {"repo_id": repo_id},
                )
            for doc, vector in zip(pending, embedded, strict=True):
                vectors[doc["id"]] = vector

        repo_docs = self._documents[repo_id]
        for doc in documents:
            index.insert(doc["id"], vectors[doc["id"]])
            repo_docs[doc["id"]] = {
                "content": doc.get("content", ""),
                "metadata": dict(doc.get("metadata") or {}),
            }

        logger.debug(f"Indexed {len(documents)} vectors for {repo_id} (total {index.size})")
        return len(documents)

    def remove_document(self, repo_id: str, doc_id: str) -> bool:
        index = self._indexes.get(repo_id)
        if index is None or doc_id not in index:
            return False
        index.remove(doc_id)
        self._documents[repo_id].pop(doc_id, None)
        return True

    def clear_repo(self, repo_id: str) -> None:
        self._indexes.pop(repo_id, None)
        self._documents.pop(repo_id, None)

    async def search(
        self,
        repo_id: str,
        query: str,
        limit: int,
        filters: dict[str, Any] | None = None,
    ) -> list[VectorMatch]:
        """Embed ``query`` and return the closest documents in ``repo_id``.

        Raises:
            SearchError: If the query cannot be embedded
        """
        index = self._indexes.get(repo_id)
        if index is None or index.size == 0 or not query.strip() or limit <= 0:
            return []

        try:
            (query_vector,) = await self.embed([query])
        except Exception as e:
            raise SearchError(f"Query embedding failed: {e}", {"repo_id": repo_id}) from e

        k = limit * FILTER_OVERFETCH if filters else limit
        repo_docs = self._documents.get(repo_id, {})
        matches: list[VectorMatch] = []
        for hit in index.search(query_vector, k):
            doc = repo_docs.get(hit.id, {"content": "", "metadata": {}})
            if not _passes_filters(doc["metadata"], filters):
                continue
            matches.append(
                VectorMatch(
                    id=hit.id,
                    similarity=1.0 - hit.distance,
                    content=doc["content"],
                    metadata=dict(doc["metadata"]),
                )
            )
            if len(matches) >= limit:
                break
        return matches

    async def save(self, repo_id: str) -> bool:
        """Persist the repository graph. Returns False when nothing to save."""
        index = self._indexes.get(repo_id)
        if self.store is None or index is None:
            return False
        await self.store.save(repo_id, index, self._documents.get(repo_id, {}))
        return True

    async def load(self, repo_id: str) -> bool:
        """Restore a persisted repository graph. Returns True on success."""
        if self.store is None:
            return False
        loaded = await self.store.load_with_documents(repo_id)
        if loaded is None:
            return False
        self._indexes[repo_id], self._documents[repo_id] = loaded
        return True

    async def delete(self, repo_id: str) -> None:
        """Drop the in-memory graph and any persisted copy."""
        self.clear_repo(repo_id)
        if self.store is not None:
            await self.store.delete(repo_id)
