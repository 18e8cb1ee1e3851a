"""File-backed persistence for per-repository HNSW graphs.

Each repository's graph is stored as one orjson document so an index can be
restored after a restart without re-embedding the corpus.
"""

import hashlib
import re
import time
from pathlib import Path
from typing import Any

import aiofiles
import orjson
from loguru import logger

from .exceptions import VectorIndexError
from .hnsw import VectorIndex

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


class HNSWStore:
    """Key/value store of serialized :class:`VectorIndex` graphs keyed by repo id.

    Layout::

        <base_dir>/<safe-repo-id>-<hash>.json
            {"repo_id", "graph", "size", "saved_at", "documents"}

    ``documents`` optionally carries the id -> {content, metadata} map that
    a vector store needs to turn graph hits back into results.
    """

    def __init__(self, base_dir: Path) -> None:
        """Initialize the store.

        Args:
            base_dir: Directory holding one JSON document per repository
        """
        self.base_dir = Path(base_dir)

    def _path_for(self, repo_id: str) -> Path:
        digest = hashlib.sha256(repo_id.encode()).hexdigest()[:12]
        stem = _UNSAFE_CHARS.sub("_", repo_id).strip("_")[:80] or "repo"
        return self.base_dir / f"{stem}-{digest}.json"

    async def save(
        self,
        repo_id: str,
        index: VectorIndex,
        documents: dict[str, Any] | None = None,
    ) -> None:
        """Persist ``index`` for ``repo_id``, replacing any previous graph.

        Args:
            repo_id: Repository identifier
            index: Graph to store
            documents: Optional id -> {content, metadata} map stored alongside

        Raises:
            VectorIndexError: If the graph cannot be written
        """
        payload = {
            "repo_id": repo_id,
            "graph": index.to_dict(),
            "size": index.size,
            "saved_at": int(time.time() * 1000),
            "documents": documents or {},
        }
        path = self._path_for(repo_id)
        tmp_path = path.with_name(path.name + ".tmp")
        try:
            self.base_dir.mkdir(parents=True, exist_ok=True)
            async with aiofiles.open(tmp_path, "wb") as f:
                await f.write(orjson.dumps(payload))
            tmp_path.replace(path)
        except OSError as e:
            raise VectorIndexError(
                f"Failed to save HNSW graph for {repo_id}: {e}",
                {"repo_id": repo_id, "path": str(path)},
            ) from e

        logger.info(f"HNSW graph saved for {repo_id} ({index.size} vectors)")

    async def load_with_documents(
        self, repo_id: str
    ) -> tuple[VectorIndex, dict[str, Any]] | None:
        """Load the graph and its document map for ``repo_id``.

        Returns:
            ``(index, documents)``, or None when nothing is stored or the
            stored document is unreadable
        """
        path = self._path_for(repo_id)
        if not path.exists():
            return None

        try:
            async with aiofiles.open(path, "rb") as f:
                data = orjson.loads(await f.read())
            index = VectorIndex.from_dict(data["graph"])
        except (OSError, orjson.JSONDecodeError, KeyError, TypeError, VectorIndexError) as e:
            logger.warning(f"Failed to deserialize HNSW graph for {repo_id}: {e}")
            return None

        logger.info(
            f"HNSW graph loaded for {repo_id} ({index.size} vectors, "
            f"saved_at={data.get('saved_at')})"
        )
        return index, data.get("documents") or {}

    async def load(self, repo_id: str) -> VectorIndex | None:
        """Load only the graph for ``repo_id`` (None if absent or corrupt)."""
        loaded = await self.load_with_documents(repo_id)
        return loaded[0] if loaded else None

    async def delete(self, repo_id: str) -> bool:
        """Delete the stored graph. Returns True if a document was removed."""
        path = self._path_for(repo_id)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        logger.debug(f"HNSW graph deleted for {repo_id}")
        return True
