"""Bounded in-memory cache for hybrid search results."""

import time
from collections.abc import Callable
from typing import Any

import orjson
from loguru import logger


def make_cache_key(repo_id: str, query: str, options: dict[str, Any]) -> str:
    """Deterministic key for ``(repo_id, query, options)``.

    Options are serialized with sorted keys so argument order does not
    produce distinct entries.
    """
    options_bytes = orjson.dumps(
        options, option=orjson.OPT_SORT_KEYS | orjson.OPT_NON_STR_KEYS, default=str
    )
    return f"{repo_id}:{query}:{options_bytes.decode()}"


class SearchCache:
    """TTL cache with first-in-first-out eviction.

    Eviction removes the oldest *inserted* key, not the least recently
    read one. Expired entries are dropped lazily on read.
    """

    def __init__(
        self,
        max_size: int = 100,
        ttl_seconds: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the cache.

        Args:
            max_size: Maximum number of entries
            ttl_seconds: Entry lifetime
            clock: Time source (seconds); injectable for tests
        """
        self.max_size = max_size
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[str, tuple[float, Any]] = {}
        self._hits = 0
        self._misses = 0

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: str) -> Any | None:
        entry = self._entries.get(key)
        if entry is None:
            self._misses += 1
            return None

        stored_at, value = entry
        if self._clock() - stored_at > self.ttl_seconds:
            del self._entries[key]
            self._misses += 1
            return None

        self._hits += 1
        return value

    def put(self, key: str, value: Any) -> None:
        if self.max_size <= 0:
            return
        if key in self._entries:
            # Re-inserting moves the key to the back of the FIFO order
            del self._entries[key]
        elif len(self._entries) >= self.max_size:
            oldest = next(iter(self._entries))
            del self._entries[oldest]
            logger.debug(f"Search cache full, evicted {oldest[:60]}")
        self._entries[key] = (self._clock(), value)

    def clear(self) -> None:
        self._entries.clear()

    def get_stats(self) -> dict[str, Any]:
        total = self._hits + self._misses
        return {
            "size": len(self._entries),
            "max_size": self.max_size,
            "hits": self._hits,
            "misses": self._misses,
            "hit_rate": self._hits / total if total else 0.0,
        }
