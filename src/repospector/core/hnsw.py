"""In-memory HNSW graph for approximate nearest-neighbour search.

Hierarchical Navigable Small World graphs (Malkov & Yashunin, 2016) keep a
stack of proximity graphs: sparse upper layers for long jumps, a dense base
layer for the final beam search. This implementation targets a few thousand
embedding vectors (384-1536 dims) held in process, with no external service.

Design notes:
    - Cosine distance, computed with numpy against cached node norms
    - Level sampling is geometric with parameter ``1/M`` (capped at 16)
    - Neighbour selection and pruning keep the nearest candidates only
    - Neighbour sets are insertion-ordered dicts so traversal is repeatable
    - ``search`` never awaits; callers serialise mutation against queries
"""

from __future__ import annotations

import heapq
import math
import random
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any, NamedTuple

import numpy as np
from loguru import logger

from .exceptions import ConfigError, VectorIndexError

MAX_LEVEL = 16

DEFAULT_M = 16
DEFAULT_EF_CONSTRUCTION = 200
DEFAULT_EF_SEARCH = 50

_EMPTY = np.zeros(0, dtype=np.float32)


class SearchHit(NamedTuple):
    """A single nearest-neighbour hit."""

    id: str
    distance: float


@dataclass
class VectorNode:
    """One inserted vector and its per-layer adjacency.

    ``neighbors[layer]`` is an insertion-ordered set of neighbour ids
    (a dict with ``None`` values). The node's level is ``len(neighbors) - 1``.
    """

    id: str
    vector: np.ndarray
    neighbors: list[dict[str, None]] = field(default_factory=list)
    norm: float = 0.0

    @property
    def level(self) -> int:
        return len(self.neighbors) - 1


def as_vector(values: Any) -> np.ndarray:
    """Coerce input to a flat float32 array, or an empty array if impossible."""
    if isinstance(values, np.ndarray) and values.dtype == np.float32:
        return values.ravel()
    try:
        return np.asarray(values, dtype=np.float32).ravel()
    except (TypeError, ValueError):
        return _EMPTY


def cosine_distance(a: Any, b: Any) -> float:
    """Cosine distance ``1 - cos(a, b)``.

    Returns 1.0 (maximal distance) for empty, zero-norm or mismatched
    vectors instead of raising.
    """
    va = as_vector(a)
    vb = as_vector(b)
    if va.size == 0 or va.shape != vb.shape:
        return 1.0
    norm_a = float(np.linalg.norm(va))
    norm_b = float(np.linalg.norm(vb))
    if norm_a == 0.0 or norm_b == 0.0:
        return 1.0
    return 1.0 - float(np.dot(va, vb)) / (norm_a * norm_b)


class VectorIndex:
    """Hierarchical Navigable Small World index over cosine distance.

    Example:
        index = VectorIndex(seed=7)
        index.insert("a", [1.0, 0.0])
        index.insert("b", [0.0, 1.0])
        index.insert("c", [0.9, 0.1])
        index.search([1.0, 0.0], k=2)
        # [SearchHit(id='a', distance=0.0), SearchHit(id='c', distance=0.006...)]

    The index is not safe for concurrent mutation. ``search`` runs to
    completion without yielding, so a single event loop serialises it
    against ``insert``/``remove``; threaded callers need their own lock.
    """

    def __init__(
        self,
        m: int = DEFAULT_M,
        m_max0: int | None = None,
        ef_construction: int = DEFAULT_EF_CONSTRUCTION,
        ef_search: int = DEFAULT_EF_SEARCH,
        seed: int | None = None,
    ) -> None:
        """Initialize an empty graph.

        Args:
            m: Maximum neighbours per node on layers above 0
            m_max0: Maximum neighbours on layer 0 (defaults to ``2 * m``)
            ef_construction: Candidate list width while inserting
            ef_search: Candidate list width while querying
            seed: Optional seed for reproducible level assignment

        Raises:
            ConfigError: If any width is out of range
        """
        if m < 2:
            raise ConfigError(f"HNSW m must be >= 2, got {m}", {"m": m})
        if ef_construction < 1 or ef_search < 1:
            raise ConfigError(
                "HNSW ef_construction and ef_search must be positive",
                {"ef_construction": ef_construction, "ef_search": ef_search},
            )

        self.m = m
        self.m_max0 = m_max0 or m * 2
        self.ef_construction = ef_construction
        self.ef_search = ef_search
        # Reference level scale; sampling below uses 1/m directly.
        self.ml = 1.0 / math.log(m)

        self.nodes: dict[str, VectorNode] = {}
        self.entry_point: str | None = None
        self.max_level = -1

        self._rng = random.Random(seed)

    @property
    def size(self) -> int:
        return len(self.nodes)

    def __len__(self) -> int:
        return len(self.nodes)

    def __contains__(self, node_id: object) -> bool:
        return node_id in self.nodes

    # ── Mutation ────────────────────────────────────────────────────────

    def insert(self, node_id: str, vector: Sequence[float] | np.ndarray) -> None:
        """Insert a vector under ``node_id``.

        Re-inserting an existing id first removes the old node so no stale
        edges survive.
        """
        if node_id in self.nodes:
            logger.debug(f"HNSW: replacing existing node {node_id}")
            self.remove(node_id)

        vec = as_vector(vector)
        level = self._random_level()
        node = VectorNode(
            id=node_id,
            vector=vec,
            neighbors=[{} for _ in range(level + 1)],
            norm=float(np.linalg.norm(vec)) if vec.size else 0.0,
        )
        self.nodes[node_id] = node

        if self.entry_point is None:
            self.entry_point = node_id
            self.max_level = level
            return

        current = self.entry_point

        # Greedy descent through layers the new node does not occupy
        for layer in range(self.max_level, level, -1):
            nearest = self._search_layer(vec, node.norm, [current], 1, layer)
            if nearest:
                current = nearest[0].id

        for layer in range(min(level, self.max_level), -1, -1):
            candidates = self._search_layer(
                vec, node.norm, [current], self.ef_construction, layer
            )
            max_conn = self._max_connections(layer)
            for hit in self._select_neighbors(candidates, max_conn):
                if hit.id == node_id:
                    continue
                node.neighbors[layer][hit.id] = None
                neighbor = self.nodes.get(hit.id)
                if neighbor is None or layer > neighbor.level:
                    continue
                neighbor.neighbors[layer][node_id] = None
                if len(neighbor.neighbors[layer]) > max_conn:
                    self._prune_connections(neighbor, layer, max_conn)

            if candidates:
                current = candidates[0].id

        if level > self.max_level:
            self.entry_point = node_id
            self.max_level = level

    def remove(self, node_id: str) -> None:
        """Remove a node and its edges. Unknown ids are ignored.

        Former neighbours on each layer are re-linked to their nearest
        surviving peer from the same neighbourhood so the removal does not
        strand them.
        """
        node = self.nodes.pop(node_id, None)
        if node is None:
            return

        orphans: list[dict[str, None]] = [
            dict.fromkeys(nid for nid in adjacency if nid in self.nodes)
            for adjacency in node.neighbors
        ]
        # Pruning leaves one-directional edges, so sweep every node
        for other in self.nodes.values():
            for layer, adjacency in enumerate(other.neighbors):
                if node_id in adjacency:
                    del adjacency[node_id]
                    if layer < len(orphans):
                        orphans[layer][other.id] = None

        for layer, members in enumerate(orphans):
            self._repair_neighborhood(list(members), layer)

        if self.entry_point == node_id:
            if not self.nodes:
                self.entry_point = None
                self.max_level = -1
            else:
                self.entry_point = next(iter(self.nodes))
                self.max_level = self.nodes[self.entry_point].level

    def clear(self) -> None:
        self.nodes.clear()
        self.entry_point = None
        self.max_level = -1

    # ── Query ───────────────────────────────────────────────────────────

    def search(
        self, query: Sequence[float] | np.ndarray, k: int = 10
    ) -> list[SearchHit]:
        """Return up to ``k`` nearest ids by ascending cosine distance.

        An empty index or ``k <= 0`` yields an empty list.
        """
        if self.entry_point is None or not self.nodes or k <= 0:
            return []

        vec = as_vector(query)
        norm = float(np.linalg.norm(vec)) if vec.size else 0.0
        current = self.entry_point

        for layer in range(self.max_level, 0, -1):
            nearest = self._search_layer(vec, norm, [current], 1, layer)
            if nearest:
                current = nearest[0].id

        ef = max(self.ef_search, k)
        return self._search_layer(vec, norm, [current], ef, 0)[:k]

    # ── Internals ───────────────────────────────────────────────────────

    def _max_connections(self, layer: int) -> int:
        return self.m_max0 if layer == 0 else self.m

    def _random_level(self) -> int:
        level = 0
        probability = 1.0 / self.m
        while self._rng.random() < probability and level < MAX_LEVEL:
            level += 1
        return level

    def _distances(
        self, query: np.ndarray, query_norm: float, ids: list[str]
    ) -> list[float]:
        """Cosine distances from ``query`` to each node in ``ids``."""
        if query_norm == 0.0:
            return [1.0] * len(ids)

        out = [1.0] * len(ids)
        rows: list[np.ndarray] = []
        positions: list[int] = []
        norms: list[float] = []
        for pos, nid in enumerate(ids):
            candidate = self.nodes[nid]
            if candidate.norm == 0.0 or candidate.vector.shape != query.shape:
                continue
            rows.append(candidate.vector)
            positions.append(pos)
            norms.append(candidate.norm)

        if rows:
            dots = np.stack(rows) @ query
            sims = dots / (np.asarray(norms, dtype=np.float64) * query_norm)
            for pos, sim in zip(positions, sims.tolist(), strict=True):
                out[pos] = 1.0 - sim
        return out

    def _search_layer(
        self,
        query: np.ndarray,
        query_norm: float,
        entry_ids: Iterable[str],
        ef: int,
        layer: int,
    ) -> list[SearchHit]:
        """Best-first beam search restricted to one layer.

        Keeps a min-heap of candidates and a max-heap of at most ``ef``
        results; stops once the closest open candidate is farther than the
        worst kept result. Returns hits sorted by ascending distance.
        """
        seeds = [nid for nid in entry_ids if nid in self.nodes]
        visited = set(seeds)
        order = 0
        candidates: list[tuple[float, int, str]] = []
        results: list[tuple[float, int, str]] = []  # (-distance, -order, id)

        for nid, dist in zip(seeds, self._distances(query, query_norm, seeds), strict=True):
            heapq.heappush(candidates, (dist, order, nid))
            heapq.heappush(results, (-dist, -order, nid))
            order += 1

        while candidates:
            dist, _, nid = heapq.heappop(candidates)
            if dist > -results[0][0]:
                break

            current = self.nodes.get(nid)
            if current is None or layer > current.level:
                continue

            fresh = [
                other
                for other in current.neighbors[layer]
                if other not in visited and other in self.nodes
            ]
            visited.update(fresh)
            if not fresh:
                continue

            for other, other_dist in zip(
                fresh, self._distances(query, query_norm, fresh), strict=True
            ):
                if len(results) < ef or other_dist < -results[0][0]:
                    heapq.heappush(candidates, (other_dist, order, other))
                    heapq.heappush(results, (-other_dist, -order, other))
                    order += 1
                    if len(results) > ef:
                        heapq.heappop(results)

        ranked = sorted(results, key=lambda item: (-item[0], -item[1]))
        return [SearchHit(nid, -neg_dist) for neg_dist, _, nid in ranked]

    @staticmethod
    def _select_neighbors(candidates: list[SearchHit], max_conn: int) -> list[SearchHit]:
        # Nearest-first; the diversity heuristic from the paper is not applied.
        return sorted(candidates, key=lambda hit: hit.distance)[:max_conn]

    def _prune_connections(self, node: VectorNode, layer: int, max_conn: int) -> None:
        """Trim ``node``'s adjacency on ``layer`` to its ``max_conn`` closest."""
        adjacency = [nid for nid in node.neighbors[layer] if nid in self.nodes]
        if len(adjacency) <= max_conn:
            node.neighbors[layer] = dict.fromkeys(adjacency)
            return

        distances = self._distances(node.vector, node.norm, adjacency)
        ranked = sorted(zip(distances, range(len(adjacency)), adjacency))
        node.neighbors[layer] = dict.fromkeys(nid for _, _, nid in ranked[:max_conn])

    def _repair_neighborhood(self, orphans: list[str], layer: int) -> None:
        """Join the removed node's former neighbours into one connected set.

        Each orphan is linked both ways to its closest orphan seen before it,
        which spans the whole set. Repair edges are not pruned here; the
        next insertion that touches an over-full node trims it.
        """
        members = [nid for nid in orphans if layer <= self.nodes[nid].level]
        for position in range(1, len(members)):
            nid = members[position]
            node = self.nodes[nid]
            peers = members[:position]
            distances = self._distances(node.vector, node.norm, peers)
            _, closest = min(zip(distances, peers))
            node.neighbors[layer][closest] = None
            self.nodes[closest].neighbors[layer][nid] = None

    # ── Serialization ───────────────────────────────────────────────────

    def to_dict(self) -> dict[str, Any]:
        """Serialize the full graph to plain Python types."""
        return {
            "m": self.m,
            "m_max0": self.m_max0,
            "ef_construction": self.ef_construction,
            "ef_search": self.ef_search,
            "max_level": self.max_level,
            "entry_point": self.entry_point,
            "nodes": [
                {
                    "id": node.id,
                    "vector": node.vector.tolist(),
                    "neighbors": [list(layer) for layer in node.neighbors],
                }
                for node in self.nodes.values()
            ],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> VectorIndex:
        """Rebuild an index produced by :meth:`to_dict`.

        Raises:
            VectorIndexError: If the payload is missing fields or malformed
        """
        try:
            index = cls(
                m=int(data["m"]),
                m_max0=int(data["m_max0"]),
                ef_construction=int(data["ef_construction"]),
                ef_search=int(data["ef_search"]),
            )
            index.max_level = int(data["max_level"])
            index.entry_point = data["entry_point"]

            for raw in data["nodes"]:
                vec = np.asarray(raw["vector"], dtype=np.float32).ravel()
                index.nodes[raw["id"]] = VectorNode(
                    id=raw["id"],
                    vector=vec,
                    neighbors=[dict.fromkeys(layer) for layer in raw["neighbors"]],
                    norm=float(np.linalg.norm(vec)) if vec.size else 0.0,
                )
        except (KeyError, TypeError, ValueError, ConfigError) as e:
            raise VectorIndexError(
                f"Invalid serialized HNSW graph: {e}", {"error": str(e)}
            ) from e

        if index.nodes and index.entry_point not in index.nodes:
            raise VectorIndexError(
                "Serialized HNSW graph has a dangling entry point",
                {"entry_point": index.entry_point},
            )
        return index
