"""Tests for file-backed HNSW graph persistence."""

import pytest

from repospector.core.hnsw import VectorIndex
from repospector.core.hnsw_store import HNSWStore


def _small_index() -> VectorIndex:
    index = VectorIndex(seed=3)
    index.insert("a", [1.0, 0.0, 0.0])
    index.insert("b", [0.0, 1.0, 0.0])
    index.insert("c", [0.9, 0.1, 0.0])
    return index


@pytest.mark.asyncio
async def test_save_then_load_round_trip(tmp_path):
    store = HNSWStore(tmp_path)
    index = _small_index()

    await store.save("org/repo", index)
    loaded = await store.load("org/repo")

    assert loaded is not None
    assert loaded.size == 3
    assert [h.id for h in loaded.search([1.0, 0.0, 0.0], k=2)] == ["a", "c"]


@pytest.mark.asyncio
async def test_documents_are_stored_alongside_graph(tmp_path):
    store = HNSWStore(tmp_path)
    documents = {"a": {"content": "def login(): ...", "metadata": {"file_path": "auth.py"}}}

    await store.save("org/repo", _small_index(), documents)
    loaded = await store.load_with_documents("org/repo")

    assert loaded is not None
    _, docs = loaded
    assert docs == documents


@pytest.mark.asyncio
async def test_load_missing_repo_returns_none(tmp_path):
    store = HNSWStore(tmp_path)
    assert await store.load("never/saved") is None


@pytest.mark.asyncio
async def test_corrupt_document_returns_none(tmp_path):
    store = HNSWStore(tmp_path)
    await store.save("org/repo", _small_index())
    (path,) = list(tmp_path.glob("*.json"))
    path.write_bytes(b"{not json")

    assert await store.load("org/repo") is None


@pytest.mark.asyncio
async def test_repo_ids_map_to_distinct_safe_files(tmp_path):
    store = HNSWStore(tmp_path)
    await store.save("org/repo", _small_index())
    await store.save("org_repo", _small_index())

    files = sorted(p.name for p in tmp_path.glob("*.json"))
    assert len(files) == 2
    assert all("/" not in name for name in files)
    assert not list(tmp_path.glob("*.tmp"))


@pytest.mark.asyncio
async def test_save_replaces_previous_graph(tmp_path):
    store = HNSWStore(tmp_path)
    await store.save("org/repo", _small_index())

    single = VectorIndex(seed=1)
    single.insert("z", [0.0, 0.0, 1.0])
    await store.save("org/repo", single)

    loaded = await store.load("org/repo")
    assert loaded is not None
    assert loaded.size == 1
    assert "z" in loaded


@pytest.mark.asyncio
async def test_delete(tmp_path):
    store = HNSWStore(tmp_path)
    await store.save("org/repo", _small_index())

    assert await store.delete("org/repo") is True
    assert await store.delete("org/repo") is False
    assert await store.load("org/repo") is None
