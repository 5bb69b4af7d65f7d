"""Tests for the VectorStore ChromaDB wrapper."""

from __future__ import annotations

import uuid

import pytest

from local_memory.errors import DimensionMismatchError, VectorStoreError
from local_memory.store import VectorStore
from conftest import DIMENSION, BrokenClient, FakeEmbedder, _EPHEMERAL_CLIENT


def _payload(text: str, user_id: str = "alice", **metadata) -> dict:
    return {"text": text, "user_id": user_id, "timestamp": 1700000000000, "metadata": metadata}


async def _add(store: VectorStore, id: str, text: str, user_id: str = "alice", **metadata) -> None:
    vector = await FakeEmbedder().embed(text)
    await store.upsert(id, vector, _payload(text, user_id, **metadata))


@pytest.mark.asyncio
class TestVectorStore:
    async def test_initial_count_is_zero(self, ephemeral_store: VectorStore):
        assert await ephemeral_store.count() == 0

    async def test_upsert_increases_count(self, ephemeral_store: VectorStore):
        await _add(ephemeral_store, "id1", "Hello world")
        assert await ephemeral_store.count() == 1

    async def test_count_by_user(self, ephemeral_store: VectorStore):
        await _add(ephemeral_store, "a1", "Alice one", "alice")
        await _add(ephemeral_store, "a2", "Alice two", "alice")
        await _add(ephemeral_store, "b1", "Bob one", "bob")
        assert await ephemeral_store.count("alice") == 2
        assert await ephemeral_store.count("bob") == 1
        assert await ephemeral_store.count("carol") == 0
        assert await ephemeral_store.count() == 3

    async def test_search_returns_payload(self, ephemeral_store: VectorStore):
        await _add(ephemeral_store, "id1", "Python programming language", tag="lang", nested={"k": [1, 2]})
        vector = await FakeEmbedder().embed("Python programming language")
        results = await ephemeral_store.search(vector, "alice", limit=5, score_threshold=0.5)
        assert len(results) == 1
        hit = results[0]
        assert hit.id == "id1"
        assert hit.text == "Python programming language"
        assert hit.timestamp == 1700000000000
        assert hit.metadata == {"tag": "lang", "nested": {"k": [1, 2]}}
        assert hit.score == pytest.approx(1.0, abs=1e-4)

    async def test_search_is_scoped_to_user(self, ephemeral_store: VectorStore):
        await _add(ephemeral_store, "a", "shared words here", "alice")
        await _add(ephemeral_store, "b", "shared words here", "bob")
        vector = await FakeEmbedder().embed("shared words here")
        results = await ephemeral_store.search(vector, "bob", limit=5, score_threshold=0.0)
        assert [r.id for r in results] == ["b"]

    async def test_search_respects_limit_and_order(self, ephemeral_store: VectorStore):
        for i in range(6):
            await _add(ephemeral_store, f"id{i}", f"common topic variant{i}")
        vector = await FakeEmbedder().embed("common topic")
        results = await ephemeral_store.search(vector, "alice", limit=3, score_threshold=0.0)
        assert len(results) <= 3
        scores = [r.score for r in results]
        assert scores == sorted(scores, reverse=True)

    async def test_search_applies_threshold(self, ephemeral_store: VectorStore):
        await _add(ephemeral_store, "same", "exact match text")
        await _add(ephemeral_store, "other", "completely unrelated sentence about gardening")
        vector = await FakeEmbedder().embed("exact match text")
        results = await ephemeral_store.search(vector, "alice", limit=5, score_threshold=0.99)
        assert [r.id for r in results] == ["same"]
        assert all(r.score >= 0.99 for r in results)

    async def test_search_on_empty_store_returns_empty(self, ephemeral_store: VectorStore):
        vector = await FakeEmbedder().embed("anything")
        assert await ephemeral_store.search(vector, "alice") == []

    async def test_delete_removes_chunk(self, ephemeral_store: VectorStore):
        await _add(ephemeral_store, "id1", "To be deleted")
        await ephemeral_store.delete("id1")
        assert await ephemeral_store.count() == 0

    async def test_delete_unknown_id_is_noop(self, ephemeral_store: VectorStore):
        await _add(ephemeral_store, "id1", "Keep me")
        await ephemeral_store.delete(str(uuid.uuid4()))
        assert await ephemeral_store.count() == 1

    async def test_delete_by_user(self, ephemeral_store: VectorStore):
        await _add(ephemeral_store, "a1", "Alice one", "alice")
        await _add(ephemeral_store, "a2", "Alice two", "alice")
        await _add(ephemeral_store, "b1", "Bob one", "bob")
        await ephemeral_store.delete_by_user("alice")
        assert await ephemeral_store.count("alice") == 0
        assert await ephemeral_store.count("bob") == 1

    async def test_dimension_mismatch_is_rejected(self, ephemeral_store: VectorStore):
        with pytest.raises(DimensionMismatchError) as excinfo:
            await ephemeral_store.upsert("bad", [0.1] * (DIMENSION + 1), _payload("bad"))
        assert excinfo.value.expected == DIMENSION
        assert await ephemeral_store.count() == 0

    async def test_existing_collection_keeps_its_dimension(self, ephemeral_store: VectorStore):
        reopened = VectorStore(_client=_EPHEMERAL_CLIENT, collection_name=ephemeral_store.collection_name)
        await reopened.ensure_collection(DIMENSION * 2)
        assert reopened.dimension == DIMENSION

    async def test_ping_healthy(self, ephemeral_store: VectorStore):
        assert await ephemeral_store.ping() is True

    async def test_ping_unreachable(self):
        store = VectorStore(_client=BrokenClient())
        assert await store.ping() is False

    async def test_ensure_collection_wraps_connection_errors(self):
        store = VectorStore(_client=BrokenClient())
        with pytest.raises(VectorStoreError):
            await store.ensure_collection(DIMENSION)

    async def test_operations_before_initialization_fail(self):
        store = VectorStore(_client=_EPHEMERAL_CLIENT, collection_name=f"test_{uuid.uuid4().hex}")
        with pytest.raises(VectorStoreError):
            await store.count()
