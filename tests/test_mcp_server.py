"""Tests for the MCP server tools."""

from __future__ import annotations

import asyncio
import json

import pytest
import pytest_asyncio

import local_memory.mcp_server as mcp_module
from local_memory.memory import MemoryManager
from local_memory.store import VectorStore
from conftest import BrokenClient, FakeChat, FakeEmbedder, make_config, make_manager


@pytest_asyncio.fixture(autouse=True)
async def _isolated_manager(monkeypatch) -> MemoryManager:
    """
    Replace the module-level _manager singleton with a fresh in-memory
    MemoryManager for each test so tests don't share state.
    """
    manager = make_manager()
    await manager.initialize()
    monkeypatch.setattr(mcp_module, "_manager", manager)
    return manager


@pytest.mark.asyncio
class TestMCPTools:
    async def test_stats_empty(self):
        data = json.loads(await mcp_module.get_memory_stats("alice"))
        assert data == {"user_id": "alice", "total_memories": 0}

    async def test_add_memory(self):
        data = json.loads(await mcp_module.add_memory("alice", "Alice likes Python."))
        assert data["success"] is True
        assert data["count"] == 1
        assert len(data["memory_ids"]) == 1

    async def test_add_memory_increments_stats(self):
        await mcp_module.add_memory("alice", "Bob prefers Rust.")
        data = json.loads(await mcp_module.get_memory_stats("alice"))
        assert data["total_memories"] == 1

    async def test_add_memory_with_metadata(self, _isolated_manager):
        await mcp_module.add_memory("alice", "Tagged fact.", {"tag": "mcp"})
        [result] = await _isolated_manager.search_memories("alice", "Tagged fact")
        assert result.metadata["tag"] == "mcp"

    async def test_add_memory_validation_error(self):
        data = json.loads(await mcp_module.add_memory("alice", "  "))
        assert data == {"error": "content is required"}

    async def test_search_empty(self):
        data = json.loads(await mcp_module.search_memories("alice", "anything"))
        assert data == {"results": [], "count": 0}

    async def test_search_returns_text_score_timestamp(self):
        await mcp_module.add_memory("alice", "The sky is blue.")
        data = json.loads(await mcp_module.search_memories("alice", "The sky is blue"))
        assert data["count"] == 1
        [result] = data["results"]
        assert set(result) == {"text", "score", "timestamp"}
        assert result["text"] == "The sky is blue."
        assert result["score"] == pytest.approx(1.0)

    async def test_search_is_scoped_to_user(self):
        await mcp_module.add_memory("bob", "The sky is blue.")
        data = json.loads(await mcp_module.search_memories("alice", "The sky is blue"))
        assert data["count"] == 0

    async def test_search_respects_limit(self):
        for i in range(4):
            await mcp_module.add_memory("alice", f"Fact number {i} about the garden.")
        data = json.loads(await mcp_module.search_memories("alice", "garden fact", limit=2))
        assert data["count"] <= 2

    async def test_refine_prompt_without_memories(self):
        data = json.loads(await mcp_module.refine_prompt_with_memories("alice", "Hi there"))
        assert data["refined_prompt"] == "Hi there"
        assert data["memories_used"] == 0
        assert data["memories"] == []

    async def test_refine_prompt_with_memories(self):
        await mcp_module.add_memory("alice", "Alice deploys with Kubernetes.")
        data = json.loads(
            await mcp_module.refine_prompt_with_memories("alice", "How does Alice deploy with Kubernetes?")
        )
        assert data["original_prompt"] == "How does Alice deploy with Kubernetes?"
        assert data["memories_used"] == 1
        assert data["memories"] == ["Alice deploys with Kubernetes."]
        assert "1. Alice deploys with Kubernetes." in data["refined_prompt"]
        assert data["refined_prompt"].endswith("User request: How does Alice deploy with Kubernetes?")

    async def test_refine_prompt_auto_store(self):
        await mcp_module.refine_prompt_with_memories("alice", "What is my name?", auto_store=True)
        data = json.loads(await mcp_module.get_memory_stats("alice"))
        assert data["total_memories"] == 1

    async def test_store_conversation(self, _isolated_manager):
        data = json.loads(
            await mcp_module.store_conversation("alice", "What is 2+2?", "4", {"source": "mcp"})
        )
        assert data["success"] is True
        assert data["stored"] == "conversation"
        assert len(data["memory_ids"]) == 1

        [result] = await _isolated_manager.search_memories(
            "alice", "Q: What is 2+2?\nA: 4", score_threshold=0.0
        )
        assert result.metadata["type"] == "conversation"
        assert result.metadata["source"] == "mcp"

    async def test_store_unreachable_returns_error(self, monkeypatch):
        manager = MemoryManager(
            make_config(),
            _store=VectorStore(_client=BrokenClient()),
            _embedder=FakeEmbedder(),
            _chat=FakeChat(),
        )
        monkeypatch.setattr(mcp_module, "_manager", manager)
        data = json.loads(await mcp_module.get_memory_stats("alice"))
        assert "error" in data

    async def test_recent_memories_resource(self):
        data = json.loads(mcp_module.recent_memories())
        assert "search_memories" in data["message"]
        assert isinstance(data["generated_at"], int)

    async def test_concurrent_first_calls_share_one_manager(self, monkeypatch):
        built: list[MemoryManager] = []

        def build(config):
            manager = make_manager()
            built.append(manager)
            return manager

        monkeypatch.setattr(mcp_module, "_manager", None)
        monkeypatch.setattr(mcp_module, "_manager_lock", asyncio.Lock())
        monkeypatch.setattr(mcp_module, "MemoryManager", build)

        first, second = await asyncio.gather(mcp_module._get_manager(), mcp_module._get_manager())
        assert first is second
        assert len(built) == 1
