"""
Shared pytest fixtures for local-memory tests.

Uses ChromaDB in ephemeral (in-memory) mode, a deterministic fake
embedder and a scripted fake chat model so that tests run fast without
an Ollama server or any model downloads.
"""

from __future__ import annotations

import hashlib
import re
import uuid

import chromadb
import pytest
import pytest_asyncio

from local_memory.config import MemoryConfig
from local_memory.errors import ChatError, EmbeddingError
from local_memory.memory import MemoryManager
from local_memory.store import VectorStore

#: Vector size produced by FakeEmbedder and expected by test collections.
DIMENSION = 32


class FakeEmbedder:
    """
    Bag-of-words embedder: each lowercase word is hashed (MD5) into one of
    ``dimension`` buckets and the counts are normalised to a unit vector.
    Identical word sets score 1.0; all scores fall in [0, 1].
    """

    def __init__(
        self,
        dimension: int = DIMENSION,
        fail_after: int | None = None,
        healthy: bool = True,
    ) -> None:
        self.model = "fake-embed"
        self.dimension = dimension
        self.fail_after = fail_after
        self.healthy = healthy
        self.calls: list[str] = []

    async def embed(self, text: str) -> list[float]:
        if self.fail_after is not None and len(self.calls) >= self.fail_after:
            raise EmbeddingError("Failed to generate embedding. Is Ollama running with fake-embed model?")
        self.calls.append(text)
        vec = [0.0] * self.dimension
        for word in re.findall(r"\w+", text.lower()):
            digest = hashlib.md5(word.encode()).digest()
            vec[digest[0] % self.dimension] += 1.0
        norm = sum(x * x for x in vec) ** 0.5 or 1.0
        return [x / norm for x in vec]

    async def ping(self) -> bool:
        return self.healthy


class FakeChat:
    """Chat model that replies with canned text and records its prompts."""

    def __init__(
        self,
        reply: str = "Test response",
        fragments: list[str] | None = None,
        fail_after: int | None = None,
    ) -> None:
        self.model = "fake-chat"
        self.reply = reply
        self.fragments = fragments or ["Hello", ", ", "world", "!"]
        self.fail_after = fail_after
        self.requests: list[list[dict]] = []
        self.closed = False

    async def complete(self, messages: list[dict]) -> str:
        self.requests.append(messages)
        return self.reply

    async def stream(self, messages: list[dict]):
        self.requests.append(messages)
        try:
            for i, fragment in enumerate(self.fragments):
                if self.fail_after is not None and i >= self.fail_after:
                    raise ChatError("Chat completion failed. Is Ollama running with fake-chat model?")
                yield fragment
        finally:
            self.closed = True


class BrokenClient:
    """Stand-in Chroma client whose server is down."""

    def heartbeat(self) -> int:
        raise ConnectionError("Could not connect to tenant default_tenant")

    def get_collection(self, **kwargs):
        raise ConnectionError("Could not connect to tenant default_tenant")

    def create_collection(self, **kwargs):
        raise ConnectionError("Could not connect to tenant default_tenant")


# A single shared EphemeralClient instance for the test session.
# Each fixture call creates a uniquely named collection so tests are isolated.
_EPHEMERAL_CLIENT = chromadb.EphemeralClient()


def make_config(**overrides) -> MemoryConfig:
    """Test settings: a fresh collection sized for FakeEmbedder."""
    values = {
        "collection_name": f"test_{uuid.uuid4().hex}",
        "embedding_dimension": DIMENSION,
    }
    values.update(overrides)
    return MemoryConfig(**values)


def make_manager(
    config: MemoryConfig | None = None,
    embedder: FakeEmbedder | None = None,
    chat: FakeChat | None = None,
) -> MemoryManager:
    """Uninitialised MemoryManager wired to the ephemeral client and fakes."""
    config = config or make_config()
    store = VectorStore(_client=_EPHEMERAL_CLIENT, collection_name=config.collection_name)
    return MemoryManager(
        config,
        _store=store,
        _embedder=embedder or FakeEmbedder(),
        _chat=chat or FakeChat(),
    )


@pytest.fixture()
def fake_embedder() -> FakeEmbedder:
    return FakeEmbedder()


@pytest.fixture()
def fake_chat() -> FakeChat:
    return FakeChat()


@pytest_asyncio.fixture()
async def ephemeral_store() -> VectorStore:
    """In-memory VectorStore with a fresh, provisioned collection."""
    store = VectorStore(
        _client=_EPHEMERAL_CLIENT,
        collection_name=f"test_{uuid.uuid4().hex}",
    )
    await store.ensure_collection(DIMENSION)
    return store


@pytest_asyncio.fixture()
async def memory_manager(fake_embedder: FakeEmbedder, fake_chat: FakeChat) -> MemoryManager:
    """Initialised MemoryManager wired to the ephemeral in-memory store."""
    manager = make_manager(embedder=fake_embedder, chat=fake_chat)
    await manager.initialize()
    return manager
