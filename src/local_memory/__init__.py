"""
local-memory: long-term memory for local LLM assistants.

Chunks, embeds (via Ollama) and stores text per user in ChromaDB, then
retrieves semantically similar memories to enrich chat prompts.
"""

from .chunking import Chunk, chunk_text, extract_metadata, normalize_text
from .config import MemoryConfig
from .errors import (
    ChatError,
    DimensionMismatchError,
    EmbeddingError,
    LocalMemoryError,
    UpstreamUnavailableError,
    ValidationError,
    VectorStoreError,
)
from .memory import MemoryManager
from .models import ChatResult, HealthStatus, SearchResult
from .store import VectorStore

__all__ = [
    "Chunk",
    "ChatError",
    "ChatResult",
    "DimensionMismatchError",
    "EmbeddingError",
    "HealthStatus",
    "LocalMemoryError",
    "MemoryConfig",
    "MemoryManager",
    "SearchResult",
    "UpstreamUnavailableError",
    "ValidationError",
    "VectorStore",
    "VectorStoreError",
    "chunk_text",
    "extract_metadata",
    "normalize_text",
]
