"""Configuration management."""

from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_CHROMA_PATH = str(Path.home() / ".cache" / "local-memory")


class MemoryConfig(BaseSettings):
    """
    Settings for one memory pipeline instance.

    Every field can be set through a ``LOCAL_MEMORY_``-prefixed environment
    variable (e.g. ``LOCAL_MEMORY_CHAT_MODEL=qwen2.5``) or a ``.env`` file.
    """

    # Ollama
    embedding_model: str = Field(default="nomic-embed-text", description="Ollama embedding model")
    chat_model: str = Field(default="llama3.2", description="Ollama chat model")
    ollama_host: str = "http://localhost:11434"

    # ChromaDB
    chroma_url: str | None = Field(
        default=None, description="Chroma server URL; a local persistent store is used when unset"
    )
    chroma_path: str = DEFAULT_CHROMA_PATH
    collection_name: str = "memories"
    embedding_dimension: int = Field(default=768, gt=0)

    # Chunking
    max_chunk_tokens: int = Field(default=500, gt=0)
    overlap_tokens: int = Field(default=50, ge=0)

    # Logging
    log_level: str = "INFO"
    log_json: bool = False

    # HTTP API
    host: str = "127.0.0.1"
    port: int = 3000

    model_config = SettingsConfigDict(
        env_prefix="LOCAL_MEMORY_",
        env_file=".env",
        extra="ignore",
    )
