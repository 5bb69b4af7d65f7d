"""
MemoryManager: high-level API for storing and retrieving per-user memories.

This is the main entry-point for applications (and the CLI, MCP server and
HTTP API) that want to give a chat model long-term memory.

Usage example::

    from local_memory import MemoryConfig, MemoryManager

    memory = MemoryManager(MemoryConfig(chroma_path="./my_memory"))
    await memory.initialize()

    # Store something important from a session
    ids = await memory.add_memory("alice", "Alice prefers Python. She uses uv.")

    # Later, retrieve relevant context for a new prompt
    for r in await memory.search_memories("alice", "Which language does Alice like?"):
        print(r.text, r.score)
"""

from __future__ import annotations

import json
import time
from typing import Any, AsyncIterator

import structlog

from .chat import OllamaChat
from .chunking import chunk_text, extract_metadata, generate_id, normalize_text
from .config import MemoryConfig
from .embeddings import OllamaEmbedder
from .errors import ValidationError
from .models import (
    AssistedChatResult,
    ChatResult,
    HealthStatus,
    RefinedPrompt,
    SearchResult,
)
from .store import VectorStore

log = structlog.get_logger()

DEFAULT_SYSTEM_PROMPT = "You are a helpful AI assistant with access to the user's memories."

#: Default minimum similarity for ``search_memories``.
DEFAULT_SCORE_THRESHOLD: float = 0.5

#: Looser threshold used when refining prompts, where recall matters more.
REFINE_SCORE_THRESHOLD: float = 0.3


def _require(name: str, value: str | None) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{name} is required")
    return value


def format_memory_context(memories: list[SearchResult]) -> str:
    """Render memories as the block appended to a chat system prompt."""
    body = "\n\n".join(
        f"[Memory {i}] (relevance: {m.score * 100:.1f}%)\n{m.text}"
        for i, m in enumerate(memories, 1)
    )
    return (
        f"\n\n### Relevant memories from past conversations:\n{body}"
        "\n\n### Use this context to provide a more personalized response."
    )


def refine_with_memories(prompt: str, memories: list[SearchResult]) -> str:
    """Prefix *prompt* with a numbered list of memory texts, if any."""
    if not memories:
        return prompt
    listed = "\n".join(f"{i}. {m.text}" for i, m in enumerate(memories, 1))
    context = f"\n\nRelevant context from your memories:\n{listed}\n"
    return f"{context}\nUser request: {prompt}"


class MemoryManager:
    """
    Memory pipeline backed by Ollama (embeddings, chat) and ChromaDB.

    Responsibilities
    ----------------
    * **Add** – Normalizes raw text, chunks it by sentence with overlap,
      embeds every chunk and writes each one as an independent record.
      There is no transaction: if embedding fails halfway, chunks written
      before the failure stay persisted.
    * **Search** – Embeds the query and returns the user's nearest chunks
      above a similarity threshold.
    * **Chat** – Augments the system prompt with retrieved memories before
      calling the chat model, whole or streamed.
    * **Manage** – Point and per-user deletion, counts, health probes.

    :meth:`initialize` must be awaited once before any other operation.

    Parameters
    ----------
    config:
        Models, endpoints and chunk sizing.  Read from the environment when
        omitted.
    """

    def __init__(
        self,
        config: MemoryConfig | None = None,
        _store: VectorStore | None = None,
        _embedder: OllamaEmbedder | None = None,
        _chat: OllamaChat | None = None,
    ) -> None:
        self.config = config or MemoryConfig()
        self._store = _store or VectorStore(
            url=self.config.chroma_url,
            path=self.config.chroma_path,
            collection_name=self.config.collection_name,
        )
        self._embedder = _embedder or OllamaEmbedder(
            model=self.config.embedding_model,
            host=self.config.ollama_host,
        )
        self._chat = _chat or OllamaChat(
            model=self.config.chat_model,
            host=self.config.ollama_host,
        )

    async def initialize(self) -> None:
        """Provision the backing collection (created if absent)."""
        log.info("memory_system_initializing", collection=self.config.collection_name)
        await self._store.ensure_collection(self.config.embedding_dimension)
        log.info("memory_system_initialized")

    # ------------------------------------------------------------------
    # Write path
    # ------------------------------------------------------------------

    async def add_memory(
        self,
        user_id: str,
        content: str,
        metadata: dict[str, Any] | None = None,
    ) -> list[str]:
        """
        Store *content* for *user_id*, split into one or more chunks.

        Every chunk's metadata is *metadata* overlaid with the extracted
        fields (``wordCount``, ``charCount``, ``hasUrl``, ``hasEmail``,
        ``language``) and its position (``chunkIndex``, ``totalChunks``).

        Returns
        -------
        list[str]
            IDs of the stored chunks, in chunk order.
        """
        _require("user_id", user_id)
        _require("content", content)
        try:
            json.dumps(metadata or {})
        except (TypeError, ValueError) as e:
            raise ValidationError(f"metadata must be JSON-serializable: {e}") from e

        chunks = chunk_text(
            normalize_text(content),
            self.config.max_chunk_tokens,
            self.config.overlap_tokens,
        )
        log.info("adding_memory", user_id=user_id, chunks=len(chunks))

        ids: list[str] = []
        for chunk in chunks:
            embedding = await self._embedder.embed(chunk.text)
            chunk_meta = {
                **(metadata or {}),
                **extract_metadata(chunk.text),
                "chunkIndex": chunk.index,
                "totalChunks": len(chunks),
            }
            chunk_id = generate_id()
            await self._store.upsert(
                chunk_id,
                embedding,
                {
                    "text": chunk.text,
                    "user_id": user_id,
                    "timestamp": int(time.time() * 1000),
                    "metadata": chunk_meta,
                },
            )
            ids.append(chunk_id)

        log.info("memory_added", user_id=user_id, ids=len(ids))
        return ids

    async def store_conversation(
        self,
        user_id: str,
        question: str,
        answer: str,
        metadata: dict[str, Any] | None = None,
    ) -> list[str]:
        """Store a question/answer exchange as a single memory."""
        _require("question", question)
        _require("answer", answer)
        return await self.add_memory(
            user_id,
            f"Q: {question}\nA: {answer}",
            {**(metadata or {}), "type": "conversation"},
        )

    # ------------------------------------------------------------------
    # Read path
    # ------------------------------------------------------------------

    async def search_memories(
        self,
        user_id: str,
        query: str,
        limit: int = 5,
        score_threshold: float = DEFAULT_SCORE_THRESHOLD,
    ) -> list[SearchResult]:
        """
        Return up to *limit* of *user_id*'s memories most similar to *query*.

        Only results scoring at least *score_threshold* (cosine similarity)
        are returned, best first.  No match is an empty list, not an error.
        """
        _require("user_id", user_id)
        _require("query", query)
        if limit < 1:
            raise ValidationError("limit must be at least 1")
        if not 0.0 <= score_threshold <= 1.0:
            raise ValidationError("score_threshold must be between 0 and 1")

        log.info("searching_memories", user_id=user_id, limit=limit)
        embedding = await self._embedder.embed(query)
        results = await self._store.search(embedding, user_id, limit, score_threshold)
        log.info("memories_found", user_id=user_id, count=len(results))
        return results

    async def refine_prompt(
        self,
        user_id: str,
        prompt: str,
        limit: int = 5,
        auto_store: bool = False,
    ) -> RefinedPrompt:
        """
        Prepend relevant memories to *prompt* without calling the chat model.

        With *auto_store*, the prompt itself is remembered as a question.
        """
        memories = await self.search_memories(
            user_id, prompt, limit=limit, score_threshold=REFINE_SCORE_THRESHOLD
        )
        if auto_store:
            await self.add_memory(user_id, f"User asked: {prompt}", {"type": "question"})
        return RefinedPrompt(
            original_prompt=prompt,
            refined_prompt=refine_with_memories(prompt, memories),
            memories_used=len(memories),
            memories=memories,
        )

    # ------------------------------------------------------------------
    # Chat
    # ------------------------------------------------------------------

    async def _build_messages(
        self,
        user_id: str,
        message: str,
        system_prompt: str | None,
        include_memory_context: bool,
        max_context_memories: int,
    ) -> tuple[list[dict], int]:
        _require("user_id", user_id)
        _require("message", message)

        prompt = system_prompt or DEFAULT_SYSTEM_PROMPT
        memories: list[SearchResult] = []
        if include_memory_context:
            memories = await self.search_memories(user_id, message, limit=max_context_memories)
            if memories:
                prompt += format_memory_context(memories)

        messages = [
            {"role": "system", "content": prompt},
            {"role": "user", "content": message},
        ]
        return messages, len(memories)

    async def chat(
        self,
        user_id: str,
        message: str,
        system_prompt: str | None = None,
        include_memory_context: bool = True,
        max_context_memories: int = 5,
    ) -> ChatResult:
        """
        Answer *message* with the chat model, using the user's memories as
        extra system-prompt context.

        ``memories_used`` is the number of memories actually placed in the
        prompt, which may be fewer than *max_context_memories*.
        """
        messages, used = await self._build_messages(
            user_id, message, system_prompt, include_memory_context, max_context_memories
        )
        log.info("chatting", model=self.config.chat_model, memories_used=used)
        response = await self._chat.complete(messages)
        return ChatResult(response=response, memories_used=used)

    async def chat_stream(
        self,
        user_id: str,
        message: str,
        system_prompt: str | None = None,
        include_memory_context: bool = True,
        max_context_memories: int = 5,
    ) -> AsyncIterator[str]:
        """Like :meth:`chat`, but yield response fragments as they arrive."""
        messages, used = await self._build_messages(
            user_id, message, system_prompt, include_memory_context, max_context_memories
        )
        log.info("chat_streaming", model=self.config.chat_model, memories_used=used)
        stream = self._chat.stream(messages)
        try:
            async for fragment in stream:
                yield fragment
        finally:
            await stream.aclose()

    async def assisted_chat(
        self,
        user_id: str,
        message: str,
        system_prompt: str | None = None,
        auto_refine: bool = True,
        auto_store: bool = True,
        metadata: dict[str, Any] | None = None,
    ) -> AssistedChatResult:
        """
        Refine *message* with memories, answer it, then remember the exchange.

        Unlike :meth:`chat`, the memories go into the user message rather
        than the system prompt.
        """
        _require("user_id", user_id)
        _require("message", message)

        final_message = message
        memories: list[SearchResult] = []
        if auto_refine:
            refined = await self.refine_prompt(user_id, message)
            final_message = refined.refined_prompt
            memories = refined.memories

        result = await self.chat(
            user_id,
            final_message,
            system_prompt=system_prompt,
            include_memory_context=False,
        )

        if auto_store:
            await self.add_memory(
                user_id,
                f"Q: {message}\nA: {result.response}",
                {
                    **(metadata or {}),
                    "type": "copilot-conversation",
                    "memoriesUsed": len(memories),
                },
            )

        return AssistedChatResult(
            response=result.response,
            memories_used=len(memories),
            memories=[m.text for m in memories],
            stored=auto_store,
            refined=bool(memories),
        )

    # ------------------------------------------------------------------
    # Management
    # ------------------------------------------------------------------

    async def delete_memory(self, memory_id: str) -> None:
        """Delete one chunk by its ID.  Unknown IDs are ignored."""
        _require("id", memory_id)
        await self._store.delete(memory_id)
        log.info("memory_deleted", id=memory_id)

    async def delete_user_memories(self, user_id: str) -> None:
        """Delete every chunk belonging to *user_id*."""
        _require("user_id", user_id)
        await self._store.delete_by_user(user_id)
        log.info("user_memories_deleted", user_id=user_id)

    async def get_memory_count(self, user_id: str | None = None) -> int:
        """Exact number of stored chunks, for one user or for everyone."""
        return await self._store.count(user_id)

    async def health_check(self) -> HealthStatus:
        """Probe ChromaDB and Ollama separately.  Never raises."""
        return HealthStatus(
            vector_store=await self._store.ping(),
            embedding_service=await self._embedder.ping(),
        )
