"""
Vector store wrapper around ChromaDB for per-user semantic memory.
"""

from __future__ import annotations

import asyncio
import json
from typing import Any
from urllib.parse import urlparse

import chromadb
import structlog

from .errors import DimensionMismatchError, VectorStoreError
from .models import SearchResult

log = structlog.get_logger()


def make_client(url: str | None = None, path: str = "./chroma_db") -> chromadb.ClientAPI:
    """Return an HTTP client when *url* is given, else a local persistent one."""
    if url:
        parsed = urlparse(url)
        return chromadb.HttpClient(
            host=parsed.hostname or "localhost",
            port=parsed.port or 8000,
            ssl=parsed.scheme == "https",
        )
    return chromadb.PersistentClient(path=path)


class VectorStore:
    """
    Chunk storage backed by a single ChromaDB collection shared by all users.

    Uses cosine distance, so similarity scores are derived as:
        score = 1 - distance
        distance ∈ [0, 2]  →  score ∈ [-1, 1]

    Each record keeps ``user_id`` and ``timestamp`` as top-level Chroma
    metadata (so they can be filtered on) and the chunk's open-ended
    metadata JSON-encoded under ``metadata``, since Chroma only accepts
    scalar metadata values.

    ChromaDB's client is synchronous; every call is run in a worker thread
    so the event loop is never blocked.
    """

    def __init__(
        self,
        url: str | None = None,
        path: str = "./chroma_db",
        collection_name: str = "memories",
        _client: chromadb.ClientAPI | None = None,
    ) -> None:
        self.client = _client or make_client(url, path)
        self.collection_name = collection_name
        self.dimension: int | None = None
        self._collection: Any | None = None

    @property
    def collection(self) -> Any:
        if self._collection is None:
            raise VectorStoreError(
                f"Collection {self.collection_name!r} is not initialized; "
                "call ensure_collection() first"
            )
        return self._collection

    async def _run(self, operation: str, func, *args, **kwargs):
        try:
            return await asyncio.to_thread(func, *args, **kwargs)
        except VectorStoreError:
            raise
        except Exception as e:
            log.error("vector_store_error", operation=operation, error=str(e))
            raise VectorStoreError(f"Vector store {operation} failed: {e}") from e

    # ------------------------------------------------------------------
    # Provisioning
    # ------------------------------------------------------------------

    async def ensure_collection(self, dimension: int, distance: str = "cosine") -> None:
        """Create the collection if absent and record its vector dimension.

        An existing collection keeps the dimension it was created with.
        """
        collection = await self._run("ensure_collection", self._open_collection, dimension, distance)
        existing = (collection.metadata or {}).get("dimension")
        self.dimension = int(existing) if existing is not None else dimension
        self._collection = collection
        log.info(
            "collection_ready",
            collection=self.collection_name,
            dimension=self.dimension,
            distance=distance,
        )

    def _open_collection(self, dimension: int, distance: str) -> Any:
        # Chroma's not-found exception type differs between releases.
        try:
            return self.client.get_collection(name=self.collection_name, embedding_function=None)
        except Exception:
            log.info("creating_collection", collection=self.collection_name)
            return self.client.create_collection(
                name=self.collection_name,
                embedding_function=None,
                metadata={"hnsw:space": distance, "dimension": dimension},
            )

    # ------------------------------------------------------------------
    # Write operations
    # ------------------------------------------------------------------

    async def upsert(self, id: str, vector: list[float], payload: dict[str, Any]) -> None:
        """Write one chunk.

        *payload* must carry ``text``, ``user_id`` and ``timestamp``; an
        optional ``metadata`` dict is stored alongside.
        """
        if self.dimension is not None and len(vector) != self.dimension:
            raise DimensionMismatchError(self.dimension, len(vector))
        await self._run(
            "upsert",
            self.collection.upsert,
            ids=[id],
            embeddings=[vector],
            documents=[payload["text"]],
            metadatas=[
                {
                    "user_id": payload["user_id"],
                    "timestamp": payload["timestamp"],
                    "metadata": json.dumps(payload.get("metadata") or {}),
                }
            ],
        )

    async def delete(self, id: str) -> None:
        """Delete a chunk by ID.  Unknown IDs are ignored."""
        await self._run("delete", self.collection.delete, ids=[id])

    async def delete_by_user(self, user_id: str) -> None:
        """Delete every chunk owned by *user_id*."""
        await self._run("delete_by_user", self.collection.delete, where={"user_id": user_id})

    # ------------------------------------------------------------------
    # Read operations
    # ------------------------------------------------------------------

    async def search(
        self,
        vector: list[float],
        user_id: str,
        limit: int = 5,
        score_threshold: float = 0.5,
    ) -> list[SearchResult]:
        """
        Return up to *limit* of *user_id*'s chunks nearest to *vector* whose
        score is at least *score_threshold*, best first.
        """
        n = min(limit, await self.count(user_id))
        if n == 0:
            return []
        result = await self._run(
            "search",
            self.collection.query,
            query_embeddings=[vector],
            n_results=n,
            where={"user_id": user_id},
            include=["documents", "metadatas", "distances"],
        )

        ids = result["ids"][0]
        docs = (result.get("documents") or [[]])[0]
        metas = (result.get("metadatas") or [[]])[0]
        distances = (result.get("distances") or [[]])[0]

        matches: list[SearchResult] = []
        for i, chunk_id in enumerate(ids):
            score = 1.0 - distances[i]
            if score < score_threshold:
                continue
            meta = metas[i] or {}
            matches.append(
                SearchResult(
                    id=chunk_id,
                    score=score,
                    text=docs[i],
                    timestamp=int(meta.get("timestamp", 0)),
                    metadata=json.loads(meta.get("metadata") or "{}"),
                )
            )
        matches.sort(key=lambda m: m.score, reverse=True)
        return matches

    async def count(self, user_id: str | None = None) -> int:
        """Exact number of stored chunks, optionally for one user only."""
        if user_id is None:
            return await self._run("count", self.collection.count)
        result = await self._run(
            "count", self.collection.get, where={"user_id": user_id}, include=[]
        )
        return len(result["ids"])

    async def ping(self) -> bool:
        """Return True if the Chroma server answers a heartbeat."""
        try:
            await asyncio.to_thread(self.client.heartbeat)
        except Exception as e:
            log.warning("vector_store_unreachable", error=str(e))
            return False
        return True
