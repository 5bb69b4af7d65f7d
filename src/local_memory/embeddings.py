"""Embeddings via a local Ollama server."""

from __future__ import annotations

import ollama
import structlog

from .errors import EmbeddingError

log = structlog.get_logger()


class OllamaEmbedder:
    """Generate embeddings through Ollama's async API."""

    def __init__(
        self,
        model: str = "nomic-embed-text",
        host: str = "http://localhost:11434",
        _client: ollama.AsyncClient | None = None,
    ) -> None:
        self.model = model
        self.host = host
        self._client = _client or ollama.AsyncClient(host=host)

    async def embed(self, text: str) -> list[float]:
        """Embed a single text.

        Raises:
            EmbeddingError: Ollama is unreachable or the model is not pulled.
        """
        try:
            response = await self._client.embeddings(model=self.model, prompt=text)
        except Exception as e:
            log.error("embedding_failed", model=self.model, error=str(e))
            raise EmbeddingError(
                f"Failed to generate embedding. Is Ollama running with {self.model} model?",
                model=self.model,
            ) from e
        return list(response["embedding"])

    async def ping(self) -> bool:
        """Return True if the Ollama server answers a model listing."""
        try:
            await self._client.list()
        except Exception as e:
            log.warning("ollama_unreachable", host=self.host, error=str(e))
            return False
        return True
