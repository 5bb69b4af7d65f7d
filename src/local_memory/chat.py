"""Async Ollama chat-completion wrapper."""

from __future__ import annotations

from typing import AsyncIterator

import ollama
import structlog

from .errors import ChatError

log = structlog.get_logger()


class OllamaChat:
    """Chat completions, whole or streamed, from a local Ollama model."""

    def __init__(
        self,
        model: str = "llama3.2",
        host: str = "http://localhost:11434",
        _client: ollama.AsyncClient | None = None,
    ) -> None:
        self.model = model
        self.host = host
        self._client = _client or ollama.AsyncClient(host=host)

    def _error(self, e: Exception) -> ChatError:
        log.error("chat_failed", model=self.model, error=str(e))
        return ChatError(
            f"Chat completion failed. Is Ollama running with {self.model} model?",
            model=self.model,
        )

    async def complete(self, messages: list[dict]) -> str:
        """Send *messages* and return the assistant's reply text."""
        log.info("ollama_chat_request", model=self.model, num_messages=len(messages))
        try:
            response = await self._client.chat(
                model=self.model,
                messages=messages,
                stream=False,
            )
        except Exception as e:
            raise self._error(e) from e
        return response["message"].get("content", "")

    async def stream(self, messages: list[dict]) -> AsyncIterator[str]:
        """Yield response fragments in the order Ollama produces them.

        Closing this generator closes the upstream stream, so a caller that
        stops early (e.g. a disconnected HTTP client) stops the generation.
        """
        log.info("ollama_stream_request", model=self.model, num_messages=len(messages))
        try:
            upstream = await self._client.chat(
                model=self.model,
                messages=messages,
                stream=True,
            )
        except Exception as e:
            raise self._error(e) from e

        try:
            async for part in upstream:
                content = part["message"].get("content")
                if content:
                    yield content
        except Exception as e:
            raise self._error(e) from e
        finally:
            aclose = getattr(upstream, "aclose", None)
            if aclose is not None:
                await aclose()
