"""
Exception hierarchy for local-memory.

Every failure raised by the pipeline derives from ``LocalMemoryError`` so
transports can map errors to exit codes or HTTP statuses with one clause:

  - ``ValidationError``          – bad caller input, raised before any I/O
  - ``UpstreamUnavailableError`` – Ollama unreachable or model missing
  - ``VectorStoreError``         – ChromaDB failures, incl. dimension mismatch
"""

from __future__ import annotations


class LocalMemoryError(Exception):
    """Base class for all local-memory errors."""


class ValidationError(LocalMemoryError, ValueError):
    """A required parameter is missing or malformed."""


class UpstreamUnavailableError(LocalMemoryError):
    """An external model service could not serve the request."""

    def __init__(self, message: str, model: str | None = None) -> None:
        super().__init__(message)
        self.model = model


class EmbeddingError(UpstreamUnavailableError):
    """Embedding generation failed."""


class ChatError(UpstreamUnavailableError):
    """Chat completion failed."""


class VectorStoreError(LocalMemoryError):
    """The vector store rejected or failed an operation."""


class DimensionMismatchError(VectorStoreError):
    """An embedding's length does not match the collection dimension."""

    def __init__(self, expected: int, actual: int) -> None:
        super().__init__(
            f"Embedding dimension {actual} does not match collection dimension {expected}"
        )
        self.expected = expected
        self.actual = actual
