"""Result types returned by the memory pipeline."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any


@dataclass
class SearchResult:
    """One retrieved chunk with its similarity score."""

    id: str
    score: float
    text: str
    timestamp: int
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class ChatResult:
    response: str
    memories_used: int


@dataclass
class HealthStatus:
    """Reachability of each external dependency, probed independently."""

    vector_store: bool
    embedding_service: bool

    @property
    def healthy(self) -> bool:
        return self.vector_store and self.embedding_service


@dataclass
class RefinedPrompt:
    original_prompt: str
    refined_prompt: str
    memories_used: int
    memories: list[SearchResult] = field(default_factory=list)


@dataclass
class AssistedChatResult:
    response: str
    memories_used: int
    memories: list[str] = field(default_factory=list)
    stored: bool = False
    refined: bool = False
