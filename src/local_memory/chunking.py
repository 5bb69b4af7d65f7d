"""
Text preparation layer: normalization, chunking, and metadata extraction.

These utilities run before anything touches the embedding service:
  - Whitespace normalization so equivalent texts embed identically
  - Sentence chunking bounded by an estimated token budget, with overlap
  - Lightweight descriptive metadata attached to every stored chunk
"""

from __future__ import annotations

import math
import re
import uuid
from dataclasses import dataclass
from typing import Any

from .errors import ValidationError

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

#: Maximum estimated tokens per chunk.
DEFAULT_MAX_TOKENS: int = 500

#: Estimated tokens carried over from the end of one chunk to the next.
DEFAULT_OVERLAP_TOKENS: int = 50

#: Rough characters-per-token ratio used in place of a real tokenizer.
CHARS_PER_TOKEN: int = 4

_SENTENCE_BOUNDARY = re.compile(r"[.!?]+")
_HORIZONTAL_SPACE = re.compile(r"[^\S\n]+")
_NEWLINES = re.compile(r"\n+")
_URL = re.compile(r"https?://\S+")
_EMAIL = re.compile(r"\S+@\S+\.\S+")


@dataclass(frozen=True)
class Chunk:
    """A bounded slice of normalized text."""

    text: str
    index: int
    token_count: int


# ---------------------------------------------------------------------------
# Normalization
# ---------------------------------------------------------------------------


def normalize_text(text: str) -> str:
    """
    Collapse runs of spaces/tabs to one space and runs of newlines to one
    newline, then trim.  Idempotent.
    """
    text = _HORIZONTAL_SPACE.sub(" ", text)
    text = _NEWLINES.sub("\n", text)
    return text.strip()


# ---------------------------------------------------------------------------
# Chunking
# ---------------------------------------------------------------------------


def estimate_tokens(text: str) -> int:
    """Approximate token count: one token per four characters, rounded up."""
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def chunk_text(
    text: str,
    max_tokens: int = DEFAULT_MAX_TOKENS,
    overlap_tokens: int = DEFAULT_OVERLAP_TOKENS,
) -> list[Chunk]:
    """
    Split *text* into sentence-aligned chunks of roughly *max_tokens* each.

    Strategy:
      1. Split on terminal punctuation (``.``, ``!``, ``?``); the punctuation
         itself is dropped.
      2. Accumulate sentences until the next one would push the estimated
         token count past *max_tokens*, then flush the pending chunk.
      3. Seed the next chunk with whole trailing sentences of the flushed
         one, up to *overlap_tokens*.

    A single sentence larger than *max_tokens* still becomes its own chunk;
    the limit is a target, not a guarantee.  Returns ``[]`` when *text*
    contains no sentences.
    """
    if max_tokens <= 0:
        raise ValidationError("max_tokens must be positive")
    if overlap_tokens < 0:
        raise ValidationError("overlap_tokens must not be negative")

    chunks: list[Chunk] = []
    current: list[str] = []
    current_tokens = 0

    for sentence in _split_sentences(text):
        sentence_tokens = estimate_tokens(sentence)

        if current_tokens + sentence_tokens > max_tokens and current:
            chunks.append(Chunk(_join(current), len(chunks), current_tokens))
            current, current_tokens = _overlap(current, overlap_tokens)

        current.append(sentence)
        current_tokens += sentence_tokens

    if current:
        chunks.append(Chunk(_join(current), len(chunks), current_tokens))

    return chunks


def _split_sentences(text: str) -> list[str]:
    parts = _SENTENCE_BOUNDARY.split(text)
    return [p.strip() for p in parts if p.strip()]


def _join(sentences: list[str]) -> str:
    return ". ".join(sentences) + "."


def _overlap(sentences: list[str], overlap_tokens: int) -> tuple[list[str], int]:
    """Return the longest run of trailing sentences fitting *overlap_tokens*."""
    carried: list[str] = []
    total = 0
    for sentence in reversed(sentences):
        tokens = estimate_tokens(sentence)
        if total + tokens > overlap_tokens:
            break
        carried.insert(0, sentence)
        total += tokens
    return carried, total


# ---------------------------------------------------------------------------
# Metadata extraction
# ---------------------------------------------------------------------------


def extract_metadata(text: str) -> dict[str, Any]:
    """
    Derive descriptive metadata for a chunk.

    ``language`` is always ``"en"``; no detection is performed.
    """
    return {
        "wordCount": len(text.split()),
        "charCount": len(text),
        "hasUrl": bool(_URL.search(text)),
        "hasEmail": bool(_EMAIL.search(text)),
        "language": "en",
    }


# ---------------------------------------------------------------------------
# ID generation
# ---------------------------------------------------------------------------


def generate_id() -> str:
    """Return a new unique memory ID."""
    return str(uuid.uuid4())
