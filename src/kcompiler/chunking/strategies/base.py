"""Base interface for raw-text chunking strategies."""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

_WS_RE = re.compile(r"\s+")
_SENTENCE_SPLIT_RE = re.compile(r"(?<=[.!?])\s+")
_LINE_SPLIT_RE = re.compile(r"\r?\n")


@dataclass
class ChunkCandidate:
    """A chunk proposed by a strategy or built from a claim artifact, before filtering."""

    text: str
    role: str
    authority: str = "medium"
    confidence: float = 0.6
    domain: str | None = None
    actor: str | None = None
    timeframe: str = "unknown"
    source_text: str | None = None
    transformation_type: str = "extractive"
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def word_count(self) -> int:
        return count_words(self.text)


def count_words(text: str) -> int:
    """Whitespace-delimited word count (not model tokens)."""
    return len([t for t in _WS_RE.split((text or "").strip()) if t])


class ChunkingStrategy(ABC):
    """Abstract base for raw-text strategies.

    Subclasses implement ``generate()``; ``_sentences()`` and ``_lines()``
    are shared splitting helpers.
    """

    name: str = "ChunkingStrategy"

    @abstractmethod
    def generate(self, text: str) -> list[ChunkCandidate]:
        """Turn cleaned raw *text* into ordered chunk candidates (may be empty)."""

    @staticmethod
    def _sentences(text: str) -> list[str]:
        return [s.strip() for s in _SENTENCE_SPLIT_RE.split(text) if s.strip()]

    @staticmethod
    def _lines(text: str) -> list[str]:
        return [line.strip() for line in _LINE_SPLIT_RE.split(text) if line.strip()]
