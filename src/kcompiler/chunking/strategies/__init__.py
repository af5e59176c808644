"""Raw-text chunking strategies."""

from kcompiler.chunking.strategies.base import ChunkCandidate, ChunkingStrategy, count_words
from kcompiler.chunking.strategies.fallback_sentence import FallbackSentenceStrategy
from kcompiler.chunking.strategies.list_datapoints import ListToDataPointsStrategy
from kcompiler.chunking.strategies.short_post import ShortPostClaimStrategy

__all__ = [
    "ChunkCandidate",
    "ChunkingStrategy",
    "count_words",
    "FallbackSentenceStrategy",
    "ListToDataPointsStrategy",
    "ShortPostClaimStrategy",
]
