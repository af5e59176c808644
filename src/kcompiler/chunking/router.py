"""Map a detected format to a raw-text chunking strategy."""

from __future__ import annotations

from kcompiler.chunking.format_detector import (
    BULLET_LIST,
    NUMERIC_LIST,
    PROMO_CTA,
    SHORT_POST,
    SHORT_POST_MAX_WORDS,
)
from kcompiler.chunking.strategies import (
    ChunkingStrategy,
    FallbackSentenceStrategy,
    ListToDataPointsStrategy,
    ShortPostClaimStrategy,
)


def select_strategy(fmt: str, word_count: int) -> ChunkingStrategy:
    if fmt == NUMERIC_LIST:
        return ListToDataPointsStrategy()
    if fmt == BULLET_LIST:
        if word_count < SHORT_POST_MAX_WORDS:
            return ShortPostClaimStrategy()
        return FallbackSentenceStrategy()
    if fmt in (SHORT_POST, PROMO_CTA):
        return ShortPostClaimStrategy()
    return FallbackSentenceStrategy()
