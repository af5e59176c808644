"""Claim extraction for short social posts."""

from __future__ import annotations

import re

from kcompiler.chunking.strategies.base import ChunkCandidate, ChunkingStrategy, count_words


class ShortPostClaimStrategy(ChunkingStrategy):
    """Take up to two meaningful sentences: a strategic claim, then an instruction."""

    name = "ShortPostClaimStrategy"

    def generate(self, text: str) -> list[ChunkCandidate]:
        sentences: list[str] = []
        for line in self._lines(text):
            if re.match(r"^https?://", line, re.IGNORECASE) or len(line) < 10:
                continue
            for sentence in self._sentences(line):
                if len(sentence) > 20 and count_words(sentence) >= 8:
                    sentences.append(sentence)
                    if len(sentences) >= 2:
                        break
            if len(sentences) >= 2:
                break

        return [
            ChunkCandidate(
                text=sentence,
                role="strategic_claim" if index == 0 else "instruction",
                authority="medium",
                confidence=0.6,
                source_text=sentence,
                transformation_type="extractive",
            )
            for index, sentence in enumerate(sentences)
        ]
