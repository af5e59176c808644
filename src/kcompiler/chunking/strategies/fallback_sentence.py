"""Top-scored sentence extraction for plain text."""

from __future__ import annotations

import re

from kcompiler.chunking.strategies.base import ChunkCandidate, ChunkingStrategy, count_words

_CAUSAL_WORDS = ("because", "therefore", "thus", "so", "leads to", "results in", "causes")
_INSTRUCTION_VERBS = ("do", "use", "seed", "add", "include", "ensure", "avoid", "create", "build")

_MAX_SENTENCES = 3


class FallbackSentenceStrategy(ChunkingStrategy):
    """Keep the three highest-scoring sentences as low-authority heuristics.

    Score: digits +2, causal wording +1.5, instruction verb +1, 12–40 words +1.
    Sentences of 30 chars or fewer, URL-led sentences, and zero scores are dropped.
    """

    name = "FallbackSentenceStrategy"

    def generate(self, text: str) -> list[ChunkCandidate]:
        scored: list[tuple[float, int, str]] = []
        for index, sentence in enumerate(self._sentences(text)):
            if len(sentence) <= 30 or re.match(r"^https?://", sentence, re.IGNORECASE):
                continue
            score = self.score(sentence)
            if score > 0:
                scored.append((score, index, sentence))

        # stable: ties keep document order
        scored.sort(key=lambda item: (-item[0], item[1]))
        return [
            ChunkCandidate(
                text=sentence,
                role="heuristic",
                authority="low",
                confidence=0.5,
                source_text=sentence,
                transformation_type="extractive",
            )
            for _score, _index, sentence in scored[:_MAX_SENTENCES]
        ]

    @staticmethod
    def score(sentence: str) -> float:
        lowered = sentence.lower()
        score = 0.0
        if re.search(r"\d+", sentence):
            score += 2.0
        if any(word in lowered for word in _CAUSAL_WORDS):
            score += 1.5
        if any(f" {verb} " in lowered for verb in _INSTRUCTION_VERBS):
            score += 1.0
        if 12 <= count_words(sentence) <= 40:
            score += 1.0
        return score
