"""Heuristic quality report for ingested text.

overall = 0.30·signal_density + 0.20·(1 − redundancy) + 0.20·specificity
        + 0.20·extractability + 0.10·embedding_coverage

Every component is clamped to [0, 1] and rounded to 4 decimals.
"""

from __future__ import annotations

import re
from typing import Any

_SENTENCE_SPLIT_RE = re.compile(r"(?<=[.!?])\s+")
_PARAGRAPH_SPLIT_RE = re.compile(r"\n\s*\n")
_NUMBER_RE = re.compile(r"\b\d+(?:[.,]\d+)?\b")
_PROPER_NOUN_RE = re.compile(r"\b[A-Z][a-z]{2,}\b")
_KEYWORD_RE = re.compile(
    r"\b(CTA|ROI|KPI|roadmap|prototype|beta|MRR|SaaS|retention|churn)\b", re.IGNORECASE
)
_BULLET_RE = re.compile(r"^[-*•]", re.MULTILINE)
_NUMBERED_RE = re.compile(r"^\s*\d+\.", re.MULTILINE)

_SHORT_PARAGRAPH_CHARS = 500


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))


class QualityScorer:
    """Score text on signal density, redundancy, specificity, extractability and coverage."""

    def score(self, text: str) -> dict[str, Any]:
        """Return the quality report for *text*.

        Returns:
            Dict with ``overall``, the five component scores, ``warnings``
            (too_short, redundant_content, low_specificity) and ``stats``.
        """
        text = (text or "").strip()
        length = len(text)
        sentences = [s.strip() for s in _SENTENCE_SPLIT_RE.split(text) if s.strip()]
        unique_count = len({s.lower() for s in sentences})
        sentence_count = len(sentences)

        char_density = _clamp(length / 4000)
        unique_ratio = unique_count / max(1, sentence_count)
        redundancy = 1.0 - min(1.0, unique_ratio) if sentence_count else 0.0
        signal_density = _clamp(unique_ratio * 0.6 + char_density * 0.4)

        specificity = self._specificity(text)
        extractability = self._extractability(text)
        embedding_coverage = min(1.0, length / 12000) if length else 0.0

        warnings: list[str] = []
        if length < 200:
            warnings.append("too_short")
        if redundancy > 0.4:
            warnings.append("redundant_content")
        if specificity < 0.4:
            warnings.append("low_specificity")

        overall = _clamp(
            0.30 * signal_density
            + 0.20 * (1.0 - redundancy)
            + 0.20 * specificity
            + 0.20 * extractability
            + 0.10 * embedding_coverage
        )

        return {
            "overall": round(overall, 4),
            "signal_density": round(signal_density, 4),
            "redundancy": round(redundancy, 4),
            "specificity": round(specificity, 4),
            "extractability": round(extractability, 4),
            "embedding_coverage": round(embedding_coverage, 4),
            "warnings": warnings,
            "stats": {
                "chars": length,
                "sentences": sentence_count,
                "unique_sentences": unique_count,
            },
        }

    @staticmethod
    def _specificity(text: str) -> float:
        # numbers, proper nouns and domain keywords
        numbers = len(_NUMBER_RE.findall(text))
        proper_nouns = len(_PROPER_NOUN_RE.findall(text))
        keywords = len(_KEYWORD_RE.findall(text))
        score = (
            min(1.0, numbers / 10.0) * 0.4
            + min(1.0, proper_nouns / 15.0) * 0.4
            + min(1.0, keywords / 5.0) * 0.2
        )
        return _clamp(score)

    @staticmethod
    def _extractability(text: str) -> float:
        bullets = len(_BULLET_RE.findall(text))
        numbered = len(_NUMBERED_RE.findall(text))
        paragraphs = _PARAGRAPH_SPLIT_RE.split(text)
        short = [p for p in paragraphs if len(p.strip()) <= _SHORT_PARAGRAPH_CHARS]
        ratio = len(short) / max(1, len(paragraphs)) if paragraphs else 0.0
        score = (
            min(1.0, bullets / 10.0) * 0.4
            + min(1.0, numbered / 10.0) * 0.2
            + _clamp(ratio) * 0.4
        )
        return _clamp(score)
