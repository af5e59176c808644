"""Eligibility check run before the raw-text chunking fallback."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any

from kcompiler.chunking.strategies.base import count_words

_URL_ONLY_RE = re.compile(r"^https?://\S+$", re.IGNORECASE)
_URL_RE = re.compile(r"https?://\S+", re.IGNORECASE)


@dataclass
class PreflightResult:
    eligible: bool
    skip_reason: str | None = None
    metrics: dict[str, Any] = field(default_factory=dict)


class ChunkingPreflight:
    """Reject raw text that is empty, a bare URL, or below the char/word floors."""

    def __init__(self, min_clean_chars: int = 80, min_clean_tokens: int = 20) -> None:
        self.min_clean_chars = min_clean_chars
        self.min_clean_tokens = min_clean_tokens

    def check(self, raw_text: str | None) -> PreflightResult:
        raw = raw_text or ""
        clean = raw.strip()
        metrics: dict[str, Any] = {
            "raw_chars": len(raw),
            "clean_chars": len(clean),
            "contains_url": False,
            "is_url_only": False,
        }

        if not clean:
            return PreflightResult(False, "empty_after_clean", metrics)

        if _URL_ONLY_RE.match(clean):
            metrics["is_url_only"] = True
            return PreflightResult(False, "url_only", metrics)

        metrics["contains_url"] = bool(_URL_RE.search(clean))
        metrics["clean_tokens_est"] = count_words(clean)

        if metrics["clean_chars"] < self.min_clean_chars:
            return PreflightResult(False, "below_min_chars", metrics)
        if metrics["clean_tokens_est"] < self.min_clean_tokens:
            return PreflightResult(False, "below_min_tokens", metrics)

        return PreflightResult(True, None, metrics)
