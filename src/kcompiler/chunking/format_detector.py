"""Classify raw text layout to pick a chunking strategy."""

from __future__ import annotations

import re

from kcompiler.chunking.strategies.base import count_words

NUMERIC_LIST = "numeric_list"
BULLET_LIST = "bullet_list"
SHORT_POST = "short_post"
PROMO_CTA = "promo_cta"
PLAIN_TEXT = "plain_text"
UNKNOWN = "unknown"

SHORT_POST_MAX_WORDS = 60

_NUMERIC_LINE_RE = re.compile(r"^\s*(\d{4}\s*=|\d+\.\s+|\d+\)\s+)")
_BULLET_LINE_RE = re.compile(r"^\s*[-•*]\s+")
_URL_RE = re.compile(r"https?://\S+", re.IGNORECASE)

_CTA_PHRASES: tuple[str, ...] = (
    "comment",
    "dm me",
    "dm you",
    "link in bio",
    "guaranteed",
    "check out",
    "limited",
    "click here",
    "sign up",
    "get started",
    "free trial",
)


def detect_format(text: str) -> str:
    """Return one of numeric_list, bullet_list, short_post, promo_cta, plain_text, unknown."""
    text = (text or "").strip()
    if not text:
        return UNKNOWN

    lines = [line.strip() for line in re.split(r"\r?\n", text) if line.strip()]
    if _is_numeric_list(lines):
        return NUMERIC_LIST
    if _is_bullet_list(lines):
        return BULLET_LIST
    if count_words(text) < SHORT_POST_MAX_WORDS:
        return PROMO_CTA if _is_promo_cta(text) else SHORT_POST
    return PLAIN_TEXT


def _is_numeric_list(lines: list[str]) -> bool:
    if len(lines) < 3:
        return False
    considered = [line for line in lines if len(line) >= 5]
    numeric = sum(1 for line in considered if _NUMERIC_LINE_RE.match(line))
    return numeric >= 3 and bool(considered) and numeric / len(considered) > 0.5


def _is_bullet_list(lines: list[str]) -> bool:
    if len(lines) < 3:
        return False
    return sum(1 for line in lines if _BULLET_LINE_RE.match(line)) >= 3


def _is_promo_cta(text: str) -> bool:
    lowered = text.lower()
    has_cta = any(phrase in lowered for phrase in _CTA_PHRASES)
    return has_cta and bool(_URL_RE.search(text))
