"""Candidate extraction and the semantic gate applied before normalization.

"Words" here are whitespace-delimited tokens, not model tokens.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

DEFAULT_MAX_CANDIDATES = 20
DEFAULT_MIN_GATE_WORDS = 6

_LONG_PARAGRAPH_CHARS = 2400
_BLOCK_TARGET_CHARS = 1600

# Open vocabulary: examples only, never an enum.
SUGGESTED_DOMAINS: tuple[str, ...] = (
    "seo",
    "content marketing",
    "saas",
    "monetization",
    "growth",
    "business strategy",
)

_DOMAIN_SYNONYMS: dict[str, str] = {
    "seo": "seo",
    "search": "seo",
    "content": "content marketing",
    "content marketing": "content marketing",
    "saas": "saas",
    "monetization": "monetization",
    "growth": "growth",
    "business": "business strategy",
    "business strategy": "business strategy",
    "strategy": "business strategy",
}

_PARAGRAPH_SPLIT_RE = re.compile(r"\n\s*\n")
_SENTENCE_SPLIT_RE = re.compile(r"(?<=[.!?])\s+")
_WS_RE = re.compile(r"\s+")

_EMOJI_RE = re.compile(
    "[\U0001F000-\U0001FAFF\U00002600-\U000027BF\U00002300-\U000023FF"
    "\U00002B00-\U00002BFF\U0000FE0F]"
)

_AUX_VERB_RE = re.compile(
    r"\b(is|are|was|were|be|been|being|have|has|had|do|does|did|will|would|"
    r"should|can|could|may|might|must)\b"
)
_ACTION_VERB_RE = re.compile(
    r"\b(increase|decrease|improve|hurt|punish|rank|convert|drive|generate|reported|"
    r"report|announced|announce|launched|launch|released|release|grew|grow|boost|"
    r"boosts|reduced|reduce|raised|raise|lowered|lower)\b"
)
_VERB_SUFFIX_RE = re.compile(r"\b\w+(ed|ing)\b")

_DEFINITION_RE = re.compile(r"\b\w[\w\-\s]{2,40}\s+(is|are|means|refers to|defined as)\b")
_CAUSAL_RE = re.compile(
    r"\b(because|therefore|thus|so that|so|leads to|results in|causes|drives|"
    r"increases|decreases|improves|reduces)\b"
)
_CONDITIONAL_RE = re.compile(r"\bif\b.+\bthen\b")

_ABSTRACT_NOUNS: tuple[str, ...] = (
    "trust", "credibility", "reputation", "brand", "attention", "engagement",
    "retention", "growth", "risk", "impact", "value", "quality", "clarity",
    "strategy", "tactics", "principle", "heuristic", "tradeoff", "constraints",
    "incentives", "alignment", "friction", "momentum", "leverage", "community",
    "culture", "belief", "motivation", "behavior", "psychology", "learning",
    "education",
)


@dataclass
class GateResult:
    accepted: bool
    reason: str | None = None
    stats: dict[str, float] = field(default_factory=dict)


# ------------------------------------------------------------------
# Extraction
# ------------------------------------------------------------------


def extract_candidates(raw_text: str, max_blocks: int = DEFAULT_MAX_CANDIDATES) -> list[str]:
    """Split *raw_text* into at most *max_blocks* candidate blocks.

    Paragraphs (blank-line separated) are the unit. Paragraphs longer than
    2400 chars are re-split on sentence boundaries into blocks of roughly
    1600 chars.
    """
    raw_text = (raw_text or "").strip()
    if not raw_text:
        return []

    paragraphs = [p.strip() for p in _PARAGRAPH_SPLIT_RE.split(raw_text) if p.strip()]
    out: list[str] = []
    for para in paragraphs:
        if len(para) <= _LONG_PARAGRAPH_CHARS:
            out.append(para)
            continue
        buf = ""
        for sentence in _SENTENCE_SPLIT_RE.split(para):
            sentence = sentence.strip()
            if not sentence:
                continue
            candidate = sentence if not buf else f"{buf} {sentence}"
            if len(candidate) > _BLOCK_TARGET_CHARS and buf:
                out.append(buf)
                buf = sentence
            else:
                buf = candidate
        if buf:
            out.append(buf)

    return out[: max(1, max_blocks)]


# ------------------------------------------------------------------
# Gate
# ------------------------------------------------------------------


class SemanticGate:
    """Open-policy accept/reject filter for candidate statements.

    Checks in order: non-empty, enough non-URL words, URL/emoji share at
    most one half, a verb is present, and a semantic-sanity signal exists
    (definition, number, causal connector, abstract noun, proper noun, or
    if/then).
    """

    def __init__(self, min_words: int = DEFAULT_MIN_GATE_WORDS) -> None:
        self.min_words = min_words

    def check(self, text: str) -> GateResult:
        text = (text or "").strip()
        if not text:
            return GateResult(False, "empty")

        tokens = [t for t in _WS_RE.split(text) if t]
        if not tokens:
            return GateResult(False, "no_tokens")

        url_tokens = 0
        emoji_tokens = 0
        non_url_tokens = 0
        for token in tokens:
            if looks_like_url(token):
                url_tokens += 1
                continue
            non_url_tokens += 1
            if _EMOJI_RE.search(token):
                emoji_tokens += 1

        if non_url_tokens < self.min_words:
            return GateResult(False, "too_short_tokens", {"non_url_tokens": non_url_tokens})

        ratio = (url_tokens + emoji_tokens) / max(1, len(tokens))
        if ratio > 0.5:
            return GateResult(False, "too_much_url_or_emoji", {"ratio": ratio})

        if not has_verb(text):
            return GateResult(False, "no_verb")

        if not passes_semantic_sanity(text):
            return GateResult(False, "semantic_incoherence")

        return GateResult(True)


def looks_like_url(token: str) -> bool:
    token = token.strip()
    if not token:
        return False
    if re.match(r"^https?://", token, re.IGNORECASE):
        return True
    if re.match(r"^www\.", token, re.IGNORECASE):
        return True
    return bool(
        re.search(r"\.[a-z]{2,}(/|$)", token, re.IGNORECASE)
        and re.search(r"[a-z]", token, re.IGNORECASE)
    )


def has_verb(text: str) -> bool:
    lowered = text.lower()
    return bool(
        _AUX_VERB_RE.search(lowered)
        or _ACTION_VERB_RE.search(lowered)
        or _VERB_SUFFIX_RE.search(lowered)
    )


def passes_semantic_sanity(text: str) -> bool:
    """Reject reactions, bare links and memes; keep short factual updates."""
    raw = text.strip()
    if not raw:
        return False
    lowered = raw.lower()
    if _DEFINITION_RE.search(lowered):
        return True
    if has_numeric_signal(raw):
        return True
    if _CAUSAL_RE.search(lowered):
        return True
    if any(noun in lowered for noun in _ABSTRACT_NOUNS):
        return True
    if has_proper_noun_signal(raw):
        return True
    return bool(_CONDITIONAL_RE.search(lowered))


def has_numeric_signal(text: str) -> bool:
    if re.search(r"\b(19\d{2}|20\d{2})\b", text):
        return True
    if re.search(r"\b\d+(\.\d+)?\s*(%|percent\b)", text, re.IGNORECASE):
        return True
    if re.search(r"[$€£]\s*\d[\d,]*(\.\d+)?", text):
        return True
    if re.search(r"\b\d{1,3}(,\d{3})+(\.\d+)?\b", text):
        return True
    return bool(
        re.search(r"\b\d+\b", text)
        and re.search(
            r"\b(users|days|weeks|months|years|minutes|hours|requests|sessions)\b",
            text,
            re.IGNORECASE,
        )
    )


def has_proper_noun_signal(text: str) -> bool:
    return bool(
        re.search(r"\b[A-Z][a-z]{2,}\b", text)
        or re.search(r"\b[A-Z]{2,}\b", text)
        or re.search(r"\b[A-Z][a-z]+[A-Z][A-Za-z]+\b", text)
    )


def normalize_domain(domain: str | None) -> str:
    """Map a free-form domain to its canonical lowercase label.

    Known synonyms collapse (``"Search"`` → ``"seo"``); unknown domains are
    kept verbatim, lowercased with whitespace collapsed.
    """
    domain = _WS_RE.sub(" ", (domain or "").strip())
    if not domain:
        return ""
    lowered = domain.lower()
    return _DOMAIN_SYNONYMS.get(lowered, lowered)
