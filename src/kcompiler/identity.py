"""Content fingerprints used for knowledge record dedup."""

from __future__ import annotations

import hashlib
import re

from kcompiler.db.models import KnowledgeRecord
from kcompiler.db.repository import Repository

_WS_RE = re.compile(r"\s+")


def normalize_text(text: str) -> str:
    """Collapse whitespace runs to one space and trim."""
    return _WS_RE.sub(" ", text or "").strip()


def fingerprint(text: str) -> str:
    """SHA-256 hex of the whitespace-normalized *text*.

    ``fingerprint(" a  b ") == fingerprint("a b")``
    """
    return hashlib.sha256(normalize_text(text).encode("utf-8")).hexdigest()


def namespaced_fingerprint(text: str, run_id: str) -> str:
    """Fingerprint isolated to one evaluation run."""
    payload = normalize_text(text) + "::eval:" + run_id
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def dedup_hash(text: str, *, origin: str | None = None, run_id: str | None = None) -> str:
    """Return the dedup hash for *text*, namespaced for eval-harness runs."""
    if origin == "eval_harness" and run_id:
        return namespaced_fingerprint(text, run_id)
    return fingerprint(text)


def find_canonical(repo: Repository, organization_id: str, text_hash: str) -> KnowledgeRecord | None:
    """Return the canonical knowledge record for (*organization_id*, *text_hash*), if any."""
    return repo.find_canonical(organization_id, text_hash)
