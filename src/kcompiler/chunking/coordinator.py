"""Per-record chunking: normalized claims first, raw-text strategies as fallback.

Chunks for a record are written once per raw-text hash. A replay with the
same text and existing chunks returns the stored outcome without writing.
"""

from __future__ import annotations

import json
import logging
import re
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from kcompiler.chunking.format_detector import detect_format
from kcompiler.chunking.preflight import ChunkingPreflight
from kcompiler.chunking.router import select_strategy
from kcompiler.chunking.strategies.base import ChunkCandidate, count_words
from kcompiler.compiler.gate import normalize_domain
from kcompiler.config import ChunkingCfg
from kcompiler.db.models import (
    CHUNKING_COMPLETED,
    CHUNKING_NO_VALID_ARTIFACTS,
    VARIANT_NORMALIZED,
    VARIANT_RAW,
    Chunk,
    KnowledgeRecord,
    chunk_kind_from_role,
)
from kcompiler.db.repository import Repository
from kcompiler.identity import fingerprint

logger = logging.getLogger(__name__)

MAX_NORMALIZED_ARTIFACTS = 200
NORMALIZED_STRATEGY = "normalized_claims"

_YEAR_RE = re.compile(r"\b(20\d{2})\b")


@dataclass
class ChunkingResult:
    status: str
    chunks_created: int = 0
    strategy: str | None = None
    skipped: bool = False
    metrics: dict[str, Any] = field(default_factory=dict)


def map_time_horizon(timeframe: str | None, now_year: int | None = None) -> str:
    """Map a free-text timeframe to current | near_term | long_term | unknown."""
    tf = (timeframe or "").strip().lower()
    if not tf or tf == "unknown":
        return "unknown"

    m = _YEAR_RE.search(tf)
    if m:
        diff = int(m.group(1)) - (now_year if now_year is not None else datetime.now().year)
        if -2 <= diff <= 0:
            return "current"
        if diff == 1:
            return "near_term"
        if diff >= 2:
            return "long_term"

    if "next" in tf or "soon" in tf:
        return "near_term"
    if "long" in tf or "year" in tf:
        return "long_term"
    return "unknown"


def sanitize_authority(value: str | None) -> str:
    val = (value or "").strip().lower()
    if val in ("high", "medium", "low"):
        return val
    for level in ("high", "medium", "low"):
        if level in val:
            return level
    return "medium"


class ChunkingCoordinator:
    """Build and persist chunks for one knowledge record.

    Args:
        repo: Open Repository.
        config: Chunking thresholds (preflight floors and per-role minimum words).
    """

    def __init__(self, repo: Repository, config: ChunkingCfg | None = None) -> None:
        self._repo = repo
        self._cfg = config or ChunkingCfg()
        self._preflight = ChunkingPreflight(self._cfg.min_clean_chars, self._cfg.min_clean_tokens)

    def process(self, record: KnowledgeRecord) -> ChunkingResult:
        started = time.monotonic()
        text_hash = fingerprint(record.raw_text or "")

        previous = record.chunking_metrics_dict
        if (
            record.chunking_status
            and previous.get("text_hash") == text_hash
            and self._repo.count_chunks(record.id) > 0
        ):
            return ChunkingResult(
                status=record.chunking_status,
                chunks_created=int(previous.get("chunks_created", 0)),
                strategy=previous.get("strategy"),
                skipped=True,
                metrics=previous,
            )

        metrics: dict[str, Any] = {"text_hash": text_hash}
        artifacts = record.artifacts
        if artifacts:
            variant = VARIANT_NORMALIZED
            strategy = NORMALIZED_STRATEGY
            candidates = self._from_artifacts(artifacts)
        else:
            variant = VARIANT_RAW
            preflight = self._preflight.check(record.raw_text)
            metrics.update(preflight.metrics)
            if not preflight.eligible:
                metrics["skip_reason"] = preflight.skip_reason
                metrics["duration_ms"] = _elapsed_ms(started)
                return self._persist(record, [], VARIANT_RAW, None, metrics)
            clean = (record.raw_text or "").strip()
            fmt = detect_format(clean)
            selected = select_strategy(fmt, metrics.get("clean_tokens_est", count_words(clean)))
            strategy = selected.name
            metrics["detected_format"] = fmt
            candidates = selected.generate(clean)

        kept: list[ChunkCandidate] = []
        dropped = 0
        for candidate in candidates:
            if candidate.word_count < self._cfg.min_words_for(candidate.role):
                dropped += 1
                continue
            kept.append(candidate)

        metrics["candidates"] = len(candidates)
        metrics["dropped_below_min_words"] = dropped
        metrics["duration_ms"] = _elapsed_ms(started)
        return self._persist(record, kept, variant, strategy, metrics)

    # ------------------------------------------------------------------
    # Candidate building
    # ------------------------------------------------------------------

    def _from_artifacts(self, artifacts: list[dict]) -> list[ChunkCandidate]:
        candidates: list[ChunkCandidate] = []
        for artifact in artifacts[:MAX_NORMALIZED_ARTIFACTS]:
            text = str(artifact.get("claim") or "").strip()
            if not text:
                continue
            ctx = artifact.get("context") if isinstance(artifact.get("context"), dict) else {}
            try:
                confidence = float(artifact.get("confidence", 0.6))
            except (TypeError, ValueError):
                confidence = 0.6
            candidates.append(
                ChunkCandidate(
                    text=text,
                    role=str(artifact.get("role") or "strategic_claim").strip(),
                    authority=sanitize_authority(artifact.get("authority")),
                    confidence=max(0.0, min(1.0, confidence)),
                    domain=normalize_domain(str(ctx.get("domain") or "")) or None,
                    actor=str(ctx.get("actor") or "").strip() or None,
                    timeframe=str(ctx.get("timeframe") or "unknown").strip(),
                    transformation_type="normalized",
                )
            )
        return candidates

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _persist(
        self,
        record: KnowledgeRecord,
        candidates: list[ChunkCandidate],
        variant: str,
        strategy: str | None,
        metrics: dict[str, Any],
    ) -> ChunkingResult:
        status = CHUNKING_COMPLETED if candidates else CHUNKING_NO_VALID_ARTIFACTS
        metrics["chunks_created"] = len(candidates)
        metrics["strategy"] = strategy
        source_type = "text" if record.source == "manual" else record.source

        with self._repo.transaction():
            self._repo.delete_chunks_by_record(record.id)
            for candidate in candidates:
                tags = dict(candidate.metadata)
                if strategy:
                    tags["strategy"] = strategy
                self._repo.add_chunk(
                    Chunk(
                        id=str(uuid.uuid4()),
                        knowledge_record_id=record.id,
                        organization_id=record.organization_id,
                        chunk_text=candidate.text,
                        source_type=source_type,
                        source_variant=variant,
                        chunk_role=candidate.role,
                        chunk_kind=chunk_kind_from_role(candidate.role),
                        authority=candidate.authority,
                        confidence=candidate.confidence,
                        time_horizon=map_time_horizon(candidate.timeframe),
                        domain=candidate.domain,
                        actor=candidate.actor,
                        tags=json.dumps(tags),
                        token_count=candidate.word_count,
                        source_text=candidate.source_text,
                        transformation_type=candidate.transformation_type,
                    )
                )
            self._repo.set_chunking_state(record.id, status, metrics=json.dumps(metrics))

        logger.info(
            "chunking.persisted record=%s status=%s chunks=%d strategy=%s",
            record.id,
            status,
            len(candidates),
            strategy,
        )
        return ChunkingResult(
            status=status,
            chunks_created=len(candidates),
            strategy=strategy,
            metrics=metrics,
        )


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)
