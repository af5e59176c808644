"""Classifier stage: assign semantic role, authority, confidence and horizon to chunks.

Works one batch at a time on the record's preferred variant. Chunks whose
classification fingerprint is unchanged are skipped, so replays make no
generation call. The batch is the first ``classify.batch_size`` chunks that
still need classifying; a full batch re-dispatches the stage for the remainder.
"""

from __future__ import annotations

import hashlib
import json
import logging
from datetime import datetime, timezone
from typing import Any

from kcompiler.db.models import (
    AUTHORITIES,
    CHUNK_ROLES,
    TIME_HORIZONS,
    VARIANT_NORMALIZED,
    VARIANT_RAW,
    Chunk,
    chunk_kind_from_role,
)
from kcompiler.db.repository import Repository
from kcompiler.errors import PipelineInvariantViolation
from kcompiler.pipeline.services import TASK_CLASSIFY, PipelineServices, StageControl

logger = logging.getLogger(__name__)

STAGE_NAME = "ClassifyKnowledgeChunks"
TASK_NAME = "classify_knowledge_chunks"
SCHEMA_VERSION = "chunk_classification_v1"

DEFAULT_INGESTION_QUALITY = 0.6
TX_RETRY_DELAY = 20.0
REQUEUE_DELAY = 1.0
MAX_CALLS = 2

SYSTEM_PROMPT = (
    "Classify each input chunk into semantic roles. Return only JSON for key 'results'.\n"
    "For each input, output exactly one result object in the same order as inputs. "
    "The number of results MUST equal the number of inputs. Do not merge, split, or drop.\n"
    "Each result: {chunk_role, authority, confidence, time_horizon}.\n"
    "Roles (enum only): belief_high, belief_medium, definition, heuristic, strategic_claim, "
    "causal_claim, instruction, metric, example, quote.\n"
    "Authority: high|medium|low. Confidence: 0..1. Time: current|near_term|long_term|unknown.\n"
    "Never invent content beyond the input."
)


def classification_hash(
    chunk_text: str,
    source_type: str,
    variant: str,
    normalized: bool,
    ingestion_quality: float,
) -> str:
    """Fingerprint of everything that feeds a chunk's classification."""
    basis = "|".join(
        [
            source_type,
            variant,
            "1" if normalized else "0",
            f"{ingestion_quality:.3f}",
            chunk_text[:600],
        ]
    )
    return hashlib.sha1(basis.encode("utf-8")).hexdigest()


def sanitize_classification(result: Any) -> dict[str, Any]:
    data = result if isinstance(result, dict) else {}
    role = str(data.get("chunk_role") or "other")
    if role not in CHUNK_ROLES:
        role = "other"
    authority = str(data.get("authority") or "medium")
    if authority not in AUTHORITIES:
        authority = "medium"
    try:
        confidence = float(data.get("confidence", 0.5))
    except (TypeError, ValueError):
        confidence = 0.5
    horizon = str(data.get("time_horizon") or "unknown")
    if horizon not in TIME_HORIZONS:
        horizon = "unknown"
    return {
        "chunk_role": role,
        "authority": authority,
        "confidence": max(0.0, min(1.0, confidence)),
        "time_horizon": horizon,
    }


class ClassifierStage:
    """Classify one batch of a record's chunks per invocation."""

    def __init__(self, repo: Repository, services: PipelineServices) -> None:
        self._repo = repo
        self._services = services
        self._batch_size = services.config.classify.batch_size

    def run(self, record_id: str, control: StageControl) -> str:
        run = self._services.runlog.start(STAGE_NAME, record_id, {"knowledge_record_id": record_id})
        record = self._repo.get_knowledge_record(record_id)
        if record is None:
            run.flush("not_found")
            return "not_found"

        ingestion = (
            self._repo.get_ingestion_record(record.ingestion_record_id)
            if record.ingestion_record_id
            else None
        )
        quality = DEFAULT_INGESTION_QUALITY
        if ingestion is not None and ingestion.quality_score is not None:
            quality = float(ingestion.quality_score)

        normalized = bool(record.artifacts)
        variant = VARIANT_NORMALIZED if normalized else VARIANT_RAW
        chunks = self._repo.list_chunks(record_id, variant=variant)
        if not chunks:
            run.flush("no_chunks")
            return "no_chunks"

        pending: list[tuple[Chunk, str]] = []
        inputs: list[dict[str, Any]] = []
        for chunk in chunks:
            if len(pending) >= self._batch_size:
                break
            source_type = chunk.source_type or "text"
            fp = classification_hash(
                chunk.chunk_text,
                source_type,
                chunk.source_variant or VARIANT_RAW,
                normalized,
                quality,
            )
            if chunk.tags_dict.get("classification_hash") == fp:
                continue
            pending.append((chunk, fp))
            inputs.append(
                {
                    "chunk_text": chunk.chunk_text[:1200],
                    "source_type": source_type,
                    "normalized_claim": normalized,
                    "ingestion_quality": round(quality, 3),
                }
            )

        if not pending:
            run.flush("all_up_to_date")
            return "all_up_to_date"

        expected = len(pending)
        user = json.dumps({"inputs": inputs}, ensure_ascii=False)
        results = self._classify(user, expected)

        if len(results) != expected:
            details = {"expected": expected, "got": len(results), "variant": variant}
            if ingestion is not None and ingestion.is_eval_harness:
                fallback_role = "strategic_claim" if variant == VARIANT_NORMALIZED else "other"
                results = [
                    {
                        "chunk_role": fallback_role,
                        "authority": "medium",
                        "confidence": 0.7,
                        "time_horizon": "unknown",
                    }
                    for _ in pending
                ]
                run.capture("classify.fallback_applied", {"count": expected, "variant": variant})
            elif self._services.fail_loud:
                run.flush("mismatch_counts", details)
                raise PipelineInvariantViolation("Chunk count mismatch", details)
            else:
                # chunks stay unclassified until the record is reprocessed
                logger.error(
                    "classify.mismatch_counts record=%s expected=%d got=%d variant=%s",
                    record_id,
                    expected,
                    len(results),
                    variant,
                )
                run.flush("mismatch_counts", details)
                return "mismatch_counts"

        classified_at = datetime.now(timezone.utc).isoformat()
        try:
            with self._repo.transaction():
                for (chunk, fp), result in zip(pending, results):
                    clean = sanitize_classification(result)
                    tags = chunk.tags_dict
                    tags["classification_hash"] = fp
                    tags["classified_at"] = classified_at
                    self._repo.update_chunk_classification(
                        chunk.id,
                        role=clean["chunk_role"],
                        kind=chunk_kind_from_role(clean["chunk_role"]),
                        authority=clean["authority"],
                        confidence=clean["confidence"],
                        time_horizon=clean["time_horizon"],
                        tags=json.dumps(tags),
                    )
        except Exception as exc:
            logger.error("classify.persist_failed record=%s error=%s", record_id, exc)
            control.release(TX_RETRY_DELAY)
            run.flush("error", {"error": str(exc)})
            return "error"

        if expected >= self._batch_size:
            control.dispatch(TASK_CLASSIFY, {"knowledge_record_id": record_id}, delay=REQUEUE_DELAY)
            run.flush("requeued", {"updated": expected})
            return "requeued"

        run.flush("completed", {"updated": expected})
        return "completed"

    def _classify(self, user: str, expected: int) -> list[Any]:
        """Call the generation service, retrying once in strict mode on a count mismatch."""
        results: list[Any] = []
        for attempt in range(MAX_CALLS):
            system = SYSTEM_PROMPT
            if attempt == 1:
                system += (
                    f"\nSTRICT MODE: There are exactly {expected} inputs. Return exactly "
                    f"{expected} results, in the same order. Do not add or remove items."
                )
            try:
                data = self._services.generation.call(
                    TASK_NAME,
                    system,
                    user,
                    SCHEMA_VERSION,
                    temperature=self._services.config.generation.temperature,
                )
            except Exception as exc:
                logger.warning("classify.llm_error error=%s", exc)
                data = {}
            raw = data.get("results") if isinstance(data, dict) else None
            results = raw if isinstance(raw, list) else []
            if len(results) == expected:
                break
        return results
