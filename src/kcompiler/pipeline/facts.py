"""Business fact extraction: up to three pain points, beliefs or stats per record.

Runs after embedding. The first 2000 characters of the raw text go to the
generation service; whatever comes back is coerced into at most
``MAX_FACTS`` rows. A rerun replaces the record's earlier facts.
"""

from __future__ import annotations

import json
import logging
import uuid
from typing import Any

from kcompiler.db.models import FACT_TYPES, BusinessFact
from kcompiler.db.repository import Repository
from kcompiler.pipeline.services import PipelineServices

logger = logging.getLogger(__name__)

STAGE_NAME = "ExtractBusinessFacts"
TASK_NAME = "extract_business_facts"
SCHEMA_VERSION = "business_facts_v1"

MAX_INPUT_CHARS = 2000
MAX_FACTS = 3
DEFAULT_CONFIDENCE = 0.8
TEMPERATURE = 0.2

SYSTEM_PROMPT = (
    "Extract up to 3 atomic business facts, beliefs or pain points from the text. "
    "Return only JSON for key 'facts'.\n"
    "Prefer concise, standalone statements that would help marketing copy. "
    "Ignore introductions, greetings and filler. If nothing useful exists, return an empty list.\n"
    'Each fact: {"text": "...", "type": "pain_point|belief|stat", "confidence": 0-100}.'
)


def coerce_facts(data: Any) -> list[Any]:
    """Accept a single fact object, ``{"facts": [...]}`` or a bare list."""
    if isinstance(data, dict):
        if "text" in data:
            return [data]
        facts = data.get("facts")
        return facts if isinstance(facts, list) else []
    if isinstance(data, list):
        return data
    return []


def sanitize_fact(item: Any) -> dict[str, Any] | None:
    """Clean one fact. Returns None when it has no text.

    Unknown types become ``general``; confidence given on a 0-100 scale is
    rescaled, then clamped to [0, 1].
    """
    if not isinstance(item, dict):
        return None
    text = str(item.get("text") or "").strip()
    if not text:
        return None
    fact_type = str(item.get("type") or "general")
    if fact_type not in FACT_TYPES:
        fact_type = "general"
    confidence = DEFAULT_CONFIDENCE
    if item.get("confidence") is not None:
        try:
            confidence = float(item["confidence"])
        except (TypeError, ValueError):
            confidence = DEFAULT_CONFIDENCE
        if confidence > 1.0:
            confidence /= 100.0
    return {"text": text, "type": fact_type, "confidence": max(0.0, min(1.0, confidence))}


class FactExtractorStage:
    def __init__(self, repo: Repository, services: PipelineServices) -> None:
        self._repo = repo
        self._services = services

    def run(self, record_id: str) -> str:
        run = self._services.runlog.start(STAGE_NAME, record_id, {"knowledge_record_id": record_id})
        record = self._repo.get_knowledge_record(record_id)
        if record is None or not (record.raw_text or "").strip():
            run.flush("skipped", {"reason": "no_item_or_text"})
            return "skipped"

        user = json.dumps({"text": record.raw_text[:MAX_INPUT_CHARS]}, ensure_ascii=False)
        try:
            data = self._services.generation.call(
                TASK_NAME, SYSTEM_PROMPT, user, SCHEMA_VERSION, temperature=TEMPERATURE
            )
        except Exception as exc:
            logger.warning("facts.llm_error record=%s error=%s", record_id, exc)
            run.flush("llm_error", {"error": str(exc)})
            return "llm_error"
        run.capture(
            "llm.response",
            {"shape": sorted(data) if isinstance(data, dict) else type(data).__name__},
        )

        cleaned = [f for f in (sanitize_fact(i) for i in coerce_facts(data)[:MAX_FACTS]) if f]
        try:
            with self._repo.transaction():
                self._repo.delete_business_facts_by_record(record_id)
                for fact in cleaned:
                    self._repo.add_business_fact(
                        BusinessFact(
                            id=str(uuid.uuid4()),
                            organization_id=record.organization_id,
                            user_id=record.user_id,
                            source_knowledge_record_id=record.id,
                            **fact,
                        )
                    )
        except Exception as exc:
            logger.error("facts.persist_failed record=%s error=%s", record_id, exc)
            run.flush("error", {"error": str(exc)})
            raise

        logger.info("facts.completed record=%s facts=%d", record_id, len(cleaned))
        run.flush("completed", {"facts": len(cleaned)})
        return "completed"
