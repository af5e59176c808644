"""Evaluation harness: ingest a text end-to-end and report what came out."""

from __future__ import annotations

import json
import logging
import uuid
from typing import Any

from kcompiler import identity
from kcompiler.db.models import ORIGIN_EVAL_HARNESS, STATUS_PENDING, IngestionRecord
from kcompiler.db.repository import Repository
from kcompiler.pipeline.entry import RESULT_FAILED, process
from kcompiler.pipeline.services import PipelineServices

logger = logging.getLogger(__name__)


class IngestionRunner:
    """Runs the whole pipeline inline for one text and builds a report.

    Records created here carry origin ``eval_harness``, so the normalizer and
    classifier apply their deterministic fallbacks and every stage runs
    synchronously.
    """

    def __init__(self, repo: Repository, services: PipelineServices) -> None:
        self._repo = repo
        self._services = services

    def ingest_text(
        self,
        organization_id: str,
        user_id: str | None,
        text: str,
        title: str | None = None,
        source_type: str = "text",
        force: bool = False,
        evaluation_id: str | None = None,
    ) -> dict[str, Any]:
        """Ingest *text* and return the evaluation report.

        Returns:
            Dict with ``success`` and, on success, ``source_id``,
            ``knowledge_record_id``, ``stats`` and ``artifacts``. Failures
            carry ``error``.
        """
        if not text.strip():
            return {"success": False, "error": "Empty input"}

        metadata = None
        if evaluation_id:
            metadata = json.dumps({"evaluation_run_id": evaluation_id})
        record = IngestionRecord(
            id=str(uuid.uuid4()),
            organization_id=organization_id,
            user_id=user_id,
            source_type=source_type or "text",
            origin=ORIGIN_EVAL_HARNESS,
            title=title,
            raw_text=text,
            metadata=metadata,
            dedup_hash=identity.dedup_hash(
                text, origin=ORIGIN_EVAL_HARNESS, run_id=evaluation_id
            ),
            status=STATUS_PENDING,
        )
        self._repo.add_ingestion_record(record)

        try:
            result = process(self._repo, self._services, record.id, force=force, sync=True)
        except Exception as exc:
            logger.warning("eval.ingestion.failed id=%s error=%s", record.id, exc)
            return {"success": False, "error": str(exc), "source_id": record.id}

        stored = self._repo.get_ingestion_record(record.id)
        if result == RESULT_FAILED or stored is None:
            error = stored.error if stored is not None else "ingestion record vanished"
            return {"success": False, "error": error, "source_id": record.id}
        if not stored.knowledge_record_id:
            return {"success": False, "error": "KnowledgeRecord not created", "source_id": record.id}

        return self.report(record.id, stored.knowledge_record_id)

    def report(self, source_id: str, knowledge_record_id: str) -> dict[str, Any]:
        knowledge = self._repo.get_knowledge_record(knowledge_record_id)
        normalized = knowledge.normalized_claims_dict if knowledge is not None else {}
        artifacts = knowledge.artifacts if knowledge is not None else []

        chunks = self._repo.list_chunks(knowledge_record_id)
        total = len(chunks)
        embedded = self._repo.count_embedded_chunks(knowledge_record_id)
        coverage = round(embedded / total, 3) if total else 0.0

        return {
            "success": True,
            "source_id": source_id,
            "knowledge_record_id": knowledge_record_id,
            "stats": {
                "chunks_total": total,
                "embedded": embedded,
                "embedding_coverage": coverage,
                "normalized_claims_count": len(artifacts),
                "business_facts_count": self._repo.count_business_facts(knowledge_record_id),
            },
            "artifacts": {
                "normalized_claims": normalized or None,
                "chunks": [
                    {
                        "id": c.id,
                        "chunk_text": c.chunk_text,
                        "chunk_type": c.chunk_type,
                        "chunk_role": c.chunk_role,
                        "authority": c.authority,
                        "confidence": c.confidence,
                        "time_horizon": c.time_horizon,
                        "source_type": c.source_type,
                        "source_variant": c.source_variant,
                        "tags": c.tags_dict,
                        "token_count": c.token_count,
                    }
                    for c in chunks
                ],
            },
        }
