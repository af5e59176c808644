"""Chunker stage: wraps ChunkingCoordinator with run logging and failure marking."""

from __future__ import annotations

import logging

from kcompiler.chunking.coordinator import ChunkingCoordinator
from kcompiler.db.models import CHUNKING_FAILED
from kcompiler.db.repository import Repository
from kcompiler.errors import truncate_error
from kcompiler.pipeline.services import PipelineServices

logger = logging.getLogger(__name__)

STAGE_NAME = "ChunkKnowledgeRecord"
SKIPPED_ALREADY_CHUNKED = "skipped_already_chunked"


class ChunkerStage:
    def __init__(self, repo: Repository, services: PipelineServices) -> None:
        self._repo = repo
        self._services = services
        self._coordinator = ChunkingCoordinator(repo, services.config.chunking)

    def run(self, record_id: str) -> str:
        """Chunk one record. Exceptions mark the record failed and propagate."""
        run = self._services.runlog.start(STAGE_NAME, record_id, {"knowledge_record_id": record_id})
        record = self._repo.get_knowledge_record(record_id)
        if record is None:
            run.flush("not_found")
            return "not_found"

        try:
            result = self._coordinator.process(record)
        except Exception as exc:
            if self._repo.conn.in_transaction:
                self._repo.conn.rollback()
            self._repo.set_chunking_state(
                record_id,
                CHUNKING_FAILED,
                error_code="unknown",
                error_message=truncate_error(exc),
            )
            logger.error("chunking.failed record=%s error=%s", record_id, exc)
            run.flush("error", {"error": str(exc)})
            raise

        if result.skipped:
            run.flush(SKIPPED_ALREADY_CHUNKED, {"status": result.status})
            return SKIPPED_ALREADY_CHUNKED

        run.flush(
            "completed",
            {
                "status": result.status,
                "chunks_created": result.chunks_created,
                "strategy": result.strategy,
                "metrics": result.metrics,
            },
        )
        return result.status
