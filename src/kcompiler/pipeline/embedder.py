"""Embedder stage: vectors for eligible normalized chunks.

Eligible chunks are normalized-variant chunks whose role is not quote/other.
When none exist yet the stage releases itself and polls, bounded by
``embed.max_wait_attempts``. One batch is embedded per invocation.
"""

from __future__ import annotations

import json
import logging
import math

from kcompiler.db.models import CHUNKING_FAILED, CHUNKING_NO_VALID_ARTIFACTS, Chunk
from kcompiler.db.repository import Repository
from kcompiler.db.vectors import ensure_vec_table, model_to_slug, to_vector_literal
from kcompiler.pipeline.services import TASK_EMBED, PipelineServices, StageControl

logger = logging.getLogger(__name__)

STAGE_NAME = "EmbedKnowledgeChunks"
REQUEUE_DELAY = 1.0


def _usable(vector: object, dimensions: int) -> bool:
    if not isinstance(vector, (list, tuple)) or len(vector) != dimensions:
        return False
    try:
        return all(math.isfinite(float(v)) for v in vector)
    except (TypeError, ValueError):
        return False


class EmbedderStage:
    def __init__(self, repo: Repository, services: PipelineServices) -> None:
        self._repo = repo
        self._services = services
        self._cfg = services.config.embed
        self._batch_size = services.config.embedding.batch_size

    def run(self, record_id: str, control: StageControl) -> str:
        """Embed one batch for *record_id*. Returns the run-log status.

        Errors from the embedding service propagate so the queue retries
        the task under its budget.
        """
        run = self._services.runlog.start(STAGE_NAME, record_id, {"knowledge_record_id": record_id})
        logger.info("embed.start record=%s attempt=%d", record_id, control.attempts)

        if self._repo.count_eligible_chunks(record_id) == 0:
            return self._wait_for_chunks(record_id, control, run)

        batch = self._repo.list_unembedded_chunks(record_id, self._batch_size)
        stored = 0
        if batch:
            stored = self._embed_batch(record_id, batch, control, run)
            if stored is None:
                return "error"

        remaining = self._repo.count_unembedded_chunks(record_id)
        if remaining and stored:
            control.dispatch(TASK_EMBED, {"knowledge_record_id": record_id}, delay=REQUEUE_DELAY)
            run.flush("requeued", {"processed": stored, "remaining": remaining})
            return "requeued"

        logger.info("embed.completed record=%s processed=%d", record_id, stored)
        run.flush("completed", {"processed": stored})
        return "completed"

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _wait_for_chunks(self, record_id: str, control: StageControl, run) -> str:
        record = self._repo.get_knowledge_record(record_id)
        chunking_status = record.chunking_status if record is not None else None
        if record is None or chunking_status in (CHUNKING_NO_VALID_ARTIFACTS, CHUNKING_FAILED):
            logger.info("embed.no_chunks record=%s chunking_status=%s", record_id, chunking_status)
            run.flush("completed_no_chunks", {"chunking_status": chunking_status})
            return "completed_no_chunks"

        if control.attempts >= self._cfg.max_wait_attempts:
            logger.warning(
                "embed.max_wait_exceeded record=%s attempt=%d chunking_status=%s",
                record_id,
                control.attempts,
                chunking_status or "unknown",
            )
            run.flush("max_wait_exceeded", {"attempts": control.attempts})
            return "max_wait_exceeded"

        logger.info(
            "embed.waiting record=%s delay=%s attempt=%d",
            record_id,
            self._cfg.wait_delay,
            control.attempts,
        )
        control.release(self._cfg.wait_delay)
        run.flush("waiting_for_chunks", {"attempts": control.attempts})
        return "waiting_for_chunks"

    def _embed_batch(
        self, record_id: str, batch: list[Chunk], control: StageControl, run
    ) -> int | None:
        """Embed and persist *batch*. Returns vectors stored, or None after a release."""
        embeddings = self._services.embeddings
        try:
            vectors = embeddings.embed_many([c.chunk_text for c in batch])
        except Exception as exc:
            logger.error("embed.failed record=%s error=%s", record_id, exc)
            run.flush("error", {"error": str(exc), "count": len(batch)})
            raise
        dims = embeddings.dimensions
        run.capture(
            "embedding.batch",
            {"count": len(batch), "vector_dim": len(vectors[0]) if vectors else 0},
        )

        table = ensure_vec_table(self._repo.conn, model_to_slug(embeddings.model), dims)
        stored = 0
        try:
            with self._repo.transaction():
                for idx, chunk in enumerate(batch):
                    vector = vectors[idx] if idx < len(vectors) else []
                    if not _usable(vector, dims):
                        logger.warning(
                            "embed.empty_vector record=%s chunk=%s index=%d",
                            record_id,
                            chunk.id,
                            idx,
                        )
                        continue
                    tags = chunk.tags_dict
                    tags["embedding_meta"] = {
                        "variant": chunk.source_variant,
                        "model": embeddings.model,
                    }
                    self._repo.set_chunk_embedding(
                        chunk,
                        table,
                        to_vector_literal(vector),
                        embeddings.model,
                        json.dumps(tags),
                    )
                    stored += 1
        except Exception as exc:
            logger.error("embed.persist_failed record=%s error=%s", record_id, exc)
            control.release(self._cfg.tx_retry_delay)
            run.flush("error", {"error": str(exc)})
            return None

        run.capture("embedding.persisted", {"processed": stored})
        return stored
