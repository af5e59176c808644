"""Ingestion entry point: turn one ingestion record into a knowledge record.

Resolves content, deduplicates by fingerprint, creates the knowledge record,
scores quality and hands the record to the stage pipeline (queued or inline).
A redelivered entry task finds the knowledge record it created earlier and
picks the pipeline up again instead of deduplicating against itself.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import uuid

from kcompiler import identity
from kcompiler.db.models import (
    DEDUP_REASON_DUPLICATE,
    STATUS_COMPLETED,
    STATUS_FAILED,
    STATUS_PROCESSING,
    IngestionRecord,
    KnowledgeRecord,
)
from kcompiler.db.repository import Repository
from kcompiler.errors import ContentError, InvariantViolation, truncate_error
from kcompiler.events import IngestionDeduped
from kcompiler.ingest.resolver import ContentResolver
from kcompiler.pipeline.sequencer import dispatch_pipeline, run_pipeline_sync
from kcompiler.pipeline.services import PipelineServices

logger = logging.getLogger(__name__)

STAGE_NAME = "ProcessIngestionRecord"

RESULT_COMPILED = "compiled"
RESULT_DUPLICATE = "duplicate"
RESULT_FAILED = "failed"


def process(
    repo: Repository,
    services: PipelineServices,
    ingestion_record_id: str,
    force: bool = False,
    sync: bool = False,
) -> str:
    """Compile one ingestion record.

    Args:
        repo: Repository on the caller's connection.
        services: Pipeline collaborators.
        ingestion_record_id: Record to process.
        force: Purge previously derived data and skip the dedup lookup.
        sync: Run the stages inline instead of queueing them. Eval-harness
            records always run inline.

    Returns:
        "compiled", "duplicate" or "failed". Failures are recorded on the
        ingestion record; in debug mode the exception is re-raised.
    """
    run = services.runlog.start(
        STAGE_NAME, ingestion_record_id, {"ingestion_record_id": ingestion_record_id, "force": force}
    )
    record = repo.get_ingestion_record(ingestion_record_id)
    if record is None:
        run.flush("not_found")
        return RESULT_FAILED

    repo.update_ingestion_record(record.id, status=STATUS_PROCESSING, error=None)
    run.capture("status_processing", {"source_type": record.source_type})

    try:
        result = _compile(repo, services, record, force, sync, run)
    except Exception as exc:
        if repo.conn.in_transaction:
            repo.conn.rollback()
        repo.update_ingestion_record(record.id, status=STATUS_FAILED, error=truncate_error(exc))
        logger.warning(
            "ingestion.failed id=%s type=%s error=%s", record.id, record.source_type, exc
        )
        run.flush("error", {"error": str(exc)})
        if services.debug:
            raise
        return RESULT_FAILED

    run.flush(STATUS_COMPLETED, {"result": result})
    return result


def _compile(
    repo: Repository,
    services: PipelineServices,
    record: IngestionRecord,
    force: bool,
    sync: bool,
    run,
) -> str:
    raw = ContentResolver(repo).resolve(record)
    if raw is None or not raw.strip():
        raise ContentError("No internal content for ingestion source")

    text_hash = identity.dedup_hash(raw, origin=record.origin, run_id=record.evaluation_run_id)

    if force:
        purged = repo.purge_for_ingestion(record.id)
        run.capture("force.purged", {"knowledge_records": purged})
    else:
        canonical = identity.find_canonical(repo, record.organization_id, text_hash)
        run.capture(
            "dedup_check",
            {"hash": text_hash, "canonical": canonical.id if canonical else None},
        )
        if canonical is not None:
            if canonical.ingestion_record_id == record.id:
                run.capture("resumed", {"knowledge_record_id": canonical.id})
                return _hand_off(repo, services, record, canonical.id, sync, run)
            _mark_duplicate(repo, services, record, canonical.id)
            return RESULT_DUPLICATE

    knowledge = _new_knowledge_record(repo, record, raw, text_hash)
    try:
        repo.add_knowledge_record(knowledge)
    except sqlite3.IntegrityError:
        repo.conn.rollback()
        canonical = identity.find_canonical(repo, record.organization_id, text_hash)
        if canonical is None:
            raise
        if canonical.ingestion_record_id == record.id:
            return _hand_off(repo, services, record, canonical.id, sync, run)
        _mark_duplicate(repo, services, record, canonical.id)
        return RESULT_DUPLICATE

    stored = repo.get_knowledge_record(knowledge.id)
    if stored is None or not (stored.raw_text or "").strip():
        raise InvariantViolation("KnowledgeRecord created without raw_text")

    try:
        quality = services.quality.score(raw)
        repo.update_ingestion_record(
            record.id,
            quality_score=float(quality.get("overall", 0.0)),
            quality=json.dumps(quality),
        )
        run.capture("quality.scored", {"overall": quality.get("overall")})
    except Exception as exc:
        run.capture("quality.error", {"error": str(exc)})

    return _hand_off(repo, services, record, knowledge.id, sync, run)


def _hand_off(
    repo: Repository,
    services: PipelineServices,
    record: IngestionRecord,
    knowledge_id: str,
    sync: bool,
    run,
) -> str:
    # link before the stages run so the record is discoverable mid-pipeline
    repo.update_ingestion_record(record.id, knowledge_record_id=knowledge_id)

    if sync or record.is_eval_harness:
        try:
            statuses = run_pipeline_sync(repo, services, knowledge_id)
            run.capture("pipeline.sync_completed", {"statuses": statuses})
        except Exception as exc:
            run.capture("pipeline.sync_error", {"error": str(exc)})
            logger.warning("pipeline.sync_error record=%s error=%s", knowledge_id, exc)
            if services.fail_loud:
                raise
    else:
        task_id = dispatch_pipeline(knowledge_id)
        run.capture("pipeline.dispatched", {"task_id": task_id})

    repo.update_ingestion_record(
        record.id, status=STATUS_COMPLETED, knowledge_record_id=knowledge_id
    )
    return RESULT_COMPILED


def _new_knowledge_record(
    repo: Repository, record: IngestionRecord, raw: str, text_hash: str
) -> KnowledgeRecord:
    knowledge = KnowledgeRecord(
        id=str(uuid.uuid4()),
        organization_id=record.organization_id,
        user_id=record.user_id,
        ingestion_record_id=record.id,
        raw_text=raw,
        raw_text_sha256=text_hash,
        title=record.title,
    )
    if record.source_type == "bookmark":
        bookmark = repo.get_bookmark(record.source_id) if record.source_id else None
        knowledge.type = "excerpt"
        knowledge.source = "bookmark"
        knowledge.source_ref_id = record.source_id
        knowledge.confidence = 0.3
        if bookmark is not None:
            knowledge.title = bookmark.title or ""
            knowledge.metadata = json.dumps({"source_url": bookmark.url})
    else:
        knowledge.type = "note"
        knowledge.source = "manual"
        knowledge.confidence = 0.6
    return knowledge


def _mark_duplicate(
    repo: Repository, services: PipelineServices, record: IngestionRecord, canonical_id: str
) -> None:
    repo.update_ingestion_record(
        record.id,
        status=STATUS_COMPLETED,
        dedup_reason=DEDUP_REASON_DUPLICATE,
        knowledge_record_id=canonical_id,
    )
    services.events.emit(
        IngestionDeduped(
            ingestion_record_id=record.id,
            reason=DEDUP_REASON_DUPLICATE,
            canonical_id=canonical_id,
        )
    )
    logger.info(
        "ingestion.dedup id=%s canonical=%s reason=%s",
        record.id,
        canonical_id,
        DEDUP_REASON_DUPLICATE,
    )
