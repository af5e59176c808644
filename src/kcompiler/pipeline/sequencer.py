"""Pipeline ordering: normalize → chunk → {classify, embed → extract_facts}.

``dispatch_pipeline`` sends the whole Celery canvas to the broker; each task
starts the next one after it succeeds. ``run_pipeline_sync`` applies the same
canvas eagerly on the caller's connection. Retry countdowns are not waited
out, and a stage that hands off its remaining work runs again straight away.
"""

from __future__ import annotations

import logging
from typing import Any

from celery.result import ResultSet, allow_join_result

from kcompiler.db.repository import Repository
from kcompiler.pipeline.services import (
    TASK_CHUNK,
    TASK_CLASSIFY,
    TASK_EMBED,
    TASK_EXTRACT_FACTS,
    TASK_NORMALIZE,
    PipelineServices,
)
from kcompiler.pipeline.tasks import TaskContext, inline, pipeline_signature, stage_of

logger = logging.getLogger(__name__)

PIPELINE_STAGES: tuple[str, ...] = (
    TASK_NORMALIZE,
    TASK_CHUNK,
    TASK_CLASSIFY,
    TASK_EMBED,
    TASK_EXTRACT_FACTS,
)


def dispatch_pipeline(knowledge_record_id: str) -> str:
    """Send the stage canvas for one record. Returns the last task's id."""
    result = pipeline_signature(knowledge_record_id).apply_async()
    logger.info("pipeline.dispatched record=%s task=%s", knowledge_record_id, result.id)
    return result.id


def run_pipeline_sync(
    repo: Repository,
    services: PipelineServices,
    knowledge_record_id: str,
) -> dict[str, str]:
    """Run every stage inline, in chain order.

    Each stage keeps its task's retry budget. A stage that exhausts it stops
    the run and the exception propagates; stages after it in the chain do
    not run, while the other branch of the group is unaffected.

    Returns:
        Final status per stage task name.
    """
    with allow_join_result(), inline(TaskContext(services, conn=repo.conn)):
        result = pipeline_signature(knowledge_record_id).apply()

    statuses: dict[str, str] = {}
    failures: list[BaseException] = []
    _collect(result, statuses, failures)
    if failures:
        raise failures[0]
    return {stage: statuses[stage] for stage in PIPELINE_STAGES if stage in statuses}


def _collect(result: Any, statuses: dict[str, str], failures: list[BaseException]) -> None:
    """Walk an eager result graph back to the first task."""
    while result is not None:
        if isinstance(result, ResultSet):
            for child in result.results:
                _collect(child, statuses, failures)
        else:
            stage = stage_of(result.name or "")
            if result.failed():
                logger.warning(
                    "pipeline.sync_stage_failed task=%s error=%s", stage, result.result
                )
                failures.append(result.result)
            else:
                statuses[stage] = result.result
        result = result.parent
