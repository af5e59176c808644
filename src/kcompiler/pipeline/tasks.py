"""Celery tasks for the pipeline.

One task per stage, plus ``kcompiler.process`` for the ingestion entry point
and ``kcompiler.recover_stalled`` for work a lost worker left behind.

A stage asks for a retry through ``StageControl.release``; the task turns it
into ``self.retry(countdown=...)`` and spends one attempt from its budget. A
stage that hands off the rest of its work (``StageControl.dispatch``) is
replaced by a fresh task with a full budget. Exceptions are retried after
the task's ``default_retry_delay`` until ``max_retries`` runs out.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timedelta, timezone
from typing import Any

from celery import Task, chain, group
from celery.canvas import Signature

from kcompiler.celery_app import app
from kcompiler.config import DEFAULT_DB_NAME, load_config
from kcompiler.db.connection import Database
from kcompiler.db.repository import Repository
from kcompiler.db.schema import initialize
from kcompiler.pipeline.chunker import ChunkerStage
from kcompiler.pipeline.classifier import ClassifierStage
from kcompiler.pipeline.embedder import EmbedderStage
from kcompiler.pipeline.facts import FactExtractorStage
from kcompiler.pipeline.normalizer import NormalizerStage
from kcompiler.pipeline.services import (
    TASK_BUDGETS,
    TASK_CHUNK,
    TASK_CLASSIFY,
    TASK_EMBED,
    TASK_EXTRACT_FACTS,
    TASK_NORMALIZE,
    TASK_PROCESS,
    PipelineServices,
    StageControl,
    create_services,
)

logger = logging.getLogger(__name__)

TASK_PREFIX = "kcompiler."
CUTOFF_FORMAT = "%Y-%m-%d %H:%M:%S"


# ---------------------------------------------------------------------------
# Execution context
# ---------------------------------------------------------------------------


class TaskContext:
    """Services plus a way to get a repository for one task run.

    With *conn* every task shares that connection (inline runs, tests); with
    *db* each task opens and closes its own.
    """

    def __init__(
        self,
        services: PipelineServices,
        db: Database | None = None,
        conn=None,
    ) -> None:
        if db is None and conn is None:
            raise ValueError("TaskContext needs a database or a connection")
        self.services = services
        self.db = db
        self.conn = conn

    @contextmanager
    def repository(self) -> Iterator[Repository]:
        if self.conn is not None:
            try:
                yield Repository(self.conn)
            except BaseException:
                if self.conn.in_transaction:
                    self.conn.rollback()
                raise
            return

        conn = self.db.connect()
        try:
            yield Repository(conn)
        except BaseException:
            if conn.in_transaction:
                conn.rollback()
            raise
        finally:
            conn.close()


_inline: ContextVar[TaskContext | None] = ContextVar("kcompiler_inline_context", default=None)
_worker_context: TaskContext | None = None


@contextmanager
def inline(ctx: TaskContext) -> Iterator[TaskContext]:
    """Run tasks started in this block against *ctx*."""
    token = _inline.set(ctx)
    try:
        yield ctx
    finally:
        _inline.reset(token)


def configure_worker(ctx: TaskContext) -> None:
    """Install the context a worker process serves tasks with."""
    global _worker_context
    _worker_context = ctx


def current_context() -> TaskContext:
    ctx = _inline.get()
    if ctx is not None:
        return ctx
    if _worker_context is None:
        configure_worker(_default_context())
    return _worker_context


def _default_context() -> TaskContext:
    # worker started with `celery -A kcompiler.celery_app worker`
    cfg = load_config()
    db = Database(DEFAULT_DB_NAME)
    conn = db.connect()
    try:
        initialize(conn)
    finally:
        conn.close()
    return TaskContext(create_services(cfg), db=db)


# ---------------------------------------------------------------------------
# Stage dispatch
# ---------------------------------------------------------------------------


class CeleryControl:
    """StageControl backed by the running task's request."""

    def __init__(self, task: Task) -> None:
        self._task = task
        self.released: float | None = None
        self.requeued: tuple[str, float] | None = None

    @property
    def attempts(self) -> int:
        return int(self._task.request.retries or 0) + 1

    def release(self, delay: float) -> None:
        self.released = float(delay)

    def dispatch(
        self, task: str, payload: dict[str, Any] | None = None, delay: float = 0.0
    ) -> None:
        self.requeued = (task, float(delay))


def run_stage(
    task: str,
    repo: Repository,
    services: PipelineServices,
    knowledge_record_id: str,
    control: StageControl,
) -> str:
    """Run one pipeline stage by task name. Returns the stage status."""
    if task == TASK_NORMALIZE:
        return NormalizerStage(repo, services).run(knowledge_record_id)
    if task == TASK_CHUNK:
        return ChunkerStage(repo, services).run(knowledge_record_id)
    if task == TASK_CLASSIFY:
        return ClassifierStage(repo, services).run(knowledge_record_id, control)
    if task == TASK_EMBED:
        return EmbedderStage(repo, services).run(knowledge_record_id, control)
    if task == TASK_EXTRACT_FACTS:
        return FactExtractorStage(repo, services).run(knowledge_record_id)
    raise ValueError(f"Unknown pipeline stage: {task}")


def stage_of(task_name: str) -> str:
    """``kcompiler.embed`` -> ``embed``"""
    return task_name[len(TASK_PREFIX):] if task_name.startswith(TASK_PREFIX) else task_name


def _task_options(stage: str) -> dict[str, Any]:
    max_tries, delay = TASK_BUDGETS[stage]
    return {
        "bind": True,
        "name": TASK_PREFIX + stage,
        "max_retries": max_tries - 1,
        "default_retry_delay": delay,
    }


def _run_stage_task(task: Task, stage: str, knowledge_record_id: str) -> str:
    ctx = current_context()
    control = CeleryControl(task)
    try:
        with ctx.repository() as repo:
            status = run_stage(stage, repo, ctx.services, knowledge_record_id, control)
    except Exception as exc:
        logger.warning(
            "pipeline.stage_error task=%s record=%s attempt=%d error=%s",
            stage,
            knowledge_record_id,
            control.attempts,
            exc,
        )
        raise task.retry(exc=exc)

    if control.released is not None:
        raise task.retry(countdown=control.released)
    if control.requeued is not None:
        next_stage, delay = control.requeued
        logger.info(
            "pipeline.requeued task=%s record=%s delay=%s", next_stage, knowledge_record_id, delay
        )
        replacement = STAGE_TASKS[next_stage].si(knowledge_record_id).set(countdown=delay)
        return task.replace(replacement)
    return status


@app.task(**_task_options(TASK_NORMALIZE))
def normalize(self, knowledge_record_id: str) -> str:
    return _run_stage_task(self, TASK_NORMALIZE, knowledge_record_id)


@app.task(**_task_options(TASK_CHUNK))
def chunk(self, knowledge_record_id: str) -> str:
    return _run_stage_task(self, TASK_CHUNK, knowledge_record_id)


@app.task(**_task_options(TASK_CLASSIFY))
def classify(self, knowledge_record_id: str) -> str:
    return _run_stage_task(self, TASK_CLASSIFY, knowledge_record_id)


@app.task(**_task_options(TASK_EMBED))
def embed(self, knowledge_record_id: str) -> str:
    return _run_stage_task(self, TASK_EMBED, knowledge_record_id)


@app.task(**_task_options(TASK_EXTRACT_FACTS))
def extract_facts(self, knowledge_record_id: str) -> str:
    return _run_stage_task(self, TASK_EXTRACT_FACTS, knowledge_record_id)


STAGE_TASKS: dict[str, Task] = {
    TASK_NORMALIZE: normalize,
    TASK_CHUNK: chunk,
    TASK_CLASSIFY: classify,
    TASK_EMBED: embed,
    TASK_EXTRACT_FACTS: extract_facts,
}


def pipeline_signature(knowledge_record_id: str) -> Signature:
    """normalize -> chunk -> (classify | embed -> extract_facts)"""
    return chain(
        normalize.si(knowledge_record_id),
        chunk.si(knowledge_record_id),
        group(
            classify.si(knowledge_record_id),
            chain(embed.si(knowledge_record_id), extract_facts.si(knowledge_record_id)),
        ),
    )


# ---------------------------------------------------------------------------
# Entry point and recovery
# ---------------------------------------------------------------------------


@app.task(**_task_options(TASK_PROCESS))
def process_ingestion(self, ingestion_record_id: str, force: bool = False) -> str:
    # entry dispatches the stage tasks defined above
    from kcompiler.pipeline.entry import process

    ctx = current_context()
    with ctx.repository() as repo:
        return process(repo, ctx.services, ingestion_record_id, force=force)


def submit_ingestion(ingestion_record_id: str, force: bool = False) -> str:
    """Queue the entry task for an ingestion record. Returns the task id."""
    result = process_ingestion.apply_async(
        args=(ingestion_record_id,), kwargs={"force": force}
    )
    logger.info("ingestion.submitted id=%s task=%s", ingestion_record_id, result.id)
    return result.id


@app.task(bind=True, name=TASK_PREFIX + "recover_stalled")
def recover_stalled(self, max_age_minutes: int = 30, limit: int = 100) -> dict[str, int]:
    """Re-dispatch work that a lost worker left half done.

    Ingestion records still ``processing`` after *max_age_minutes* get a fresh
    entry task; compiled knowledge records that never reached chunking get
    the stage chain again. Every stage skips work it has already done, so a
    record that was only slow costs a few no-op runs.
    """
    cutoff = (datetime.now(timezone.utc) - timedelta(minutes=max_age_minutes)).strftime(
        CUTOFF_FORMAT
    )
    ctx = current_context()
    with ctx.repository() as repo:
        stalled = [r.id for r in repo.list_stalled_ingestion(cutoff, limit)]
        unchunked = [k.id for k in repo.list_unchunked_knowledge(cutoff, limit)]

    for ingestion_record_id in stalled:
        logger.warning("recovery.ingestion id=%s", ingestion_record_id)
        process_ingestion.apply_async(args=(ingestion_record_id,))
    for knowledge_record_id in unchunked:
        logger.warning("recovery.pipeline record=%s", knowledge_record_id)
        pipeline_signature(knowledge_record_id).apply_async()

    logger.info(
        "recovery.completed ingestion=%d pipelines=%d cutoff=%s",
        len(stalled),
        len(unchunked),
        cutoff,
    )
    return {"ingestion": len(stalled), "pipelines": len(unchunked)}
