"""kcompiler worker: run the Celery worker for the pipeline tasks."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated, Optional

import typer
from kombu.utils.url import maybe_sanitize_url

from kcompiler import celery_app
from kcompiler.cli.common import (
    DEFAULT_DB,
    build_services,
    configure_broker,
    console,
    load_cfg,
    open_db,
    require_db,
)
from kcompiler.pipeline.tasks import TaskContext, configure_worker


def worker_cmd(
    concurrency: Annotated[
        Optional[int],
        typer.Option("--concurrency", "-c", help="Worker pool size (default from config)."),
    ] = None,
    pool: Annotated[
        Optional[str],
        typer.Option("--pool", "-P", help="Celery pool: threads, prefork or solo."),
    ] = None,
    offline: Annotated[
        bool,
        typer.Option("--offline", help="Use deterministic local embeddings."),
    ] = False,
    db: Annotated[Path, typer.Option("--db", help="Path to .kcompiler.db.")] = DEFAULT_DB,
) -> None:
    """Consume pipeline tasks from the broker until stopped."""
    cfg = load_cfg()
    database = require_db(db)
    open_db(database).close()
    services = build_services(cfg, offline=offline)

    broker = configure_broker(cfg, db)
    configure_worker(TaskContext(services, db=database))

    console.print(f"[dim]Worker consuming from {maybe_sanitize_url(broker)}. Press Ctrl+C to stop.[/]")
    celery_app.app.worker_main(
        [
            "worker",
            f"--pool={pool or cfg.worker.pool}",
            f"--concurrency={concurrency or cfg.worker.concurrency}",
            f"--loglevel={cfg.logging.level}",
            "--queues",
            celery_app.TASK_QUEUE,
        ]
    )
