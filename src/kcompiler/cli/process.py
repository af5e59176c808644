"""kcompiler process: (re)process one ingestion record."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer

from kcompiler.cli.common import (
    DEFAULT_DB,
    build_services,
    configure_broker,
    console,
    load_cfg,
    open_db,
    require_db,
)
from kcompiler.cli.errors import err_ingestion_failed, err_ingestion_not_found
from kcompiler.db.repository import Repository
from kcompiler.pipeline.entry import RESULT_DUPLICATE, RESULT_FAILED, process
from kcompiler.pipeline.tasks import submit_ingestion


def process_cmd(
    ingestion_id: Annotated[str, typer.Argument(help="Ingestion record id.")],
    force: Annotated[
        bool,
        typer.Option("--force", help="Purge derived data and bypass dedup."),
    ] = False,
    sync: Annotated[
        bool,
        typer.Option("--sync", help="Run every stage now instead of queueing."),
    ] = False,
    offline: Annotated[
        bool,
        typer.Option("--offline", help="Use deterministic local embeddings (with --sync)."),
    ] = False,
    db: Annotated[Path, typer.Option("--db", help="Path to .kcompiler.db.")] = DEFAULT_DB,
) -> None:
    """Process INGESTION_ID: queue it, or with --sync run the whole pipeline inline."""
    database = require_db(db)
    cfg = load_cfg()
    conn = open_db(database)
    try:
        repo = Repository(conn)
        if repo.get_ingestion_record(ingestion_id) is None:
            console.print(err_ingestion_not_found(ingestion_id))
            raise typer.Exit(1)

        if not sync:
            configure_broker(cfg, db)
            task_id = submit_ingestion(ingestion_id, force=force)
            console.print(f"[green]✓[/] Queued task {task_id}. A running  kcompiler worker  picks it up.")
            return

        services = build_services(cfg, offline=offline)
        result = process(repo, services, ingestion_id, force=force, sync=True)
        record = repo.get_ingestion_record(ingestion_id)
    finally:
        conn.close()

    if result == RESULT_FAILED:
        console.print(err_ingestion_failed(ingestion_id, record.error if record else None))
        raise typer.Exit(1)
    if result == RESULT_DUPLICATE:
        console.print(
            f"[yellow]↷[/] Duplicate of knowledge record {record.knowledge_record_id}"
            "  (use --force to recompile)"
        )
        return
    console.print(f"[green]✓[/] Compiled into knowledge record {record.knowledge_record_id}")
