"""kcompiler submit / bookmark: create ingestion records and queue them."""

from __future__ import annotations

import json
import uuid
from pathlib import Path
from typing import Annotated, Optional

import typer

from kcompiler import identity
from kcompiler.cli.common import (
    DEFAULT_DB,
    configure_broker,
    console,
    load_cfg,
    open_db,
    require_db,
)
from kcompiler.cli.errors import err_empty_input, err_input_file
from kcompiler.db.models import Bookmark, IngestionRecord
from kcompiler.db.repository import Repository
from kcompiler.pipeline.tasks import submit_ingestion

_DEFAULT_ORG = "default"


def submit_cmd(
    text: Annotated[
        Optional[str],
        typer.Argument(help="Text to compile. Omit when using --file."),
    ] = None,
    file: Annotated[
        Optional[Path],
        typer.Option("--file", "-f", help="Read the text from a UTF-8 file."),
    ] = None,
    title: Annotated[Optional[str], typer.Option("--title", help="Optional title.")] = None,
    org: Annotated[str, typer.Option("--org", help="Organization id.")] = _DEFAULT_ORG,
    user: Annotated[Optional[str], typer.Option("--user", help="User id.")] = None,
    db: Annotated[Path, typer.Option("--db", help="Path to .kcompiler.db.")] = DEFAULT_DB,
) -> None:
    """Submit a text for compilation and queue its processing task."""
    if file is not None:
        try:
            text = file.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            console.print(err_input_file(str(file), str(exc)))
            raise typer.Exit(1)
    if not text or not text.strip():
        console.print(err_empty_input())
        raise typer.Exit(1)

    database = require_db(db)
    configure_broker(load_cfg(), db)
    conn = open_db(database)
    try:
        repo = Repository(conn)
        record = IngestionRecord(
            id=str(uuid.uuid4()),
            organization_id=org,
            user_id=user,
            source_type="text",
            origin="cli",
            title=title,
            raw_text=text,
            dedup_hash=identity.fingerprint(text),
        )
        repo.add_ingestion_record(record)
        task_id = submit_ingestion(record.id)
    finally:
        conn.close()

    console.print(f"[green]✓[/] Submitted [bold]{record.id}[/] (task {task_id})")


def bookmark_cmd(
    url: Annotated[str, typer.Argument(help="Bookmark URL (stored, never fetched).")],
    title: Annotated[str, typer.Option("--title", help="Bookmark title.")] = "",
    description: Annotated[
        str, typer.Option("--description", "-d", help="Bookmark description.")
    ] = "",
    platform: Annotated[Optional[str], typer.Option("--platform", help="Source platform.")] = None,
    org: Annotated[str, typer.Option("--org", help="Organization id.")] = _DEFAULT_ORG,
    user: Annotated[Optional[str], typer.Option("--user", help="User id.")] = None,
    db: Annotated[Path, typer.Option("--db", help="Path to .kcompiler.db.")] = DEFAULT_DB,
) -> None:
    """Store a bookmark and queue it for compilation (title + description)."""
    if not (title.strip() or description.strip()):
        console.print(err_empty_input())
        raise typer.Exit(1)

    database = require_db(db)
    configure_broker(load_cfg(), db)
    conn = open_db(database)
    try:
        repo = Repository(conn)
        bookmark = Bookmark(
            id=str(uuid.uuid4()),
            organization_id=org,
            user_id=user,
            url=url,
            title=title,
            description=description,
            platform=platform,
        )
        repo.add_bookmark(bookmark)
        record = IngestionRecord(
            id=str(uuid.uuid4()),
            organization_id=org,
            user_id=user,
            source_type="bookmark",
            source_id=bookmark.id,
            origin="cli",
            title=title or None,
            metadata=json.dumps({"url": url}),
        )
        repo.add_ingestion_record(record)
        task_id = submit_ingestion(record.id)
    finally:
        conn.close()

    console.print(f"[green]✓[/] Bookmark queued as [bold]{record.id}[/] (task {task_id})")
