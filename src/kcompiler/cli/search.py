"""kcompiler search: nearest embedded chunks for a query."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.table import Table

from kcompiler.cli.common import DEFAULT_DB, build_services, console, load_cfg, open_db, require_db
from kcompiler.cli.errors import warn_no_embeddings
from kcompiler.db.repository import Repository
from kcompiler.search import search


def search_cmd(
    query: Annotated[str, typer.Argument(help="Search query.")],
    limit: Annotated[int, typer.Option("--limit", "-n", help="Maximum results.")] = 10,
    offline: Annotated[
        bool,
        typer.Option("--offline", help="Query with deterministic local embeddings."),
    ] = False,
    db: Annotated[Path, typer.Option("--db", help="Path to .kcompiler.db.")] = DEFAULT_DB,
) -> None:
    """Find the chunks closest to QUERY."""
    services = build_services(load_cfg(), offline=offline, need_generation=False)
    conn = open_db(require_db(db))
    try:
        hits = search(Repository(conn), services.embeddings, query, limit=limit)
    finally:
        conn.close()

    if not hits:
        console.print(warn_no_embeddings(services.embeddings.model))
        return

    table = Table(show_header=True, box=None, padding=(0, 1))
    table.add_column("#", style="dim", width=3)
    table.add_column("Distance", style="dim")
    table.add_column("Role")
    table.add_column("Chunk")
    for idx, hit in enumerate(hits, start=1):
        table.add_row(
            str(idx),
            f"{hit.distance:.4f}",
            hit.chunk.chunk_role or "-",
            hit.chunk.chunk_text,
        )
    console.print(table)
