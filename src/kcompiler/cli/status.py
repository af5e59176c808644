"""kcompiler status: knowledge base and pipeline overview, or one ingestion record."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated, Optional

import typer
from rich.panel import Panel
from rich.table import Table

from kcompiler.cli.common import DEFAULT_DB, console, open_db, require_db
from kcompiler.cli.errors import err_ingestion_not_found
from kcompiler.db.repository import Repository
from kcompiler.db.vectors import list_vec_tables

_STATUS_STYLE = {
    "completed": "green",
    "failed": "red",
    "processing": "yellow",
    "pending": "dim",
}


def status_cmd(
    ingestion_id: Annotated[
        Optional[str],
        typer.Argument(help="Show details for one ingestion record."),
    ] = None,
    limit: Annotated[int, typer.Option("--limit", help="Recent records to list.")] = 10,
    db: Annotated[Path, typer.Option("--db", help="Path to .kcompiler.db.")] = DEFAULT_DB,
) -> None:
    """Show ingestion, chunk and pipeline counts."""
    conn = open_db(require_db(db))
    try:
        repo = Repository(conn)
        if ingestion_id is not None:
            _show_record(repo, ingestion_id)
            return
        _show_overview(repo, limit)
    finally:
        conn.close()


# ---------------------------------------------------------------------------
# Panel renderers
# ---------------------------------------------------------------------------


def _show_overview(repo: Repository, limit: int) -> None:
    by_status = repo.count_ingestion_by_status()
    vec_tables = list_vec_tables(repo.conn)
    lines = [
        "Ingestion: "
        + (", ".join(f"{k}: [bold]{v}[/]" for k, v in sorted(by_status.items())) or "[dim]none[/]"),
        f"Knowledge records: [bold]{repo.count_knowledge_records()}[/]  |  "
        f"Chunks: [bold]{repo.count_chunks():,}[/]  |  "
        f"Embedded: [bold]{repo.count_embedded_chunks():,}[/]",
        f"Vec tables: [bold]{len(vec_tables)}[/]",
    ]
    for table in vec_tables:
        lines.append(f"  [dim]{table}[/]")
    console.print(Panel("\n".join(lines), title="[bold]Knowledge Base[/]", expand=False))

    chunking = repo.count_knowledge_by_chunking_status()
    pipeline_lines = [
        "Chunking: "
        + (", ".join(f"{k}: [bold]{v}[/]" for k, v in sorted(chunking.items())) or "[dim]none[/]"),
        f"Business facts: [bold]{repo.count_business_facts()}[/]",
    ]
    console.print(Panel("\n".join(pipeline_lines), title="[bold]Pipeline[/]", expand=False))

    records = repo.list_ingestion_records(limit=limit)
    if not records:
        return
    table = Table(show_header=True, box=None, padding=(0, 1))
    table.add_column("Id", style="dim")
    table.add_column("Type")
    table.add_column("Status")
    table.add_column("Knowledge record", style="dim")
    for record in records:
        style = _STATUS_STYLE.get(record.status, "")
        status = f"[{style}]{record.status}[/]" if style else record.status
        if record.dedup_reason:
            status += " [dim](duplicate)[/]"
        table.add_row(record.id, record.source_type, status, record.knowledge_record_id or "")
    console.print(Panel(table, title="[bold]Recent ingestion[/]", expand=False))


def _show_record(repo: Repository, ingestion_id: str) -> None:
    record = repo.get_ingestion_record(ingestion_id)
    if record is None:
        console.print(err_ingestion_not_found(ingestion_id))
        raise typer.Exit(1)

    lines = [
        f"Status:   [bold]{record.status}[/]",
        f"Type:     {record.source_type}  (origin: {record.origin or '-'})",
    ]
    if record.dedup_reason:
        lines.append(f"Dedup:    {record.dedup_reason}")
    if record.error:
        lines.append(f"Error:    [red]{record.error}[/]")
    if record.quality_score is not None:
        lines.append(f"Quality:  {record.quality_score:.3f}")

    knowledge = (
        repo.get_knowledge_record(record.knowledge_record_id)
        if record.knowledge_record_id
        else None
    )
    if knowledge is not None:
        lines.append(f"Knowledge record: {knowledge.id}")
        lines.append(f"  Claims:   {len(knowledge.artifacts)}")
        lines.append(f"  Chunking: {knowledge.chunking_status or 'pending'}")
        lines.append(
            f"  Chunks:   {repo.count_chunks(knowledge.id)}  "
            f"(embedded {repo.count_embedded_chunks(knowledge.id)})"
        )
        lines.append(f"  Facts:    {repo.count_business_facts(knowledge.id)}")
    console.print(Panel("\n".join(lines), title=f"[bold]{record.id}[/]", expand=False))
