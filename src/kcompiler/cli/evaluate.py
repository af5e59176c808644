"""kcompiler eval: run one text through the whole pipeline and print the report."""

from __future__ import annotations

import json
import uuid
from pathlib import Path
from typing import Annotated, Optional

import typer
from rich.panel import Panel

from kcompiler.cli.common import DEFAULT_DB, build_services, console, load_cfg, open_db, require_db
from kcompiler.cli.errors import err_empty_input, err_input_file
from kcompiler.db.repository import Repository
from kcompiler.evaluation import IngestionRunner


def eval_cmd(
    text: Annotated[Optional[str], typer.Argument(help="Text to evaluate.")] = None,
    file: Annotated[
        Optional[Path],
        typer.Option("--file", "-f", help="Read the text from a UTF-8 file."),
    ] = None,
    evaluation_id: Annotated[
        Optional[str],
        typer.Option("--evaluation-id", help="Namespace for dedup (default: random)."),
    ] = None,
    org: Annotated[str, typer.Option("--org", help="Organization id.")] = "eval",
    offline: Annotated[
        bool,
        typer.Option("--offline", help="Use deterministic local embeddings."),
    ] = False,
    as_json: Annotated[bool, typer.Option("--json", help="Print the full report as JSON.")] = False,
    db: Annotated[Path, typer.Option("--db", help="Path to .kcompiler.db.")] = DEFAULT_DB,
) -> None:
    """Compile a text synchronously as an eval-harness run."""
    if file is not None:
        try:
            text = file.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            console.print(err_input_file(str(file), str(exc)))
            raise typer.Exit(1)
    if not text or not text.strip():
        console.print(err_empty_input())
        raise typer.Exit(1)

    services = build_services(load_cfg(), offline=offline)
    conn = open_db(require_db(db))
    try:
        runner = IngestionRunner(Repository(conn), services)
        report = runner.ingest_text(
            org,
            None,
            text,
            evaluation_id=evaluation_id or uuid.uuid4().hex[:12],
        )
    finally:
        conn.close()

    if as_json:
        typer.echo(json.dumps(report, indent=2, ensure_ascii=False))
    if not report.get("success"):
        console.print(f"[red]Error:[/] {report.get('error')}")
        raise typer.Exit(1)
    if as_json:
        return

    stats = report["stats"]
    lines = [
        f"Knowledge record: {report['knowledge_record_id']}",
        f"Claims:    [bold]{stats['normalized_claims_count']}[/]",
        f"Chunks:    [bold]{stats['chunks_total']}[/]",
        f"Embedded:  [bold]{stats['embedded']}[/]  (coverage {stats['embedding_coverage']:.0%})",
    ]
    for chunk in report["artifacts"]["chunks"]:
        lines.append(f"  [dim]{chunk['chunk_role'] or '-':<16}[/] {chunk['chunk_text']}")
    console.print(Panel("\n".join(lines), title="[bold]Evaluation[/]", expand=False))
