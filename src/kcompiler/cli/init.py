"""kcompiler init: create the project database and a starter kcompiler.yaml."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer

from kcompiler.cli.common import console
from kcompiler.config import DEFAULT_DB_NAME, write_project_config
from kcompiler.db.connection import Database
from kcompiler.db.schema import CURRENT_VERSION, initialize

_DEFAULT_PROJECT_DIR = Path(".")


def init_cmd(
    project_dir: Annotated[
        Path,
        typer.Argument(help="Directory to initialize. Defaults to current directory."),
    ] = _DEFAULT_PROJECT_DIR,
) -> None:
    """Initialize a knowledge base in PROJECT_DIR (idempotent)."""
    project_dir = project_dir.resolve()
    project_dir.mkdir(parents=True, exist_ok=True)

    db_path = project_dir / DEFAULT_DB_NAME
    existed = db_path.exists()
    with Database(db_path) as conn:
        initialize(conn)

    config_path = write_project_config(project_dir)

    if existed:
        console.print(f"[yellow]⚠[/]  {db_path} already exists; schema brought up to date.")
    else:
        console.print(f"[green]✓[/] Created {db_path} (schema v{CURRENT_VERSION})")
    console.print(f"[green]✓[/] Config: {config_path}")
    console.print("\nNext:  kcompiler worker  in one terminal, then  kcompiler submit \"some text\"")
