"""kcompiler CLI entry point."""

from __future__ import annotations

import importlib.metadata
import os
from typing import Annotated, Optional

import typer

from kcompiler.cli.common import setup_logging
from kcompiler.cli.evaluate import eval_cmd
from kcompiler.cli.init import init_cmd
from kcompiler.cli.process import process_cmd
from kcompiler.cli.search import search_cmd
from kcompiler.cli.status import status_cmd
from kcompiler.cli.submit import bookmark_cmd, submit_cmd
from kcompiler.cli.worker import worker_cmd


def _installed_version() -> str:
    try:
        return importlib.metadata.version("kcompiler")
    except importlib.metadata.PackageNotFoundError:
        return "dev"


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"kcompiler {_installed_version()}")
        raise typer.Exit()


app = typer.Typer(
    name="kcompiler",
    help=(
        "kcompiler: compile raw text into retrieval-ready knowledge.\n\n"
        "  kcompiler submit   Queue a text (or bookmark) for compilation.\n"
        "  kcompiler worker   Run the Celery worker for normalize → chunk → classify/embed → facts."
    ),
    add_completion=False,
)


@app.callback()
def main_callback(
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            callback=_version_callback,
            is_eager=True,
            help="Show version and exit.",
        ),
    ] = False,
    log_level: Annotated[
        Optional[str],
        typer.Option(
            "--log-level",
            help="Logging level (default: KCOMPILER_LOG_LEVEL, then logging.level from config).",
        ),
    ] = None,
) -> None:
    """kcompiler: knowledge compilation pipeline."""
    setup_logging(log_level or os.environ.get("KCOMPILER_LOG_LEVEL"))


app.command("init")(init_cmd)
app.command("submit")(submit_cmd)
app.command("bookmark")(bookmark_cmd)
app.command("process")(process_cmd)
app.command("worker")(worker_cmd)
app.command("status")(status_cmd)
app.command("search")(search_cmd)
app.command("eval")(eval_cmd)


@app.command("version")
def version_cmd() -> None:
    """Show the installed kcompiler version."""
    typer.echo(f"kcompiler {_installed_version()}")


if __name__ == "__main__":
    app()
