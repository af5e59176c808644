"""kcompiler rich error messages: actionable feedback.

Every error shown to the user must contain:
  1. What went wrong (clear cause)
  2. The exact action the user should take to fix it

Usage:
    from kcompiler.cli.errors import err_no_api_key, err_no_db
    console.print(err_no_api_key("openai"))
    raise typer.Exit(1)
"""

from __future__ import annotations

from kcompiler.llm.client import _PROVIDER_ENV


def err_no_api_key(provider: str) -> str:
    """No API key for *provider*.

    Example:
        No API key for 'openai'. Set:  export OPENAI_API_KEY=sk-...
    """
    env_var = _PROVIDER_ENV.get(provider.lower()) or f"{provider.upper()}_API_KEY"
    return (
        f"[red]Error:[/] No API key for '{provider}'.\n"
        f"  Set:  export {env_var}=sk-..."
    )


def err_no_db(db_path: str = ".kcompiler.db") -> str:
    """No database found at *db_path*."""
    return (
        f"[red]Error:[/] No database found at '{db_path}'.\n"
        "  Run:  kcompiler init"
    )


def err_config(message: str) -> str:
    """A config file was rejected by the loader."""
    return (
        f"[red]Error:[/] Invalid configuration: {message}\n"
        "  Fix the config file and retry. API keys belong in environment variables."
    )


def err_ingestion_not_found(ingestion_id: str) -> str:
    return (
        f"[red]Error:[/] Ingestion record '{ingestion_id}' not found.\n"
        "  Run:  kcompiler status  to list ingestion records."
    )


def err_empty_input() -> str:
    return (
        "[red]Error:[/] Nothing to ingest: the text is empty.\n"
        "  Pass the text as an argument or use --file PATH."
    )


def err_input_file(path: str, reason: str) -> str:
    return (
        f"[red]Error:[/] Cannot read '{path}': {reason}\n"
        "  Check the path and file permissions."
    )


def err_ingestion_failed(ingestion_id: str, error: str | None) -> str:
    """Processing ended with status failed."""
    return (
        f"[red]Error:[/] Ingestion '{ingestion_id}' failed: {error or 'unknown error'}\n"
        f"  Fix the cause, then run:  kcompiler process {ingestion_id} --force"
    )


def warn_no_embeddings(model: str) -> str:
    """Search found no vec table for the embedding model."""
    return (
        f"[yellow]No embeddings found for model '{model}'.[/]\n"
        "  Start a worker with  kcompiler worker  to finish pending pipeline tasks,\n"
        "  or compile inline with  kcompiler process <id> --sync."
    )
