"""Helpers shared by the CLI commands."""

from __future__ import annotations

import logging
import sqlite3
from pathlib import Path

import typer
from rich.console import Console
from rich.logging import RichHandler

from kcompiler import celery_app
from kcompiler.cli.errors import err_config, err_no_api_key, err_no_db
from kcompiler.config import DEFAULT_DB_NAME, ConfigError, KcompilerConfig, load_config
from kcompiler.db.connection import Database
from kcompiler.db.schema import initialize
from kcompiler.llm.client import provider_of, validate_api_key
from kcompiler.pipeline.services import PipelineServices, create_services

console = Console()

DEFAULT_DB = Path(DEFAULT_DB_NAME)


_level_from_flag = False


def setup_logging(level: str | None) -> None:
    """Route stdlib logging through rich. Safe to call more than once.

    With *level* None the root logger starts at WARNING and load_cfg()
    later applies ``logging.level`` from the config.
    """
    global _level_from_flag
    _level_from_flag = level is not None
    level = level or "WARNING"
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


def load_cfg() -> KcompilerConfig:
    """Load config or exit with an actionable error."""
    try:
        cfg = load_config()
    except ConfigError as exc:
        console.print(err_config(str(exc)))
        raise typer.Exit(1)
    if not _level_from_flag:
        logging.getLogger().setLevel(cfg.logging.level)
    return cfg


def configure_broker(cfg: KcompilerConfig, db_path: Path) -> str:
    """Point Celery at the configured broker, or the SQLite file beside *db_path*."""
    url = cfg.worker.broker_url or celery_app.broker_url_for(db_path)
    celery_app.configure(url)
    return url


def require_db(db_path: Path) -> Database:
    if not db_path.exists():
        console.print(err_no_db(str(db_path)))
        raise typer.Exit(1)
    return Database(db_path)


def open_db(db: Database) -> sqlite3.Connection:
    """Open a connection and run migrations."""
    conn = db.connect()
    initialize(conn)
    return conn


def build_services(
    cfg: KcompilerConfig,
    *,
    offline: bool = False,
    need_generation: bool = True,
) -> PipelineServices:
    """Validate API keys for the configured models, then build the services."""
    models = []
    if need_generation:
        models.append(cfg.generation.model)
    if not offline:
        models.append(cfg.embedding.model)
    for model in models:
        try:
            validate_api_key(model)
        except EnvironmentError:
            console.print(err_no_api_key(provider_of(model)))
            raise typer.Exit(1)
    return create_services(cfg, offline_embeddings=offline)
