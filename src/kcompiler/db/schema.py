"""Database schema initialization."""

from __future__ import annotations

import sqlite3

from kcompiler.db.migrations import MIGRATIONS, run_migrations

CURRENT_VERSION = MIGRATIONS[-1][0]


def initialize(conn: sqlite3.Connection) -> None:
    """Initialize the database schema via the migration runner (idempotent)."""
    run_migrations(conn)


def has_column(conn: sqlite3.Connection, table: str, column: str) -> bool:
    """Return True if *table* exists and has a column named *column*."""
    rows = conn.execute(f"PRAGMA table_info([{table}])").fetchall()  # noqa: S608
    return any(r[1] == column for r in rows)
