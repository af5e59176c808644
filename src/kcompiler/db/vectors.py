"""Per-model sqlite-vec virtual table management and vector literal encoding."""

from __future__ import annotations

import json
import re
import sqlite3


def model_to_slug(model: str) -> str:
    """Convert a provider/model string to a valid table name suffix.

    Examples:
        "openai/text-embedding-3-small" -> "openai_text_embedding_3_small"
        "openai/text-embedding-3-large" -> "openai_text_embedding_3_large"
    """
    return re.sub(r"[^a-z0-9]", "_", model.lower())


def vec_table_name(model_slug: str) -> str:
    """Return the full vec table name for a model slug."""
    return f"vec_chunks_{model_slug}"


def ensure_vec_table(conn: sqlite3.Connection, model_slug: str, dimensions: int) -> str:
    """Create vec_chunks_{model_slug} virtual table if it doesn't already exist.

    Args:
        conn: Active database connection (sqlite-vec must be loaded).
        model_slug: Sanitized model identifier (use model_to_slug() to generate).
        dimensions: Embedding vector dimensions (e.g. 1536 for text-embedding-3-small).

    Returns:
        The table name (vec_chunks_{model_slug}).
    """
    if not re.fullmatch(r"[a-z0-9_]+", model_slug):
        raise ValueError(
            f"Invalid model_slug '{model_slug}'; use model_to_slug() to sanitize."
        )
    if dimensions < 1:
        raise ValueError(f"dimensions must be >= 1, got {dimensions}")

    table = vec_table_name(model_slug)
    existing = conn.execute(
        "SELECT name FROM sqlite_master WHERE type='table' AND name=?", (table,)
    ).fetchone()

    if existing is None:
        conn.execute(
            f"CREATE VIRTUAL TABLE {table} USING vec0(embedding float[{dimensions}])"
        )
        conn.commit()

    return table


def list_vec_tables(conn: sqlite3.Connection) -> list[str]:
    """Return the names of all vec_chunks_* virtual tables.

    vec0 keeps its data in shadow tables (``<table>_chunks``, ``_rowids``,
    ``_info``, ``_vector_chunksNN``) that share the prefix. Those are keyed
    by vec0's own ids, not chunk rowids, and are never returned.
    """
    return [
        r[0]
        for r in conn.execute(
            """
            SELECT name FROM sqlite_master
            WHERE type = 'table' AND name LIKE 'vec_chunks_%'
              AND sql LIKE 'CREATE VIRTUAL TABLE%'
            ORDER BY name
            """
        ).fetchall()
    ]


# ------------------------------------------------------------------
# Vector literal encoding
# ------------------------------------------------------------------


def _format_component(value: float) -> str:
    text = f"{float(value):.8f}".rstrip("0").rstrip(".")
    return "0" if text in ("", "-0") else text


def to_vector_literal(vector: list[float]) -> str:
    """Encode *vector* as a bracketed comma-separated literal.

    Each component is rendered with 8 decimals, then trailing zeros and a
    dangling decimal point are trimmed: [0.123,0.45,1,-0.5]. The result is
    valid JSON, so it can be bound straight into a vec0 table.
    """
    return "[" + ",".join(_format_component(v) for v in vector) + "]"


def parse_vector_literal(literal: str | None) -> list[float]:
    """Decode a literal produced by to_vector_literal(). None/empty -> []."""
    if not literal:
        return []
    return [float(v) for v in json.loads(literal)]
