"""Knowledge base database layer."""

from kcompiler.db.connection import Database
from kcompiler.db.migrations import MIGRATIONS, run_migrations
from kcompiler.db.repository import Repository
from kcompiler.db.schema import initialize
from kcompiler.db.vectors import (
    ensure_vec_table,
    model_to_slug,
    parse_vector_literal,
    to_vector_literal,
    vec_table_name,
)

__all__ = [
    "Database",
    "Repository",
    "initialize",
    "run_migrations",
    "MIGRATIONS",
    "ensure_vec_table",
    "model_to_slug",
    "vec_table_name",
    "to_vector_literal",
    "parse_vector_literal",
]
