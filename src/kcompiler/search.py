"""Dense similarity search over embedded chunks (sqlite-vec)."""

from __future__ import annotations

from dataclasses import dataclass

from kcompiler.db.models import Chunk
from kcompiler.db.repository import Repository
from kcompiler.db.vectors import list_vec_tables, model_to_slug, to_vector_literal, vec_table_name
from kcompiler.llm.embeddings import EmbeddingService


@dataclass
class SearchHit:
    """A retrieved chunk and its vector distance (lower = closer)."""

    chunk: Chunk
    distance: float


def search(
    repo: Repository,
    embeddings: EmbeddingService,
    query: str,
    limit: int = 10,
) -> list[SearchHit]:
    """Embed *query* and return the nearest chunks in the model's vec table.

    Returns an empty list when nothing has been embedded with this model yet.
    """
    query = query.strip()
    if not query:
        return []
    table = vec_table_name(model_to_slug(embeddings.model))
    if table not in list_vec_tables(repo.conn):
        return []
    vector = embeddings.embed_one(query)
    if not vector:
        return []
    return [
        SearchHit(chunk=chunk, distance=float(distance))
        for chunk, distance in repo.search_vec(table, to_vector_literal(vector), limit)
    ]
