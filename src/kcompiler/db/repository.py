"""Repository pattern for all knowledge base database operations.

Single interface for: bookmarks, ingestion records, knowledge records, chunks,
raw generation outputs, business facts, and vec embeddings. Vec tables are
model-managed (ensure_vec_table); the repository handles read + write.
"""

from __future__ import annotations

import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager

from kcompiler.db.models import (
    NON_EMBEDDABLE_ROLES,
    STATUS_COMPLETED,
    STATUS_PROCESSING,
    VARIANT_NORMALIZED,
    Bookmark,
    BusinessFact,
    Chunk,
    IngestionRecord,
    KnowledgeRecord,
    LlmOutput,
)
from kcompiler.db.vectors import list_vec_tables

_CHUNK_COLUMNS = (
    "rowid, id, knowledge_record_id, organization_id, chunk_text, chunk_type, "
    "source_type, source_variant, chunk_role, chunk_kind, authority, confidence, "
    "time_horizon, domain, actor, tags, token_count, source_text, "
    "transformation_type, embedding_vec, embedding_model, created_at"
)

# Placeholders for the non-embeddable role filter: "chunk_role NOT IN (?, ?)".
_EXCLUDED_ROLES_SQL = ",".join("?" * len(NON_EMBEDDABLE_ROLES))

# Columns callers may set through update_ingestion_record().
_INGESTION_MUTABLE = frozenset(
    {
        "status",
        "error",
        "dedup_hash",
        "dedup_reason",
        "quality_score",
        "quality",
        "knowledge_record_id",
        "raw_text",
        "metadata",
    }
)


class Repository:
    """Data access layer for all knowledge base entities.

    Wraps an open sqlite3.Connection. Every write method commits on its own
    unless it runs inside a ``with repo.transaction():`` block, in which case
    the whole block commits (or rolls back) once. The connection is owned by
    the caller and must be closed after use.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        """Initialise with an open database connection.

        Args:
            conn: An open sqlite3.Connection with sqlite-vec loaded and schema
                initialised (see kcompiler.db.schema.initialize).
        """
        self._conn = conn
        self._in_tx = False

    @property
    def conn(self) -> sqlite3.Connection:
        return self._conn

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """Group several writes into one all-or-nothing commit.

        Nested blocks join the outermost transaction.
        """
        if self._in_tx:
            yield
            return
        self._in_tx = True
        try:
            yield
        except BaseException:
            self._conn.rollback()
            raise
        else:
            self._conn.commit()
        finally:
            self._in_tx = False

    def _commit(self) -> None:
        if not self._in_tx:
            self._conn.commit()

    # ------------------------------------------------------------------
    # Bookmarks
    # ------------------------------------------------------------------

    def add_bookmark(self, bookmark: Bookmark) -> None:
        """Insert a bookmark row."""
        self._conn.execute(
            """
            INSERT INTO bookmarks (id, organization_id, user_id, url, title, description, platform)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                bookmark.id,
                bookmark.organization_id,
                bookmark.user_id,
                bookmark.url,
                bookmark.title,
                bookmark.description,
                bookmark.platform,
            ),
        )
        self._commit()

    def get_bookmark(self, bookmark_id: str) -> Bookmark | None:
        row = self._conn.execute(
            "SELECT * FROM bookmarks WHERE id = ?", (bookmark_id,)
        ).fetchone()
        return _row_to_bookmark(row) if row else None

    # ------------------------------------------------------------------
    # Ingestion records
    # ------------------------------------------------------------------

    def add_ingestion_record(self, record: IngestionRecord) -> None:
        """Insert a new ingestion record.

        Args:
            record: IngestionRecord dataclass instance to persist.
        """
        self._conn.execute(
            """
            INSERT INTO ingestion_records (
                id, organization_id, user_id, source_type, source_id, origin,
                title, raw_text, metadata, dedup_hash, status
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                record.id,
                record.organization_id,
                record.user_id,
                record.source_type,
                record.source_id,
                record.origin,
                record.title,
                record.raw_text,
                record.metadata,
                record.dedup_hash,
                record.status,
            ),
        )
        self._commit()

    def get_ingestion_record(self, record_id: str) -> IngestionRecord | None:
        """Return an ingestion record by ID, or None if not found."""
        row = self._conn.execute(
            "SELECT * FROM ingestion_records WHERE id = ?", (record_id,)
        ).fetchone()
        return _row_to_ingestion(row) if row else None

    def list_ingestion_records(self, limit: int | None = None) -> list[IngestionRecord]:
        """Return ingestion records, newest first."""
        sql = "SELECT * FROM ingestion_records ORDER BY created_at DESC, rowid DESC"
        if limit is not None:
            sql += f" LIMIT {int(limit)}"
        return [_row_to_ingestion(r) for r in self._conn.execute(sql).fetchall()]

    def update_ingestion_record(self, record_id: str, **fields: object) -> None:
        """Set the given columns on an ingestion record and bump updated_at.

        Args:
            record_id: ID of the ingestion record.
            **fields: Column → value pairs. Only lifecycle columns are accepted.

        Raises:
            ValueError: If a field is not a mutable ingestion column.
        """
        if not fields:
            return
        unknown = set(fields) - _INGESTION_MUTABLE
        if unknown:
            raise ValueError(f"Cannot update ingestion column(s): {sorted(unknown)}")
        assignments = ", ".join(f"{name} = ?" for name in fields)
        self._conn.execute(
            f"UPDATE ingestion_records SET {assignments}, updated_at = datetime('now') WHERE id = ?",  # noqa: S608
            (*fields.values(), record_id),
        )
        self._commit()

    def count_ingestion_by_status(self) -> dict[str, int]:
        rows = self._conn.execute(
            "SELECT status, COUNT(*) FROM ingestion_records GROUP BY status"
        ).fetchall()
        return {r[0]: r[1] for r in rows}

    # ------------------------------------------------------------------
    # Knowledge records
    # ------------------------------------------------------------------

    def add_knowledge_record(self, record: KnowledgeRecord) -> None:
        """Insert a knowledge record.

        Raises:
            sqlite3.IntegrityError: If (organization_id, raw_text_sha256)
                already exists. Callers treat this as a dedup hit.
        """
        self._conn.execute(
            """
            INSERT INTO knowledge_records (
                id, organization_id, user_id, ingestion_record_id, type, source,
                source_ref_id, title, raw_text, raw_text_sha256, metadata,
                confidence, ingested_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, datetime('now'))
            """,
            (
                record.id,
                record.organization_id,
                record.user_id,
                record.ingestion_record_id,
                record.type,
                record.source,
                record.source_ref_id,
                record.title,
                record.raw_text,
                record.raw_text_sha256,
                record.metadata,
                record.confidence,
            ),
        )
        self._commit()

    def get_knowledge_record(self, record_id: str) -> KnowledgeRecord | None:
        """Return a knowledge record by ID, or None if not found."""
        row = self._conn.execute(
            "SELECT * FROM knowledge_records WHERE id = ?", (record_id,)
        ).fetchone()
        return _row_to_knowledge(row) if row else None

    def find_canonical(self, organization_id: str, text_hash: str) -> KnowledgeRecord | None:
        """Return the knowledge record owning (*organization_id*, *text_hash*), if any."""
        row = self._conn.execute(
            "SELECT * FROM knowledge_records WHERE organization_id = ? AND raw_text_sha256 = ?",
            (organization_id, text_hash),
        ).fetchone()
        return _row_to_knowledge(row) if row else None

    def list_knowledge_records_for_ingestion(self, ingestion_record_id: str) -> list[KnowledgeRecord]:
        rows = self._conn.execute(
            "SELECT * FROM knowledge_records WHERE ingestion_record_id = ? ORDER BY rowid",
            (ingestion_record_id,),
        ).fetchall()
        return [_row_to_knowledge(r) for r in rows]

    def count_knowledge_records(self) -> int:
        return self._conn.execute("SELECT COUNT(*) FROM knowledge_records").fetchone()[0]

    def set_normalized_claims(self, record_id: str, payload: str) -> None:
        """Store the normalized_claims JSON artifact for a knowledge record."""
        self._conn.execute(
            "UPDATE knowledge_records SET normalized_claims = ?, updated_at = datetime('now') WHERE id = ?",
            (payload, record_id),
        )
        self._commit()

    def set_chunking_state(
        self,
        record_id: str,
        status: str,
        metrics: str | None = None,
        error_code: str | None = None,
        error_message: str | None = None,
    ) -> None:
        """Record the chunking outcome (status, error, metrics JSON) on a knowledge record."""
        self._conn.execute(
            """
            UPDATE knowledge_records
            SET chunking_status = ?, chunking_error_code = ?, chunking_error_message = ?,
                chunking_metrics = COALESCE(?, chunking_metrics), updated_at = datetime('now')
            WHERE id = ?
            """,
            (status, error_code, error_message, metrics, record_id),
        )
        self._commit()

    def delete_knowledge_record(self, record_id: str) -> None:
        """Delete a knowledge record, its vec rows, and (by cascade) its chunks."""
        self.delete_embeddings_by_record(record_id)
        self._conn.execute("DELETE FROM knowledge_records WHERE id = ?", (record_id,))
        self._commit()

    def purge_for_ingestion(self, ingestion_record_id: str) -> int:
        """Delete every knowledge record linked to an ingestion record.

        Chunks, vectors and extracted business facts go with it.

        Returns:
            Number of knowledge records deleted.
        """
        records = self.list_knowledge_records_for_ingestion(ingestion_record_id)
        with self.transaction():
            for record in records:
                self.delete_business_facts_by_record(record.id)
                self.delete_knowledge_record(record.id)
        return len(records)

    # ------------------------------------------------------------------
    # Chunks
    # ------------------------------------------------------------------

    def add_chunk(self, chunk: Chunk) -> int:
        """Insert a chunk. Returns the new rowid (the vec table key)."""
        cur = self._conn.execute(
            """
            INSERT INTO knowledge_chunks (
                id, knowledge_record_id, organization_id, chunk_text, chunk_type,
                source_type, source_variant, chunk_role, chunk_kind, authority,
                confidence, time_horizon, domain, actor, tags, token_count,
                source_text, transformation_type
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                chunk.id,
                chunk.knowledge_record_id,
                chunk.organization_id,
                chunk.chunk_text,
                chunk.chunk_type,
                chunk.source_type,
                chunk.source_variant,
                chunk.chunk_role,
                chunk.chunk_kind,
                chunk.authority,
                chunk.confidence,
                chunk.time_horizon,
                chunk.domain,
                chunk.actor,
                chunk.tags,
                chunk.token_count,
                chunk.source_text,
                chunk.transformation_type,
            ),
        )
        self._commit()
        chunk.rowid = cur.lastrowid
        return cur.lastrowid

    def get_chunk_by_rowid(self, rowid: int) -> Chunk | None:
        row = self._conn.execute(
            f"SELECT {_CHUNK_COLUMNS} FROM knowledge_chunks WHERE rowid = ?", (rowid,)  # noqa: S608
        ).fetchone()
        return _row_to_chunk(row) if row else None

    def get_chunk(self, chunk_id: str) -> Chunk | None:
        row = self._conn.execute(
            f"SELECT {_CHUNK_COLUMNS} FROM knowledge_chunks WHERE id = ?", (chunk_id,)  # noqa: S608
        ).fetchone()
        return _row_to_chunk(row) if row else None

    def list_chunks(
        self,
        record_id: str,
        variant: str | None = None,
        limit: int | None = None,
    ) -> list[Chunk]:
        """Return a record's chunks in insertion order, optionally filtered by variant."""
        sql = f"SELECT {_CHUNK_COLUMNS} FROM knowledge_chunks WHERE knowledge_record_id = ?"  # noqa: S608
        params: list[object] = [record_id]
        if variant is not None:
            sql += " AND source_variant = ?"
            params.append(variant)
        sql += " ORDER BY rowid"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(int(limit))
        return [_row_to_chunk(r) for r in self._conn.execute(sql, params).fetchall()]

    def count_chunks(self, record_id: str | None = None) -> int:
        if record_id is None:
            return self._conn.execute("SELECT COUNT(*) FROM knowledge_chunks").fetchone()[0]
        return self._conn.execute(
            "SELECT COUNT(*) FROM knowledge_chunks WHERE knowledge_record_id = ?", (record_id,)
        ).fetchone()[0]

    def delete_chunks_by_record(self, record_id: str) -> None:
        """Delete a record's chunks together with their vec rows."""
        self.delete_embeddings_by_record(record_id)
        self._conn.execute(
            "DELETE FROM knowledge_chunks WHERE knowledge_record_id = ?", (record_id,)
        )
        self._commit()

    def update_chunk_classification(
        self,
        chunk_id: str,
        role: str,
        kind: str,
        authority: str,
        confidence: float,
        time_horizon: str,
        tags: str,
    ) -> None:
        self._conn.execute(
            """
            UPDATE knowledge_chunks
            SET chunk_role = ?, chunk_kind = ?, authority = ?, confidence = ?,
                time_horizon = ?, tags = ?
            WHERE id = ?
            """,
            (role, kind, authority, confidence, time_horizon, tags, chunk_id),
        )
        self._commit()

    # ------------------------------------------------------------------
    # Embedding eligibility
    # ------------------------------------------------------------------

    def count_eligible_chunks(self, record_id: str) -> int:
        """Count normalized chunks whose role is embeddable."""
        return self._conn.execute(
            f"""
            SELECT COUNT(*) FROM knowledge_chunks
            WHERE knowledge_record_id = ? AND source_variant = ?
              AND chunk_role NOT IN ({_EXCLUDED_ROLES_SQL})
            """,  # noqa: S608
            (record_id, VARIANT_NORMALIZED, *NON_EMBEDDABLE_ROLES),
        ).fetchone()[0]

    def list_unembedded_chunks(self, record_id: str, limit: int) -> list[Chunk]:
        """Return eligible chunks that still lack a vector, oldest first."""
        rows = self._conn.execute(
            f"""
            SELECT {_CHUNK_COLUMNS} FROM knowledge_chunks
            WHERE knowledge_record_id = ? AND source_variant = ?
              AND chunk_role NOT IN ({_EXCLUDED_ROLES_SQL})
              AND embedding_vec IS NULL
            ORDER BY rowid LIMIT ?
            """,  # noqa: S608
            (record_id, VARIANT_NORMALIZED, *NON_EMBEDDABLE_ROLES, int(limit)),
        ).fetchall()
        return [_row_to_chunk(r) for r in rows]

    def count_unembedded_chunks(self, record_id: str) -> int:
        return self._conn.execute(
            f"""
            SELECT COUNT(*) FROM knowledge_chunks
            WHERE knowledge_record_id = ? AND source_variant = ?
              AND chunk_role NOT IN ({_EXCLUDED_ROLES_SQL})
              AND embedding_vec IS NULL
            """,  # noqa: S608
            (record_id, VARIANT_NORMALIZED, *NON_EMBEDDABLE_ROLES),
        ).fetchone()[0]

    def count_embedded_chunks(self, record_id: str | None = None) -> int:
        sql = "SELECT COUNT(*) FROM knowledge_chunks WHERE embedding_vec IS NOT NULL"
        if record_id is None:
            return self._conn.execute(sql).fetchone()[0]
        return self._conn.execute(
            sql + " AND knowledge_record_id = ?", (record_id,)
        ).fetchone()[0]

    # ------------------------------------------------------------------
    # Vec embeddings
    # ------------------------------------------------------------------

    def set_chunk_embedding(
        self,
        chunk: Chunk,
        table: str,
        literal: str,
        model: str,
        tags: str,
    ) -> None:
        """Store a chunk's vector literal + model and mirror it into *table* (rowid = chunk rowid)."""
        self._conn.execute(
            "UPDATE knowledge_chunks SET embedding_vec = ?, embedding_model = ?, tags = ? WHERE id = ?",
            (literal, model, tags, chunk.id),
        )
        self._conn.execute(f"DELETE FROM {table} WHERE rowid = ?", (chunk.rowid,))
        self._conn.execute(
            f"INSERT INTO {table}(rowid, embedding) VALUES (?, ?)", (chunk.rowid, literal)
        )
        self._commit()

    def search_vec(
        self, table: str, embedding_literal: str, limit: int = 10
    ) -> list[tuple[Chunk, float]]:
        """Nearest-neighbour search. Returns (chunk, distance) sorted by distance."""
        vec_rows = self._conn.execute(
            f"SELECT rowid, distance FROM {table} WHERE embedding MATCH ? ORDER BY distance LIMIT ?",
            (embedding_literal, limit),
        ).fetchall()

        results: list[tuple[Chunk, float]] = []
        for vec_row in vec_rows:
            chunk = self.get_chunk_by_rowid(vec_row["rowid"])
            if chunk is not None:
                results.append((chunk, vec_row["distance"]))
        return results

    def delete_embeddings_by_record(self, record_id: str) -> int:
        """Delete a record's vec rows from every vec table.

        Returns the total number of embedding rows deleted across all vec tables.
        """
        rowids = [
            r[0]
            for r in self._conn.execute(
                "SELECT rowid FROM knowledge_chunks WHERE knowledge_record_id = ?", (record_id,)
            ).fetchall()
        ]
        if not rowids:
            return 0

        total_deleted = 0
        placeholders = ",".join("?" * len(rowids))
        for table in list_vec_tables(self._conn):
            cur = self._conn.execute(
                f"DELETE FROM [{table}] WHERE rowid IN ({placeholders})",  # noqa: S608
                rowids,
            )
            total_deleted += cur.rowcount

        self._commit()
        return total_deleted

    # ------------------------------------------------------------------
    # Raw generation outputs
    # ------------------------------------------------------------------

    def add_llm_output(self, output: LlmOutput) -> None:
        """Append a raw generation response. Rows are never updated except parsed_output."""
        self._conn.execute(
            """
            INSERT INTO knowledge_llm_outputs (id, knowledge_record_id, model, prompt_hash, raw_output)
            VALUES (?, ?, ?, ?, ?)
            """,
            (
                output.id,
                output.knowledge_record_id,
                output.model,
                output.prompt_hash,
                output.raw_output,
            ),
        )
        self._commit()

    def set_llm_parsed_output(self, output_id: str, parsed: str) -> None:
        self._conn.execute(
            "UPDATE knowledge_llm_outputs SET parsed_output = ? WHERE id = ?",
            (parsed, output_id),
        )
        self._commit()

    def list_llm_outputs(self, record_id: str) -> list[LlmOutput]:
        rows = self._conn.execute(
            "SELECT * FROM knowledge_llm_outputs WHERE knowledge_record_id = ? ORDER BY rowid",
            (record_id,),
        ).fetchall()
        return [
            LlmOutput(
                id=r["id"],
                knowledge_record_id=r["knowledge_record_id"],
                prompt_hash=r["prompt_hash"],
                raw_output=r["raw_output"],
                model=r["model"],
                parsed_output=r["parsed_output"],
                created_at=r["created_at"],
            )
            for r in rows
        ]

    # ------------------------------------------------------------------
    # Business facts
    # ------------------------------------------------------------------

    def add_business_fact(self, fact: BusinessFact) -> None:
        self._conn.execute(
            """
            INSERT INTO business_facts (
                id, organization_id, user_id, type, text, confidence,
                source_knowledge_record_id
            )
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                fact.id,
                fact.organization_id,
                fact.user_id,
                fact.type,
                fact.text,
                fact.confidence,
                fact.source_knowledge_record_id,
            ),
        )
        self._commit()

    def list_business_facts(
        self,
        record_id: str | None = None,
        organization_id: str | None = None,
        fact_type: str | None = None,
    ) -> list[BusinessFact]:
        """Return facts in insertion order, filtered by source record, org and type."""
        clauses: list[str] = []
        params: list[object] = []
        if record_id is not None:
            clauses.append("source_knowledge_record_id = ?")
            params.append(record_id)
        if organization_id is not None:
            clauses.append("organization_id = ?")
            params.append(organization_id)
        if fact_type is not None:
            clauses.append("type = ?")
            params.append(fact_type)
        sql = "SELECT * FROM business_facts"
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += " ORDER BY rowid"
        return [_row_to_fact(r) for r in self._conn.execute(sql, params).fetchall()]

    def count_knowledge_by_chunking_status(self) -> dict[str, int]:
        """Knowledge records per chunking outcome; ``pending`` when not chunked yet."""
        rows = self._conn.execute(
            "SELECT COALESCE(chunking_status, 'pending'), COUNT(*) FROM knowledge_records"
            " GROUP BY 1"
        ).fetchall()
        return {r[0]: r[1] for r in rows}

    def count_business_facts(self, record_id: str | None = None) -> int:
        if record_id is None:
            return self._conn.execute("SELECT COUNT(*) FROM business_facts").fetchone()[0]
        return self._conn.execute(
            "SELECT COUNT(*) FROM business_facts WHERE source_knowledge_record_id = ?",
            (record_id,),
        ).fetchone()[0]

    def delete_business_facts_by_record(self, record_id: str) -> int:
        cur = self._conn.execute(
            "DELETE FROM business_facts WHERE source_knowledge_record_id = ?", (record_id,)
        )
        self._commit()
        return cur.rowcount

    # ------------------------------------------------------------------
    # Stalled work
    # ------------------------------------------------------------------

    def list_stalled_ingestion(self, older_than: str, limit: int = 100) -> list[IngestionRecord]:
        """Ingestion records stuck in ``processing`` since before *older_than* (UTC, SQLite format)."""
        rows = self._conn.execute(
            """
            SELECT * FROM ingestion_records
            WHERE status = ? AND updated_at < ?
            ORDER BY updated_at
            LIMIT ?
            """,
            (STATUS_PROCESSING, older_than, int(limit)),
        ).fetchall()
        return [_row_to_ingestion(r) for r in rows]

    def list_unchunked_knowledge(self, older_than: str, limit: int = 100) -> list[KnowledgeRecord]:
        """Knowledge records of completed ingestions that never reached a chunking outcome."""
        rows = self._conn.execute(
            """
            SELECT k.* FROM knowledge_records k
            JOIN ingestion_records i ON i.knowledge_record_id = k.id AND i.id = k.ingestion_record_id
            WHERE k.chunking_status IS NULL AND i.status = ? AND k.updated_at < ?
            ORDER BY k.updated_at
            LIMIT ?
            """,
            (STATUS_COMPLETED, older_than, int(limit)),
        ).fetchall()
        return [_row_to_knowledge(r) for r in rows]


# ------------------------------------------------------------------
# Row → model helpers
# ------------------------------------------------------------------


def _row_to_bookmark(row: sqlite3.Row) -> Bookmark:
    return Bookmark(
        id=row["id"],
        organization_id=row["organization_id"],
        user_id=row["user_id"],
        url=row["url"],
        title=row["title"],
        description=row["description"],
        platform=row["platform"],
        created_at=row["created_at"],
    )


def _row_to_ingestion(row: sqlite3.Row) -> IngestionRecord:
    return IngestionRecord(
        id=row["id"],
        organization_id=row["organization_id"],
        user_id=row["user_id"],
        source_type=row["source_type"],
        source_id=row["source_id"],
        origin=row["origin"],
        title=row["title"],
        raw_text=row["raw_text"],
        metadata=row["metadata"],
        dedup_hash=row["dedup_hash"],
        status=row["status"],
        dedup_reason=row["dedup_reason"],
        error=row["error"],
        quality_score=row["quality_score"],
        quality=row["quality"],
        knowledge_record_id=row["knowledge_record_id"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _row_to_knowledge(row: sqlite3.Row) -> KnowledgeRecord:
    return KnowledgeRecord(
        id=row["id"],
        organization_id=row["organization_id"],
        user_id=row["user_id"],
        ingestion_record_id=row["ingestion_record_id"],
        type=row["type"],
        source=row["source"],
        source_ref_id=row["source_ref_id"],
        title=row["title"],
        raw_text=row["raw_text"],
        raw_text_sha256=row["raw_text_sha256"],
        metadata=row["metadata"],
        confidence=row["confidence"],
        normalized_claims=row["normalized_claims"],
        chunking_status=row["chunking_status"],
        chunking_error_code=row["chunking_error_code"],
        chunking_error_message=row["chunking_error_message"],
        chunking_metrics=row["chunking_metrics"],
        ingested_at=row["ingested_at"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _row_to_chunk(row: sqlite3.Row) -> Chunk:
    return Chunk(
        rowid=row["rowid"],
        id=row["id"],
        knowledge_record_id=row["knowledge_record_id"],
        organization_id=row["organization_id"],
        chunk_text=row["chunk_text"],
        chunk_type=row["chunk_type"],
        source_type=row["source_type"],
        source_variant=row["source_variant"],
        chunk_role=row["chunk_role"],
        chunk_kind=row["chunk_kind"],
        authority=row["authority"],
        confidence=row["confidence"],
        time_horizon=row["time_horizon"],
        domain=row["domain"],
        actor=row["actor"],
        tags=row["tags"],
        token_count=row["token_count"],
        source_text=row["source_text"],
        transformation_type=row["transformation_type"],
        embedding_vec=row["embedding_vec"],
        embedding_model=row["embedding_model"],
        created_at=row["created_at"],
    )


def _row_to_fact(row: sqlite3.Row) -> BusinessFact:
    return BusinessFact(
        id=row["id"],
        organization_id=row["organization_id"],
        user_id=row["user_id"],
        type=row["type"],
        text=row["text"],
        confidence=row["confidence"],
        source_knowledge_record_id=row["source_knowledge_record_id"],
        created_at=row["created_at"],
    )
