"""Forward-only migration runner for the knowledge base schema.

Vec tables (vec_chunks_*) are NOT migration-managed; use ensure_vec_table().
"""

from __future__ import annotations

import sqlite3

# schema_version is the bootstrap table, created before migrations run.
_CREATE_SCHEMA_VERSION = """
CREATE TABLE IF NOT EXISTS schema_version (
    version     INTEGER NOT NULL,
    applied_at  DATETIME NOT NULL DEFAULT (datetime('now'))
)
"""

_V1_SQL = """
CREATE TABLE IF NOT EXISTS bookmarks (
    id              TEXT PRIMARY KEY,
    organization_id TEXT NOT NULL,
    user_id         TEXT,
    url             TEXT NOT NULL DEFAULT '',
    title           TEXT NOT NULL DEFAULT '',
    description     TEXT NOT NULL DEFAULT '',
    platform        TEXT,
    created_at      DATETIME NOT NULL DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS knowledge_records (
    id                  TEXT PRIMARY KEY,
    organization_id     TEXT NOT NULL,
    user_id             TEXT,
    ingestion_record_id TEXT,
    type                TEXT NOT NULL DEFAULT 'note',
    source              TEXT NOT NULL DEFAULT 'manual',
    source_ref_id       TEXT,
    title               TEXT,
    raw_text            TEXT NOT NULL,
    raw_text_sha256     TEXT NOT NULL,
    metadata            TEXT,
    confidence          REAL,
    ingested_at         DATETIME,
    created_at          DATETIME NOT NULL DEFAULT (datetime('now')),
    updated_at          DATETIME NOT NULL DEFAULT (datetime('now')),
    UNIQUE (organization_id, raw_text_sha256)
);

CREATE TABLE IF NOT EXISTS ingestion_records (
    id                  TEXT PRIMARY KEY,
    organization_id     TEXT NOT NULL,
    user_id             TEXT,
    source_type         TEXT NOT NULL,
    source_id           TEXT,
    origin              TEXT,
    title               TEXT,
    raw_text            TEXT,
    metadata            TEXT,
    dedup_hash          TEXT,
    status              TEXT NOT NULL DEFAULT 'pending',
    dedup_reason        TEXT,
    error               TEXT,
    quality_score       REAL,
    knowledge_record_id TEXT REFERENCES knowledge_records(id) ON DELETE SET NULL,
    created_at          DATETIME NOT NULL DEFAULT (datetime('now')),
    updated_at          DATETIME NOT NULL DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS knowledge_chunks (
    id                  TEXT PRIMARY KEY,
    knowledge_record_id TEXT NOT NULL REFERENCES knowledge_records(id) ON DELETE CASCADE,
    organization_id     TEXT NOT NULL,
    chunk_text          TEXT NOT NULL,
    chunk_type          TEXT NOT NULL DEFAULT 'normalized_knowledge',
    source_type         TEXT,
    source_variant      TEXT NOT NULL DEFAULT 'raw',
    chunk_role          TEXT,
    chunk_kind          TEXT,
    authority           TEXT,
    confidence          REAL,
    time_horizon        TEXT NOT NULL DEFAULT 'unknown',
    domain              TEXT,
    actor               TEXT,
    tags                TEXT NOT NULL DEFAULT '{}',
    token_count         INTEGER NOT NULL DEFAULT 0,
    source_text         TEXT,
    transformation_type TEXT,
    embedding_vec       TEXT,
    embedding_model     TEXT,
    created_at          DATETIME NOT NULL DEFAULT (datetime('now'))
);

CREATE INDEX IF NOT EXISTS idx_chunks_record_variant
    ON knowledge_chunks (knowledge_record_id, source_variant);

CREATE TABLE IF NOT EXISTS knowledge_llm_outputs (
    id                  TEXT PRIMARY KEY,
    knowledge_record_id TEXT NOT NULL REFERENCES knowledge_records(id) ON DELETE CASCADE,
    model               TEXT,
    prompt_hash         TEXT NOT NULL,
    raw_output          TEXT NOT NULL DEFAULT '{}',
    parsed_output       TEXT,
    created_at          DATETIME NOT NULL DEFAULT (datetime('now'))
);
"""

# Knowledge compiler artifacts and chunking diagnostics.
_V2_SQL = """
ALTER TABLE knowledge_records ADD COLUMN normalized_claims TEXT;
ALTER TABLE knowledge_records ADD COLUMN chunking_status TEXT;
ALTER TABLE knowledge_records ADD COLUMN chunking_error_code TEXT;
ALTER TABLE knowledge_records ADD COLUMN chunking_error_message TEXT;
ALTER TABLE knowledge_records ADD COLUMN chunking_metrics TEXT;
ALTER TABLE ingestion_records ADD COLUMN quality TEXT;
"""

# Business facts extracted per knowledge record. Task state lives in the
# Celery broker, so the v1 jobs table is dropped where it exists.
_V3_SQL = """
CREATE TABLE IF NOT EXISTS business_facts (
    id                         TEXT PRIMARY KEY,
    organization_id            TEXT NOT NULL,
    user_id                    TEXT,
    type                       TEXT NOT NULL DEFAULT 'general',
    text                       TEXT NOT NULL,
    confidence                 REAL NOT NULL DEFAULT 0.8,
    source_knowledge_record_id TEXT REFERENCES knowledge_records(id) ON DELETE SET NULL,
    created_at                 DATETIME NOT NULL DEFAULT (datetime('now'))
);

CREATE INDEX IF NOT EXISTS idx_business_facts_org_type
    ON business_facts (organization_id, type);

DROP TABLE IF EXISTS jobs;
"""

# Append-only. Each entry: (version: int, sql: str).
# executescript() issues an implicit COMMIT before running.
MIGRATIONS: list[tuple[int, str]] = [
    (1, _V1_SQL),
    (2, _V2_SQL),
    (3, _V3_SQL),
]


def run_migrations(conn: sqlite3.Connection) -> None:
    """Apply all pending migrations in ascending version order.

    Idempotent: safe to call on a database at any version.
    Vec tables are NOT managed here; use ensure_vec_table() instead.
    """
    conn.execute(_CREATE_SCHEMA_VERSION)
    conn.commit()

    row = conn.execute("SELECT MAX(version) FROM schema_version").fetchone()
    current = row[0] if row[0] is not None else 0

    for version, sql in MIGRATIONS:
        if version > current:
            conn.executescript(sql)
            conn.execute(
                "INSERT INTO schema_version (version) VALUES (?)", (version,)
            )
            conn.commit()
