"""Tests for kcompiler status and search."""

from __future__ import annotations

from pathlib import Path

import pytest
from typer.testing import CliRunner

from kcompiler.cli.main import app
from kcompiler.db.connection import Database
from kcompiler.db.models import BusinessFact, KnowledgeRecord
from kcompiler.db.repository import Repository

runner = CliRunner()

TEXT = "Founders who publish weekly are building durable trust with their audience."


@pytest.fixture(autouse=True)
def _isolated_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr("kcompiler.config._GLOBAL_CONFIG_PATH", tmp_path / "no-global.yaml")
    monkeypatch.chdir(tmp_path)
    for var in ("KCOMPILER_GENERATION_MODEL", "KCOMPILER_EMBEDDING_MODEL", "KCOMPILER_DEBUG"):
        monkeypatch.delenv(var, raising=False)


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    runner.invoke(app, ["init", str(tmp_path)])
    return tmp_path / ".kcompiler.db"


def test_status_empty_db(db_path: Path) -> None:
    result = runner.invoke(app, ["status", "--db", str(db_path)])

    assert result.exit_code == 0, result.output
    assert "Knowledge Base" in result.output
    assert "Pipeline" in result.output
    assert "Chunking: none" in result.output
    assert "Business facts: 0" in result.output


def test_status_counts_submissions(db_path: Path, queued_tasks) -> None:
    runner.invoke(app, ["submit", TEXT, "--db", str(db_path)])
    runner.invoke(app, ["submit", TEXT + " Again.", "--db", str(db_path)])

    result = runner.invoke(app, ["status", "--db", str(db_path)])

    assert result.exit_code == 0, result.output
    assert "pending: 2" in result.output
    assert len(queued_tasks) == 2


def test_status_pipeline_counts(db_path: Path) -> None:
    with Database(db_path) as conn:
        repo = Repository(conn)
        for record_id in ("kr-1", "kr-2"):
            repo.add_knowledge_record(
                KnowledgeRecord(
                    id=record_id, organization_id="org-1", raw_text=TEXT, raw_text_sha256=record_id
                )
            )
        repo.set_chunking_state("kr-2", "completed")
        repo.add_business_fact(
            BusinessFact(id="f1", organization_id="org-1", text=TEXT, source_knowledge_record_id="kr-2")
        )

    result = runner.invoke(app, ["status", "--db", str(db_path)])

    assert result.exit_code == 0, result.output
    assert "completed: 1" in result.output
    assert "pending: 1" in result.output
    assert "Business facts: 1" in result.output


def test_status_single_record(db_path: Path, queued_tasks) -> None:
    runner.invoke(app, ["submit", TEXT, "--db", str(db_path)])
    with Database(db_path) as conn:
        [record] = Repository(conn).list_ingestion_records()

    result = runner.invoke(app, ["status", record.id, "--db", str(db_path)])

    assert result.exit_code == 0, result.output
    assert "pending" in result.output
    assert "origin: cli" in result.output


def test_status_unknown_record(db_path: Path) -> None:
    result = runner.invoke(app, ["status", "nope", "--db", str(db_path)])
    assert result.exit_code == 1
    assert "not found" in result.output


def test_search_offline_without_embeddings(db_path: Path) -> None:
    result = runner.invoke(app, ["search", "weekly publishing", "--offline", "--db", str(db_path)])

    assert result.exit_code == 0, result.output
    assert "No embeddings found" in result.output
