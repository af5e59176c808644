"""Tests for actionable CLI errors (missing db, API keys, bad config)."""

from __future__ import annotations

from pathlib import Path

import pytest
from typer.testing import CliRunner

from kcompiler import celery_app
from kcompiler.cli.errors import err_no_api_key, err_no_db
from kcompiler.cli.main import app
from kcompiler.pipeline import tasks

runner = CliRunner()


@pytest.fixture(autouse=True)
def _isolated_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr("kcompiler.config._GLOBAL_CONFIG_PATH", tmp_path / "no-global.yaml")
    monkeypatch.chdir(tmp_path)
    for var in (
        "KCOMPILER_GENERATION_MODEL",
        "KCOMPILER_EMBEDDING_MODEL",
        "KCOMPILER_DEBUG",
        "KCOMPILER_BROKER_URL",
        "KCOMPILER_LOG_LEVEL",
    ):
        monkeypatch.delenv(var, raising=False)


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    runner.invoke(app, ["init", str(tmp_path)])
    return tmp_path / ".kcompiler.db"


# ---------------------------------------------------------------------------
# Message helpers
# ---------------------------------------------------------------------------


def test_err_no_api_key_names_env_var() -> None:
    msg = err_no_api_key("openai")
    assert "OPENAI_API_KEY" in msg
    assert "export" in msg


def test_err_no_api_key_unknown_provider() -> None:
    assert "ACME_API_KEY" in err_no_api_key("acme")


def test_err_no_db_suggests_init() -> None:
    msg = err_no_db("kb/.kcompiler.db")
    assert "kb/.kcompiler.db" in msg
    assert "kcompiler init" in msg


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "args",
    [
        ["submit", "some text"],
        ["status"],
        ["process", "ing-1"],
    ],
)
def test_missing_db_exits_one(args: list[str], tmp_path: Path) -> None:
    result = runner.invoke(app, [*args, "--db", str(tmp_path / "nowhere.db")])
    assert result.exit_code == 1
    assert "kcompiler init" in result.output


def test_worker_without_api_key(db_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)

    result = runner.invoke(app, ["worker", "--db", str(db_path)])

    assert result.exit_code == 1
    assert "OPENAI_API_KEY" in result.output


def test_worker_starts_celery(db_path: Path, monkeypatch: pytest.MonkeyPatch, celery_conf) -> None:
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    monkeypatch.setattr(tasks, "_worker_context", None)
    argv = []
    monkeypatch.setattr(celery_app.app, "worker_main", argv.extend)

    result = runner.invoke(app, ["worker", "--offline", "--concurrency", "2", "--db", str(db_path)])

    assert result.exit_code == 0, result.output
    assert argv == [
        "worker",
        "--pool=threads",
        "--concurrency=2",
        "--loglevel=INFO",
        "--queues",
        "kcompiler",
    ]
    assert celery_conf.broker_url == celery_app.broker_url_for(db_path)
    assert celery_conf.broker_transport_options == {"connect_args": {"timeout": 30}}
    ctx = tasks.current_context()
    assert ctx.db.db_path == db_path
    assert ctx.conn is None


def test_secret_in_global_config_is_reported(db_path: Path, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    (tmp_path / "no-global.yaml").write_text("generation:\n  api_key: sk-leaked\n", encoding="utf-8")

    result = runner.invoke(app, ["worker", "--offline", "--db", str(db_path)])

    assert result.exit_code == 1
    assert "Invalid configuration" in result.output


def test_eval_empty_input(db_path: Path) -> None:
    result = runner.invoke(app, ["eval", "   ", "--db", str(db_path)])
    assert result.exit_code == 1
    assert "empty" in result.output
