"""Tests for the Celery application settings and worker start-up hook."""

from __future__ import annotations

import sqlite3
from pathlib import Path

import pytest

from kcompiler import celery_app
from kcompiler.db.connection import Database
from kcompiler.pipeline import tasks
from kcompiler.pipeline.tasks import TaskContext, inline


def test_broker_sits_beside_the_database(tmp_path: Path) -> None:
    url = celery_app.broker_url_for(tmp_path / ".kcompiler.db")

    assert url == f"sqla+sqlite:///{tmp_path.resolve() / '.kcompiler.broker.db'}"


def test_redelivery_settings() -> None:
    conf = celery_app.app.conf

    assert conf.task_acks_late is True
    assert conf.task_reject_on_worker_lost is True
    assert conf.worker_prefetch_multiplier == 1
    assert conf.task_default_queue == celery_app.TASK_QUEUE
    assert conf.task_eager_propagates is False


def test_configure_sqlite_broker(celery_conf) -> None:
    celery_app.configure("sqla+sqlite:////tmp/kb.broker.db")

    assert celery_conf.broker_url == "sqla+sqlite:////tmp/kb.broker.db"
    assert celery_conf.broker_transport_options == {"connect_args": {"timeout": 30}}
    assert celery_conf.task_always_eager is False


def test_configure_other_broker_keeps_transport_options(celery_conf) -> None:
    celery_conf.broker_transport_options = {}

    celery_app.configure("redis://localhost:6379/0", eager=True)

    assert celery_conf.broker_url == "redis://localhost:6379/0"
    assert celery_conf.broker_transport_options == {}
    assert celery_conf.task_always_eager is True


# ------------------------------------------------------------------
# worker_ready
# ------------------------------------------------------------------

@pytest.fixture
def scheduled(monkeypatch):
    calls = []

    def apply_async(args=None, kwargs=None, **options):
        calls.append({"kwargs": kwargs, **options})

    monkeypatch.setattr(tasks.recover_stalled, "apply_async", apply_async)
    return calls


def test_worker_ready_schedules_recovery(tmp_db, services, config, scheduled) -> None:
    config.worker.stale_after_minutes = 5
    config.worker.recover_limit = 20

    with inline(TaskContext(services, conn=tmp_db)):
        celery_app.on_worker_ready(sender=None)

    assert scheduled == [
        {
            "kwargs": {"max_age_minutes": 5, "limit": 20},
            "countdown": celery_app.RECOVERY_COUNTDOWN,
        }
    ]


def test_worker_ready_respects_disabled_recovery(tmp_db, services, config, scheduled) -> None:
    config.worker.recover_on_start = False

    with inline(TaskContext(services, conn=tmp_db)):
        celery_app.on_worker_ready(sender=None)

    assert scheduled == []


def test_task_context_needs_a_database(services) -> None:
    with pytest.raises(ValueError, match="database or a connection"):
        TaskContext(services)


def test_task_context_opens_and_closes_connections(tmp_path: Path, tmp_db, services) -> None:
    ctx = TaskContext(services, db=Database(tmp_path / ".kcompiler.db"))

    with ctx.repository() as repo:
        conn = repo.conn
        assert repo.count_knowledge_records() == 0

    with pytest.raises(sqlite3.ProgrammingError):
        conn.execute("SELECT 1")


def test_task_context_rolls_back_shared_connection(tmp_db, services) -> None:
    ctx = TaskContext(services, conn=tmp_db)

    with pytest.raises(RuntimeError):
        with ctx.repository():
            tmp_db.execute(
                "INSERT INTO business_facts (id, organization_id, text) VALUES ('f1', 'org-1', 'x')"
            )
            raise RuntimeError("stage failed")

    assert not tmp_db.in_transaction
    assert tmp_db.execute("SELECT COUNT(*) FROM business_facts").fetchone()[0] == 0
