"""Shared pytest fixtures."""

from __future__ import annotations

import json
import os
import uuid
from collections.abc import Callable
from types import SimpleNamespace
from typing import Any

import pytest

# Keep litellm from fetching its remote model cost map in a background thread at
# import time; offline, that thread can deadlock the import.
os.environ.setdefault("LITELLM_LOCAL_MODEL_COST_MAP", "True")

from kcompiler import celery_app
from kcompiler.config import KcompilerConfig
from kcompiler.db.connection import Database
from kcompiler.db.models import IngestionRecord, KnowledgeRecord
from kcompiler.db.repository import Repository
from kcompiler.db.schema import initialize
from kcompiler.identity import fingerprint
from kcompiler.llm.embeddings import DeterministicEmbeddingService
from kcompiler.pipeline.services import PipelineServices
from kcompiler.pipeline.tasks import TaskContext, inline, process_ingestion
from kcompiler.runlog import RunLogger


@pytest.fixture
def tmp_db(tmp_path):
    """File-based DB in tmp_path with schema initialized, closed after test."""
    db = Database(tmp_path / ".kcompiler.db")
    conn = db.connect()
    initialize(conn)
    yield conn
    conn.close()


@pytest.fixture
def repo(tmp_db):
    return Repository(tmp_db)


# ---------------------------------------------------------------------------
# Fake services
# ---------------------------------------------------------------------------


def echo_claims(task: str, system: str, user: str) -> dict[str, Any]:
    """Default fake reply: one well-formed result per input."""
    if task == "extract_business_facts":
        text = json.loads(user)["text"]
        return {"facts": [{"text": text.split(".")[0].strip() + ".", "type": "stat", "confidence": 90}]}
    inputs = json.loads(user)["inputs"]
    if task == "normalize_knowledge_item":
        return {
            "results": [
                {
                    "claim": f"The author states that {text.rstrip('.')}.",
                    "context": {
                        "domain": "Marketing",
                        "actor": "author",
                        "timeframe": "unknown",
                        "scope": "strategic",
                    },
                    "role": "strategic_claim",
                    "confidence": 0.8,
                    "authority": "high",
                }
                for text in inputs
            ]
        }
    return {
        "results": [
            {
                "chunk_role": "strategic_claim",
                "authority": "high",
                "confidence": 0.9,
                "time_horizon": "current",
            }
            for _ in inputs
        ]
    }


class FakeGeneration:
    """GenerationService double. *reply* maps (task, system, user) to a dict or raises."""

    model = "fake/generator"

    def __init__(self, reply: Callable[[str, str, str], dict[str, Any]] = echo_claims) -> None:
        self.reply = reply
        self.calls: list[dict[str, Any]] = []

    def call(self, task, system, user, schema, temperature=0.0):
        data, _meta = self.call_with_meta(task, system, user, schema, temperature)
        return data

    def call_with_meta(self, task, system, user, schema, temperature=0.0):
        self.calls.append({"task": task, "system": system, "user": user, "schema": schema})
        data = self.reply(task, system, user)
        return data, {"model": self.model, "task": task, "schema": schema}

    def calls_for(self, task: str) -> list[dict[str, Any]]:
        return [c for c in self.calls if c["task"] == task]


class RecordingEmbeddings(DeterministicEmbeddingService):
    """Deterministic embeddings with a call log."""

    def __init__(self, dimensions: int = 8) -> None:
        super().__init__(dimensions=dimensions, model="fake/embedder")
        self.batches: list[list[str]] = []

    def embed_many(self, texts):
        self.batches.append(list(texts))
        return super().embed_many(texts)


class FakeControl:
    """StageControl double for driving a stage outside the queue."""

    def __init__(self, attempts: int = 1) -> None:
        self.attempts = attempts
        self.released: list[float] = []
        self.dispatched: list[tuple[str, dict | None, float]] = []

    def release(self, delay):
        self.released.append(delay)

    def dispatch(self, task, payload=None, delay=0.0):
        self.dispatched.append((task, payload, delay))
        return len(self.dispatched)


@pytest.fixture
def generation():
    return FakeGeneration()


@pytest.fixture
def embeddings():
    return RecordingEmbeddings()


@pytest.fixture
def config():
    cfg = KcompilerConfig()
    cfg.embedding.dimensions = 8
    return cfg


@pytest.fixture
def services(config, generation, embeddings):
    return PipelineServices(
        config=config,
        generation=generation,
        embeddings=embeddings,
        runlog=RunLogger(),
    )


# ---------------------------------------------------------------------------
# Record builders
# ---------------------------------------------------------------------------


def _add_text_ingestion(
    repo: Repository,
    text: str,
    *,
    org: str = "org-1",
    origin: str | None = None,
    metadata: dict | None = None,
) -> IngestionRecord:
    record = IngestionRecord(
        id=str(uuid.uuid4()),
        organization_id=org,
        source_type="text",
        origin=origin,
        raw_text=text,
        metadata=json.dumps(metadata) if metadata else None,
        dedup_hash=fingerprint(text),
    )
    repo.add_ingestion_record(record)
    return record


def _add_knowledge(
    repo: Repository,
    text: str,
    *,
    org: str = "org-1",
    ingestion_record_id: str | None = None,
    normalized_claims: dict | None = None,
) -> KnowledgeRecord:
    record = KnowledgeRecord(
        id=str(uuid.uuid4()),
        organization_id=org,
        raw_text=text,
        raw_text_sha256=fingerprint(text),
        ingestion_record_id=ingestion_record_id,
    )
    repo.add_knowledge_record(record)
    if normalized_claims is not None:
        repo.set_normalized_claims(record.id, json.dumps(normalized_claims))
    return repo.get_knowledge_record(record.id)


@pytest.fixture
def make_control():
    """Factory for StageControl doubles: make_control(attempts=1)."""
    return FakeControl


@pytest.fixture
def make_ingestion(repo):
    """Factory: make_ingestion(text, org=..., origin=..., metadata=...) -> IngestionRecord."""

    def _make(text: str, **kwargs: Any) -> IngestionRecord:
        return _add_text_ingestion(repo, text, **kwargs)

    return _make


@pytest.fixture
def make_knowledge(repo):
    """Factory: make_knowledge(text, normalized_claims=..., ...) -> KnowledgeRecord."""

    def _make(text: str, **kwargs: Any) -> KnowledgeRecord:
        return _add_knowledge(repo, text, **kwargs)

    return _make


# ---------------------------------------------------------------------------
# Celery
# ---------------------------------------------------------------------------


@pytest.fixture
def celery_conf(monkeypatch):
    """Restore the Celery settings a test changes."""
    conf = celery_app.app.conf
    for key in ("broker_url", "broker_transport_options", "task_always_eager"):
        monkeypatch.setattr(conf, key, conf[key])
    return conf


@pytest.fixture
def celery_eager(tmp_db, services, celery_conf):
    """Run tasks in-process against tmp_db; ``apply_async`` never reaches a broker."""
    celery_app.configure("memory://", eager=True)
    with inline(TaskContext(services, conn=tmp_db)) as ctx:
        yield ctx


@pytest.fixture
def queued_tasks(monkeypatch, celery_conf):
    """Record entry-task submissions instead of sending them to the broker."""
    calls: list[dict[str, Any]] = []

    def apply_async(args=None, kwargs=None, **options):
        calls.append({"args": tuple(args or ()), "kwargs": dict(kwargs or {}), **options})
        return SimpleNamespace(id=f"task-{len(calls)}")

    monkeypatch.setattr(process_ingestion, "apply_async", apply_async)
    return calls
