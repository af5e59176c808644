"""Tests for the classifier stage."""

from __future__ import annotations

import json
import uuid

import pytest

from kcompiler.db.models import Chunk
from kcompiler.errors import PipelineInvariantViolation
from kcompiler.pipeline.classifier import (
    ClassifierStage,
    classification_hash,
    sanitize_classification,
)

ARTIFACTS = {"artifacts": [{"claim": "placeholder"}]}


def _add_chunks(repo, record, texts, variant="normalized"):
    ids = []
    for text in texts:
        chunk = Chunk(
            id=str(uuid.uuid4()),
            knowledge_record_id=record.id,
            organization_id=record.organization_id,
            chunk_text=text,
            source_type="text",
            source_variant=variant,
        )
        repo.add_chunk(chunk)
        ids.append(chunk.id)
    return ids


def _statuses(services, record_id):
    return services.runlog.statuses(f"ClassifyKnowledgeChunks:{record_id}")


# ------------------------------------------------------------------
# Happy path
# ------------------------------------------------------------------

def test_classifies_normalized_chunks(repo, services, generation, make_knowledge, make_control):
    record = make_knowledge("raw", normalized_claims=ARTIFACTS)
    _add_chunks(repo, record, ["first chunk", "second chunk"])

    assert ClassifierStage(repo, services).run(record.id, make_control()) == "completed"

    [call] = generation.calls_for("classify_knowledge_chunks")
    inputs = json.loads(call["user"])["inputs"]
    assert [i["chunk_text"] for i in inputs] == ["first chunk", "second chunk"]
    assert inputs[0]["normalized_claim"] is True
    assert inputs[0]["ingestion_quality"] == 0.6
    for chunk in repo.list_chunks(record.id):
        assert chunk.chunk_role == "strategic_claim"
        assert chunk.chunk_kind == "angle"
        assert chunk.authority == "high"
        assert chunk.confidence == pytest.approx(0.9)
        assert chunk.time_horizon == "current"
        assert "classification_hash" in chunk.tags_dict
        assert "classified_at" in chunk.tags_dict


def test_replay_is_up_to_date(repo, services, generation, make_knowledge, make_control):
    record = make_knowledge("raw", normalized_claims=ARTIFACTS)
    _add_chunks(repo, record, ["first chunk"])
    stage = ClassifierStage(repo, services)
    stage.run(record.id, make_control())

    assert stage.run(record.id, make_control()) == "all_up_to_date"
    assert len(generation.calls) == 1


def test_raw_variant_when_no_artifacts(repo, services, generation, make_knowledge, make_control):
    record = make_knowledge("raw")
    _add_chunks(repo, record, ["raw chunk"], variant="raw")
    _add_chunks(repo, record, ["ignored normalized chunk"])

    ClassifierStage(repo, services).run(record.id, make_control())

    inputs = json.loads(generation.calls[0]["user"])["inputs"]
    assert [i["chunk_text"] for i in inputs] == ["raw chunk"]
    assert inputs[0]["normalized_claim"] is False


def test_no_chunks(repo, services, make_knowledge, make_control):
    record = make_knowledge("raw", normalized_claims=ARTIFACTS)
    assert ClassifierStage(repo, services).run(record.id, make_control()) == "no_chunks"


def test_missing_record(repo, services, make_control):
    assert ClassifierStage(repo, services).run("nope", make_control()) == "not_found"


def test_uses_ingestion_quality(repo, services, generation, make_ingestion, make_knowledge, make_control):
    ingestion = make_ingestion("raw")
    repo.update_ingestion_record(ingestion.id, quality_score=0.91234)
    record = make_knowledge("raw", ingestion_record_id=ingestion.id, normalized_claims=ARTIFACTS)
    _add_chunks(repo, record, ["chunk"])

    ClassifierStage(repo, services).run(record.id, make_control())

    assert json.loads(generation.calls[0]["user"])["inputs"][0]["ingestion_quality"] == 0.912


# ------------------------------------------------------------------
# Batching
# ------------------------------------------------------------------

def test_full_batch_requeues_until_done(repo, services, config, make_knowledge, make_control):
    config.classify.batch_size = 2
    record = make_knowledge("raw", normalized_claims=ARTIFACTS)
    _add_chunks(repo, record, ["one", "two", "three"])
    stage = ClassifierStage(repo, services)

    control = make_control()
    assert stage.run(record.id, control) == "requeued"
    assert control.dispatched == [("classify", {"knowledge_record_id": record.id}, 1.0)]

    assert stage.run(record.id, make_control()) == "completed"
    assert stage.run(record.id, make_control()) == "all_up_to_date"
    assert all(c.chunk_role for c in repo.list_chunks(record.id))


# ------------------------------------------------------------------
# Count mismatches
# ------------------------------------------------------------------

def test_retry_with_strict_prompt(repo, services, generation, make_knowledge, make_control):
    replies = iter([{"results": []}, {"results": [{"chunk_role": "metric"}, {"chunk_role": "quote"}]}])
    generation.reply = lambda task, system, user: next(replies)
    record = make_knowledge("raw", normalized_claims=ARTIFACTS)
    _add_chunks(repo, record, ["a", "b"])

    assert ClassifierStage(repo, services).run(record.id, make_control()) == "completed"

    assert len(generation.calls) == 2
    assert "STRICT MODE: There are exactly 2 inputs" in generation.calls[1]["system"]
    assert [c.chunk_role for c in repo.list_chunks(record.id)] == ["metric", "quote"]


def test_mismatch_in_production_leaves_chunks(repo, services, generation, make_knowledge, make_control):
    generation.reply = lambda task, system, user: {"results": [{"chunk_role": "metric"}]}
    record = make_knowledge("raw", normalized_claims=ARTIFACTS)
    _add_chunks(repo, record, ["a", "b"])

    assert ClassifierStage(repo, services).run(record.id, make_control()) == "mismatch_counts"

    assert len(generation.calls) == 2
    assert all(c.chunk_role is None for c in repo.list_chunks(record.id))
    assert _statuses(services, record.id) == ["mismatch_counts"]


def test_mismatch_in_strict_mode_raises(repo, services, generation, make_knowledge, make_control):
    services.strict = True
    generation.reply = lambda task, system, user: {"results": []}
    record = make_knowledge("raw", normalized_claims=ARTIFACTS)
    _add_chunks(repo, record, ["a"])

    with pytest.raises(PipelineInvariantViolation, match="Chunk count mismatch") as excinfo:
        ClassifierStage(repo, services).run(record.id, make_control())

    assert excinfo.value.context == {"expected": 1, "got": 0, "variant": "normalized"}
    assert _statuses(services, record.id) == ["mismatch_counts"]


def test_mismatch_in_eval_harness_applies_fallback(
    repo, services, generation, make_ingestion, make_knowledge, make_control
):
    def fail(task, system, user):
        raise RuntimeError("provider down")

    generation.reply = fail
    ingestion = make_ingestion("raw", origin="eval_harness")
    record = make_knowledge("raw", ingestion_record_id=ingestion.id, normalized_claims=ARTIFACTS)
    _add_chunks(repo, record, ["a", "b"])

    assert ClassifierStage(repo, services).run(record.id, make_control()) == "completed"

    for chunk in repo.list_chunks(record.id):
        assert (chunk.chunk_role, chunk.authority, chunk.time_horizon) == ("strategic_claim", "medium", "unknown")
        assert chunk.confidence == pytest.approx(0.7)


def test_persist_failure_releases(repo, services, make_knowledge, make_control, monkeypatch):
    record = make_knowledge("raw", normalized_claims=ARTIFACTS)
    _add_chunks(repo, record, ["a"])

    def broken(*args, **kwargs):
        raise RuntimeError("locked")

    monkeypatch.setattr(repo, "update_chunk_classification", broken)
    control = make_control()

    assert ClassifierStage(repo, services).run(record.id, control) == "error"
    assert control.released == [20.0]


# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------

def test_sanitize_classification():
    assert sanitize_classification({"chunk_role": "sarcasm", "authority": "top", "confidence": 7}) == {
        "chunk_role": "other",
        "authority": "medium",
        "confidence": 1.0,
        "time_horizon": "unknown",
    }
    assert sanitize_classification(None)["confidence"] == 0.5
    assert sanitize_classification({"time_horizon": "near_term"})["time_horizon"] == "near_term"


def test_classification_hash_inputs():
    base = classification_hash("text", "text", "normalized", True, 0.6)
    assert base == classification_hash("text", "text", "normalized", True, 0.6004)
    assert base != classification_hash("text", "text", "normalized", True, 0.7)
    assert base != classification_hash("text", "text", "raw", False, 0.6)
    assert classification_hash("x" * 600 + "a", "t", "raw", False, 0.6) == classification_hash(
        "x" * 600 + "b", "t", "raw", False, 0.6
    )
