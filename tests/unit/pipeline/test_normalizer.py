"""Tests for the normalizer stage."""

from __future__ import annotations

import json

import pytest

from kcompiler.errors import GenerationError
from kcompiler.pipeline.normalizer import (
    NormalizerStage,
    fallback_claims,
    normalization_hash,
    sanitize_artifact,
)

P1 = "Founders who publish weekly are building durable trust with their audience over several quarters."
P2 = "Long-form content is driving 40% more organic traffic than short posts for small SaaS teams."
TEXT = f"{P1}\n\n{P2}"


def _run_key(record_id):
    return f"NormalizeKnowledgeRecord:{record_id}"


def _captures(services):
    return [c["name"] for c in services.runlog.flushed[-1]["captures"]]


# ------------------------------------------------------------------
# Stage
# ------------------------------------------------------------------

def test_normalize_produces_artifacts(repo, services, generation, make_knowledge):
    record = make_knowledge(TEXT)

    status = NormalizerStage(repo, services).run(record.id)

    assert status == "completed"
    [call] = generation.calls_for("normalize_knowledge_item")
    assert call["schema"] == "knowledge_compiler_v1"
    assert json.loads(call["user"]) == {"inputs": [P1, P2]}

    payload = repo.get_knowledge_record(record.id).normalized_claims_dict
    assert payload["schema_version"] == "knowledge_compiler_v1"
    assert payload["normalization_hash"] == normalization_hash(TEXT)
    assert payload["gating"] == {"candidates": 2, "accepted": 2, "rejected": 0, "reasons": []}
    assert payload["source_stats"] == {"original_chars": len(TEXT), "artifacts_count": 2}
    first = payload["artifacts"][0]
    assert first["claim"] == f"The author states that {P1.rstrip('.')}."
    assert first["context"]["domain"] == "marketing"
    assert first["role"] == "strategic_claim"
    assert first["authority"] == "high"
    assert services.runlog.statuses(_run_key(record.id)) == ["completed"]


def test_raw_output_stored_and_backfilled(repo, services, make_knowledge):
    record = make_knowledge(TEXT)
    NormalizerStage(repo, services).run(record.id)

    [output] = repo.list_llm_outputs(record.id)
    assert output.model == "fake/generator"
    assert len(json.loads(output.raw_output)["results"]) == 2
    assert len(json.loads(output.parsed_output)["artifacts"]) == 2
    assert len(output.prompt_hash) == 40


def test_replay_same_text_is_skipped(repo, services, generation, make_knowledge):
    record = make_knowledge(TEXT)
    stage = NormalizerStage(repo, services)
    stage.run(record.id)

    assert stage.run(record.id) == "skipped_already_normalized"
    assert len(generation.calls) == 1
    assert len(repo.list_llm_outputs(record.id)) == 1


def test_empty_text(repo, services, generation, make_knowledge):
    record = make_knowledge("   ")

    assert NormalizerStage(repo, services).run(record.id) == "skipped_empty"

    payload = repo.get_knowledge_record(record.id).normalized_claims_dict
    assert payload["artifacts"] == []
    assert payload["normalization_hash"] == normalization_hash("")
    assert payload["gating"]["reasons"] == ["empty"]
    assert generation.calls == []


def test_missing_record(repo, services):
    assert NormalizerStage(repo, services).run("nope") == "not_found"
    assert services.runlog.statuses(_run_key("nope")) == ["not_found"]


def test_all_candidates_gated_out(repo, services, generation, make_knowledge):
    record = make_knowledge("lol this was funny haha wow look at it")

    assert NormalizerStage(repo, services).run(record.id) == "completed_gated_out"

    payload = repo.get_knowledge_record(record.id).normalized_claims_dict
    assert payload["artifacts"] == []
    assert payload["gating"] == {
        "candidates": 1,
        "accepted": 0,
        "rejected": 1,
        "reasons": ["semantic_incoherence"],
    }
    assert generation.calls == []


def test_partially_gated_sends_only_accepted(repo, services, generation, make_knowledge):
    record = make_knowledge(f"{P1}\n\nlol this was funny haha wow look at it")
    NormalizerStage(repo, services).run(record.id)

    assert json.loads(generation.calls[0]["user"]) == {"inputs": [P1]}
    gating = repo.get_knowledge_record(record.id).normalized_claims_dict["gating"]
    assert (gating["accepted"], gating["rejected"]) == (1, 1)


def test_result_count_mismatch_discards_batch(repo, services, generation, make_knowledge):
    generation.reply = lambda task, system, user: {"results": [{"claim": "Only one claim."}]}
    record = make_knowledge(TEXT)

    assert NormalizerStage(repo, services).run(record.id) == "completed"

    assert repo.get_knowledge_record(record.id).artifacts == []
    assert "normalize.bad_shape" in _captures(services)


def test_generation_error_in_production_yields_no_artifacts(
    repo, services, generation, make_knowledge
):
    def fail(task, system, user):
        raise GenerationError("bad json", raw="not-json")

    generation.reply = fail
    record = make_knowledge(TEXT)

    assert NormalizerStage(repo, services).run(record.id) == "completed"

    assert repo.get_knowledge_record(record.id).artifacts == []
    [output] = repo.list_llm_outputs(record.id)
    assert output.raw_output == "not-json"
    assert "normalize.llm_error" in _captures(services)


def test_eval_harness_fallback(repo, services, generation, make_ingestion, make_knowledge):
    generation.reply = lambda task, system, user: {"results": []}
    ingestion = make_ingestion(TEXT, origin="eval_harness")
    record = make_knowledge(TEXT, ingestion_record_id=ingestion.id)

    NormalizerStage(repo, services).run(record.id)

    artifacts = repo.get_knowledge_record(record.id).artifacts
    assert [a["claim"] for a in artifacts] == [P1, P2]
    assert all(a["role"] == "strategic_claim" and a["confidence"] == 0.7 for a in artifacts)
    assert "normalize.fallback_applied" in _captures(services)


def test_changed_text_is_renormalized(repo, services, generation, make_knowledge):
    record = make_knowledge(TEXT)
    repo.set_normalized_claims(
        record.id,
        json.dumps({
            "schema_version": "knowledge_compiler_v1",
            "normalization_hash": normalization_hash("older text"),
            "artifacts": [],
        }),
    )

    assert NormalizerStage(repo, services).run(record.id) == "completed"
    assert len(generation.calls) == 1


def test_persist_failure_flushes_error_and_raises(repo, services, make_knowledge, monkeypatch):
    record = make_knowledge(TEXT)

    def locked(record_id, payload):
        raise RuntimeError("database is locked")

    monkeypatch.setattr(repo, "set_normalized_claims", locked)

    with pytest.raises(RuntimeError, match="database is locked"):
        NormalizerStage(repo, services).run(record.id)
    assert services.runlog.statuses(_run_key(record.id)) == ["error"]
    assert services.runlog.flushed[-1]["details"] == {"error": "database is locked"}


# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------

def test_sanitize_artifact_defaults():
    artifact = sanitize_artifact({
        "claim": "  A claim.  ",
        "context": {"domain": "Search", "actor": " founder "},
        "role": "opinion",
        "authority": "HIGH",
        "confidence": "n/a",
    })
    assert artifact == {
        "claim": "A claim.",
        "context": {"domain": "seo", "actor": "founder", "timeframe": "unknown", "scope": "unknown"},
        "role": "strategic_claim",
        "confidence": 0.6,
        "authority": "high",
    }


@pytest.mark.parametrize("result", [None, "text", {"claim": ""}, {"role": "metric"}])
def test_sanitize_artifact_rejects(result):
    assert sanitize_artifact(result) is None


def test_sanitize_artifact_clamps_confidence():
    assert sanitize_artifact({"claim": "x", "confidence": 3})["confidence"] == 1.0
    assert sanitize_artifact({"claim": "x", "confidence": -1})["confidence"] == 0.0


def test_fallback_claims():
    text = (
        "Short one. “Quoted sentences that run long enough are kept” "
        "And a third sentence that also passes the length floor! "
        "Plus a fourth sentence that would exceed the default limit. Fifth sentence is long enough too."
    )
    claims = fallback_claims(text)
    assert claims == [
        "Quoted sentences that run long enough are kept” And a third sentence that also passes the length floor!",
        "Plus a fourth sentence that would exceed the default limit.",
        "Fifth sentence is long enough too.",
    ]


def test_fallback_claims_adds_terminal_period():
    assert fallback_claims("A sentence without a final stop at all") == [
        "A sentence without a final stop at all."
    ]
