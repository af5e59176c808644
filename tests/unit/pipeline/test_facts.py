"""Tests for the business fact extraction stage."""

from __future__ import annotations

import json

import pytest

from kcompiler.db.models import BusinessFact
from kcompiler.pipeline.facts import FactExtractorStage, coerce_facts, sanitize_fact

TEXT = (
    "Our churn dropped 12% after launching weekly digests. "
    "Most founders believe cold email is dead. Onboarding calls are hard to schedule."
)


def _run_key(record_id):
    return f"ExtractBusinessFacts:{record_id}"


# ------------------------------------------------------------------
# Stage
# ------------------------------------------------------------------

def test_extracts_facts(repo, services, generation, make_knowledge):
    generation.reply = lambda task, system, user: {
        "facts": [
            {"text": "Churn dropped 12% after weekly digests.", "type": "stat", "confidence": 90},
            {"text": "Founders believe cold email is dead.", "type": "belief", "confidence": 0.7},
            {"text": "Onboarding calls are hard to schedule.", "type": "pain_point"},
        ]
    }
    record = make_knowledge(TEXT)

    assert FactExtractorStage(repo, services).run(record.id) == "completed"

    [call] = generation.calls_for("extract_business_facts")
    assert call["schema"] == "business_facts_v1"
    assert json.loads(call["user"]) == {"text": TEXT}
    facts = repo.list_business_facts(record_id=record.id)
    assert [(f.type, f.confidence) for f in facts] == [
        ("stat", 0.9),
        ("belief", 0.7),
        ("pain_point", 0.8),
    ]
    assert all(f.organization_id == "org-1" for f in facts)
    assert services.runlog.statuses(_run_key(record.id)) == ["completed"]
    assert services.runlog.flushed[-1]["details"] == {"facts": 3}


def test_keeps_at_most_three(repo, services, generation, make_knowledge):
    generation.reply = lambda task, system, user: {
        "facts": [{"text": f"Fact {i}."} for i in range(5)]
    }
    record = make_knowledge(TEXT)

    FactExtractorStage(repo, services).run(record.id)

    assert [f.text for f in repo.list_business_facts(record_id=record.id)] == [
        "Fact 0.",
        "Fact 1.",
        "Fact 2.",
    ]


def test_long_text_is_truncated(repo, services, generation, make_knowledge):
    record = make_knowledge("word " * 1000)

    FactExtractorStage(repo, services).run(record.id)

    [call] = generation.calls_for("extract_business_facts")
    assert len(json.loads(call["user"])["text"]) == 2000


def test_rerun_replaces_earlier_facts(repo, services, generation, make_knowledge):
    record = make_knowledge(TEXT)
    stage = FactExtractorStage(repo, services)
    stage.run(record.id)

    generation.reply = lambda task, system, user: {"facts": [{"text": "A newer fact."}]}
    stage.run(record.id)

    [fact] = repo.list_business_facts(record_id=record.id)
    assert fact.text == "A newer fact."


def test_empty_reply_clears_facts(repo, services, generation, make_knowledge):
    record = make_knowledge(TEXT)
    FactExtractorStage(repo, services).run(record.id)

    generation.reply = lambda task, system, user: {"facts": []}

    assert FactExtractorStage(repo, services).run(record.id) == "completed"
    assert repo.count_business_facts(record.id) == 0


@pytest.mark.parametrize("text", ["", "   "])
def test_blank_record_is_skipped(repo, services, generation, make_knowledge, text):
    record = make_knowledge(text)

    assert FactExtractorStage(repo, services).run(record.id) == "skipped"
    assert generation.calls == []
    assert services.runlog.flushed[-1]["details"] == {"reason": "no_item_or_text"}


def test_missing_record_is_skipped(repo, services):
    assert FactExtractorStage(repo, services).run("nope") == "skipped"
    assert services.runlog.statuses(_run_key("nope")) == ["skipped"]


def test_llm_error_is_recorded_not_raised(repo, services, generation, make_knowledge):
    def fail(task, system, user):
        raise RuntimeError("rate limited")

    generation.reply = fail
    record = make_knowledge(TEXT)

    assert FactExtractorStage(repo, services).run(record.id) == "llm_error"
    assert repo.count_business_facts(record.id) == 0
    assert services.runlog.flushed[-1]["details"] == {"error": "rate limited"}


def test_persist_failure_keeps_old_facts_and_raises(repo, services, make_knowledge, monkeypatch):
    record = make_knowledge(TEXT)
    repo.add_business_fact(
        BusinessFact(id="old", organization_id="org-1", text="Old.", source_knowledge_record_id=record.id)
    )

    def locked(fact):
        raise RuntimeError("database is locked")

    monkeypatch.setattr(repo, "add_business_fact", locked)

    with pytest.raises(RuntimeError, match="database is locked"):
        FactExtractorStage(repo, services).run(record.id)

    assert [f.id for f in repo.list_business_facts(record_id=record.id)] == ["old"]
    assert services.runlog.statuses(_run_key(record.id)) == ["error"]


# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------

@pytest.mark.parametrize(
    ("data", "expected"),
    [
        ({"text": "One."}, [{"text": "One."}]),
        ({"facts": [{"text": "A."}]}, [{"text": "A."}]),
        ([{"text": "B."}], [{"text": "B."}]),
        ({"facts": "nope"}, []),
        ("text", []),
        (None, []),
    ],
)
def test_coerce_facts(data, expected):
    assert coerce_facts(data) == expected


def test_sanitize_fact_defaults():
    assert sanitize_fact({"text": "  Trimmed.  ", "type": "opinion"}) == {
        "text": "Trimmed.",
        "type": "general",
        "confidence": 0.8,
    }


@pytest.mark.parametrize(
    ("confidence", "expected"),
    [(85, 0.85), (0.4, 0.4), (250, 1.0), (-3, 0.0), ("n/a", 0.8)],
)
def test_sanitize_fact_confidence(confidence, expected):
    assert sanitize_fact({"text": "x", "confidence": confidence})["confidence"] == pytest.approx(expected)


@pytest.mark.parametrize("item", [None, "text", {"text": ""}, {"type": "stat"}])
def test_sanitize_fact_rejects(item):
    assert sanitize_fact(item) is None
