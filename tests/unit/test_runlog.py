"""Tests for the per-stage run log."""

from __future__ import annotations

import json

from kcompiler.runlog import RunLogger


def test_flush_exactly_once():
    runlog = RunLogger()
    run = runlog.start("ChunkKnowledgeRecord", "kr-1")
    assert run.flush("completed", {"chunks_created": 2}) is True
    assert run.flush("error") is False
    assert runlog.statuses("ChunkKnowledgeRecord:kr-1") == ["completed"]
    assert runlog.flushed[0]["details"] == {"chunks_created": 2}


def test_capture_ignored_after_flush():
    runlog = RunLogger()
    run = runlog.start("EmbedKnowledgeChunks", "kr-1")
    run.capture("embedding.batch", {"count": 3})
    run.flush("completed")
    run.capture("late")
    assert [c["name"] for c in runlog.flushed[0]["captures"]] == ["embedding.batch"]


def test_context_is_recorded():
    runlog = RunLogger()
    runlog.start("NormalizeKnowledgeRecord", "kr-1", {"org": "o"}).flush("completed")
    assert runlog.flushed[0]["context"] == {"org": "o"}
    assert runlog.flushed[0]["run"] == "NormalizeKnowledgeRecord:kr-1"


def test_writes_jsonl(tmp_path):
    runlog = RunLogger(tmp_path / "runs")
    runlog.start("A", "1").flush("completed")
    runlog.start("A", "2").flush("error")
    files = list((tmp_path / "runs").glob("runs-*.jsonl"))
    assert len(files) == 1
    lines = [json.loads(line) for line in files[0].read_text(encoding="utf-8").splitlines()]
    assert [entry["status"] for entry in lines] == ["completed", "error"]


def test_memory_buffer_keeps_only_recent_runs(tmp_path):
    runlog = RunLogger(tmp_path / "runs", keep=2)
    for i in range(5):
        runlog.start("A", str(i)).flush("completed")
    assert [entry["run"] for entry in runlog.flushed] == ["A:3", "A:4"]
    assert runlog.statuses("A:0") == []
    [path] = (tmp_path / "runs").glob("runs-*.jsonl")
    assert len(path.read_text(encoding="utf-8").splitlines()) == 5
