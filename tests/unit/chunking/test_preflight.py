"""Tests for the raw-text chunking preflight."""

from __future__ import annotations

import pytest

from kcompiler.chunking.preflight import ChunkingPreflight


@pytest.mark.parametrize("text,reason", [
    (None, "empty_after_clean"),
    ("   \n ", "empty_after_clean"),
    ("https://example.com/some/path", "url_only"),
    ("A short note.", "below_min_chars"),
    ("x" * 90, "below_min_tokens"),
])
def test_preflight_rejections(text, reason):
    result = ChunkingPreflight().check(text)
    assert result.eligible is False
    assert result.skip_reason == reason


def test_preflight_eligible_metrics():
    text = " ".join(["word"] * 25) + " see https://example.com"
    result = ChunkingPreflight().check(text)
    assert result.eligible is True
    assert result.skip_reason is None
    assert result.metrics["contains_url"] is True
    assert result.metrics["is_url_only"] is False
    assert result.metrics["clean_tokens_est"] == 27


def test_preflight_thresholds_configurable():
    assert ChunkingPreflight(min_clean_chars=5, min_clean_tokens=2).check("Two words").eligible
