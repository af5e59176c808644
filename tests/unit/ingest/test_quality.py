"""Tests for the heuristic quality report."""

from __future__ import annotations

import pytest

from kcompiler.ingest.quality import QualityScorer

_COMPONENTS = ("signal_density", "redundancy", "specificity", "extractability", "embedding_coverage")


def test_report_shape_and_bounds():
    report = QualityScorer().score(
        "Acme grew MRR by 40% in 2023. Churn fell to 2% after the Beta launch.\n\n"
        "- Retention improved\n- ROI doubled"
    )
    for name in (*_COMPONENTS, "overall"):
        assert 0.0 <= report[name] <= 1.0, name
    assert report["stats"]["sentences"] >= 2


def test_overall_is_weighted_sum():
    report = QualityScorer().score("Acme reported 12 new users in March. The team launched SaaS pricing.")
    expected = (
        0.30 * report["signal_density"]
        + 0.20 * (1 - report["redundancy"])
        + 0.20 * report["specificity"]
        + 0.20 * report["extractability"]
        + 0.10 * report["embedding_coverage"]
    )
    assert report["overall"] == pytest.approx(expected, abs=1e-3)


def test_empty_text():
    report = QualityScorer().score("")
    assert report["redundancy"] == 0.0
    assert report["embedding_coverage"] == 0.0
    assert "too_short" in report["warnings"]
    assert "low_specificity" in report["warnings"]


def test_redundant_content_warning():
    report = QualityScorer().score("Buy now. Buy now. Buy now. Buy now.")
    assert report["redundancy"] == pytest.approx(0.75)
    assert "redundant_content" in report["warnings"]


def test_long_text_has_no_short_warning():
    text = " ".join(f"Sentence number {i} talks about Acme." for i in range(40))
    assert "too_short" not in QualityScorer().score(text)["warnings"]
