"""Numeric list → metric data points."""

from __future__ import annotations

import re
from typing import Any

from kcompiler.chunking.strategies.base import ChunkCandidate, ChunkingStrategy

# "2014 = $450/mo", "2015 = $1,500/mo (launched v2)"
_YEAR_VALUE_RE = re.compile(
    r"^(\d{4})\s*=\s*\$?([\d,]+(?:\.\d+)?)(/mo|/month|k|m)?\s*(\(.*?\))?", re.IGNORECASE
)
# "1. Item", "2) Item"
_INDEXED_RE = re.compile(r"^(\d+)[).]?\s+(.+)$")


class ListToDataPointsStrategy(ChunkingStrategy):
    """Emit one summary metric chunk plus one metric chunk per parsed line."""

    name = "ListToDataPointsStrategy"

    def generate(self, text: str) -> list[ChunkCandidate]:
        points = [p for p in (self._parse_line(line) for line in self._lines(text)) if p]
        if not points:
            return []

        summary = self._summary(points)
        candidates = [
            ChunkCandidate(
                text=summary,
                role="metric",
                authority="medium",
                confidence=0.8,
                source_text=text[:500],
                transformation_type="normalized",
                metadata={"source_span": {"start": 0, "end": len(text), "basis": "raw_text"}},
            )
        ]
        for point in points:
            candidates.append(
                ChunkCandidate(
                    text=self._format(point),
                    role="metric",
                    authority="medium",
                    confidence=0.7,
                    source_text=point["raw_line"],
                    transformation_type="extractive",
                    metadata={"data_type": "time_series", "fields": point["fields"]},
                )
            )
        return candidates

    @staticmethod
    def _parse_line(line: str) -> dict[str, Any] | None:
        m = _YEAR_VALUE_RE.match(line)
        if m:
            value = m.group(2) + (m.group(3) or "")
            note = m.group(4).strip("()") if m.group(4) else None
            return {
                "year": int(m.group(1)),
                "value": value,
                "note": note,
                "raw_line": line,
                "fields": {"year": int(m.group(1)), "value": value, "period": "monthly"},
            }
        m = _INDEXED_RE.match(line)
        if m:
            return {
                "index": int(m.group(1)),
                "value": m.group(2),
                "raw_line": line,
                "fields": {"index": int(m.group(1)), "value": m.group(2)},
            }
        return None

    @staticmethod
    def _summary(points: list[dict[str, Any]]) -> str:
        if "year" in points[0]:
            years = [p["year"] for p in points if "year" in p]
            first, last = min(years), max(years)
            return (
                f"Revenue/metrics timeline from {first} to {last} showing "
                f"{len(points)} data points across {last - first + 1}-year period"
            )
        return f"Numeric list with {len(points)} data points"

    @staticmethod
    def _format(point: dict[str, Any]) -> str:
        if "year" in point:
            text = f"In {point['year']}: {point['value']}"
            if point.get("note"):
                text += f" ({point['note']})"
            return text
        return f"{point['index']}. {point['value']}"
