"""Chunk construction: preflight, format detection, strategies and the coordinator."""

from kcompiler.chunking.coordinator import (
    ChunkingCoordinator,
    ChunkingResult,
    map_time_horizon,
    sanitize_authority,
)
from kcompiler.chunking.format_detector import detect_format
from kcompiler.chunking.preflight import ChunkingPreflight, PreflightResult
from kcompiler.chunking.router import select_strategy

__all__ = [
    "ChunkingCoordinator",
    "ChunkingResult",
    "ChunkingPreflight",
    "PreflightResult",
    "detect_format",
    "select_strategy",
    "map_time_horizon",
    "sanitize_authority",
]
