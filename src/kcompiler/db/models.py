"""Domain models for the knowledge base database layer."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

# Ingestion record lifecycle.
STATUS_PENDING = "pending"
STATUS_PROCESSING = "processing"
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"

DEDUP_REASON_DUPLICATE = "knowledge_item_duplicate"

ORIGIN_EVAL_HARNESS = "eval_harness"

VARIANT_RAW = "raw"
VARIANT_NORMALIZED = "normalized"

# Chunking outcome recorded on the knowledge record.
CHUNKING_COMPLETED = "completed"
CHUNKING_NO_VALID_ARTIFACTS = "no_valid_artifacts"
CHUNKING_FAILED = "failed"

CHUNK_ROLES: tuple[str, ...] = (
    "belief_high",
    "belief_medium",
    "definition",
    "heuristic",
    "strategic_claim",
    "causal_claim",
    "instruction",
    "metric",
    "example",
    "quote",
    "other",
)
AUTHORITIES: tuple[str, ...] = ("high", "medium", "low")
TIME_HORIZONS: tuple[str, ...] = ("current", "near_term", "long_term", "unknown")

# Roles never selected for embedding.
NON_EMBEDDABLE_ROLES: tuple[str, ...] = ("quote", "other")

FACT_TYPES: tuple[str, ...] = ("pain_point", "belief", "stat", "general")


def _loads(value: str | None, default: Any) -> Any:
    if not value:
        return default
    try:
        return json.loads(value)
    except ValueError:
        return default


def chunk_kind_from_role(role: str | None) -> str:
    """Map a chunk role to its retrieval kind (fact | angle | example | quote)."""
    role = (role or "").strip()
    if role in ("definition", "metric", "causal_claim"):
        return "fact"
    if role in ("belief_high", "belief_medium", "strategic_claim", "heuristic"):
        return "angle"
    if role == "example":
        return "example"
    if role == "quote":
        return "quote"
    return "fact"


@dataclass
class Bookmark:
    id: str
    organization_id: str
    url: str = ""
    title: str = ""
    description: str = ""
    user_id: str | None = None
    platform: str | None = None
    created_at: str | None = None


@dataclass
class IngestionRecord:
    id: str
    organization_id: str
    source_type: str
    user_id: str | None = None
    source_id: str | None = None
    origin: str | None = None
    title: str | None = None
    raw_text: str | None = None
    metadata: str | None = None
    dedup_hash: str | None = None
    status: str = STATUS_PENDING
    dedup_reason: str | None = None
    error: str | None = None
    quality_score: float | None = None
    quality: str | None = None
    knowledge_record_id: str | None = None
    created_at: str | None = None
    updated_at: str | None = None

    @property
    def metadata_dict(self) -> dict:
        data = _loads(self.metadata, {})
        return data if isinstance(data, dict) else {}

    @property
    def evaluation_run_id(self) -> str:
        return str(self.metadata_dict.get("evaluation_run_id") or "")

    @property
    def is_eval_harness(self) -> bool:
        return (self.origin or "") == ORIGIN_EVAL_HARNESS


@dataclass
class KnowledgeRecord:
    id: str
    organization_id: str
    raw_text: str
    raw_text_sha256: str
    user_id: str | None = None
    ingestion_record_id: str | None = None
    type: str = "note"
    source: str = "manual"
    source_ref_id: str | None = None
    title: str | None = None
    metadata: str | None = None
    confidence: float | None = None
    normalized_claims: str | None = None
    chunking_status: str | None = None
    chunking_error_code: str | None = None
    chunking_error_message: str | None = None
    chunking_metrics: str | None = None
    ingested_at: str | None = None
    created_at: str | None = None
    updated_at: str | None = None

    @property
    def normalized_claims_dict(self) -> dict:
        data = _loads(self.normalized_claims, {})
        return data if isinstance(data, dict) else {}

    @property
    def artifacts(self) -> list[dict]:
        """Claim artifacts from the normalized_claims payload (may be empty)."""
        artifacts = self.normalized_claims_dict.get("artifacts")
        if not isinstance(artifacts, list):
            return []
        return [a for a in artifacts if isinstance(a, dict)]

    @property
    def chunking_metrics_dict(self) -> dict:
        data = _loads(self.chunking_metrics, {})
        return data if isinstance(data, dict) else {}


@dataclass
class Chunk:
    knowledge_record_id: str
    organization_id: str
    chunk_text: str
    id: str = ""
    chunk_type: str = "normalized_knowledge"
    source_type: str | None = None
    source_variant: str = VARIANT_RAW
    chunk_role: str | None = None
    chunk_kind: str | None = None
    authority: str | None = None
    confidence: float | None = None
    time_horizon: str = "unknown"
    domain: str | None = None
    actor: str | None = None
    tags: str = field(default_factory=lambda: "{}")
    token_count: int = 0
    source_text: str | None = None
    transformation_type: str | None = None
    embedding_vec: str | None = None
    embedding_model: str | None = None
    created_at: str | None = None
    rowid: int | None = None  # set after insert; None for unsaved chunks

    @property
    def tags_dict(self) -> dict:
        data = _loads(self.tags, {})
        return data if isinstance(data, dict) else {}


@dataclass
class LlmOutput:
    id: str
    knowledge_record_id: str
    prompt_hash: str
    raw_output: str = "{}"
    model: str | None = None
    parsed_output: str | None = None
    created_at: str | None = None


@dataclass
class BusinessFact:
    """A short fact pulled from a knowledge record (pain point, belief or stat)."""

    id: str
    organization_id: str
    text: str
    type: str = "general"
    confidence: float = 0.8
    user_id: str | None = None
    source_knowledge_record_id: str | None = None
    created_at: str | None = None
