"""Tests for vector search over embedded chunks."""

from __future__ import annotations

import uuid

from kcompiler.db.models import Chunk
from kcompiler.llm.embeddings import DeterministicEmbeddingService
from kcompiler.pipeline.embedder import EmbedderStage
from kcompiler.search import search

TEXTS = [
    "Weekly publishing builds trust with an audience.",
    "Long-form posts drive more organic search traffic.",
    "Pricing pages convert better with annual discounts.",
]


def _embedded_record(repo, services, make_knowledge, make_control):
    record = make_knowledge("raw")
    for text in TEXTS:
        repo.add_chunk(
            Chunk(
                id=str(uuid.uuid4()),
                knowledge_record_id=record.id,
                organization_id=record.organization_id,
                chunk_text=text,
                source_variant="normalized",
                chunk_role="strategic_claim",
            )
        )
    EmbedderStage(repo, services).run(record.id, make_control())
    return record


def test_exact_text_ranks_first(repo, services, embeddings, make_knowledge, make_control):
    _embedded_record(repo, services, make_knowledge, make_control)

    hits = search(repo, embeddings, TEXTS[1], limit=2)

    assert len(hits) == 2
    assert hits[0].chunk.chunk_text == TEXTS[1]
    assert hits[0].distance == 0.0
    assert hits[0].distance <= hits[1].distance


def test_empty_query(repo, services, embeddings, make_knowledge, make_control):
    _embedded_record(repo, services, make_knowledge, make_control)
    assert search(repo, embeddings, "   ") == []


def test_model_without_vectors(repo, services, make_knowledge, make_control):
    _embedded_record(repo, services, make_knowledge, make_control)
    other = DeterministicEmbeddingService(dimensions=8, model="other/model")
    assert search(repo, other, TEXTS[0]) == []
