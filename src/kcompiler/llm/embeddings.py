"""Embedding services: LiteLLM-backed and a deterministic offline variant."""

from __future__ import annotations

import zlib
from typing import Protocol

import litellm


class EmbeddingService(Protocol):
    model: str
    dimensions: int

    def embed_many(self, texts: list[str]) -> list[list[float]]: ...

    def embed_one(self, text: str) -> list[float]: ...


def fit_dimensions(vector: list[float], dimensions: int) -> list[float]:
    """Pad with zeros or truncate *vector* to exactly *dimensions* entries.

    An empty vector stays empty so callers can detect a missing embedding.
    """
    if not vector:
        return []
    if len(vector) >= dimensions:
        return [float(v) for v in vector[:dimensions]]
    return [float(v) for v in vector] + [0.0] * (dimensions - len(vector))


class LiteLLMEmbeddingService:
    """EmbeddingService backed by ``litellm.embedding``.

    Args:
        model: LiteLLM embedding model string (provider/model format).
        dimensions: Length every returned vector is fitted to.
        num_retries: Number of retries on transient errors.
    """

    def __init__(self, model: str, dimensions: int = 1536, num_retries: int = 3) -> None:
        self.model = model
        self.dimensions = dimensions
        self.num_retries = num_retries

    def embed_many(self, texts: list[str]) -> list[list[float]]:
        """Embed *texts* in one request. Output order matches input order.

        Provider exceptions propagate so the calling task can retry.
        """
        if not texts:
            return []
        response = litellm.embedding(
            model=self.model,
            input=texts,
            num_retries=self.num_retries,
        )
        vectors: list[list[float]] = []
        for item in response.data:
            raw = item["embedding"] if isinstance(item, dict) else getattr(item, "embedding", None)
            vectors.append(fit_dimensions(list(raw or []), self.dimensions))
        return vectors

    def embed_one(self, text: str) -> list[float]:
        result = self.embed_many([text])
        return result[0] if result else []


class DeterministicEmbeddingService:
    """Stable pseudo-embeddings derived from crc32, for offline and eval runs."""

    def __init__(self, dimensions: int = 1536, model: str = "deterministic/crc32") -> None:
        self.model = model
        self.dimensions = dimensions

    def embed_one(self, text: str) -> list[float]:
        return [
            (zlib.crc32(f"{text}|{i}".encode("utf-8")) / 0xFFFFFFFF) * 2.0 - 1.0
            for i in range(self.dimensions)
        ]

    def embed_many(self, texts: list[str]) -> list[list[float]]:
        return [self.embed_one(t) for t in texts]
