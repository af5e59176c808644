"""Generation and embedding service clients."""

from kcompiler.llm.client import (
    GenerationService,
    LiteLLMGenerationService,
    validate_api_key,
)
from kcompiler.llm.embeddings import (
    DeterministicEmbeddingService,
    EmbeddingService,
    LiteLLMEmbeddingService,
    fit_dimensions,
)

__all__ = [
    "GenerationService",
    "LiteLLMGenerationService",
    "validate_api_key",
    "EmbeddingService",
    "LiteLLMEmbeddingService",
    "DeterministicEmbeddingService",
    "fit_dimensions",
]
