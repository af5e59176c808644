"""Collaborators shared by the pipeline stages."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol

from kcompiler.config import KcompilerConfig
from kcompiler.events import EventBus
from kcompiler.ingest.quality import QualityScorer
from kcompiler.llm.client import GenerationService, LiteLLMGenerationService
from kcompiler.llm.embeddings import (
    DeterministicEmbeddingService,
    EmbeddingService,
    LiteLLMEmbeddingService,
)
from kcompiler.runlog import RunLogger

TASK_PROCESS = "process"
TASK_NORMALIZE = "normalize"
TASK_CHUNK = "chunk"
TASK_CLASSIFY = "classify"
TASK_EMBED = "embed"
TASK_EXTRACT_FACTS = "extract_facts"

# task name -> (max_tries, retry delay seconds)
TASK_BUDGETS: dict[str, tuple[int, float]] = {
    TASK_PROCESS: (1, 0.0),
    TASK_NORMALIZE: (3, 10.0),
    TASK_CHUNK: (3, 10.0),
    TASK_CLASSIFY: (5, 20.0),
    TASK_EMBED: (25, 10.0),
    TASK_EXTRACT_FACTS: (3, 10.0),
}


class StageControl(Protocol):
    """What a stage may ask of the task running it.

    ``release`` retries the same task after *delay* seconds and spends one
    attempt; ``dispatch`` hands the work to a fresh task with a new budget.
    """

    @property
    def attempts(self) -> int: ...

    def release(self, delay: float) -> None: ...

    def dispatch(
        self, task: str, payload: dict[str, Any] | None = None, delay: float = 0.0
    ) -> None: ...


@dataclass
class PipelineServices:
    """Request-scoped dependencies handed to every stage.

    ``strict`` raises invariant violations that production mode only logs;
    it is on whenever ``config.debug`` is.
    """

    config: KcompilerConfig
    generation: GenerationService
    embeddings: EmbeddingService
    runlog: RunLogger = field(default_factory=RunLogger)
    events: EventBus = field(default_factory=EventBus)
    quality: QualityScorer = field(default_factory=QualityScorer)
    strict: bool = False

    @property
    def debug(self) -> bool:
        return self.config.debug

    @property
    def fail_loud(self) -> bool:
        return self.strict or self.config.debug


def create_services(
    config: KcompilerConfig,
    *,
    offline_embeddings: bool = False,
    run_log_dir: Path | str | None = None,
) -> PipelineServices:
    """Build LiteLLM-backed services from *config*.

    Args:
        config: Loaded configuration.
        offline_embeddings: Use DeterministicEmbeddingService instead of the
            configured embedding model.
        run_log_dir: Override ``config.logging.run_log_dir``.
    """
    generation = LiteLLMGenerationService(
        config.generation.model, num_retries=config.generation.num_retries
    )
    if offline_embeddings:
        embeddings: EmbeddingService = DeterministicEmbeddingService(config.embedding.dimensions)
    else:
        embeddings = LiteLLMEmbeddingService(
            config.embedding.model,
            dimensions=config.embedding.dimensions,
            num_retries=config.generation.num_retries,
        )
    log_dir = run_log_dir if run_log_dir is not None else config.logging.run_log_dir
    return PipelineServices(
        config=config,
        generation=generation,
        embeddings=embeddings,
        runlog=RunLogger(log_dir),
    )
