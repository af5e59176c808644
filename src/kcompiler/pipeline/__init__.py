"""Knowledge compilation stages and their sequencing."""

from kcompiler.pipeline.entry import process
from kcompiler.pipeline.sequencer import dispatch_pipeline, run_pipeline_sync
from kcompiler.pipeline.services import TASK_BUDGETS, PipelineServices, create_services
from kcompiler.pipeline.tasks import submit_ingestion

__all__ = [
    "PipelineServices",
    "TASK_BUDGETS",
    "create_services",
    "dispatch_pipeline",
    "process",
    "run_pipeline_sync",
    "submit_ingestion",
]
