from docingest.pipeline.context import PipelineContext, build_context
from docingest.pipeline.coordinator import IngestionPipeline, ingest, remove
from docingest.pipeline.types import DocumentOutcome, DocumentState, IngestionRun

__all__ = [
    "DocumentOutcome",
    "DocumentState",
    "IngestionPipeline",
    "IngestionRun",
    "PipelineContext",
    "build_context",
    "ingest",
    "remove",
]
