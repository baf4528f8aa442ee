"""Comparison pipeline: fingerprint, match, extract and summarize two documents."""
from pipeline.compare_documents import (
    compare_documents,
    compare_pdfs,
    ComparisonPipeline,
    PipelineConfig,
)

__all__ = [
    "compare_documents",
    "compare_pdfs",
    "ComparisonPipeline",
    "PipelineConfig",
]
