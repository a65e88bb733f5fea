"""
CoverCheck - Query Coverage Analyzer

Scores how well a document's chunks cover a set of search queries, streams
the analysis stage by stage, and turns the results into a coverage
worklist of ready and gap queries.
"""

from covercheck.core.assignment import assign_queries_to_chunks
from covercheck.core.chunker import ChunkingConfig, chunk_markdown
from covercheck.core.coordinator import StreamingCoordinator
from covercheck.core.coverage import build_work_items, coverage_summary
from covercheck.core.models import (
    ChunkInput,
    ChunkScore,
    CoverageWorkItem,
    IntentType,
    Query,
    QueryStatus,
)
from covercheck.core.pipeline import AnalysisResult, PipelineState, reduce_event
from covercheck.core.similarity import cosine_similarity, passage_score

__version__ = "0.1.0"
__all__ = [
    # Scoring
    "cosine_similarity",
    "passage_score",
    "ChunkInput",
    "ChunkScore",
    "chunk_markdown",
    "ChunkingConfig",
    # Streaming pipeline
    "StreamingCoordinator",
    "PipelineState",
    "AnalysisResult",
    "reduce_event",
    # Coverage workflow
    "assign_queries_to_chunks",
    "build_work_items",
    "coverage_summary",
    "CoverageWorkItem",
    "IntentType",
    "Query",
    "QueryStatus",
]
