"""
Core scoring and coverage engine.

This package provides the foundational logic for:
- Similarity metrics and score tiers
- Query-to-chunk assignment and coverage work items
- The streaming analysis pipeline (events, reducer, coordinator)
- The local scoring backend and its diagnostics
"""

from covercheck.core.similarity import (
    calculate_all_metrics,
    chamfer_similarity,
    cosine_similarity,
    passage_score,
)
from covercheck.core.tiers import ScoreTier, passage_score_tier, score_quality
from covercheck.core.assignment import assign_queries_to_chunks
from covercheck.core.coverage import build_work_items
from covercheck.core.events import parse_event, encode_sse, SSEDecoder
from covercheck.core.pipeline import PipelineState, initial_state, reduce_event
from covercheck.core.coordinator import StreamingCoordinator, CoordinatorBusyError

__all__ = [
    # Metrics
    "cosine_similarity",
    "calculate_all_metrics",
    "chamfer_similarity",
    "passage_score",
    "ScoreTier",
    "passage_score_tier",
    "score_quality",
    # Coverage
    "assign_queries_to_chunks",
    "build_work_items",
    # Streaming
    "parse_event",
    "encode_sse",
    "SSEDecoder",
    "PipelineState",
    "initial_state",
    "reduce_event",
    "StreamingCoordinator",
    "CoordinatorBusyError",
]
