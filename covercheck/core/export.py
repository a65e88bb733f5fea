"""
Columnar export of analysis results.

Each function flattens one result collection into a pandas DataFrame with
stable snake_case columns and scalar cells, ready for CSV. Column order
is fixed by the *_COLUMNS constants so downstream spreadsheets don't
break when a run happens to be empty.
"""

from pathlib import Path
from typing import Sequence, Union

import pandas as pd

from covercheck.core.events import ChunkScoreRow, CoverageMapEntry, DiagnosticRecord
from covercheck.core.models import CoverageWorkItem


CHUNK_SCORE_COLUMNS = [
    "chunk_index", "chunk_id", "heading", "query", "cosine", "passage_score",
    "is_best_query",
]

COVERAGE_MAP_COLUMNS = [
    "query", "best_chunk_index", "best_chunk_heading", "score", "status",
]

DIAGNOSTIC_COLUMNS = [
    "chunk_index", "query", "semantic",
    "lexical", "term_coverage", "exact_phrase_match",
    "rerank", "entity_prominence", "direct_answer",
    "citation", "specificity", "quotability",
    "composite",
]

WORK_ITEM_COLUMNS = [
    "id", "query", "intent_type", "status", "is_gap", "is_approved",
    "assigned_chunk_index", "assigned_chunk_heading",
    "original_passage_score", "current_passage_score",
    "suggested_placement", "suggested_heading_level",
]


def chunk_scores_frame(rows: Sequence[ChunkScoreRow]) -> pd.DataFrame:
    """One row per (chunk, query) pair, in chunk then query order."""
    records = []
    for row in rows:
        for score in row.scores:
            records.append({
                "chunk_index": row.chunk_index,
                "chunk_id": row.chunk_id,
                "heading": row.heading,
                "query": score.query,
                "cosine": score.cosine,
                "passage_score": score.passage_score,
                "is_best_query": score.query == row.best_query,
            })
    return pd.DataFrame(records, columns=CHUNK_SCORE_COLUMNS)


def coverage_map_frame(entries: Sequence[CoverageMapEntry]) -> pd.DataFrame:
    records = [
        {
            "query": e.query,
            "best_chunk_index": e.best_chunk_index,
            "best_chunk_heading": e.best_chunk_heading,
            "score": e.score,
            "status": e.status,
        }
        for e in entries
    ]
    return pd.DataFrame(records, columns=COVERAGE_MAP_COLUMNS)


def diagnostics_frame(records: Sequence[DiagnosticRecord]) -> pd.DataFrame:
    """Diagnostic breakdowns with their sub-scores flattened into columns."""
    rows = [
        {
            "chunk_index": d.chunk_index,
            "query": d.query,
            "semantic": d.semantic,
            "lexical": d.lexical.score,
            "term_coverage": d.lexical.term_coverage,
            "exact_phrase_match": d.lexical.exact_phrase_match,
            "rerank": d.rerank.score,
            "entity_prominence": d.rerank.entity_prominence,
            "direct_answer": d.rerank.direct_answer,
            "citation": d.citation.score,
            "specificity": d.citation.specificity,
            "quotability": d.citation.quotability,
            "composite": d.composite,
        }
        for d in records
    ]
    return pd.DataFrame(rows, columns=DIAGNOSTIC_COLUMNS)


def work_items_frame(items: Sequence[CoverageWorkItem]) -> pd.DataFrame:
    """
    Coverage work items, one row each.

    Enum fields are written as their string values; missing chunks and
    scores become empty cells.
    """
    rows = []
    for item in items:
        chunk = item.assigned_chunk
        rows.append({
            "id": item.id,
            "query": item.query,
            "intent_type": item.intent_type.value,
            "status": item.status.value,
            "is_gap": item.is_gap,
            "is_approved": item.is_approved,
            "assigned_chunk_index": chunk.index if chunk else None,
            "assigned_chunk_heading": chunk.heading if chunk else None,
            "original_passage_score": (
                item.original_scores.passage_score if item.original_scores else None
            ),
            "current_passage_score": (
                item.current_scores.passage_score if item.current_scores else None
            ),
            "suggested_placement": item.suggested_placement,
            "suggested_heading_level": item.suggested_heading_level,
        })
    return pd.DataFrame(rows, columns=WORK_ITEM_COLUMNS)


def write_csv(frame: pd.DataFrame, path: Union[str, Path]) -> Path:
    """Write a frame to CSV without the index; returns the path written."""
    path = Path(path)
    frame.to_csv(path, index=False)
    return path
