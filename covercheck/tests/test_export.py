"""Tests for DataFrame/CSV export."""

import pandas as pd
import pytest
from covercheck.core.coverage import build_work_items
from covercheck.core.diagnostics import diagnose_pair
from covercheck.core.events import ChunkScoreRow, CoverageMapEntry, QueryChunkScore
from covercheck.core.export import (
    CHUNK_SCORE_COLUMNS,
    COVERAGE_MAP_COLUMNS,
    DIAGNOSTIC_COLUMNS,
    WORK_ITEM_COLUMNS,
    chunk_scores_frame,
    coverage_map_frame,
    diagnostics_frame,
    work_items_frame,
    write_csv,
)
from covercheck.core.models import ChunkInput, ChunkScore, KeywordScore, SimilarityScores


ROWS = [
    ChunkScoreRow(
        chunk_index=0,
        chunk_id="chunk-0",
        heading="Shipping",
        scores=(
            QueryChunkScore(query="shipping time", cosine=0.81, passage_score=81.0),
            QueryChunkScore(query="refund window", cosine=0.22, passage_score=22.0),
        ),
        best_query="shipping time",
        best_score=81.0,
    ),
]


class TestFrames:
    """Tests for the frame builders."""

    def test_chunk_scores_long_format(self):
        """One row per (chunk, query) pair."""
        frame = chunk_scores_frame(ROWS)
        assert list(frame.columns) == CHUNK_SCORE_COLUMNS
        assert len(frame) == 2
        assert frame.loc[0, "passage_score"] == pytest.approx(81.0)
        assert list(frame["is_best_query"]) == [True, False]

    def test_coverage_map(self):
        """Coverage map entries flatten one-to-one."""
        entries = [CoverageMapEntry("refund window", 1, "Refunds", 48.0, "gap")]
        frame = coverage_map_frame(entries)
        assert list(frame.columns) == COVERAGE_MAP_COLUMNS
        assert frame.loc[0, "status"] == "gap"

    def test_diagnostics_flattened(self):
        """Nested breakdowns become scalar columns."""
        record = diagnose_pair(0, "Refunds take 30 days.", "Refunds take 30 days.",
                               ["Refunds"], "refund days", 0.7)
        frame = diagnostics_frame([record])
        assert list(frame.columns) == DIAGNOSTIC_COLUMNS
        assert frame.loc[0, "lexical"] == pytest.approx(record.lexical.score)
        assert frame.loc[0, "quotability"] == pytest.approx(record.citation.quotability)

    def test_work_items(self):
        """Enums become strings; missing chunks become empty cells."""
        chunks = [ChunkInput(id="chunk-0", index=0, text="Orders ship fast.",
                             heading_path=["Shipping"])]
        scores = [ChunkScore(0, "chunk-0", chunks[0].text, 3, 17, [
            KeywordScore("shipping time", SimilarityScores(cosine=0.8, passage_score=80)),
            KeywordScore("warranty", SimilarityScores(cosine=0.1, passage_score=10)),
        ])]
        items = build_work_items(["shipping time", "warranty"], scores, chunks)
        frame = work_items_frame(items)
        assert list(frame.columns) == WORK_ITEM_COLUMNS
        assert list(frame["status"]) == ["ready", "gap"]
        assert frame.loc[0, "assigned_chunk_heading"] == "Shipping"
        assert pd.isna(frame.loc[1, "assigned_chunk_index"])
        assert frame.loc[1, "suggested_placement"] == "Shipping"

    @pytest.mark.parametrize("builder,columns", [
        (chunk_scores_frame, CHUNK_SCORE_COLUMNS),
        (coverage_map_frame, COVERAGE_MAP_COLUMNS),
        (diagnostics_frame, DIAGNOSTIC_COLUMNS),
        (work_items_frame, WORK_ITEM_COLUMNS),
    ])
    def test_empty_input_keeps_columns(self, builder, columns):
        """Column sets are stable even with no rows."""
        frame = builder([])
        assert list(frame.columns) == columns
        assert frame.empty


class TestWriteCsv:
    """Tests for write_csv."""

    def test_writes_without_index(self, tmp_path):
        """The CSV header is the column list."""
        path = write_csv(chunk_scores_frame(ROWS), tmp_path / "scores.csv")
        assert path.exists()
        header = path.read_text().splitlines()[0]
        assert header == ",".join(CHUNK_SCORE_COLUMNS)
        assert len(pd.read_csv(path)) == 2
