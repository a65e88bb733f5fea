"""Tests for typed pipeline events and the SSE codec."""

import json

import pytest
from covercheck.core.events import (
    AnalysisSummary,
    ChunkScoredEvent,
    CompleteEvent,
    CoverageSummary,
    DocumentAggregateEvent,
    ErrorEvent,
    EventParseError,
    SSEDecoder,
    StageStatus,
    StartedEvent,
    StepCompleteEvent,
    StepStartedEvent,
    encode_sse,
    iter_frames,
    parse_event,
)
from covercheck.core.pipeline import INITIAL_STAGES


class TestParseEvent:
    """Tests for parse_event."""

    def test_camel_case_payload(self):
        """camelCase wire keys map onto snake_case fields."""
        event = parse_event("chunk_scored", json.dumps({
            "chunkIndex": 2,
            "chunkId": "chunk-2",
            "heading": "Pricing",
            "bestQuery": "how much does it cost",
            "bestScore": 81,
            "scores": [{"query": "how much does it cost", "cosine": 0.81, "passageScore": 81}],
        }))
        assert isinstance(event, ChunkScoredEvent)
        assert event.chunk_index == 2
        assert event.best_score == pytest.approx(81.0)
        assert event.per_query_scores[0].cosine == pytest.approx(0.81)

    def test_optional_fields_default(self):
        """Missing optional fields take their defaults."""
        event = parse_event("chunk_scored", {"chunkIndex": 0, "bestQuery": "q", "bestScore": 50})
        assert event.per_query_scores == ()
        assert event.heading == ""

    def test_started_with_steps(self):
        """Nested stage snapshots are decoded with their status enum."""
        event = parse_event("started", {
            "steps": [{"id": 1, "name": "Embedding Generation", "status": "pending"}],
            "totalChunks": 3,
        })
        assert isinstance(event, StartedEvent)
        assert event.steps[0].status == StageStatus.PENDING
        assert event.total_chunks == 3

    def test_step_complete_keeps_extra_fields(self):
        """Stage-specific totals are kept in payload."""
        event = parse_event("step_complete", {"step": 1, "name": "Embedding Generation",
                                              "totalEmbeddings": 12})
        assert isinstance(event, StepCompleteEvent)
        assert event.step == 1
        assert event.payload == {"totalEmbeddings": 12}

    def test_document_chamfer_alias(self):
        """The legacy aggregate event name is accepted."""
        event = parse_event("document_chamfer", {"score": 0.61, "interpretation": "good"})
        assert isinstance(event, DocumentAggregateEvent)
        assert event.kind == "document_aggregate"

    def test_complete_event(self):
        """The complete event decodes its summary, including documentChamfer."""
        event = parse_event("complete", {
            "summary": {
                "totalChunks": 1,
                "totalQueries": 1,
                "documentChamfer": 0.5,
                "coverage": {"covered": 1, "weak": 0, "gaps": 0, "totalQueries": 1},
                "avgPassageScore": 72.0,
            },
        })
        assert isinstance(event, CompleteEvent)
        assert event.summary.document_aggregate_score == pytest.approx(0.5)
        assert event.summary.coverage.covered == 1

    @pytest.mark.parametrize("name,data", [
        (None, "{}"),
        ("", "{}"),
        ("mystery", "{}"),
        ("error", "not json"),
        ("error", "[1, 2]"),
        ("error", "{}"),
        ("step_started", {"step": "three"}),
        ("step_complete", {"name": "no step"}),
    ])
    def test_malformed(self, name, data):
        """Unknown kinds and malformed payloads raise EventParseError."""
        with pytest.raises(EventParseError):
            parse_event(name, data)


class TestEncodeSse:
    """Tests for encode_sse."""

    def test_frame_format(self):
        """event line, data line, blank line."""
        frame = encode_sse(ErrorEvent(message="boom"))
        assert frame == 'event: error\ndata: {"message": "boom"}\n\n'

    def test_wire_names(self):
        """Encoded payloads use camelCase and aliased wire names."""
        summary = AnalysisSummary(
            total_chunks=1,
            total_queries=2,
            document_aggregate_score=0.4,
            coverage=CoverageSummary(covered=1, weak=0, gaps=1, total_queries=2),
            avg_passage_score=60.0,
        )
        payload = summary.to_payload()
        assert payload["documentChamfer"] == 0.4
        assert payload["coverage"]["totalQueries"] == 2

    def test_stage_status_encoded_as_value(self):
        """Enum values are written as plain strings."""
        payload = StartedEvent(steps=INITIAL_STAGES).to_payload()
        assert payload["steps"][0] == {"id": 1, "name": "Embedding Generation", "status": "pending"}


class TestSSEDecoder:
    """Tests for the incremental decoder."""

    def test_single_frame(self):
        """A complete frame is returned immediately."""
        frames = SSEDecoder().feed("event: error\ndata: {\"message\": \"x\"}\n\n")
        assert len(frames) == 1
        assert frames[0].event == "error"
        assert frames[0].data == '{"message": "x"}'

    def test_split_across_reads(self):
        """Frames split at arbitrary points decode identically."""
        stream = (
            encode_sse(StepStartedEvent(step=1, name="Embedding Generation"))
            + encode_sse(StepCompleteEvent(step=1, name="Embedding Generation",
                                           payload={"totalEmbeddings": 4}))
            + encode_sse(ErrorEvent(message="late failure"))
        )
        whole = SSEDecoder().feed(stream)

        for size in (1, 2, 3, 7, 13):
            decoder = SSEDecoder()
            frames = []
            for i in range(0, len(stream), size):
                frames.extend(decoder.feed(stream[i:i + size]))
            assert frames == whole

    def test_partial_frame_buffered(self):
        """Nothing is emitted until the blank line arrives."""
        decoder = SSEDecoder()
        assert decoder.feed("event: error\ndata: {\"message\"") == []
        assert decoder.feed(": \"x\"}\n") == []
        frames = decoder.feed("\n")
        assert frames[0].data == '{"message": "x"}'

    def test_crlf_and_comments(self):
        """CRLF line endings and comment lines are handled."""
        frames = SSEDecoder().feed(": keep-alive\r\nevent: error\r\ndata: {}\r\n\r\n")
        assert len(frames) == 1
        assert frames[0].event == "error"

    def test_multiline_data(self):
        """Multiple data lines join with newlines."""
        frames = SSEDecoder().feed("event: x\ndata: a\ndata: b\n\n")
        assert frames[0].data == "a\nb"

    def test_flush_emits_trailing_frame(self):
        """A frame without its final blank line is emitted on flush."""
        decoder = SSEDecoder()
        assert decoder.feed("event: error\ndata: {}") == []
        frames = decoder.flush()
        assert len(frames) == 1
        assert frames[0].event == "error"

    def test_iter_frames(self):
        """iter_frames decodes an iterable of fragments."""
        text = encode_sse(ErrorEvent(message="a")) + encode_sse(ErrorEvent(message="b"))
        frames = list(iter_frames([text[:10], text[10:]]))
        assert [parse_event(f.event, f.data).message for f in frames] == ["a", "b"]
