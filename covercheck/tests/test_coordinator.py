"""Tests for the streaming coordinator."""

import json

import httpx
import numpy as np
import pytest
from covercheck.config import CoverCheckSettings
from covercheck.core import coordinator as coordinator_module
from covercheck.core.coordinator import (
    CoordinatorBusyError,
    CoordinatorError,
    StreamingCoordinator,
)
from covercheck.core.events import (
    AnalysisSummary,
    ChunkScoredEvent,
    CompleteEvent,
    CoverageSummary,
    ErrorEvent,
    StageStatus,
    StartedEvent,
    StepStartedEvent,
    encode_sse,
)
from covercheck.core.models import ChunkInput
from covercheck.core.pipeline import INITIAL_STAGES


STREAM_URL = "https://scoring.example.test/functions/v1/analyze-chunks-stream"


def make_settings(**overrides):
    values = {"stream_url": STREAM_URL, "api_key": "secret-key", "request_timeout": 5}
    values.update(overrides)
    return CoverCheckSettings(**values)


def complete_event():
    return CompleteEvent(
        summary=AnalysisSummary(
            total_chunks=1,
            total_queries=1,
            document_aggregate_score=0.7,
            coverage=CoverageSummary(covered=1, weak=0, gaps=0, total_queries=1),
            avg_passage_score=84.0,
        ),
    )


def sse_stream(*events):
    return "".join(encode_sse(e) for e in events)


SUCCESS_STREAM = sse_stream(
    StartedEvent(steps=INITIAL_STAGES, total_chunks=1, total_queries=1, total_pairs=1),
    StepStartedEvent(step=1, name="Embedding Generation"),
    ChunkScoredEvent(chunk_index=0, best_query="plan cost", best_score=84.0),
    complete_event(),
)


@pytest.fixture
def chunks():
    return [ChunkInput(id="chunk-0", index=0, text="# Pricing\n\nPlans start at $10.",
                       heading_path=["Pricing"], text_without_cascade="Plans start at $10.")]


class TestLifecycle:
    """Tests for start/reset/feed/finish."""

    def test_consume_success(self):
        """A full stream yields the terminal result."""
        coord = StreamingCoordinator(settings=make_settings())
        result = coord.consume([SUCCESS_STREAM[:17], SUCCESS_STREAM[17:]])
        assert result is not None
        assert result.summary.avg_passage_score == pytest.approx(84.0)
        assert coord.state.succeeded
        assert len(coord.state.scored_chunks) == 1

    def test_busy_rejected(self):
        """A second start while a run is active raises."""
        coord = StreamingCoordinator(settings=make_settings())
        coord.start()
        with pytest.raises(CoordinatorBusyError):
            coord.start()

    def test_start_after_finish(self):
        """A finished run does not block the next one."""
        coord = StreamingCoordinator(settings=make_settings())
        coord.consume([SUCCESS_STREAM])
        coord.start()
        assert coord.state.is_running
        assert coord.state.scored_chunks == ()

    def test_reset_is_idempotent(self):
        """reset() twice leaves a clean idle state."""
        coord = StreamingCoordinator(settings=make_settings())
        coord.start()
        coord.feed(SUCCESS_STREAM[:200])
        coord.reset()
        coord.reset()
        assert coord.state.is_running is False
        assert coord.state.scored_chunks == ()
        assert coord.is_active is False

    def test_stale_frames_dropped(self):
        """Frames from an abandoned run never reach the new one."""
        coord = StreamingCoordinator(settings=make_settings())
        old = coord.start()
        coord.reset()
        new = coord.start()
        assert new != old

        coord.feed(SUCCESS_STREAM, generation=old)
        assert coord.apply(ErrorEvent(message="stale"), generation=old) is False
        assert coord.state.scored_chunks == ()
        assert coord.state.error is None
        assert coord.finish(generation=old) is None
        assert coord.state.is_running

    def test_unparseable_frame_skipped(self):
        """Unknown or malformed frames are skipped; the run continues."""
        coord = StreamingCoordinator(settings=make_settings())
        noisy = "event: mystery\ndata: {}\n\nevent: chunk_scored\ndata: not json\n\n"
        result = coord.consume([noisy, SUCCESS_STREAM])
        assert result is not None
        assert coord.state.error is None

    def test_stream_ends_early(self):
        """A stream without a terminal event ends in the error state."""
        coord = StreamingCoordinator(settings=make_settings())
        partial = sse_stream(StartedEvent(steps=INITIAL_STAGES), StepStartedEvent(step=2))
        assert coord.consume([partial]) is None
        assert coord.state.finished
        assert "Stream ended" in coord.state.error
        assert coord.state.stage_status(2) == StageStatus.RUNNING

    def test_error_event(self):
        """A backend error event ends the run with its message."""
        coord = StreamingCoordinator(settings=make_settings())
        assert coord.consume([sse_stream(ErrorEvent(message="Embedding failed"))]) is None
        assert coord.state.error == "Embedding failed"

    def test_bytes_split_inside_character(self):
        """UTF-8 bytes split mid-character decode correctly."""
        coord = StreamingCoordinator(settings=make_settings())
        raw = sse_stream(
            StartedEvent(steps=INITIAL_STAGES),
            ChunkScoredEvent(chunk_index=0, best_query="café prices", best_score=70.0),
            complete_event(),
        )
        data = raw.replace("\\u00e9", "é").encode("utf-8")
        split = data.index("é".encode("utf-8")) + 1
        coord.consume([data[:split], data[split:]])
        assert coord.state.succeeded
        assert coord.state.scored_chunks[0].best_query == "café prices"

    def test_trailing_frame_without_blank_line(self):
        """A final frame missing its blank line is still applied."""
        coord = StreamingCoordinator(settings=make_settings())
        result = coord.consume([SUCCESS_STREAM.rstrip("\n")])
        assert result is not None

    def test_reducer_failure_becomes_error(self, monkeypatch):
        """Unexpected errors while folding end the run instead of escaping."""
        def explode(state, event):
            raise RuntimeError("bad state")

        monkeypatch.setattr(coordinator_module, "reduce_event", explode)
        coord = StreamingCoordinator(settings=make_settings())
        assert coord.consume([SUCCESS_STREAM]) is None
        assert "bad state" in coord.state.error

    def test_source_failure_becomes_error(self):
        """An exception from the fragment source fails the run."""
        def fragments():
            yield SUCCESS_STREAM[:40]
            raise ConnectionResetError("peer went away")

        coord = StreamingCoordinator(settings=make_settings())
        assert coord.consume(fragments()) is None
        assert coord.state.error == "peer went away"

    def test_on_update_listener(self):
        """The listener sees every state change."""
        seen = []
        coord = StreamingCoordinator(settings=make_settings(), on_update=seen.append)
        coord.consume([SUCCESS_STREAM])
        assert seen[0].is_running
        assert seen[-1].succeeded
        assert len(seen) >= 4


class TestAnalyzeStreaming:
    """Tests for the HTTP transport, using httpx.MockTransport."""

    @pytest.mark.asyncio
    async def test_success(self, chunks):
        """The request body and headers match the backend's contract."""
        captured = {}

        def handler(request):
            captured["url"] = str(request.url)
            captured["headers"] = request.headers
            captured["body"] = json.loads(request.content)
            return httpx.Response(200, text=SUCCESS_STREAM,
                                  headers={"Content-Type": "text/event-stream"})

        coord = StreamingCoordinator(settings=make_settings(),
                                     transport=httpx.MockTransport(handler))
        result = await coord.analyze_streaming(chunks, ["plan cost", " "], "Plans start at $10.")

        assert result is not None
        assert coord.state.succeeded
        assert captured["url"] == STREAM_URL
        assert captured["headers"]["Authorization"] == "Bearer secret-key"
        assert captured["headers"]["apikey"] == "secret-key"
        body = captured["body"]
        assert body["queries"] == ["plan cost"]
        assert body["originalContent"] == "Plans start at $10."
        assert body["chunks"][0]["headingPath"] == ["Pricing"]
        assert body["chunks"][0]["textWithoutCascade"] == "Plans start at $10."

    @pytest.mark.asyncio
    async def test_http_error_status(self, chunks):
        """A non-success response ends the run with status and body."""
        transport = httpx.MockTransport(lambda request: httpx.Response(500, text="boom"))
        coord = StreamingCoordinator(settings=make_settings(), transport=transport)
        result = await coord.analyze_streaming(chunks, ["plan cost"], "doc")
        assert result is None
        assert coord.state.error == "Analysis failed: 500 - boom"
        assert coord.is_active is False

    @pytest.mark.asyncio
    async def test_transport_error(self, chunks):
        """Connection failures become the error state."""
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        coord = StreamingCoordinator(settings=make_settings(),
                                     transport=httpx.MockTransport(handler))
        assert await coord.analyze_streaming(chunks, ["plan cost"], "doc") is None
        assert coord.state.error.startswith("Transport error")

    @pytest.mark.asyncio
    async def test_truncated_response(self, chunks):
        """A response that stops mid-run ends in the error state."""
        partial = sse_stream(StartedEvent(steps=INITIAL_STAGES), StepStartedEvent(step=1))
        transport = httpx.MockTransport(lambda request: httpx.Response(200, text=partial))
        coord = StreamingCoordinator(settings=make_settings(), transport=transport)
        assert await coord.analyze_streaming(chunks, ["plan cost"], "doc") is None
        assert "Stream ended" in coord.state.error

    @pytest.mark.asyncio
    async def test_no_endpoint(self, chunks):
        """Without a configured endpoint the call is rejected."""
        coord = StreamingCoordinator(settings=make_settings(stream_url=None))
        with pytest.raises(CoordinatorError):
            await coord.analyze_streaming(chunks, ["plan cost"], "doc")

    @pytest.mark.asyncio
    async def test_redirect_status_is_failure(self, chunks):
        """A 3xx response is reported as a failed request."""
        transport = httpx.MockTransport(
            lambda request: httpx.Response(302, headers={"Location": "/elsewhere"}, text="moved")
        )
        coord = StreamingCoordinator(settings=make_settings(), transport=transport)
        assert await coord.analyze_streaming(chunks, ["plan cost"], "doc") is None
        assert coord.state.error == "Analysis failed: 302 - moved"

    @pytest.mark.asyncio
    async def test_blank_queries_rejected_without_request(self, chunks):
        """A query list that is empty after cleaning fails before any request."""
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(200, text=SUCCESS_STREAM)

        coord = StreamingCoordinator(settings=make_settings(),
                                     transport=httpx.MockTransport(handler))
        with pytest.raises(CoordinatorError, match="query list is empty"):
            await coord.analyze_streaming(chunks, ["  ", ""], "doc")
        assert requests == []
        assert coord.is_active is False

    @pytest.mark.asyncio
    async def test_no_chunks_rejected_without_request(self):
        """An empty chunk list fails before any request."""
        requests = []
        coord = StreamingCoordinator(
            settings=make_settings(),
            transport=httpx.MockTransport(lambda request: requests.append(request)),
        )
        with pytest.raises(CoordinatorError, match="chunk list is empty"):
            await coord.analyze_streaming([], ["plan cost"], "doc")
        assert requests == []

    @pytest.mark.asyncio
    async def test_no_api_key_no_auth_header(self, chunks):
        """Auth headers are only sent when a key is configured."""
        captured = {}

        def handler(request):
            captured["headers"] = request.headers
            return httpx.Response(200, text=SUCCESS_STREAM)

        coord = StreamingCoordinator(settings=make_settings(api_key=None),
                                     transport=httpx.MockTransport(handler))
        await coord.analyze_streaming(chunks, ["plan cost"], "doc")
        assert "authorization" not in captured["headers"]


class FakeEmbedder:
    model_name = "fake"
    dimensions = 3

    def embed(self, texts):
        return [np.array([1.0, float(len(t) % 5), 0.5]) for t in texts]


class TestAnalyzeLocal:
    """Tests for in-process runs."""

    def test_local_run(self, chunks):
        """The local backend's events fold to a result."""
        coord = StreamingCoordinator(settings=make_settings())
        result = coord.analyze_local(chunks, ["plan cost"], "Plans start at $10.",
                                     embedder=FakeEmbedder())
        assert result is not None
        assert [s.status for s in coord.state.steps] == [StageStatus.COMPLETE] * 5
        assert result.summary.total_chunks == 1

    def test_local_invalid_input(self, chunks):
        """Input errors become the error state."""
        coord = StreamingCoordinator(settings=make_settings())
        assert coord.analyze_local(chunks, [], "doc", embedder=FakeEmbedder()) is None
        assert coord.state.error == "No queries provided"
