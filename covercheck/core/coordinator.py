"""
Streaming pipeline coordinator.

StreamingCoordinator is the thin, stateful shell around the pure reducer in
covercheck.core.pipeline. It owns the only mutable PipelineState for one
run at a time and feeds it events from one of three sources:

- analyze_streaming(): a remote backend over HTTP, read as server-sent
  events with httpx
- analyze_local(): the in-process backend (covercheck.core.backend)
- consume() / feed(): raw SSE text supplied by the caller

Run lifecycle:
    start() -> feed()/apply() ... -> finish() or fail()

Only one run may be active per coordinator; start() raises
CoordinatorBusyError otherwise. reset() is idempotent: it discards all
partial state and bumps a generation counter, so frames still arriving
from an abandoned run are dropped instead of leaking into the next one.

Failure handling:
- A frame that cannot be parsed is logged and skipped.
- A non-success HTTP response, a transport exception, or any unexpected
  error while folding events ends the run in the error state. Partial
  results are kept for display. Nothing is retried.
"""

import codecs
from typing import Callable, Iterable, List, Optional, Sequence, Union

import httpx
from loguru import logger

from covercheck.config import CoverCheckSettings, get_settings
from covercheck.core.backend import BackendError, analyze_chunks_stream, clean_queries
from covercheck.core.embeddings import Embedder, SentenceTransformerEmbedder
from covercheck.core.events import (
    EventParseError,
    PipelineEvent,
    SSEDecoder,
    SSEFrame,
    parse_event,
)
from covercheck.core.models import ChunkInput
from covercheck.core.pipeline import (
    AnalysisResult,
    PipelineState,
    fail_state,
    initial_state,
    reduce_event,
)


StateListener = Callable[[PipelineState], None]


class CoordinatorError(Exception):
    """Raised when the coordinator is used incorrectly."""
    pass


class CoordinatorBusyError(CoordinatorError):
    """Raised when a run is started while another is active."""
    pass


class StreamingCoordinator:
    """
    Folds a stream of pipeline events into a single PipelineState.

    Attributes:
        settings: Transport and embedding settings
        on_update: Optional callback invoked with each new state
    """

    def __init__(
        self,
        settings: Optional[CoverCheckSettings] = None,
        on_update: Optional[StateListener] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Args:
            settings: Settings; defaults to the process-wide settings
            on_update: Called after every state change
            transport: Optional httpx transport (tests use MockTransport)
        """
        self.settings = settings or get_settings()
        self.on_update = on_update
        self._transport = transport
        self._state = initial_state()
        self._generation = 0
        self._decoder = SSEDecoder()
        self._bytes_decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")

    # -------------------------------------------------------------------------
    # State access
    # -------------------------------------------------------------------------

    @property
    def state(self) -> PipelineState:
        return self._state

    @property
    def result(self) -> Optional[AnalysisResult]:
        return self._state.result

    @property
    def is_active(self) -> bool:
        return self._state.is_running and not self._state.finished

    @property
    def generation(self) -> int:
        """Identifier of the current run; changes on every start/reset."""
        return self._generation

    def _set(self, state: PipelineState) -> None:
        self._state = state
        if self.on_update is not None:
            self.on_update(state)

    def _is_current(self, generation: Optional[int]) -> bool:
        return generation is None or generation == self._generation

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def start(self) -> int:
        """
        Begin a new run with empty accumulators.

        Returns:
            The run's generation number; pass it to feed()/apply() to have
            frames from an abandoned run ignored

        Raises:
            CoordinatorBusyError: If a run is already active
        """
        if self.is_active:
            raise CoordinatorBusyError("An analysis run is already in progress")
        self._generation += 1
        self._decoder = SSEDecoder()
        self._bytes_decoder.reset()
        self._set(initial_state(running=True))
        logger.debug(f"Started run {self._generation}")
        return self._generation

    def reset(self) -> None:
        """Abandon any run and discard all partial state. Idempotent."""
        self._generation += 1
        self._decoder = SSEDecoder()
        self._bytes_decoder.reset()
        self._set(initial_state())

    def apply(self, event: PipelineEvent, generation: Optional[int] = None) -> bool:
        """
        Fold one typed event into the current run.

        Returns:
            False if the event belongs to an abandoned run and was dropped
        """
        if not self._is_current(generation):
            logger.debug(f"Dropping '{event.kind}' event from abandoned run {generation}")
            return False
        try:
            next_state = reduce_event(self._state, event)
        except Exception as e:
            logger.error(f"Failed to apply '{event.kind}' event: {e}")
            self.fail(f"Failed to process '{event.kind}' event: {e}")
            return True
        if next_state is not self._state:
            self._set(next_state)
        return True

    def feed(
        self,
        data: Union[str, bytes],
        generation: Optional[int] = None,
    ) -> PipelineState:
        """
        Feed raw SSE text (or UTF-8 bytes) from the stream.

        Partial frames are buffered until complete. Frames that cannot be
        parsed are logged and skipped.
        """
        if not self._is_current(generation):
            return self._state
        if isinstance(data, bytes):
            data = self._bytes_decoder.decode(data)
        for frame in self._decoder.feed(data):
            self._apply_frame(frame, generation)
        return self._state

    def _apply_frame(self, frame: SSEFrame, generation: Optional[int]) -> None:
        try:
            event = parse_event(frame.event, frame.data)
        except EventParseError as e:
            logger.warning(f"Skipping unparseable event frame: {e}")
            return
        self.apply(event, generation)

    def finish(self, generation: Optional[int] = None) -> Optional[AnalysisResult]:
        """
        End of stream. Flushes buffered input; a run that never received a
        terminal event is marked failed.

        Returns:
            The terminal result, or None if the run did not succeed
        """
        if not self._is_current(generation):
            return None
        tail = self._bytes_decoder.decode(b"", final=True)
        frames: List[SSEFrame] = self._decoder.feed(tail) if tail else []
        frames.extend(self._decoder.flush())
        for frame in frames:
            self._apply_frame(frame, generation)
        if not self._state.finished and self._state.is_running:
            self.fail("Stream ended before the analysis completed")
        return self._state.result

    def fail(self, message: str, generation: Optional[int] = None) -> None:
        """End the current run in the error state, keeping partial results."""
        if not self._is_current(generation):
            return
        if not self._state.finished:
            logger.error(f"Analysis run failed: {message}")
        self._set(fail_state(self._state, message))

    # -------------------------------------------------------------------------
    # Event sources
    # -------------------------------------------------------------------------

    def consume(self, stream: Iterable[Union[str, bytes]]) -> Optional[AnalysisResult]:
        """
        Run over an iterable of raw SSE fragments.

        Returns:
            The terminal result, or None if the run failed or was reset
        """
        generation = self.start()
        try:
            for fragment in stream:
                if not self._is_current(generation):
                    return None
                self.feed(fragment, generation)
                if self._state.finished:
                    break
        except Exception as e:
            self.fail(str(e) or "Analysis failed", generation)
            return None
        return self.finish(generation)

    def analyze_local(
        self,
        chunks: Sequence[ChunkInput],
        queries: Sequence[str],
        document: str,
        embedder: Optional[Embedder] = None,
    ) -> Optional[AnalysisResult]:
        """
        Run the in-process backend and fold its events.

        Args:
            chunks: Chunks in document order
            queries: Query texts
            document: Full document text
            embedder: Embedding provider; defaults to a sentence-transformer
                model from settings

        Returns:
            The terminal result, or None if the run failed or was reset
        """
        embedder = embedder or SentenceTransformerEmbedder(self.settings.embedding_model)
        generation = self.start()
        try:
            for event in analyze_chunks_stream(chunks, queries, document, embedder):
                if not self.apply(event, generation):
                    return None
        except BackendError as e:
            self.fail(str(e), generation)
            return None
        except Exception as e:
            self.fail(str(e) or "Analysis failed", generation)
            return None
        return self.finish(generation)

    async def analyze_streaming(
        self,
        chunks: Sequence[ChunkInput],
        queries: Sequence[str],
        document: str,
        url: Optional[str] = None,
    ) -> Optional[AnalysisResult]:
        """
        POST a run to the remote backend and fold its SSE response.

        Args:
            chunks: Chunks in document order
            queries: Query texts; blank entries are dropped
            document: Full document text
            url: Endpoint; defaults to settings.stream_url

        Returns:
            The terminal result, or None if the run failed or was reset

        Raises:
            CoordinatorError: If no endpoint is configured, or there are no
                chunks or no non-blank queries
            CoordinatorBusyError: If a run is already active
        """
        endpoint = url or self.settings.stream_url
        if not endpoint:
            raise CoordinatorError("No streaming endpoint configured (COVERCHECK_STREAM_URL)")

        cleaned = clean_queries(queries)
        if not chunks:
            raise CoordinatorError("analyze_streaming: chunk list is empty")
        if not cleaned:
            raise CoordinatorError("analyze_streaming: query list is empty")

        body = {
            "chunks": [c.to_payload() for c in chunks],
            "queries": cleaned,
            "originalContent": document,
        }
        headers = {"Content-Type": "application/json", **self.settings.auth_headers()}

        generation = self.start()
        logger.info(
            f"Starting streaming analysis: {len(chunks)} chunks, {len(body['queries'])} queries"
        )
        try:
            async with httpx.AsyncClient(
                timeout=httpx.Timeout(self.settings.request_timeout),
                transport=self._transport,
            ) as client:
                async with client.stream("POST", endpoint, json=body, headers=headers) as response:
                    if not response.is_success:
                        error_text = (await response.aread()).decode("utf-8", errors="replace")
                        self.fail(
                            f"Analysis failed: {response.status_code} - {error_text}",
                            generation,
                        )
                        return None

                    async for text in response.aiter_text():
                        if not self._is_current(generation):
                            logger.debug(f"Run {generation} abandoned; closing stream")
                            return None
                        self.feed(text, generation)
                        if self._state.finished:
                            break
        except httpx.HTTPError as e:
            self.fail(f"Transport error: {e}", generation)
            return None
        except Exception as e:
            self.fail(str(e) or "Analysis failed", generation)
            return None

        return self.finish(generation)
