"""
Pipeline state and the pure event reducer.

A scoring run moves through five ordered stages:

    1. Embedding Generation
    2. Document Aggregate Score
    3. Chunk Scoring
    4. Coverage Mapping
    5. Diagnostic Scoring

reduce_event(state, event) folds one typed event into a PipelineState and
returns a new state. It never mutates its input, so it can be tested in
isolation and replayed over a recorded event list. The StreamingCoordinator
owns the only mutable reference to the current state.

Stage status rules:
- step_started(n): stage n -> running, stages < n -> complete.
- step_complete(n): stages <= n -> complete.
- Status never moves backwards. A complete stage stays complete, and a
  step_started for a stage lower than the highest stage already started
  is ignored. A forward jump (stage 3 starting before stage 2 reported)
  completes every lower stage.
- Once a complete or error event has been applied the state is frozen;
  later events are ignored.
"""

from dataclasses import dataclass, field, replace
from typing import Dict, List, Optional, Sequence, Tuple

from loguru import logger

from covercheck.core.events import (
    STATUS_RANK,
    AnalysisSummary,
    ChunkScoreRow,
    ChunkScoredEvent,
    CompleteEvent,
    CoverageCalculatedEvent,
    CoverageMapEntry,
    CoverageSummary,
    DiagnosticProgressEvent,
    DiagnosticRecord,
    DocumentAggregateEvent,
    EmbeddingBatchEvent,
    EmbeddingInfoEvent,
    ErrorEvent,
    PipelineEvent,
    StageSnapshot,
    StageStatus,
    StartedEvent,
    StepCompleteEvent,
    StepStartedEvent,
)
from covercheck.core.models import (
    ChunkInput,
    ChunkScore,
    KeywordScore,
    SimilarityScores,
    normalize_keyword,
)


STAGE_NAMES = (
    "Embedding Generation",
    "Document Aggregate Score",
    "Chunk Scoring",
    "Coverage Mapping",
    "Diagnostic Scoring",
)

INITIAL_STAGES: Tuple[StageSnapshot, ...] = tuple(
    StageSnapshot(id=i, name=name) for i, name in enumerate(STAGE_NAMES, start=1)
)


@dataclass(frozen=True)
class AnalysisResult:
    """
    Terminal result of a successful run.

    Field names are stable and every leaf is a scalar or a flat record,
    so exporters can flatten it into columns.
    """
    chunk_scores: Tuple[ChunkScoreRow, ...]
    coverage_map: Tuple[CoverageMapEntry, ...]
    diagnostics: Tuple[DiagnosticRecord, ...]
    summary: AnalysisSummary
    document_aggregate_score: float

    def to_chunk_scores(
        self,
        chunks: Optional[Sequence[ChunkInput]] = None,
    ) -> List[ChunkScore]:
        """
        Convert per-chunk rows into ChunkScore objects for assignment.

        Args:
            chunks: Optional chunk inputs, used to fill in text and counts

        Returns:
            ChunkScore list ordered by chunk index
        """
        by_index: Dict[int, ChunkInput] = {c.index: c for c in chunks or []}
        result: List[ChunkScore] = []
        for row in sorted(self.chunk_scores, key=lambda r: r.chunk_index):
            chunk = by_index.get(row.chunk_index)
            result.append(ChunkScore(
                chunk_index=row.chunk_index,
                chunk_id=row.chunk_id,
                text=chunk.text if chunk else "",
                word_count=chunk.word_count if chunk else 0,
                char_count=chunk.char_count if chunk else 0,
                keyword_scores=[
                    KeywordScore(
                        keyword=normalize_keyword(s.query),
                        scores=SimilarityScores(
                            cosine=s.cosine,
                            passage_score=s.passage_score,
                        ),
                    )
                    for s in row.scores
                ],
            ))
        return result


@dataclass(frozen=True)
class PipelineState:
    """
    Accumulated state of one streaming run.

    Attributes:
        is_running: A run is in progress
        finished: A terminal complete or error event was applied
        succeeded: The run finished with a complete event
        steps: Stage snapshots, in stage order
        current_step: Highest stage id that has started (0 before any)
        embedding_info: Embedding request summary
        embedding_progress: Latest embedding batch progress
        document_aggregate: Document-level aggregate score event
        scored_chunks: Chunk-scored events, in arrival order (append-only)
        coverage_summary: Covered/weak/gap counts
        coverage_map: Per-query best-chunk entries
        diagnostic_progress: Latest diagnostic scoring progress
        summary: Final run summary
        result: Terminal result, set only on success
        error: Failure message, set only on failure
    """
    is_running: bool = False
    finished: bool = False
    succeeded: bool = False
    steps: Tuple[StageSnapshot, ...] = INITIAL_STAGES
    current_step: int = 0
    embedding_info: Optional[EmbeddingInfoEvent] = None
    embedding_progress: Optional[EmbeddingBatchEvent] = None
    document_aggregate: Optional[DocumentAggregateEvent] = None
    scored_chunks: Tuple[ChunkScoredEvent, ...] = ()
    coverage_summary: Optional[CoverageSummary] = None
    coverage_map: Tuple[CoverageMapEntry, ...] = ()
    diagnostic_progress: Optional[DiagnosticProgressEvent] = None
    summary: Optional[AnalysisSummary] = None
    result: Optional[AnalysisResult] = None
    error: Optional[str] = None

    def stage_status(self, stage_id: int) -> Optional[StageStatus]:
        """Status of a stage by id, or None if unknown."""
        for stage in self.steps:
            if stage.id == stage_id:
                return stage.status
        return None


def initial_state(running: bool = False) -> PipelineState:
    """Fresh state with all stages pending."""
    return PipelineState(is_running=running)


def _advance(stage: StageSnapshot, status: StageStatus) -> StageSnapshot:
    """Move a stage to status unless that would move it backwards."""
    if STATUS_RANK[status] <= STATUS_RANK[stage.status]:
        return stage
    return replace(stage, status=status)


def _start_stage(state: PipelineState, stage_id: int) -> PipelineState:
    if stage_id < state.current_step:
        logger.warning(
            f"Ignoring start of stage {stage_id}: stage {state.current_step} already started"
        )
        return state

    steps = []
    for stage in state.steps:
        if stage.id < stage_id:
            steps.append(_advance(stage, StageStatus.COMPLETE))
        elif stage.id == stage_id:
            steps.append(_advance(stage, StageStatus.RUNNING))
        else:
            steps.append(stage)
    return replace(state, steps=tuple(steps), current_step=stage_id)


def _complete_through(state: PipelineState, stage_id: int) -> PipelineState:
    steps = tuple(
        _advance(stage, StageStatus.COMPLETE) if stage.id <= stage_id else stage
        for stage in state.steps
    )
    return replace(state, steps=steps, current_step=max(state.current_step, stage_id))


def reduce_event(state: PipelineState, event: PipelineEvent) -> PipelineState:
    """
    Fold one event into the pipeline state.

    Args:
        state: Current state (not modified)
        event: Typed pipeline event

    Returns:
        The next state. Events arriving after a terminal event return the
        input state unchanged.

    Raises:
        TypeError: If event is not a known PipelineEvent type
    """
    if state.finished:
        logger.debug(f"Ignoring '{event.kind}' event after run finished")
        return state

    if isinstance(event, StartedEvent):
        steps = event.steps or INITIAL_STAGES
        return replace(state, is_running=True, steps=tuple(steps))

    if isinstance(event, EmbeddingInfoEvent):
        return replace(state, embedding_info=event)

    if isinstance(event, EmbeddingBatchEvent):
        return replace(state, embedding_progress=event)

    if isinstance(event, StepStartedEvent):
        return _start_stage(state, event.step)

    if isinstance(event, StepCompleteEvent):
        return _complete_through(state, event.step)

    if isinstance(event, DocumentAggregateEvent):
        return replace(state, document_aggregate=event)

    if isinstance(event, ChunkScoredEvent):
        return replace(state, scored_chunks=state.scored_chunks + (event,))

    if isinstance(event, CoverageCalculatedEvent):
        return replace(
            state,
            coverage_summary=event.summary,
            coverage_map=tuple(event.map),
        )

    if isinstance(event, DiagnosticProgressEvent):
        return replace(state, diagnostic_progress=event)

    if isinstance(event, CompleteEvent):
        result = AnalysisResult(
            chunk_scores=tuple(event.chunk_scores),
            coverage_map=tuple(event.coverage_map),
            diagnostics=tuple(event.diagnostics),
            summary=event.summary,
            document_aggregate_score=event.summary.document_aggregate_score,
        )
        steps = tuple(_advance(s, StageStatus.COMPLETE) for s in state.steps)
        return replace(
            state,
            is_running=False,
            finished=True,
            succeeded=True,
            steps=steps,
            summary=event.summary,
            coverage_map=tuple(event.coverage_map) or state.coverage_map,
            result=result,
        )

    if isinstance(event, ErrorEvent):
        return fail_state(state, event.message)

    raise TypeError(f"Unhandled pipeline event type: {type(event).__name__}")


def fail_state(state: PipelineState, message: str) -> PipelineState:
    """Terminal failure; partial accumulators are kept."""
    if state.finished:
        return state
    return replace(
        state,
        is_running=False,
        finished=True,
        succeeded=False,
        error=message,
    )


def reduce_events(
    events: Sequence[PipelineEvent],
    state: Optional[PipelineState] = None,
) -> PipelineState:
    """Fold a sequence of events, starting from a fresh running state."""
    current = state if state is not None else initial_state(running=True)
    for event in events:
        current = reduce_event(current, event)
    return current
