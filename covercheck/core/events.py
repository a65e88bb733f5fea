"""
Typed pipeline events and the server-sent-event wire codec.

The scoring backend streams its progress as server-sent events:

    event: chunk_scored
    data: {"chunkIndex": 0, "bestQuery": "...", "bestScore": 81.0}

Every event carries an explicit kind (the SSE "event:" line). Each kind
maps to one frozen dataclass below, so consumers dispatch on the type
instead of probing which payload fields happen to be present. Stage
boundaries are likewise explicit: "step_started" and "step_complete" are
distinct kinds.

Wire payloads use camelCase keys; dataclass fields use snake_case. The
generic _WireRecord helpers convert between the two, including nested
records.

Frames may be split arbitrarily across network reads. SSEDecoder buffers
partial input and only yields complete frames.
"""

import json
from dataclasses import MISSING, dataclass, field, fields
from enum import Enum
from typing import (
    Any,
    Callable,
    ClassVar,
    Dict,
    Iterator,
    List,
    Optional,
    Tuple,
    Type,
)


class EventParseError(ValueError):
    """Raised when an event frame cannot be decoded into a typed event."""
    pass


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


def _to_plain(value: Any) -> Any:
    if isinstance(value, _WireRecord):
        return value.to_payload()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (list, tuple)):
        return [_to_plain(v) for v in value]
    if isinstance(value, dict):
        return {k: _to_plain(v) for k, v in value.items()}
    return value


class _WireRecord:
    """
    Mixin for dataclasses that round-trip through camelCase JSON payloads.

    Class attributes:
        _nested: field name -> record type for nested records (a JSON list
            becomes a tuple of records)
        _coercions: field name -> callable applied to the raw value
        _wire_names: field name -> wire key, when not the camelCase name
    """
    _nested: ClassVar[Dict[str, Type["_WireRecord"]]] = {}
    _coercions: ClassVar[Dict[str, Callable[[Any], Any]]] = {}
    _wire_names: ClassVar[Dict[str, str]] = {}

    @classmethod
    def _wire_key(cls, name: str) -> str:
        return cls._wire_names.get(name, _camel(name))

    @classmethod
    def from_payload(cls, data: Any):
        if not isinstance(data, dict):
            raise EventParseError(
                f"{cls.__name__}: expected an object, got {type(data).__name__}"
            )
        kwargs: Dict[str, Any] = {}
        for f in fields(cls):
            key = cls._wire_key(f.name)
            if key not in data or data[key] is None:
                if f.default is MISSING and f.default_factory is MISSING:
                    raise EventParseError(f"{cls.__name__}: missing field '{key}'")
                continue
            kwargs[f.name] = cls._convert(f.name, data[key])
        return cls(**kwargs)

    @classmethod
    def _convert(cls, name: str, value: Any) -> Any:
        record = cls._nested.get(name)
        if record is not None:
            if isinstance(value, list):
                return tuple(record.from_payload(v) for v in value)
            return record.from_payload(value)
        coerce = cls._coercions.get(name)
        if coerce is not None:
            try:
                return coerce(value)
            except (TypeError, ValueError) as e:
                raise EventParseError(f"{cls.__name__}: bad value for '{name}': {e}")
        return value

    def to_payload(self) -> Dict[str, Any]:
        return {
            self._wire_key(f.name): _to_plain(getattr(self, f.name))
            for f in fields(self)
        }


# =============================================================================
# Nested records
# =============================================================================

class StageStatus(Enum):
    """Status of one pipeline stage."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETE = "complete"


# Ordering used to keep stage status monotonic
STATUS_RANK = {
    StageStatus.PENDING: 0,
    StageStatus.RUNNING: 1,
    StageStatus.COMPLETE: 2,
}


@dataclass(frozen=True)
class StageSnapshot(_WireRecord):
    """One stage of the pipeline with its current status."""
    id: int
    name: str
    status: StageStatus = StageStatus.PENDING

    _coercions = {"id": int, "status": StageStatus}


@dataclass(frozen=True)
class QueryChunkScore(_WireRecord):
    """Score of one query against one chunk."""
    query: str
    cosine: float
    passage_score: float

    _coercions = {"cosine": float, "passage_score": float}


@dataclass(frozen=True)
class ChunkScoreRow(_WireRecord):
    """Final per-chunk scores, with the chunk's best query."""
    chunk_index: int
    chunk_id: str
    heading: str
    scores: Tuple[QueryChunkScore, ...]
    best_query: str
    best_score: float

    _nested = {"scores": QueryChunkScore}
    _coercions = {"chunk_index": int, "best_score": float}


@dataclass(frozen=True)
class CoverageMapEntry(_WireRecord):
    """Best chunk for one query, with a covered/weak/gap status."""
    query: str
    best_chunk_index: int
    best_chunk_heading: str
    score: float
    status: str

    _coercions = {"best_chunk_index": int, "score": float}


@dataclass(frozen=True)
class CoverageSummary(_WireRecord):
    """Counts of covered, weak and gap queries."""
    covered: int
    weak: int
    gaps: int
    total_queries: int


@dataclass(frozen=True)
class LexicalBreakdown(_WireRecord):
    score: float
    term_coverage: float
    exact_phrase_match: bool


@dataclass(frozen=True)
class RerankBreakdown(_WireRecord):
    score: float
    entity_prominence: float
    direct_answer: float


@dataclass(frozen=True)
class CitationBreakdown(_WireRecord):
    score: float
    specificity: float
    quotability: float


@dataclass(frozen=True)
class DiagnosticRecord(_WireRecord):
    """Diagnostic scores for one (chunk, query) pair."""
    chunk_index: int
    query: str
    semantic: float
    lexical: LexicalBreakdown
    rerank: RerankBreakdown
    citation: CitationBreakdown
    composite: float

    _nested = {
        "lexical": LexicalBreakdown,
        "rerank": RerankBreakdown,
        "citation": CitationBreakdown,
    }


@dataclass(frozen=True)
class AnalysisSummary(_WireRecord):
    """Run-level summary delivered with the complete event."""
    total_chunks: int
    total_queries: int
    document_aggregate_score: float
    coverage: CoverageSummary
    avg_passage_score: float

    _nested = {"coverage": CoverageSummary}
    _coercions = {"document_aggregate_score": float, "avg_passage_score": float}
    _wire_names = {"document_aggregate_score": "documentChamfer"}


# =============================================================================
# Events
# =============================================================================

@dataclass(frozen=True)
class PipelineEvent(_WireRecord):
    """Base class for all pipeline events. `kind` is the SSE event name."""
    kind: ClassVar[str] = ""


@dataclass(frozen=True)
class StartedEvent(PipelineEvent):
    kind: ClassVar[str] = "started"
    steps: Tuple[StageSnapshot, ...]
    total_chunks: int = 0
    total_queries: int = 0
    total_pairs: int = 0

    _nested = {"steps": StageSnapshot}


@dataclass(frozen=True)
class EmbeddingInfoEvent(PipelineEvent):
    kind: ClassVar[str] = "embedding_info"
    total_texts: int
    breakdown: Dict[str, int] = field(default_factory=dict)
    model: str = ""
    dimensions: int = 0


@dataclass(frozen=True)
class EmbeddingBatchEvent(PipelineEvent):
    kind: ClassVar[str] = "embedding_batch"
    batch: int
    total_batches: int
    texts_processed: int
    total_texts: int


@dataclass(frozen=True)
class StepStartedEvent(PipelineEvent):
    kind: ClassVar[str] = "step_started"
    step: int
    name: str = ""

    _coercions = {"step": int}


@dataclass(frozen=True)
class StepCompleteEvent(PipelineEvent):
    """
    A stage finished. Stage-specific totals (e.g. totalEmbeddings,
    chunksScored, pairsScored) are kept in `payload` as sent.
    """
    kind: ClassVar[str] = "step_complete"
    step: int
    name: str = ""
    payload: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, data: Any) -> "StepCompleteEvent":
        if not isinstance(data, dict):
            raise EventParseError("StepCompleteEvent: expected an object")
        if "step" not in data:
            raise EventParseError("StepCompleteEvent: missing field 'step'")
        try:
            step = int(data["step"])
        except (TypeError, ValueError) as e:
            raise EventParseError(f"StepCompleteEvent: bad value for 'step': {e}")
        extra = {k: v for k, v in data.items() if k not in ("step", "name")}
        return cls(step=step, name=data.get("name", ""), payload=extra)

    def to_payload(self) -> Dict[str, Any]:
        return {"step": self.step, "name": self.name, **self.payload}


@dataclass(frozen=True)
class DocumentAggregateEvent(PipelineEvent):
    kind: ClassVar[str] = "document_aggregate"
    score: float
    interpretation: str
    chunk_count: int = 0
    query_count: int = 0

    _coercions = {"score": float}


@dataclass(frozen=True)
class ChunkScoredEvent(PipelineEvent):
    kind: ClassVar[str] = "chunk_scored"
    chunk_index: int
    best_query: str
    best_score: float
    chunk_id: str = ""
    heading: str = ""
    per_query_scores: Tuple[QueryChunkScore, ...] = ()

    _nested = {"per_query_scores": QueryChunkScore}
    _coercions = {"chunk_index": int, "best_score": float}
    _wire_names = {"per_query_scores": "scores"}


@dataclass(frozen=True)
class CoverageCalculatedEvent(PipelineEvent):
    kind: ClassVar[str] = "coverage_calculated"
    summary: CoverageSummary
    map: Tuple[CoverageMapEntry, ...] = ()

    _nested = {"summary": CoverageSummary, "map": CoverageMapEntry}


@dataclass(frozen=True)
class DiagnosticProgressEvent(PipelineEvent):
    kind: ClassVar[str] = "diagnostic_progress"
    pairs_processed: int
    total_pairs: int


@dataclass(frozen=True)
class CompleteEvent(PipelineEvent):
    kind: ClassVar[str] = "complete"
    summary: AnalysisSummary
    chunk_scores: Tuple[ChunkScoreRow, ...] = ()
    coverage_map: Tuple[CoverageMapEntry, ...] = ()
    diagnostics: Tuple[DiagnosticRecord, ...] = ()

    _nested = {
        "summary": AnalysisSummary,
        "chunk_scores": ChunkScoreRow,
        "coverage_map": CoverageMapEntry,
        "diagnostics": DiagnosticRecord,
    }


@dataclass(frozen=True)
class ErrorEvent(PipelineEvent):
    kind: ClassVar[str] = "error"
    message: str


EVENT_TYPES: Dict[str, Type[PipelineEvent]] = {
    cls.kind: cls
    for cls in (
        StartedEvent,
        EmbeddingInfoEvent,
        EmbeddingBatchEvent,
        StepStartedEvent,
        StepCompleteEvent,
        DocumentAggregateEvent,
        ChunkScoredEvent,
        CoverageCalculatedEvent,
        DiagnosticProgressEvent,
        CompleteEvent,
        ErrorEvent,
    )
}

# Older backends name the aggregate stage after the Chamfer metric
EVENT_ALIASES = {"document_chamfer": DocumentAggregateEvent.kind}


def parse_event(name: Optional[str], data: Any) -> PipelineEvent:
    """
    Build a typed event from an SSE event name and its data.

    Args:
        name: SSE event name (the discriminant)
        data: JSON text or an already-decoded object

    Returns:
        The typed PipelineEvent

    Raises:
        EventParseError: If the name is missing/unknown or the payload is
            malformed
    """
    if not name:
        raise EventParseError("Event frame has no event name")
    kind = EVENT_ALIASES.get(name, name)
    event_cls = EVENT_TYPES.get(kind)
    if event_cls is None:
        raise EventParseError(f"Unknown event kind: {name}")

    if isinstance(data, (str, bytes)):
        try:
            data = json.loads(data)
        except json.JSONDecodeError as e:
            raise EventParseError(f"Invalid JSON in '{name}' event: {e}")

    return event_cls.from_payload(data)


def encode_sse(event: PipelineEvent) -> str:
    """Serialize an event as one SSE frame."""
    return f"event: {event.kind}\ndata: {json.dumps(event.to_payload())}\n\n"


@dataclass
class SSEFrame:
    """One complete server-sent event."""
    event: Optional[str]
    data: str


class SSEDecoder:
    """
    Incremental server-sent-event decoder.

    Feed arbitrary text fragments; complete frames are returned as soon
    as their terminating blank line arrives. Incomplete trailing input
    stays buffered until the next feed() or flush().
    """

    def __init__(self):
        self._buffer = ""
        self._event: Optional[str] = None
        self._data: List[str] = []

    def feed(self, text: str) -> List[SSEFrame]:
        """Add text and return any frames it completes."""
        self._buffer += text
        lines = self._buffer.split("\n")
        self._buffer = lines.pop()
        frames: List[SSEFrame] = []
        for line in lines:
            frame = self._process_line(line.rstrip("\r"))
            if frame is not None:
                frames.append(frame)
        return frames

    def flush(self) -> List[SSEFrame]:
        """Emit any frame left pending at end of stream."""
        frames: List[SSEFrame] = []
        if self._buffer:
            frame = self._process_line(self._buffer.rstrip("\r"))
            self._buffer = ""
            if frame is not None:
                frames.append(frame)
        frame = self._dispatch()
        if frame is not None:
            frames.append(frame)
        return frames

    def _process_line(self, line: str) -> Optional[SSEFrame]:
        if line == "":
            return self._dispatch()
        if line.startswith(":"):
            return None  # comment / keep-alive
        name, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if name == "event":
            self._event = value.strip()
        elif name == "data":
            self._data.append(value)
        return None

    def _dispatch(self) -> Optional[SSEFrame]:
        if not self._data:
            self._event = None
            return None
        frame = SSEFrame(event=self._event, data="\n".join(self._data))
        self._event = None
        self._data = []
        return frame


def iter_frames(chunks) -> Iterator[SSEFrame]:
    """Decode an iterable of text fragments into complete frames."""
    decoder = SSEDecoder()
    for chunk in chunks:
        yield from decoder.feed(chunk)
    yield from decoder.flush()
