"""
Data models for the coverage engine.

These dataclasses and enums define the structured types that flow between
the similarity, assignment, coverage and pipeline modules. They are
intentionally simple and transparent.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional
from enum import Enum
import numpy as np
from numpy.typing import NDArray


# Type alias for embedding vectors
Vector = NDArray[np.float64]

# Query index -> chunk index, or None for a coverage gap
Assignment = Dict[int, Optional[int]]


def normalize_keyword(text: str) -> str:
    """Case-normalize a query/keyword for lookups."""
    return text.lower().strip()


class IntentType(Enum):
    """
    Closed set of query intent types.

    PRIMARY covers user-entered queries; the rest are fan-out variant
    types produced by query expansion. GAP marks queries generated to
    fill a detected coverage gap.
    """
    PRIMARY = "PRIMARY"
    EQUIVALENT = "EQUIVALENT"
    FOLLOW_UP = "FOLLOW_UP"
    GENERALIZATION = "GENERALIZATION"
    CANONICALIZATION = "CANONICALIZATION"
    ENTAILMENT = "ENTAILMENT"
    SPECIFICATION = "SPECIFICATION"
    CLARIFICATION = "CLARIFICATION"
    GAP = "GAP"


class QueryStatus(Enum):
    """Lifecycle status of a coverage work item."""
    READY = "ready"
    IN_PROGRESS = "in_progress"
    OPTIMIZED = "optimized"
    GAP = "gap"


@dataclass
class ChunkInput:
    """
    A contiguous span of document text with heading-path context.

    Attributes:
        id: Stable identifier for the chunk
        index: Position of this chunk in the document (0-indexed)
        text: Chunk text, including any prefixed heading cascade
        heading_path: Headings enclosing this chunk, outermost first
        word_count: Number of words in the chunk
        char_count: Number of characters in the chunk
        text_without_cascade: Body text without the heading cascade
    """
    id: str
    index: int
    text: str
    heading_path: List[str] = field(default_factory=list)
    word_count: int = 0
    char_count: int = 0
    text_without_cascade: Optional[str] = None

    def __post_init__(self):
        if not self.word_count:
            self.word_count = len(self.text.split())
        if not self.char_count:
            self.char_count = len(self.text)
        if self.text_without_cascade is None:
            self.text_without_cascade = self.text

    @property
    def heading(self) -> str:
        """Innermost heading, or a positional label when there is none."""
        if self.heading_path:
            return self.heading_path[-1]
        return f"Chunk {self.index + 1}"

    def to_payload(self) -> dict:
        """Request body representation used by the scoring backend."""
        return {
            "id": self.id,
            "index": self.index,
            "text": self.text,
            "textWithoutCascade": self.text_without_cascade,
            "headingPath": list(self.heading_path),
            "wordCount": self.word_count,
            "charCount": self.char_count,
        }


@dataclass(frozen=True)
class SimilarityScores:
    """
    All similarity metrics for one (query, chunk) pair.

    Scores received from a remote backend may only carry cosine and
    passage score; the distance metrics are then None.

    Attributes:
        cosine: Cosine similarity (-1.0 to 1.0)
        euclidean: L2 distance (lower = closer)
        manhattan: L1 distance (lower = closer)
        dot_product: Raw dot product
        passage_score: Retrieval-probability proxy (0 to 100)
    """
    cosine: float
    euclidean: Optional[float] = None
    manhattan: Optional[float] = None
    dot_product: Optional[float] = None
    passage_score: Optional[float] = None

    @property
    def effective_passage_score(self) -> float:
        """Passage score, falling back to cosine * 100 when not recorded."""
        if self.passage_score is not None:
            return self.passage_score
        return self.cosine * 100


@dataclass(frozen=True)
class KeywordScore:
    """Scores for one query keyword against a chunk."""
    keyword: str
    scores: SimilarityScores


@dataclass
class ChunkScore:
    """
    A chunk identity plus its per-query scores, in query order.

    Keywords are stored case-normalized so lookups ignore case and
    surrounding whitespace.
    """
    chunk_index: int
    chunk_id: str
    text: str
    word_count: int
    char_count: int
    keyword_scores: List[KeywordScore] = field(default_factory=list)

    def score_for(self, query: str) -> Optional[SimilarityScores]:
        """Return the scores recorded for a query, or None."""
        key = normalize_keyword(query)
        for ks in self.keyword_scores:
            if ks.keyword == key:
                return ks.scores
        return None


@dataclass(frozen=True)
class Query:
    """A target query with its intent type."""
    text: str
    intent_type: IntentType = IntentType.PRIMARY


@dataclass(frozen=True)
class QueryScores:
    """
    Scores tracked for a coverage work item.

    semantic_similarity is on the 0-1 cosine scale; passage_score on 0-100.
    """
    passage_score: float
    semantic_similarity: float
    lexical_score: float = 0.0
    rerank_score: Optional[float] = None
    citation_score: Optional[float] = None
    entity_overlap: Optional[float] = None


@dataclass(frozen=True)
class AssignedChunk:
    """The chunk a ready query is assigned to."""
    index: int
    heading: str
    preview: str
    heading_path: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class PlacementSuggestion:
    """
    Where new content for a gap query should go.

    Attributes:
        suggested_after: Heading to place the new section after
        suggested_after_index: Position of that heading (-1 if none exist)
        suggested_level: Heading level for the new section
        reasoning: Human-readable rationale
        matched: True if a heading matched query terms, False for the default
    """
    suggested_after: str
    suggested_after_index: int
    suggested_level: str
    reasoning: str
    matched: bool


@dataclass(frozen=True)
class CoverageWorkItem:
    """
    A query tracked through the coverage/optimization workflow.

    Work items are created once per analysis and re-labeled as
    optimization steps complete; they are never deleted. Instances are
    frozen: lifecycle helpers return updated copies.
    """
    id: str
    query: str
    intent_type: IntentType
    status: QueryStatus
    is_gap: bool
    assigned_chunk: Optional[AssignedChunk] = None
    original_scores: Optional[QueryScores] = None
    current_scores: Optional[QueryScores] = None
    is_approved: bool = False
    suggested_placement: Optional[str] = None
    suggested_heading_level: Optional[str] = None
    optimized_text: Optional[str] = None
    approved_text: Optional[str] = None
