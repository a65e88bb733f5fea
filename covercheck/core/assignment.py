"""
Greedy one-to-one assignment of queries to chunks.

Each query is matched to at most one chunk and each chunk serves at most
one query. The algorithm is a greedy best-match walk, not an optimal
bipartite matching:

1. Collect every (query, chunk) pair whose passage score meets the
   threshold (default 45 on the 0-100 scale).
2. Sort candidates by score, highest first. The sort is stable, so equal
   scores keep enumeration order: lowest query index, then lowest chunk
   index wins.
3. Walk the sorted list once, accepting a pair only if neither its query
   nor its chunk has been claimed.
4. Queries left unclaimed are coverage gaps (None).

When several pairs tie at the top, the walk decides the outcome; the
result is deterministic but may differ from a global optimum.

This module also normalizes free-text intent labels into IntentType.
"""

from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Set

from covercheck.core.models import (
    Assignment,
    ChunkScore,
    IntentType,
    QueryScores,
)


# Default minimum passage score for a pair to be considered a match
DEFAULT_SCORE_THRESHOLD = 45


class AssignmentError(ValueError):
    """Raised when assignment inputs are invalid."""
    pass


@dataclass(frozen=True)
class Candidate:
    """A scored (query, chunk) pair eligible for assignment."""
    query_index: int
    chunk_index: int
    score: float


def collect_candidates(
    queries: Sequence[str],
    chunk_scores: Sequence[ChunkScore],
    score_threshold: float = DEFAULT_SCORE_THRESHOLD,
) -> List[Candidate]:
    """
    Enumerate (query, chunk) pairs at or above the threshold.

    Pairs are produced query-major, chunk-minor, which is the order ties
    are resolved in after sorting.
    """
    candidates: List[Candidate] = []
    for query_index, query in enumerate(queries):
        for chunk_index, cs in enumerate(chunk_scores):
            scores = cs.score_for(query)
            if scores is None:
                continue
            score = scores.effective_passage_score
            if score >= score_threshold:
                candidates.append(Candidate(query_index, chunk_index, score))
    return candidates


def assign_queries_to_chunks(
    queries: Sequence[str],
    chunk_scores: Sequence[ChunkScore],
    score_threshold: float = DEFAULT_SCORE_THRESHOLD,
) -> Assignment:
    """
    Assign each query to its best available chunk.

    Args:
        queries: Query texts, in order
        chunk_scores: Per-chunk scores, in document order. The chunk index
            used in the result is the position in this list.
        score_threshold: Minimum passage score (0-100) for a match

    Returns:
        Mapping of every query index to a chunk index, or None for a gap.
        No chunk index appears twice.

    Raises:
        AssignmentError: If queries is empty or the threshold is out of range

    Example:
        >>> assignment = assign_queries_to_chunks(["refund policy"], chunk_scores)
        >>> assignment[0]
        2
    """
    if not queries:
        raise AssignmentError("assign_queries_to_chunks: query list is empty")
    if not 0 <= score_threshold <= 100:
        raise AssignmentError(
            f"assign_queries_to_chunks: threshold {score_threshold} outside 0-100"
        )

    candidates = collect_candidates(queries, chunk_scores, score_threshold)

    # Stable: equal scores keep (query, chunk) enumeration order
    candidates.sort(key=lambda c: c.score, reverse=True)

    assignments: Dict[int, Optional[int]] = {}
    claimed_chunks: Set[int] = set()

    for candidate in candidates:
        if candidate.query_index in assignments:
            continue
        if candidate.chunk_index in claimed_chunks:
            continue
        assignments[candidate.query_index] = candidate.chunk_index
        claimed_chunks.add(candidate.chunk_index)

    return {i: assignments.get(i) for i in range(len(queries))}


def best_score_for_query(
    query: str,
    chunk_index: Optional[int],
    chunk_scores: Sequence[ChunkScore],
) -> Optional[QueryScores]:
    """
    Scores for a query against its assigned chunk.

    For a gap (chunk_index is None), return the best partial match across
    all chunks instead, ignoring zero scores.

    Returns:
        QueryScores, or None if nothing was recorded
    """
    if chunk_index is None:
        best = None
        best_score = 0.0
        for cs in chunk_scores:
            scores = cs.score_for(query)
            if scores is None:
                continue
            if scores.effective_passage_score > best_score:
                best_score = scores.effective_passage_score
                best = scores
        if best is None:
            return None
        return QueryScores(
            passage_score=best.effective_passage_score,
            semantic_similarity=best.cosine,
        )

    if not 0 <= chunk_index < len(chunk_scores):
        return None
    scores = chunk_scores[chunk_index].score_for(query)
    if scores is None:
        return None
    return QueryScores(
        passage_score=scores.effective_passage_score,
        semantic_similarity=scores.cosine,
    )


# Substring fallbacks, checked in order after an exact match fails
_INTENT_SYNONYMS = (
    ("FOLLOW", IntentType.FOLLOW_UP),
    ("SPEC", IntentType.SPECIFICATION),
    ("GENERAL", IntentType.GENERALIZATION),
    ("EQUIV", IntentType.EQUIVALENT),
    ("ENTAIL", IntentType.ENTAILMENT),
    ("CANON", IntentType.CANONICALIZATION),
    ("CLARIF", IntentType.CLARIFICATION),
)


def normalize_intent_type(raw: Optional[str]) -> IntentType:
    """
    Normalize a free-text intent label to an IntentType.

    The label is upper-cased and spaces/hyphens become underscores. An
    exact enum match wins; otherwise known fragments resolve synonyms
    (e.g. "follow-up question" -> FOLLOW_UP). Anything else is PRIMARY.
    """
    if not raw or not raw.strip():
        return IntentType.PRIMARY

    normalized = raw.strip().upper().replace(" ", "_").replace("-", "_")

    try:
        return IntentType(normalized)
    except ValueError:
        pass

    for fragment, intent in _INTENT_SYNONYMS:
        if fragment in normalized:
            return intent

    return IntentType.PRIMARY
