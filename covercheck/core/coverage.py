"""
Coverage classification and work-item lifecycle.

This module turns scores and assignments into per-query coverage work
items. It answers "which queries does this document already satisfy, and
where should new content go for the ones it doesn't?"

- Ready queries get their assigned chunk's heading and a short preview.
- Gap queries get a placement suggestion from a lexical heading-overlap
  heuristic.

All functions are pure: they build new objects and never mutate inputs.
Lifecycle helpers return updated copies of the work-item list.
"""

import re
import uuid
from dataclasses import replace
from typing import Dict, List, Optional, Sequence

from covercheck.core.assignment import (
    assign_queries_to_chunks,
    best_score_for_query,
    normalize_intent_type,
)
from covercheck.core.models import (
    AssignedChunk,
    ChunkInput,
    ChunkScore,
    CoverageWorkItem,
    PlacementSuggestion,
    Query,
    QueryScores,
    QueryStatus,
)


# Minimum passage score (0-100, inclusive) for a query to count as covered
GOOD_MATCH_THRESHOLD = 45

# Maximum length of an assigned-chunk preview, including the ellipsis
PREVIEW_LENGTH = 100

DEFAULT_PLACEMENT_HEADING = "Introduction"

STOP_WORDS = frozenset({
    'what', 'how', 'why', 'when', 'where', 'who', 'which',
    'is', 'are', 'was', 'were', 'be', 'been', 'being',
    'have', 'has', 'had', 'do', 'does', 'did',
    'a', 'an', 'the', 'and', 'or', 'but', 'in', 'on', 'at', 'to', 'for',
    'of', 'with', 'by', 'from', 'as', 'into', 'through', 'during',
    'can', 'could', 'should', 'would', 'will', 'shall', 'may', 'might',
    'i', 'you', 'he', 'she', 'it', 'we', 'they', 'my', 'your', 'our',
    'this', 'that', 'these', 'those', 'there', 'here',
    'about', 'over', 'under', 'between', 'before', 'after',
    'more', 'most', 'less', 'least', 'very', 'just', 'only',
    'some', 'any', 'all', 'each', 'every', 'both', 'few', 'many',
    'much', 'such', 'other', 'another', 'same', 'different',
})


def classify_status(
    best_score: Optional[float],
    threshold: float = GOOD_MATCH_THRESHOLD,
) -> QueryStatus:
    """
    Classify a query by its best passage score.

    Returns READY when best_score >= threshold, otherwise GAP.
    A missing score is a gap.
    """
    if best_score is not None and best_score >= threshold:
        return QueryStatus.READY
    return QueryStatus.GAP


def truncate_text(text: str, max_length: int = PREVIEW_LENGTH) -> str:
    """
    Truncate text to at most max_length characters, ending in "...".

    The cut backs off to the last whitespace so words are not split,
    unless the text has no whitespace in range.
    """
    if len(text) <= max_length:
        return text

    cut = text[:max_length - 3]
    if not text[max_length - 3].isspace():
        boundary = cut.rfind(" ")
        if boundary > 0:
            cut = cut[:boundary]
    return cut.strip() + "..."


def _placement_terms(query: str) -> List[str]:
    cleaned = re.sub(r"[^\w\s]", "", query.lower())
    return [w for w in cleaned.split() if len(w) > 3]


def suggest_placement(headings: Sequence[str], query: str) -> PlacementSuggestion:
    """
    Suggest where new content for a gap query should be placed.

    Each heading is scored by how many query terms (longer than 3 chars)
    it contains, case-insensitively. The highest-scoring heading wins;
    ties go to the first heading in document order. If no heading scores
    above zero, the suggestion defaults to the last heading, or
    "Introduction" when the document has no headings.

    Args:
        headings: Section headings in document order
        query: The gap query

    Returns:
        PlacementSuggestion; matched is False for the default case

    Example:
        >>> s = suggest_placement(["Introduction", "Shipping", "Refunds and Returns"],
        ...                       "what is the refund policy")
        >>> s.suggested_after
        'Refunds and Returns'
    """
    terms = _placement_terms(query)

    best_index = -1
    best_score = 0
    for index, heading in enumerate(headings):
        heading_lower = heading.lower()
        score = sum(1 for term in terms if term in heading_lower)
        if score > best_score:
            best_index = index
            best_score = score

    if best_index >= 0:
        heading = headings[best_index]
        return PlacementSuggestion(
            suggested_after=heading,
            suggested_after_index=best_index,
            suggested_level="H2",
            reasoning=(
                f'The query "{query}" is most closely related to the section '
                f'"{heading}". Placing the new content after this section '
                f'maintains logical flow.'
            ),
            matched=True,
        )

    last_heading = headings[-1] if headings else DEFAULT_PLACEMENT_HEADING
    return PlacementSuggestion(
        suggested_after=last_heading,
        suggested_after_index=len(headings) - 1,
        suggested_level="H2",
        reasoning=(
            "No closely related section found. Suggesting placement at the "
            "end of the document as a new major section."
        ),
        matched=False,
    )


def document_headings(chunks: Sequence[ChunkInput]) -> List[str]:
    """
    Innermost heading of each chunk that has one, in document order.

    A section split across several chunks contributes its heading once.
    """
    headings: List[str] = []
    for c in chunks:
        if c.heading_path and c.heading_path[-1] not in headings:
            headings.append(c.heading_path[-1])
    return headings


def _as_query(item) -> Query:
    if isinstance(item, Query):
        return item
    return Query(text=item)


def build_work_items(
    queries: Sequence,
    chunk_scores: Sequence[ChunkScore],
    chunks: Sequence[ChunkInput],
    intent_overrides: Optional[Dict[str, str]] = None,
    score_threshold: float = GOOD_MATCH_THRESHOLD,
) -> List[CoverageWorkItem]:
    """
    Build one coverage work item per query.

    Queries are matched to chunks one-to-one with the greedy assignment
    engine at score_threshold. Assigned queries are classified from their
    assigned score; unassigned queries are gaps and get a placement
    suggestion when the document has headings.

    Args:
        queries: Query objects or plain query strings
        chunk_scores: Per-chunk scores, aligned with chunks
        chunks: Chunks in document order
        intent_overrides: Optional raw intent labels keyed by query text
        score_threshold: Minimum passage score for a match

    Returns:
        Work items in query order
    """
    query_objs = [_as_query(q) for q in queries]
    texts = [q.text for q in query_objs]
    assignments = assign_queries_to_chunks(texts, chunk_scores, score_threshold)
    headings = document_headings(chunks)
    overrides = intent_overrides or {}

    items: List[CoverageWorkItem] = []
    for index, query in enumerate(query_objs):
        if query.text in overrides:
            intent = normalize_intent_type(overrides[query.text])
        else:
            intent = query.intent_type

        chunk_index = assignments.get(index)
        scores = best_score_for_query(query.text, chunk_index, chunk_scores)

        if chunk_index is not None:
            status = classify_status(
                scores.passage_score if scores else None, score_threshold
            )
        else:
            status = QueryStatus.GAP

        assigned_chunk = None
        if status == QueryStatus.READY and chunk_index < len(chunks):
            chunk = chunks[chunk_index]
            assigned_chunk = AssignedChunk(
                index=chunk_index,
                heading=chunk.heading,
                preview=truncate_text(chunk.text, PREVIEW_LENGTH),
                heading_path=list(chunk.heading_path),
            )

        suggested_placement = None
        suggested_level = None
        if status == QueryStatus.GAP and headings:
            placement = suggest_placement(headings, query.text)
            suggested_placement = placement.suggested_after
            suggested_level = placement.suggested_level

        items.append(CoverageWorkItem(
            id=str(uuid.uuid4()),
            query=query.text,
            intent_type=intent,
            status=status,
            is_gap=status == QueryStatus.GAP,
            assigned_chunk=assigned_chunk,
            original_scores=scores,
            suggested_placement=suggested_placement,
            suggested_heading_level=suggested_level,
        ))

    return items


# -----------------------------------------------------------------------------
# Lifecycle helpers - return new lists, don't mutate
# -----------------------------------------------------------------------------

def update_query_status(
    items: Sequence[CoverageWorkItem],
    item_id: str,
    status: QueryStatus,
) -> List[CoverageWorkItem]:
    """Return items with one item's status replaced."""
    return [replace(i, status=status) if i.id == item_id else i for i in items]


def update_query_scores(
    items: Sequence[CoverageWorkItem],
    item_id: str,
    current_scores: QueryScores,
) -> List[CoverageWorkItem]:
    """Return items with one item's current scores replaced."""
    return [
        replace(i, current_scores=current_scores) if i.id == item_id else i
        for i in items
    ]


def approve_query(
    items: Sequence[CoverageWorkItem],
    item_id: str,
    approved_text: str,
) -> List[CoverageWorkItem]:
    """Mark one item approved and optimized."""
    return [
        replace(
            i,
            is_approved=True,
            approved_text=approved_text,
            status=QueryStatus.OPTIMIZED,
        ) if i.id == item_id else i
        for i in items
    ]


def coverage_summary(items: Sequence[CoverageWorkItem]) -> Dict[str, int]:
    """Counts of work items per status."""
    def count(status: QueryStatus) -> int:
        return sum(1 for i in items if i.status == status)

    return {
        "total": len(items),
        "optimized": count(QueryStatus.OPTIMIZED),
        "in_progress": count(QueryStatus.IN_PROGRESS),
        "ready": count(QueryStatus.READY),
        "gaps": count(QueryStatus.GAP),
    }


def extract_missing_concepts(query: str) -> List[str]:
    """
    Key terms of a query for gap analysis.

    Lower-cases, strips punctuation, drops stop words and words of two
    characters or fewer, and de-duplicates preserving order.
    """
    words = re.sub(r"[^\w\s]", "", query.lower()).split()
    seen: List[str] = []
    for word in words:
        if len(word) > 2 and word not in STOP_WORDS and word not in seen:
            seen.append(word)
    return seen


def extract_heading_from_content(content: str) -> Optional[str]:
    """First # or ## heading in generated markdown, if any."""
    match = re.search(r"^##?\s+(.+)$", content, re.MULTILINE)
    return match.group(1).strip() if match else None
