"""
Diagnostic scoring for (chunk, query) pairs.

Semantic similarity says whether a chunk is *about* a query. The
diagnostics in this module estimate the other signals retrieval systems
weigh when choosing which passage to surface and cite:

- Lexical: do the query's terms literally appear, and where?
- Rerank: does the chunk lead with the answer in a clear structure?
- Citation: is the chunk specific and quotable?

They are heuristics over plain text; no embeddings are recomputed. The
composite score combines them with the semantic score:

    composite = 0.40 semantic + 0.20 lexical + 0.25 rerank + 0.15 citation

All scores are on a 0-1 scale.
"""

import re
from typing import List, Sequence

from covercheck.core.events import (
    CitationBreakdown,
    DiagnosticRecord,
    LexicalBreakdown,
    RerankBreakdown,
)


COMPOSITE_WEIGHTS = {
    "semantic": 0.40,
    "lexical": 0.20,
    "rerank": 0.25,
    "citation": 0.15,
}

STOP_WORDS = frozenset({
    'a', 'an', 'the', 'and', 'or', 'but', 'is', 'are', 'was', 'were', 'be', 'been', 'being',
    'have', 'has', 'had', 'do', 'does', 'did', 'will', 'would', 'could', 'should', 'may', 'might',
    'can', 'to', 'of', 'in', 'for', 'on', 'with', 'at', 'by', 'from', 'as', 'into', 'through',
    'during', 'before', 'after', 'above', 'below', 'between', 'under', 'over', 'out', 'off',
    'up', 'down', 'about', 'against', 'i', 'me', 'my', 'myself', 'we', 'our', 'ours', 'ourselves',
    'you', 'your', 'yours', 'yourself', 'yourselves', 'he', 'him', 'his', 'himself', 'she', 'her',
    'hers', 'herself', 'it', 'its', 'itself', 'they', 'them', 'their', 'theirs', 'themselves',
    'what', 'which', 'who', 'whom', 'this', 'that', 'these', 'those', 'am', 'here', 'there',
    'when', 'where', 'why', 'how', 'all', 'each', 'few', 'more', 'most', 'other', 'some', 'such',
    'no', 'nor', 'not', 'only', 'own', 'same', 'so', 'than', 'too', 'very', 's', 't', 'just',
    'don', 'now', 'also', 'if', 'then', 'because', 'while', 'although', 'whether', 'both',
    'either', 'neither', 'anyone', 'someone', 'everyone', 'nobody', 'nothing', 'everything',
})

_DIRECT_ANSWER_PATTERNS = (
    re.compile(r"^(yes|no|it is|it was|they are|this is|the answer is)", re.IGNORECASE),
    re.compile(r"(is defined as|refers to|means that|consists of)", re.IGNORECASE),
    re.compile(r"^\d+[\s\w]*$"),
)

_BULLET_LIST = re.compile(r"(?:^|\n)\s*[-•*]\s+", re.MULTILINE)
_NUMBERED_LIST = re.compile(r"(?:^|\n)\s*\d+[.)]\s+", re.MULTILINE)


def tokenize_query(query: str) -> List[str]:
    """Lower-cased query terms, minus stop words and words of 1-2 chars."""
    words = re.sub(r"[^\w\s]", " ", query.lower()).split()
    return [w for w in words if w not in STOP_WORDS and len(w) > 2]


def lexical_score(
    chunk_text: str,
    body_text: str,
    query: str,
    heading_path: Sequence[str],
) -> LexicalBreakdown:
    """
    Literal term overlap between a query and a chunk.

    score = 0.4 term coverage (body) + 0.25 exact phrase
            + 0.2 heading (title) boost + 0.15 terms in first 100 chars
    """
    terms = tokenize_query(query)
    if not terms:
        return LexicalBreakdown(score=0.0, term_coverage=0.0, exact_phrase_match=False)

    text_lower = chunk_text.lower()
    body_lower = body_text.lower()
    headings_lower = " ".join(h.lower() for h in heading_path)

    in_body = sum(1 for t in terms if t in body_lower)
    in_headings = sum(1 for t in terms if t in headings_lower)

    term_coverage = in_body / len(terms)
    exact_phrase = query.lower() in text_lower
    title_boost = in_headings / len(terms)
    first_100 = body_lower[:100]
    position_bonus = sum(1 for t in terms if t in first_100) / len(terms)

    score = term_coverage * 0.4
    if exact_phrase:
        score += 0.25
    score += title_boost * 0.2
    score += position_bonus * 0.15

    return LexicalBreakdown(
        score=min(score, 1.0),
        term_coverage=term_coverage,
        exact_phrase_match=exact_phrase,
    )


def rerank_score(
    chunk_text: str,
    body_text: str,
    query: str,
    heading_path: Sequence[str],
) -> RerankBreakdown:
    """
    How a cross-encoder reranker is likely to treat the chunk.

    Weights: entity prominence 0.35, direct answer 0.30, structural
    clarity 0.20, query restatement 0.15.
    """
    text_lower = chunk_text.lower()
    body_lower = body_text.lower()
    terms = tokenize_query(query)

    first_sentence = re.split(r"[.!?]", body_lower)[0]
    if terms:
        entity_prominence = sum(1 for t in terms if t in first_sentence) / len(terms)
    else:
        entity_prominence = 0.0

    has_direct_answer = any(p.search(first_sentence) for p in _DIRECT_ANSWER_PATTERNS)
    direct_answer = 0.8 if has_direct_answer else 0.2

    has_list = bool(_BULLET_LIST.search(chunk_text) or _NUMBERED_LIST.search(chunk_text))
    structural_clarity = 0.7 if has_list or heading_path else 0.3

    query_words = [w for w in query.lower().split() if len(w) > 3]
    if query_words:
        restatement = sum(1 for w in query_words if w in text_lower) / len(query_words)
    else:
        restatement = 0.0

    score = (
        entity_prominence * 0.35
        + direct_answer * 0.30
        + structural_clarity * 0.20
        + restatement * 0.15
    )
    return RerankBreakdown(
        score=min(score, 1.0),
        entity_prominence=entity_prominence,
        direct_answer=direct_answer,
    )


def citation_score(body_text: str) -> CitationBreakdown:
    """
    Likelihood that a generative answer would quote this chunk.

    Specificity rewards numbers, years and proper nouns; quotability is
    the share of sentences with 5-25 words.
    """
    has_numbers = bool(re.search(r"\d+", body_text))
    has_year = bool(re.search(r"\b(19|20)\d{2}\b", body_text))
    has_proper_nouns = bool(re.search(r"\b[A-Z][a-z]+(?:\s+[A-Z][a-z]+)*\b", body_text))
    specificity = (
        (0.3 if has_numbers else 0.0)
        + (0.3 if has_year else 0.0)
        + (0.4 if has_proper_nouns else 0.0)
    )

    sentences = [s for s in re.split(r"[.!?]+", body_text) if len(s.strip()) > 10]
    quotable = [s for s in sentences if 5 <= len(s.split()) <= 25]
    quotability = len(quotable) / len(sentences) if sentences else 0.0

    score = specificity * 0.5 + quotability * 0.5
    return CitationBreakdown(
        score=min(score, 1.0),
        specificity=specificity,
        quotability=quotability,
    )


def composite_score(semantic: float, lexical: float, rerank: float, citation: float) -> float:
    """Weighted combination of the four diagnostic signals."""
    return (
        semantic * COMPOSITE_WEIGHTS["semantic"]
        + lexical * COMPOSITE_WEIGHTS["lexical"]
        + rerank * COMPOSITE_WEIGHTS["rerank"]
        + citation * COMPOSITE_WEIGHTS["citation"]
    )


def diagnose_pair(
    chunk_index: int,
    chunk_text: str,
    body_text: str,
    heading_path: Sequence[str],
    query: str,
    semantic: float,
) -> DiagnosticRecord:
    """
    Full diagnostic record for one (chunk, query) pair.

    Args:
        chunk_index: Chunk position in the document
        chunk_text: Chunk text including heading cascade
        body_text: Chunk text without heading cascade
        heading_path: Headings enclosing the chunk
        query: Query text
        semantic: Semantic score on a 0-1 scale (passage score / 100)
    """
    lexical = lexical_score(chunk_text, body_text, query, heading_path)
    rerank = rerank_score(chunk_text, body_text, query, heading_path)
    citation = citation_score(body_text)
    return DiagnosticRecord(
        chunk_index=chunk_index,
        query=query,
        semantic=semantic,
        lexical=lexical,
        rerank=rerank,
        citation=citation,
        composite=composite_score(semantic, lexical.score, rerank.score, citation.score),
    )
