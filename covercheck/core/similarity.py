"""
Vector similarity calculations.

This module provides the scoring primitives used throughout the coverage
engine: cosine similarity, Euclidean and Manhattan distance, dot product,
and the derived Passage Score.

Mathematical Background:
Cosine similarity measures the angle between two vectors:
    cos(theta) = (A . B) / (||A|| * ||B||)

Passage Score is a 0-100 retrieval-probability proxy derived from cosine:
    passage_score = round(100 * clamp(cos(theta), 0, 1))

Negative cosine values carry no retrieval probability and map to 0.

Degenerate input:
A zero-magnitude vector has no direction. Cosine similarity against it is
defined as 0.0 rather than raised as an error. Mismatched lengths, on the
other hand, always raise VectorLengthError; vectors are never truncated.
"""

from typing import List, Sequence, Union
import numpy as np

from covercheck.core.models import SimilarityScores, Vector


VectorLike = Union[Vector, Sequence[float]]


class SimilarityError(ValueError):
    """Raised when similarity inputs are invalid."""
    pass


class VectorLengthError(SimilarityError):
    """Raised when two vectors have different lengths."""

    def __init__(self, operation: str, len_a: int, len_b: int):
        self.operation = operation
        self.len_a = len_a
        self.len_b = len_b
        super().__init__(
            f"{operation}: vector length mismatch ({len_a} vs {len_b})"
        )


def _as_pair(vec_a: VectorLike, vec_b: VectorLike, operation: str):
    """Convert inputs to 1-D float arrays and check their lengths agree."""
    a = np.asarray(vec_a, dtype=np.float64)
    b = np.asarray(vec_b, dtype=np.float64)
    if a.ndim != 1 or b.ndim != 1:
        raise SimilarityError(
            f"{operation}: expected 1-D vectors, got shapes {a.shape} and {b.shape}"
        )
    if a.shape != b.shape:
        raise VectorLengthError(operation, a.size, b.size)
    return a, b


def cosine_similarity(vec_a: VectorLike, vec_b: VectorLike) -> float:
    """
    Compute cosine similarity between two vectors.

    Args:
        vec_a: First embedding vector
        vec_b: Second embedding vector

    Returns:
        Cosine similarity (-1.0 to 1.0), or 0.0 if either vector has
        zero magnitude

    Raises:
        SimilarityError: If either input is not a 1-D vector
        VectorLengthError: If vectors have different lengths
    """
    a, b = _as_pair(vec_a, vec_b, "cosine_similarity")

    norm_a = np.linalg.norm(a)
    norm_b = np.linalg.norm(b)
    if norm_a == 0 or norm_b == 0:
        return 0.0

    similarity = np.dot(a, b) / (norm_a * norm_b)

    # Clamp to [-1, 1] to handle floating point errors
    return float(np.clip(similarity, -1.0, 1.0))


def euclidean_distance(vec_a: VectorLike, vec_b: VectorLike) -> float:
    """L2 distance between two vectors. Lower = more similar."""
    a, b = _as_pair(vec_a, vec_b, "euclidean_distance")
    return float(np.sqrt(np.sum((a - b) ** 2)))


def manhattan_distance(vec_a: VectorLike, vec_b: VectorLike) -> float:
    """L1 (taxicab) distance between two vectors. Lower = more similar."""
    a, b = _as_pair(vec_a, vec_b, "manhattan_distance")
    return float(np.sum(np.abs(a - b)))


def dot_product(vec_a: VectorLike, vec_b: VectorLike) -> float:
    """Dot product of two vectors."""
    a, b = _as_pair(vec_a, vec_b, "dot_product")
    return float(np.dot(a, b))


def passage_score(cosine: float) -> int:
    """
    Convert a cosine similarity into a Passage Score (0-100).

    Score interpretation:
    - 90-100: Excellent retrieval probability
    - 75-89: Good
    - 60-74: Moderate
    - 40-59: Weak
    - 0-39: Poor

    Args:
        cosine: Cosine similarity between chunk and query

    Returns:
        Integer score in [0, 100]; monotonic non-decreasing in cosine
    """
    clamped = min(1.0, max(0.0, float(cosine)))
    # Half-up rounding (round() would round 0.5 to even)
    return int(np.floor(clamped * 100 + 0.5))


def calculate_all_metrics(vec_a: VectorLike, vec_b: VectorLike) -> SimilarityScores:
    """
    Calculate every similarity metric for a (query, chunk) vector pair.

    Raises:
        VectorLengthError: If vectors have different lengths
    """
    cosine = cosine_similarity(vec_a, vec_b)
    return SimilarityScores(
        cosine=cosine,
        euclidean=euclidean_distance(vec_a, vec_b),
        manhattan=manhattan_distance(vec_a, vec_b),
        dot_product=dot_product(vec_a, vec_b),
        passage_score=passage_score(cosine),
    )


def compute_similarity_matrix(
    query_vecs: List[VectorLike],
    chunk_vecs: List[VectorLike],
) -> np.ndarray:
    """
    Cosine similarity for every (query, chunk) pair.

    Returns:
        Array of shape (len(query_vecs), len(chunk_vecs))

    Raises:
        VectorLengthError: If any pair of vectors differs in length
    """
    matrix = np.zeros((len(query_vecs), len(chunk_vecs)), dtype=np.float64)
    for qi, q in enumerate(query_vecs):
        for ci, c in enumerate(chunk_vecs):
            matrix[qi, ci] = cosine_similarity(q, c)
    return matrix


def chamfer_similarity(
    chunk_vecs: List[VectorLike],
    query_vecs: List[VectorLike],
) -> float:
    """
    Document-level aggregate similarity between two sets of vectors.

    For each chunk, take its best cosine against any query; for each query,
    take its best cosine against any chunk. The result is the average of
    the two directional means, so it rewards documents whose chunks cover
    all queries and whose queries are all covered by some chunk.

    Args:
        chunk_vecs: All chunk embeddings
        query_vecs: All query embeddings

    Returns:
        Aggregate similarity, or 0.0 if either set is empty

    Raises:
        SimilarityError: If vectors do not share one dimensionality
    """
    if not chunk_vecs or not query_vecs:
        return 0.0

    dims = {np.asarray(v).size for v in list(chunk_vecs) + list(query_vecs)}
    if len(dims) != 1:
        raise SimilarityError(
            f"chamfer_similarity: all vectors must share one dimensionality, got {sorted(dims)}"
        )

    matrix = compute_similarity_matrix(query_vecs, chunk_vecs)
    chunk_to_query = matrix.max(axis=0).mean()
    query_to_chunk = matrix.max(axis=1).mean()
    return float((chunk_to_query + query_to_chunk) / 2)


def calculate_improvement(original_score: float, new_score: float) -> float:
    """Percentage change from original_score to new_score."""
    if original_score == 0:
        return 100.0 if new_score > 0 else 0.0
    return (new_score - original_score) / abs(original_score) * 100
