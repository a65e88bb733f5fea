"""
Qualitative tiers for similarity scores.

Two independent tier scales exist and must not be conflated:
- passage_score_tier(): Passage Score on a 0-100 scale
- cosine_tier(): raw cosine similarity on a -1..1 scale

Distance metrics (Euclidean, Manhattan) and dot product have no absolute
scale. score_quality() returns None for them so callers never fabricate a
quality judgment.

Thresholds are heuristics, not ground truth.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional


class ScoreTier(Enum):
    """Qualitative tier for a score."""
    EXCELLENT = "excellent"
    GOOD = "good"
    MODERATE = "moderate"
    WEAK = "weak"
    POOR = "poor"


# Passage Score breakpoints (0-100)
PASSAGE_SCORE_THRESHOLDS = {
    "excellent": 90,
    "good": 75,
    "moderate": 60,
    "weak": 40,
    # < 40: poor
}

# Cosine breakpoints (-1..1)
COSINE_THRESHOLDS = {
    "excellent": 0.9,
    "good": 0.7,
    "moderate": 0.5,
    "weak": 0.3,
    # < 0.3: poor
}

# Document aggregate (Chamfer) interpretation breakpoints (0-1)
AGGREGATE_THRESHOLDS = {
    "excellent": 0.7,
    "good": 0.5,
    "moderate": 0.3,
    # < 0.3: weak
}


def _tier_from(value: float, thresholds: Dict[str, float]) -> ScoreTier:
    for name in ("excellent", "good", "moderate", "weak"):
        if value >= thresholds[name]:
            return ScoreTier(name)
    return ScoreTier.POOR


def passage_score_tier(score: float) -> ScoreTier:
    """Tier for a Passage Score on the 0-100 scale."""
    return _tier_from(score, PASSAGE_SCORE_THRESHOLDS)


def cosine_tier(cosine: float) -> ScoreTier:
    """Tier for a raw cosine similarity on the -1..1 scale."""
    return _tier_from(cosine, COSINE_THRESHOLDS)


@dataclass(frozen=True)
class ScoreMetadata:
    """Display metadata for one similarity metric."""
    label: str
    range: str
    direction: str  # "higher" or "lower" is better
    has_quality: bool


SCORE_METADATA: Dict[str, ScoreMetadata] = {
    "passage_score": ScoreMetadata("Passage Score", "0 to 100", "higher", True),
    "cosine": ScoreMetadata("Cosine Similarity", "-1 to 1", "higher", True),
    "euclidean": ScoreMetadata("Euclidean Distance", "0 to inf", "lower", False),
    "manhattan": ScoreMetadata("Manhattan Distance", "0 to inf", "lower", False),
    "dot_product": ScoreMetadata("Dot Product", "varies", "higher", False),
}


def score_quality(metric: str, value: float) -> Optional[ScoreTier]:
    """
    Tier for a metric value, or None if the metric has no absolute scale.

    Args:
        metric: One of the keys of SCORE_METADATA
        value: Metric value

    Returns:
        ScoreTier for passage_score and cosine; None for distance metrics
        and dot product

    Raises:
        ValueError: If the metric name is unknown
    """
    if metric not in SCORE_METADATA:
        raise ValueError(f"Unknown metric: {metric}")
    if metric == "passage_score":
        return passage_score_tier(value)
    if metric == "cosine":
        return cosine_tier(value)
    return None


_INTERPRETATIONS = {
    ScoreTier.EXCELLENT: "High retrieval probability. Very likely to make top 5 results in RAG systems.",
    ScoreTier.GOOD: "Good retrieval probability. Strong candidate for top 10 results.",
    ScoreTier.MODERATE: "Moderate retrieval probability. Competitive but depends on other content.",
    ScoreTier.WEAK: "Weak retrieval probability. May be retrieved if competition is low.",
    ScoreTier.POOR: "Poor retrieval probability. Likely filtered out during initial retrieval.",
}

_RECOMMENDATIONS = {
    ScoreTier.EXCELLENT: "Content is well-optimized. Monitor for changes and maintain quality.",
    ScoreTier.GOOD: "Content performs well. Consider minor improvements to reach excellent tier.",
    ScoreTier.MODERATE: "Optimize passage boundaries, add context, or improve semantic relevance.",
    ScoreTier.WEAK: "Significant restructuring needed. Review heading hierarchy and passage atomicity.",
    ScoreTier.POOR: "Major optimization required. Content may not be relevant to query or poorly structured.",
}


def passage_score_interpretation(score: float) -> str:
    """Human-readable interpretation of a Passage Score."""
    return _INTERPRETATIONS[passage_score_tier(score)]


def passage_score_recommendation(score: float) -> str:
    """Suggested next action for a Passage Score."""
    return _RECOMMENDATIONS[passage_score_tier(score)]


def aggregate_interpretation(score: float) -> str:
    """
    Interpretation label for a document-level aggregate similarity (0-1).

    Returns one of "excellent", "good", "moderate", "weak".
    """
    if score >= AGGREGATE_THRESHOLDS["excellent"]:
        return "excellent"
    elif score >= AGGREGATE_THRESHOLDS["good"]:
        return "good"
    elif score >= AGGREGATE_THRESHOLDS["moderate"]:
        return "moderate"
    else:
        return "weak"
