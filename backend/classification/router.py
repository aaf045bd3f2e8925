"""
Similarity Router: decides what to do with an idea given bucket vectors.

    best <  min_similarity              -> NO_MATCH      (create a new bucket)
    one bucket within tie_threshold     -> CLEAR_WINNER  (assign directly)
    2+ buckets within tie_threshold     -> TIE           (LLM picks, never arbitrary)
    nothing scorable                    -> NO_SIGNAL     (full LLM classification)

Confidence for similarity-based assignments is a linear map of
[min_similarity, 1.0] onto [min_confidence, max_confidence], clamped, so it
stays monotonic in similarity and never reflects raw cosine values directly.
"""

import logging
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Optional

from classification.vector_math import VectorLike, cosine_similarity
from config import get_settings
from errors import DimensionMismatch
from models import Bucket

logger = logging.getLogger(__name__)

# Absorbs float error so a gap of exactly tie_threshold counts as a tie
TIE_EPSILON = 1e-9


class RouteOutcome(str, Enum):
    CLEAR_WINNER = "clear_winner"
    TIE = "tie"
    NO_MATCH = "no_match"
    NO_SIGNAL = "no_signal"


@dataclass
class ScoredBucket:
    """A bucket with its similarity to the idea being classified."""
    bucket: Bucket
    similarity: float


@dataclass
class RouteDecision:
    outcome: RouteOutcome
    # All scored buckets, best first
    scored: list[ScoredBucket] = field(default_factory=list)
    # Buckets within tie_threshold of the best (includes the best)
    tied: list[ScoredBucket] = field(default_factory=list)

    @property
    def best(self) -> Optional[ScoredBucket]:
        return self.scored[0] if self.scored else None


def similarity_to_confidence(
    similarity: float,
    min_similarity: float = 0.35,
    min_confidence: int = 35,
    max_confidence: int = 95
) -> int:
    """Map a cosine similarity to an integer confidence in [min, max]."""
    if similarity <= min_similarity:
        return min_confidence

    span = max_confidence - min_confidence
    raw = min_confidence + (similarity - min_similarity) * span / (1.0 - min_similarity)
    # Round half up
    rounded = int(math.floor(raw + 0.5))
    return max(min_confidence, min(max_confidence, rounded))


class SimilarityRouter:
    """Scores an idea vector against bucket vectors and classifies the outcome."""

    def __init__(
        self,
        min_similarity: float = None,
        tie_threshold: float = None,
        min_confidence: int = None,
        max_confidence: int = None
    ):
        settings = get_settings()
        self.min_similarity = (
            settings.min_similarity if min_similarity is None else min_similarity
        )
        self.tie_threshold = (
            settings.tie_threshold if tie_threshold is None else tie_threshold
        )
        self.min_confidence = (
            settings.min_confidence if min_confidence is None else min_confidence
        )
        self.max_confidence = (
            settings.max_confidence if max_confidence is None else max_confidence
        )

    def score(
        self,
        idea_vector: VectorLike,
        candidates: Iterable[tuple[Bucket, VectorLike]]
    ) -> list[ScoredBucket]:
        """Score every candidate, dropping ones that cannot be compared."""
        scored = []
        for bucket, vector in candidates:
            try:
                similarity = cosine_similarity(idea_vector, vector)
            except DimensionMismatch as e:
                logger.warning(
                    "Skipping bucket %s (%r) during scoring: %s",
                    bucket.id, bucket.title, e
                )
                continue
            scored.append(ScoredBucket(bucket=bucket, similarity=similarity))

        scored.sort(key=lambda s: s.similarity, reverse=True)
        return scored

    def route(
        self,
        idea_vector: VectorLike,
        candidates: Iterable[tuple[Bucket, VectorLike]]
    ) -> RouteDecision:
        scored = self.score(idea_vector, candidates)

        if not scored:
            return RouteDecision(outcome=RouteOutcome.NO_SIGNAL)

        best = scored[0].similarity

        if best < self.min_similarity:
            return RouteDecision(outcome=RouteOutcome.NO_MATCH, scored=scored)

        tied = [
            s for s in scored
            if best - s.similarity <= self.tie_threshold + TIE_EPSILON
        ]

        if len(tied) > 1:
            return RouteDecision(outcome=RouteOutcome.TIE, scored=scored, tied=tied)

        return RouteDecision(
            outcome=RouteOutcome.CLEAR_WINNER, scored=scored, tied=tied
        )

    def confidence_for(self, similarity: float) -> int:
        return similarity_to_confidence(
            similarity,
            min_similarity=self.min_similarity,
            min_confidence=self.min_confidence,
            max_confidence=self.max_confidence
        )
