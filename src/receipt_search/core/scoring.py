"""Weighted fusion of vector and lexical scores."""

import logging
from typing import Dict, Iterable, List, Mapping

import numpy as np

from ..models.entities import Entity
from ..models.result import SearchResult
from ..utils.validators import validate_weights
from .exceptions import ValidationError

logger = logging.getLogger(__name__)


def normalize_scores(scores: Mapping[str, float]) -> Dict[str, float]:
    """
    Min-max normalize a family of scores to [0, 1].

    When every score is equal the family carries no ranking signal; each
    score becomes 1.0 if it is positive and 0.0 otherwise.
    """
    if not scores:
        return {}

    keys = list(scores.keys())
    values = np.asarray([scores[key] for key in keys], dtype=np.float64)
    low, high = float(values.min()), float(values.max())

    if high - low <= 1e-12:
        fill = 1.0 if high > 0 else 0.0
        return {key: fill for key in keys}

    normalized = (values - low) / (high - low)
    return {key: float(value) for key, value in zip(keys, np.clip(normalized, 0.0, 1.0))}


class HybridScorer:
    """Combines normalized vector similarity and text relevance."""

    def __init__(self, tolerance: float = 0.01):
        self.tolerance = tolerance

    def validate_weights(self, vector_weight: float, text_weight: float) -> None:
        """
        Raises:
            ValidationError: If the weights do not sum to 1.0 within tolerance
        """
        validate_weights(vector_weight, text_weight, self.tolerance)

    def score(
        self,
        vector_similarity: float,
        text_relevance: float,
        vector_weight: float,
        text_weight: float
    ) -> float:
        """
        Compute the combined score.

        Args:
            vector_similarity: Vector similarity in [0, 1]
            text_relevance: Text relevance in [0, 1]
            vector_weight: Weight of the vector score
            text_weight: Weight of the text score

        Returns:
            vector_weight * vector_similarity + text_weight * text_relevance

        Raises:
            ValidationError: If weights are invalid or inputs are not normalized
        """
        self.validate_weights(vector_weight, text_weight)
        for name, value in (("vector_similarity", vector_similarity), ("text_relevance", text_relevance)):
            if value is None or not 0.0 <= value <= 1.0:
                raise ValidationError(f"{name} must already be normalized to [0, 1], got {value}")

        combined = vector_weight * vector_similarity + text_weight * text_relevance
        # Weights may sum to slightly more than 1.0 within tolerance.
        return min(max(combined, 0.0), 1.0)

    def fuse(
        self,
        vector_scores: Mapping[str, float],
        text_scores: Mapping[str, float],
        items: Mapping[str, Entity],
        vector_weight: float,
        text_weight: float
    ) -> List[SearchResult]:
        """
        Score the union of both candidate families.

        A candidate missing from one family scores 0 in that family.
        Inputs must already be normalized.
        """
        self.validate_weights(vector_weight, text_weight)

        results = []
        for item_id in set(vector_scores) | set(text_scores):
            item = items[item_id]
            vector_score = vector_scores.get(item_id, 0.0)
            text_score = text_scores.get(item_id, 0.0)
            results.append(SearchResult(
                item_id=item_id,
                item_type=item.entity_type,
                vector_score=vector_score,
                text_score=text_score,
                combined_score=self.score(vector_score, text_score, vector_weight, text_weight),
                raw_item=item
            ))
        return self.rank(results)

    @staticmethod
    def rank(results: Iterable[SearchResult]) -> List[SearchResult]:
        """Sort by combined score, then vector score, then item id."""
        return sorted(
            results,
            key=lambda result: (-result.combined_score, -result.vector_score, result.item_id)
        )
