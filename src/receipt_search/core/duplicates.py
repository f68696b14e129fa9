"""Duplicate receipt detection."""

import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple
from dataclasses import dataclass, field

from ..models.entities import Entity, Receipt
from ..models.result import DuplicateCandidate
from ..utils.validators import validate_threshold
from .exceptions import ValidationError

logger = logging.getLogger(__name__)


@dataclass
class DuplicateGroup:
    """Receipts that look like the same purchase recorded more than once."""
    receipts: List[Receipt] = field(default_factory=list)
    confidence: str = "high"
    reason: str = "Similar merchant, amount, and date"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "confidence": self.confidence,
            "reason": self.reason,
            "receipt_ids": [receipt.id for receipt in self.receipts],
        }


class DuplicateDetector:
    """
    Selects near-identical records from nearest-neighbour hits.

    A hit is a duplicate when its similarity is at or above the threshold.
    The reference record never appears in its own result.
    """

    def __init__(self, threshold: float = 0.85, limit: int = 20):
        """
        Initialize duplicate detector.

        Args:
            threshold: Default minimum similarity, inclusive
            limit: Default maximum number of candidates
        """
        validate_threshold(threshold, "duplicate threshold")
        if limit <= 0:
            raise ValidationError("Duplicate limit must be positive")
        self.threshold = threshold
        self.limit = limit

    def select(
        self,
        hits: Sequence[Tuple[Entity, float]],
        reference_id: Optional[str],
        threshold: Optional[float] = None,
        limit: Optional[int] = None
    ) -> List[DuplicateCandidate]:
        """
        Filter vector store hits down to duplicate candidates.

        Args:
            hits: (record, similarity) pairs from the vector store
            reference_id: Record the duplicates are measured against
            threshold: Minimum similarity (detector default if None)
            limit: Maximum candidates (detector default if None)

        Returns:
            Candidates ordered by similarity, most similar first
        """
        threshold = self.threshold if threshold is None else threshold
        validate_threshold(threshold, "duplicate threshold")
        limit = self.limit if limit is None else limit

        candidates = [
            DuplicateCandidate(
                item_id=entity.id,
                similarity=min(max(similarity, 0.0), 1.0),
                reference_id=reference_id or "",
            )
            for entity, similarity in hits
            if entity.id != reference_id and similarity >= threshold
        ]
        candidates.sort(key=lambda candidate: (-candidate.similarity, candidate.item_id))
        return candidates[:limit]

    @staticmethod
    def are_potential_duplicates(
        first: Receipt,
        second: Receipt,
        amount_tolerance: float = 1.0,
        day_tolerance: int = 1
    ) -> bool:
        """Same merchant, amounts within tolerance, dates within tolerance."""
        if (first.merchant_name or "").strip().lower() != (second.merchant_name or "").strip().lower():
            return False

        if first.amount is None or second.amount is None:
            return False
        if abs(first.amount - second.amount) > amount_tolerance:
            return False

        first_date, second_date = first.occurred_at, second.occurred_at
        if first_date is None or second_date is None:
            return False
        days_apart = abs((first_date - second_date).total_seconds()) / 86400
        return days_apart <= day_tolerance

    def group_potential_duplicates(
        self,
        receipts: Sequence[Receipt],
        amount_tolerance: float = 1.0,
        day_tolerance: int = 1
    ) -> List[DuplicateGroup]:
        """
        Group receipts that match a seed receipt on merchant, amount and date.

        Each receipt joins at most one group; singletons are dropped.
        """
        groups: List[DuplicateGroup] = []
        processed = set()

        for i, current in enumerate(receipts):
            if i in processed:
                continue
            processed.add(i)
            group = [current]

            for j in range(i + 1, len(receipts)):
                if j in processed:
                    continue
                if self.are_potential_duplicates(current, receipts[j], amount_tolerance, day_tolerance):
                    group.append(receipts[j])
                    processed.add(j)

            if len(group) > 1:
                groups.append(DuplicateGroup(receipts=group))

        logger.debug(f"Grouped {len(receipts)} receipts into {len(groups)} duplicate groups")
        return groups
