"""Embedding records and generation outcomes."""

from datetime import datetime
from typing import List, Optional, Tuple
from dataclasses import dataclass

from .entities import EntityType


@dataclass(frozen=True)
class EmbeddingRecord:
    """
    Stored embedding for one canonical content string.

    Attributes:
        content_hash: SHA-256 of the canonical content text
        vector: Embedding values
        model_id: Model that produced the vector
        source_entity_type: Type of the record the content came from
        source_entity_id: Record the content was first generated for
        created_at: Generation time, used for staleness checks
    """
    content_hash: str
    vector: Tuple[float, ...]
    model_id: str
    source_entity_type: EntityType
    source_entity_id: str
    created_at: datetime

    @property
    def dimension(self) -> int:
        return len(self.vector)


@dataclass(frozen=True)
class EmbeddingResult:
    """Outcome of embedding a single record."""
    vector: List[float]
    content_text: str
    content_hash: str
    model_id: str
    cached: bool


@dataclass(frozen=True)
class EmbeddingOutcome:
    """Per-item batch outcome; exactly one of result or error is set."""
    index: int
    item_id: str
    result: Optional[EmbeddingResult] = None
    error: Optional[Exception] = None

    @property
    def success(self) -> bool:
        return self.error is None and self.result is not None

    @property
    def vector(self) -> Optional[List[float]]:
        return self.result.vector if self.result else None
