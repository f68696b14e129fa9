"""Search result data models and per-domain result shaping."""

from datetime import datetime
from typing import Any, Dict, List, Optional
from dataclasses import dataclass, field

from ..core.exceptions import ValidationError
from ..utils.text_processing import TextProcessor
from .entities import ConversationMessage, Entity, EntityType, Receipt, Warranty
from .query import EntityMap, IntentLabel

_text_processor = TextProcessor()


@dataclass
class SearchResult:
    """
    Single ranked retrieval hit.

    Attributes:
        item_id: Identifier of the matched record
        item_type: Type of the matched record
        vector_score: Normalized vector similarity (0.0-1.0)
        text_score: Normalized lexical relevance (0.0-1.0)
        combined_score: Weighted combination of both scores (0.0-1.0)
        raw_item: The matched record
    """
    item_id: str
    item_type: EntityType
    vector_score: float
    text_score: float
    combined_score: float
    raw_item: Entity

    def __post_init__(self) -> None:
        """Validate search result."""
        for name in ("vector_score", "text_score", "combined_score"):
            if not 0.0 <= getattr(self, name) <= 1.0:
                raise ValidationError(f"{name} must be between 0.0 and 1.0")

    def to_dict(
        self,
        now: Optional[datetime] = None,
        query_terms: Optional[List[str]] = None
    ) -> Dict[str, Any]:
        """Convert to dictionary; receipt snippets are centred on the query terms."""
        return {
            "id": self.item_id,
            "type": self.item_type.value,
            "vector_score": round(self.vector_score, 4),
            "text_score": round(self.text_score, 4),
            "combined_score": round(self.combined_score, 4),
            "item": project_item(self.raw_item, now or datetime.now(), query_terms),
        }


@dataclass
class RankedResults:
    """Ranked result set with query metadata."""
    query: str
    intent: IntentLabel
    entities: EntityMap
    mode: str
    results: List[SearchResult] = field(default_factory=list)
    domain: Optional[str] = None
    timestamp: datetime = field(default_factory=datetime.now)

    @property
    def count(self) -> int:
        return len(self.results)

    def __len__(self) -> int:
        return len(self.results)

    def __iter__(self):
        return iter(self.results)

    def ids(self) -> List[str]:
        return [result.item_id for result in self.results]

    def to_dict(self) -> Dict[str, Any]:
        query_terms = _text_processor.content_words(self.query)
        return {
            "query": self.query,
            "intent": self.intent.value,
            "entities": self.entities.to_dict(),
            "mode": self.mode,
            "domain": self.domain,
            "count": self.count,
            "items": [result.to_dict(self.timestamp, query_terms) for result in self.results],
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass(frozen=True)
class DuplicateCandidate:
    """Record that is a likely duplicate of the reference record."""
    item_id: str
    similarity: float
    reference_id: str

    def __post_init__(self) -> None:
        if not 0.0 <= self.similarity <= 1.0:
            raise ValidationError("Similarity must be between 0.0 and 1.0")
        if self.item_id == self.reference_id:
            raise ValidationError("A record cannot be its own duplicate")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "item_id": self.item_id,
            "similarity": round(self.similarity, 4),
            "reference_id": self.reference_id,
        }


@dataclass
class Insight:
    """Single spending insight."""
    type: str
    title: str
    description: str
    confidence: float
    data: Dict[str, Any] = field(default_factory=dict)
    recommendations: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "title": self.title,
            "description": self.description,
            "confidence": round(self.confidence, 4),
            "data": self.data,
            "recommendations": self.recommendations,
        }


@dataclass
class Insights:
    """Aggregated spending analysis for a timeframe."""
    query: str
    timeframe_days: int
    record_count: int
    total_spent: float
    average_amount: float
    category_breakdown: Dict[str, Dict[str, float]]
    insights: List[Insight] = field(default_factory=list)
    semantic: bool = False
    entities: EntityMap = field(default_factory=EntityMap)

    def by_type(self, insight_type: str) -> List[Insight]:
        return [insight for insight in self.insights if insight.type == insight_type]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "query": self.query,
            "timeframe_days": self.timeframe_days,
            "record_count": self.record_count,
            "total_spent": round(self.total_spent, 2),
            "average_amount": round(self.average_amount, 2),
            "category_breakdown": self.category_breakdown,
            "semantic": self.semantic,
            "entities": self.entities.to_dict(),
            "insights": [insight.to_dict() for insight in self.insights],
        }


def project_item(item: Entity, now: datetime, query_terms: Optional[List[str]] = None) -> Dict[str, Any]:
    """Shape a record for output according to its domain."""
    if isinstance(item, Receipt):
        return {
            "id": item.id,
            "merchant_name": item.merchant_name,
            "total_amount": item.amount,
            "purchase_date": _iso(item.purchase_date),
            "category_name": item.category_name,
            "tags": list(item.tags),
            "is_business_expense": item.is_business_expense,
            "snippet": _text_processor.generate_context_snippet(item.ocr_text or "", query_terms or []),
        }
    if isinstance(item, Warranty):
        return {
            "id": item.id,
            "product_name": item.product_name,
            "product_brand": item.product_brand,
            "product_model": item.product_model,
            "warranty_end_date": _iso(item.warranty_end_date),
            "warranty_status": item.status(now),
            "days_until_expiry": item.days_until_expiry(now),
            "support_contact": item.support_contact,
        }
    if isinstance(item, ConversationMessage):
        return {
            "id": item.id,
            "conversation_id": item.conversation_id,
            "message_type": item.message_type,
            "content": item.content,
            "created_at": _iso(item.created_at),
        }
    return {"id": getattr(item, "id", None)}


def _iso(value) -> Optional[str]:
    return value.isoformat() if value is not None else None

