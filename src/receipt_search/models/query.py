"""Query data models: intents, extracted entities, filters and options."""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Set
from dataclasses import dataclass, replace
from pydantic import BaseModel, Field, field_validator

from ..core.exceptions import ValidationError
from .entities import Entity, EntityType, Warranty


class IntentLabel(str, Enum):
    """Closed set of query intents."""
    SEARCH = "search"
    ANALYTICS = "analytics"
    DUPLICATE_CHECK = "duplicate_check"
    WARRANTY_LOOKUP = "warranty_lookup"
    SPENDING_SUMMARY = "spending_summary"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class DateRange:
    """Date range filter for queries."""
    start: Optional[datetime] = None
    end: Optional[datetime] = None

    def __post_init__(self) -> None:
        """Validate date range."""
        if self.start and self.end and self.start > self.end:
            raise ValidationError("Start date must be before or equal to end date")

    def contains(self, date: datetime) -> bool:
        """Check if date falls within range."""
        if self.start and date < self.start:
            return False
        if self.end and date > self.end:
            return False
        return True

    def to_dict(self) -> Dict[str, Optional[str]]:
        return {
            "start": self.start.isoformat() if self.start else None,
            "end": self.end.isoformat() if self.end else None,
        }


@dataclass(frozen=True)
class AmountRange:
    """Inclusive amount bounds; either side may be open."""
    min: Optional[float] = None
    max: Optional[float] = None

    def __post_init__(self) -> None:
        if self.min is None and self.max is None:
            raise ValidationError("Amount range needs at least one bound")
        if self.min is not None and self.max is not None and self.min > self.max:
            raise ValidationError("Amount range minimum exceeds maximum")

    def contains(self, amount: float) -> bool:
        if self.min is not None and amount < self.min:
            return False
        if self.max is not None and amount > self.max:
            return False
        return True

    def to_dict(self) -> Dict[str, Optional[float]]:
        return {"min": self.min, "max": self.max}


@dataclass(frozen=True)
class EntityMap:
    """Structured values extracted from a query. Absent slots stay None."""
    date_range: Optional[DateRange] = None
    amount_range: Optional[AmountRange] = None
    category: Optional[str] = None
    merchant: Optional[str] = None
    product: Optional[str] = None

    def is_empty(self) -> bool:
        return not self.to_dict()

    def to_dict(self) -> Dict[str, Any]:
        """Serialize only the slots that were extracted."""
        data: Dict[str, Any] = {}
        if self.date_range is not None:
            data["date_range"] = self.date_range.to_dict()
        if self.amount_range is not None:
            data["amount_range"] = self.amount_range.to_dict()
        for slot in ("category", "merchant", "product"):
            value = getattr(self, slot)
            if value is not None:
                data[slot] = value
        return data


@dataclass
class SearchOptions:
    """
    Per-request retrieval options.

    Attributes:
        user_id: Identity of the caller; every store query is scoped to it
        limit: Maximum number of results to return
        threshold: Minimum vector similarity (None = mode default)
        include_expired: Keep expired warranties in warranty searches
        now: Evaluation time for relative dates (None = current time)
    """
    user_id: str
    limit: int = 10
    threshold: Optional[float] = None
    include_expired: bool = False
    now: Optional[datetime] = None

    def __post_init__(self) -> None:
        """Validate search options."""
        if not self.user_id or not self.user_id.strip():
            raise ValidationError("User ID is required")
        if self.limit <= 0:
            raise ValidationError("Limit must be positive")
        if self.limit > 1000:
            raise ValidationError("Limit cannot exceed 1000")
        if self.threshold is not None and not 0.0 <= self.threshold <= 1.0:
            raise ValidationError("Threshold must be between 0.0 and 1.0")


@dataclass(frozen=True)
class SearchFilters:
    """Record filters applied at the store boundary."""
    item_types: Optional[Set[EntityType]] = None
    date_range: Optional[DateRange] = None
    amount_range: Optional[AmountRange] = None
    categories: Optional[Set[str]] = None
    merchants: Optional[Set[str]] = None
    products: Optional[Set[str]] = None
    include_expired: bool = True

    def merged_with_entities(self, entities: EntityMap) -> "SearchFilters":
        """Fill unset filters from extracted entities; explicit values win."""
        return replace(
            self,
            date_range=self.date_range or entities.date_range,
            amount_range=self.amount_range or entities.amount_range,
            categories=self.categories or ({entities.category} if entities.category else None),
            merchants=self.merchants or ({entities.merchant} if entities.merchant else None),
            products=self.products or ({entities.product} if entities.product else None),
        )

    def matches(self, item: Entity, now: datetime) -> bool:
        """Check whether a record passes every active filter; `now` decides warranty expiry."""
        if self.item_types and item.entity_type not in self.item_types:
            return False

        if self.date_range is not None:
            occurred_at = item.occurred_at
            if occurred_at is None or not self.date_range.contains(occurred_at):
                return False

        if self.amount_range is not None:
            amount = item.amount
            if amount is None or not self.amount_range.contains(amount):
                return False

        if self.categories and not _matches_any(item.category, self.categories):
            return False

        if self.merchants and not _matches_any(item.merchant, self.merchants, partial=True):
            return False

        if self.products and not _matches_any(item.product, self.products, partial=True):
            return False

        if not self.include_expired and isinstance(item, Warranty):
            if item.is_expired(now):
                return False

        return True

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"include_expired": self.include_expired}
        if self.item_types:
            data["item_types"] = sorted(t.value for t in self.item_types)
        if self.date_range:
            data["date_range"] = self.date_range.to_dict()
        if self.amount_range:
            data["amount_range"] = self.amount_range.to_dict()
        for name in ("categories", "merchants", "products"):
            values = getattr(self, name)
            if values:
                data[name] = sorted(values)
        return data


def _matches_any(value: Optional[str], candidates: Set[str], partial: bool = False) -> bool:
    if not value:
        return False
    value_lower = value.lower()
    for candidate in candidates:
        candidate_lower = candidate.lower()
        if value_lower == candidate_lower:
            return True
        if partial and candidate_lower in value_lower:
            return True
    return False


@dataclass
class Query:
    """
    Parsed search query.

    Attributes:
        raw_text: Text exactly as the caller sent it
        normalized_text: Lower-cased, whitespace-collapsed text
        intent: Classified intent
        entities: Extracted structured values
        options: Request options
    """
    raw_text: str
    normalized_text: str
    intent: IntentLabel
    entities: EntityMap
    options: Optional[SearchOptions] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "raw_text": self.raw_text,
            "normalized_text": self.normalized_text,
            "intent": self.intent.value,
            "entities": self.entities.to_dict(),
        }


class SearchRequestModel(BaseModel):
    """Pydantic model for search request validation in API contexts."""

    query: str = Field(..., min_length=1, max_length=1000, description="Search query text")
    user_id: str = Field(..., min_length=1, description="Caller identity")
    limit: int = Field(10, ge=1, le=1000, description="Maximum results to return")
    threshold: Optional[float] = Field(None, ge=0.0, le=1.0, description="Minimum similarity")
    include_expired: bool = False

    @field_validator('query')
    @classmethod
    def validate_query(cls, v: str) -> str:
        """Ensure query text is not just whitespace."""
        if not v.strip():
            raise ValueError('Query text cannot be empty or whitespace only')
        return v.strip()

    def to_options(self, now: Optional[datetime] = None) -> SearchOptions:
        """Convert to SearchOptions dataclass."""
        return SearchOptions(
            user_id=self.user_id,
            limit=self.limit,
            threshold=self.threshold,
            include_expired=self.include_expired,
            now=now
        )


class HybridSearchRequestModel(SearchRequestModel):
    """Hybrid search request with user-tunable weights."""

    vector_weight: float = Field(0.7, ge=0.0, le=1.0)
    text_weight: float = Field(0.3, ge=0.0, le=1.0)
    categories: List[str] = Field(default_factory=list)
    merchants: List[str] = Field(default_factory=list)

    def to_filters(self) -> SearchFilters:
        return SearchFilters(
            categories=set(self.categories) or None,
            merchants=set(self.merchants) or None,
        )
