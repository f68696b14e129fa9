"""Data models for the retrieval engine."""

from .entities import (
    EntityType,
    LineItem,
    Receipt,
    Warranty,
    ConversationMessage,
    ReceiptModel,
    WarrantyModel,
)
from .query import (
    IntentLabel,
    DateRange,
    AmountRange,
    EntityMap,
    SearchOptions,
    SearchFilters,
    Query,
    SearchRequestModel,
    HybridSearchRequestModel,
)
from .result import SearchResult, RankedResults, DuplicateCandidate, Insight, Insights
from .embedding import EmbeddingRecord, EmbeddingResult, EmbeddingOutcome

__all__ = [
    "EntityType", "LineItem", "Receipt", "Warranty", "ConversationMessage",
    "ReceiptModel", "WarrantyModel",
    "IntentLabel", "DateRange", "AmountRange", "EntityMap", "SearchOptions",
    "SearchFilters", "Query", "SearchRequestModel", "HybridSearchRequestModel",
    "SearchResult", "RankedResults", "DuplicateCandidate", "Insight", "Insights",
    "EmbeddingRecord", "EmbeddingResult", "EmbeddingOutcome",
]
