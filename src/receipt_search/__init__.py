"""
Receipt and Warranty Semantic Retrieval

Turns free-text questions about a user's purchases into ranked receipts and
warranties, with hybrid vector/lexical search, duplicate detection, budget
insights and retrieval-augmented chat context.
"""

from .api.service import RetrievalService
from .config import RetrievalConfig
from .core.engine import SearchOrchestrator
from .core.query_understanding import QueryUnderstanding, QueryVocabulary
from .models.entities import EntityType, Receipt, Warranty, ConversationMessage, LineItem
from .models.query import IntentLabel, SearchOptions, SearchFilters, DateRange, AmountRange, EntityMap
from .models.result import SearchResult, RankedResults, DuplicateCandidate, Insights

__version__ = "1.0.0"

__all__ = [
    "RetrievalService",
    "RetrievalConfig",
    "SearchOrchestrator",
    "QueryUnderstanding",
    "QueryVocabulary",
    "EntityType",
    "Receipt",
    "Warranty",
    "ConversationMessage",
    "LineItem",
    "IntentLabel",
    "SearchOptions",
    "SearchFilters",
    "DateRange",
    "AmountRange",
    "EntityMap",
    "SearchResult",
    "RankedResults",
    "DuplicateCandidate",
    "Insights",
]
