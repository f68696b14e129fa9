"""Core engine components for receipt and warranty retrieval."""

from .exceptions import (
    RetrievalError,
    ValidationError,
    ProviderError,
    RateLimited,
    EmbeddingGenerationError,
    NotFoundError,
    CacheError,
    SearchError,
    ConfigurationError
)

__all__ = [
    "RetrievalError",
    "ValidationError",
    "ProviderError",
    "RateLimited",
    "EmbeddingGenerationError",
    "NotFoundError",
    "CacheError",
    "SearchError",
    "ConfigurationError"
]
