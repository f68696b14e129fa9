"""Custom exceptions for the retrieval engine."""

from typing import Optional


class RetrievalError(Exception):
    """Base exception for retrieval operations."""
    pass


class ValidationError(RetrievalError, ValueError):
    """Exception raised during input validation. Never retried."""
    pass


class ProviderError(RetrievalError):
    """Exception raised by an embedding provider."""
    pass


class RateLimited(ProviderError):
    """Raised by an embedding provider when its rate limit is hit."""
    pass


class EmbeddingGenerationError(RetrievalError):
    """Exception raised when an embedding could not be produced."""

    def __init__(self, message: str, entity_id: Optional[str] = None):
        super().__init__(message)
        self.entity_id = entity_id

    def __str__(self) -> str:
        message = super().__str__()
        if self.entity_id:
            return f"{message} (entity_id={self.entity_id})"
        return message


class NotFoundError(RetrievalError):
    """Exception raised when a referenced embedding or record does not exist."""
    pass


class CacheError(RetrievalError):
    """Exception raised when the embedding cache backend fails."""
    pass


class SearchError(RetrievalError):
    """Exception raised during search operations."""
    pass


class ConfigurationError(RetrievalError):
    """Exception raised for configuration issues."""
    pass
