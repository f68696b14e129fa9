"""Contracts for the external collaborators the engine depends on."""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence, Tuple

from ..models.entities import Entity, EntityType
from ..models.query import SearchFilters


class EmbeddingProvider(ABC):
    """Maps text to a fixed-length vector for a given model."""

    @property
    @abstractmethod
    def model_id(self) -> str:
        """Identifier of the default model."""

    @abstractmethod
    async def generate(self, text: str, model_id: str) -> List[float]:
        """
        Generate an embedding.

        Raises:
            RateLimited: If the provider is throttling requests
            ProviderError: For any other provider failure
        """


class VectorStore(ABC):
    """Nearest-neighbour search over stored embeddings, scoped per user."""

    @abstractmethod
    async def query(
        self,
        vector: Sequence[float],
        user_id: str,
        filters: Optional[SearchFilters],
        limit: int
    ) -> List[Tuple[Entity, float]]:
        """Return up to `limit` (item, similarity) pairs, most similar first."""

    @abstractmethod
    async def upsert_embedding(
        self,
        entity_type: EntityType,
        entity_id: str,
        vector: Sequence[float],
        content_hash: str,
        model_id: str,
        metadata: Dict[str, Any]
    ) -> None:
        """Insert or replace the embedding for a record."""

    @abstractmethod
    async def fetch_embedding(
        self,
        entity_type: EntityType,
        entity_id: str
    ) -> Optional[List[float]]:
        """Return the stored vector for a record, or None."""


class TextSearch(ABC):
    """Lexical relevance search, scoped per user."""

    @abstractmethod
    async def query(
        self,
        text: str,
        user_id: str,
        filters: Optional[SearchFilters],
        limit: int
    ) -> List[Tuple[Entity, float]]:
        """Return up to `limit` (item, relevance) pairs, most relevant first."""


class RecordStore(ABC):
    """CRUD layer for receipts, warranties and conversations."""

    @abstractmethod
    async def fetch(
        self,
        entity_type: EntityType,
        ids: Optional[Sequence[str]] = None,
        filters: Optional[SearchFilters] = None,
        user_id: Optional[str] = None
    ) -> List[Entity]:
        """Fetch records by id or by filters."""
