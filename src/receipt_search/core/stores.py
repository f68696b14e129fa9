"""In-memory reference implementations of the store interfaces."""

import asyncio
import logging
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple
from concurrent.futures import ThreadPoolExecutor

import numpy as np
from sklearn.feature_extraction.text import TfidfVectorizer
from sklearn.metrics.pairwise import cosine_similarity

from ..models.entities import Entity, EntityType
from ..models.query import SearchFilters
from ..utils.text_processing import TextProcessor
from .content import build_content
from .exceptions import SearchError, ValidationError
from .interfaces import RecordStore, TextSearch, VectorStore

logger = logging.getLogger(__name__)


def _sort_hits(hits: List[Tuple[Entity, float]], limit: int) -> List[Tuple[Entity, float]]:
    hits.sort(key=lambda hit: (-hit[1], hit[0].id))
    return hits[:limit]


class InMemoryRecordStore(RecordStore):
    """
    Dictionary-backed record store.

    Records are keyed by (entity type, id). Filters are evaluated with
    `SearchFilters.matches` against the injected clock.
    """

    def __init__(self, clock: Optional[Callable[[], datetime]] = None):
        self._records: Dict[Tuple[EntityType, str], Entity] = {}
        self._clock = clock or datetime.now

    def add(self, entity: Entity) -> None:
        """Insert or replace a record."""
        self._records[(entity.entity_type, entity.id)] = entity

    def add_many(self, entities: Iterable[Entity]) -> None:
        for entity in entities:
            self.add(entity)

    def get(self, entity_type: EntityType, entity_id: str) -> Optional[Entity]:
        return self._records.get((EntityType(entity_type), entity_id))

    def remove(self, entity_type: EntityType, entity_id: str) -> bool:
        return self._records.pop((EntityType(entity_type), entity_id), None) is not None

    def __len__(self) -> int:
        return len(self._records)

    async def fetch(
        self,
        entity_type: EntityType,
        ids: Optional[Sequence[str]] = None,
        filters: Optional[SearchFilters] = None,
        user_id: Optional[str] = None
    ) -> List[Entity]:
        entity_type = EntityType(entity_type)
        now = self._clock()

        if ids is not None:
            candidates = [self._records.get((entity_type, entity_id)) for entity_id in ids]
            candidates = [entity for entity in candidates if entity is not None]
        else:
            candidates = [
                entity for (record_type, _), entity in self._records.items()
                if record_type == entity_type
            ]

        return [
            entity for entity in candidates
            if (user_id is None or entity.user_id == user_id)
            and (filters is None or filters.matches(entity, now))
        ]

    def vocabulary(self, user_id: Optional[str] = None) -> Dict[str, List[str]]:
        """Distinct categories, merchants and products, for query vocabulary."""
        categories, merchants, products = set(), set(), set()
        for entity in self._records.values():
            if user_id is not None and entity.user_id != user_id:
                continue
            if entity.category:
                categories.add(entity.category)
            if entity.merchant:
                merchants.add(entity.merchant)
            if entity.product:
                products.add(entity.product)
        return {
            'categories': sorted(categories),
            'merchants': sorted(merchants),
            'products': sorted(products),
        }


class InMemoryVectorStore(VectorStore):
    """
    Brute-force cosine similarity over stored embeddings.

    Vectors live in a dictionary keyed by (entity type, id); the records
    themselves are resolved through the record store so filters and user
    scoping see current field values. Negative cosine similarities are
    clamped to 0.
    """

    def __init__(
        self,
        record_store: InMemoryRecordStore,
        executor: Optional[ThreadPoolExecutor] = None,
        clock: Optional[Callable[[], datetime]] = None
    ):
        """
        Initialize vector store.

        Args:
            record_store: Store used to resolve ids to records
            executor: Thread pool for similarity computation
            clock: Evaluation time for warranty expiry filters
        """
        self.record_store = record_store
        self._executor = executor
        self._clock = clock or datetime.now
        self._vectors: Dict[Tuple[EntityType, str], np.ndarray] = {}
        self._metadata: Dict[Tuple[EntityType, str], Dict[str, Any]] = {}

    async def upsert_embedding(
        self,
        entity_type: EntityType,
        entity_id: str,
        vector: Sequence[float],
        content_hash: str,
        model_id: str,
        metadata: Dict[str, Any]
    ) -> None:
        values = np.asarray(vector, dtype=np.float64)
        if values.ndim != 1 or values.size == 0:
            raise ValidationError(f"Embedding for {entity_id} must be a non-empty vector")

        key = (EntityType(entity_type), entity_id)
        self._vectors[key] = values
        self._metadata[key] = {
            **(metadata or {}),
            'content_hash': content_hash,
            'model_id': model_id,
        }

    async def fetch_embedding(
        self,
        entity_type: EntityType,
        entity_id: str
    ) -> Optional[List[float]]:
        values = self._vectors.get((EntityType(entity_type), entity_id))
        return values.tolist() if values is not None else None

    def get_metadata(self, entity_type: EntityType, entity_id: str) -> Optional[Dict[str, Any]]:
        return self._metadata.get((EntityType(entity_type), entity_id))

    def __len__(self) -> int:
        return len(self._vectors)

    async def query(
        self,
        vector: Sequence[float],
        user_id: str,
        filters: Optional[SearchFilters],
        limit: int
    ) -> List[Tuple[Entity, float]]:
        if not user_id:
            raise ValidationError("User ID is required for vector queries")

        query_vector = np.asarray(vector, dtype=np.float64)
        now = self._clock()

        candidates: List[Entity] = []
        rows: List[np.ndarray] = []
        for (entity_type, entity_id), values in self._vectors.items():
            if values.shape != query_vector.shape:
                continue
            entity = self.record_store.get(entity_type, entity_id)
            if entity is None or entity.user_id != user_id:
                continue
            if filters is not None and not filters.matches(entity, now):
                continue
            candidates.append(entity)
            rows.append(values)

        if not candidates:
            return []

        try:
            similarities = await asyncio.get_running_loop().run_in_executor(
                self._executor, self._similarities, query_vector, np.vstack(rows)
            )
        except Exception as e:
            logger.error(f"Vector similarity computation failed: {e}")
            raise SearchError(f"Vector similarity computation failed: {e}") from e

        hits = [
            (entity, float(min(max(score, 0.0), 1.0)))
            for entity, score in zip(candidates, similarities)
        ]
        return _sort_hits(hits, limit)

    @staticmethod
    def _similarities(query_vector: np.ndarray, matrix: np.ndarray) -> np.ndarray:
        return cosine_similarity(query_vector.reshape(1, -1), matrix).flatten()


class TfidfTextSearch(TextSearch):
    """
    Lexical relevance with TF-IDF.

    The vectorizer is fitted per query over the canonical content of the
    filtered candidate set, so relevance always reflects the records the
    caller can see.
    """

    def __init__(
        self,
        record_store: RecordStore,
        executor: Optional[ThreadPoolExecutor] = None,
        ngram_range: Tuple[int, int] = (1, 2)
    ):
        self.record_store = record_store
        self.ngram_range = ngram_range
        self.text_processor = TextProcessor()
        self._executor = executor

    async def query(
        self,
        text: str,
        user_id: str,
        filters: Optional[SearchFilters],
        limit: int
    ) -> List[Tuple[Entity, float]]:
        if not user_id:
            raise ValidationError("User ID is required for text queries")

        item_types = (filters.item_types if filters and filters.item_types else None) or list(EntityType)
        candidates: List[Entity] = []
        for entity_type in sorted(item_types, key=lambda t: t.value):
            candidates.extend(await self.record_store.fetch(entity_type, filters=filters, user_id=user_id))

        if not candidates:
            return []

        contents = [
            self.text_processor.clean_text(build_content(entity.entity_type, entity))
            for entity in candidates
        ]

        try:
            scores = await asyncio.get_running_loop().run_in_executor(
                self._executor, self._score_sync, self.text_processor.clean_text(text), contents
            )
        except Exception as e:
            logger.error(f"Text search failed: {e}")
            raise SearchError(f"Text search failed: {e}") from e

        hits = [
            (entity, float(score))
            for entity, score in zip(candidates, scores)
            if score > 0
        ]
        logger.debug(f"Text search matched {len(hits)}/{len(candidates)} candidates for '{text[:50]}'")
        return _sort_hits(hits, limit)

    def _score_sync(self, query: str, contents: List[str]) -> np.ndarray:
        vectorizer = TfidfVectorizer(
            min_df=1,
            max_df=1.0,
            ngram_range=self.ngram_range,
            stop_words='english',
            lowercase=True,
            strip_accents='unicode',
            token_pattern=r'\b[a-zA-Z0-9][a-zA-Z0-9]*\b'
        )
        try:
            matrix = vectorizer.fit_transform(contents)
        except ValueError:
            # Only stop words in the candidate set
            return np.zeros(len(contents))

        query_vector = vectorizer.transform([query])
        return np.clip(cosine_similarity(query_vector, matrix).flatten(), 0.0, 1.0)
