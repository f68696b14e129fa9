"""Embedding generation with content-addressed caching."""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import numpy as np

from ..models.embedding import EmbeddingOutcome, EmbeddingRecord, EmbeddingResult
from ..models.entities import Entity, EntityType
from .cache import EmbeddingCache
from .content import build_content, content_hash
from .exceptions import (
    CacheError,
    EmbeddingGenerationError,
    ProviderError,
    RateLimited,
    ValidationError,
)
from .interfaces import EmbeddingProvider

logger = logging.getLogger(__name__)


# Keyword -> expansion phrase, appended once when the keyword occurs in a query.
QUERY_EXPANSIONS: Tuple[Tuple[str, str], ...] = (
    ("restaurant", "restaurant dining food meal"),
    ("gas", "gas fuel gasoline petrol station"),
    ("grocery", "grocery store food shopping market"),
    ("pharmacy", "pharmacy drug store medicine health"),
    ("electronics", "electronics technology computer phone"),
)


def expand_query(text: str) -> str:
    """Lower-case the query and append the expansion of every keyword it contains."""
    expanded = text.lower()
    for keyword, expansion in QUERY_EXPANSIONS:
        if keyword in text.lower():
            expanded += f" {expansion}"
    return expanded


class EmbeddingGenerator:
    """
    Wraps an embedding provider with canonical content, caching and retries.

    Record embeddings are cached by content hash; a cached record older than
    the TTL, or produced by a different model, is regenerated and
    overwritten. Query embeddings are never cached.
    """

    def __init__(
        self,
        provider: EmbeddingProvider,
        cache: Optional[EmbeddingCache] = None,
        model_id: Optional[str] = None,
        cache_ttl: timedelta = timedelta(hours=24),
        batch_size: int = 50,
        batch_delay: float = 0.1,
        rate_limit_backoff: float = 1.0,
        max_input_chars: int = 8000,
        clock: Optional[Callable[[], datetime]] = None
    ):
        """
        Initialize embedding generator.

        Args:
            provider: External embedding provider
            cache: Embedding cache (a private in-memory cache if omitted)
            model_id: Model to request (provider default if omitted)
            cache_ttl: Age after which a cached embedding is stale
            batch_size: Items embedded concurrently per batch chunk
            batch_delay: Seconds to wait between batch chunks
            rate_limit_backoff: Seconds to wait before the single retry
            max_input_chars: Provider input is truncated to this length
            clock: Returns the current time; used for staleness checks
        """
        self.provider = provider
        self.cache = cache if cache is not None else EmbeddingCache()
        self.model_id = model_id or provider.model_id
        self.cache_ttl = cache_ttl
        self.batch_size = batch_size
        self.batch_delay = batch_delay
        self.rate_limit_backoff = rate_limit_backoff
        self.max_input_chars = max_input_chars
        self._clock = clock or datetime.now
        self._dimensions: Dict[str, int] = {}

        self._stats = {
            'generated': 0,
            'cache_hits': 0,
            'stale_hits': 0,
            'rate_limit_retries': 0,
            'failures': 0
        }

    @property
    def vector_dimension(self) -> Optional[int]:
        return self._dimensions.get(self.model_id)

    async def embed_entity(self, entity_type: EntityType, entity: Entity) -> EmbeddingResult:
        """
        Embed a record, reusing a fresh cached vector when available.

        Args:
            entity_type: Type of the record
            entity: The record

        Returns:
            Vector, canonical content, content hash, model and cache flag

        Raises:
            ValidationError: If the record has no embeddable content
            EmbeddingGenerationError: If the provider fails
        """
        result, pending = await self._embed(entity_type, entity)
        if pending is not None:
            self._write_cache(pending.content_hash, pending)
        return result

    async def _embed(
        self,
        entity_type: EntityType,
        entity: Entity
    ) -> Tuple[EmbeddingResult, Optional[EmbeddingRecord]]:
        """Embed a record without writing the cache; returns the record to cache, if any."""
        entity_type = EntityType(entity_type)
        content_text = build_content(entity_type, entity)
        if not content_text.strip():
            raise ValidationError(f"{entity_type.value} {entity.id} has no content to embed")

        digest = content_hash(content_text)

        record = self._read_cache(digest, entity_type)
        if record is not None:
            self._stats['cache_hits'] += 1
            return EmbeddingResult(
                vector=list(record.vector),
                content_text=content_text,
                content_hash=digest,
                model_id=record.model_id,
                cached=True
            ), None

        vector = await self._generate(content_text, entity_id=entity.id)

        pending = EmbeddingRecord(
            content_hash=digest,
            vector=tuple(vector),
            model_id=self.model_id,
            source_entity_type=entity_type,
            source_entity_id=entity.id,
            created_at=self._clock()
        )

        return EmbeddingResult(
            vector=vector,
            content_text=content_text,
            content_hash=digest,
            model_id=self.model_id,
            cached=False
        ), pending

    async def embed_query(self, text: str) -> List[float]:
        """Embed a search query after keyword expansion."""
        if not text or not text.strip():
            raise ValidationError("Query text is required")
        return await self._generate(expand_query(text.strip()), query=text)

    async def embed_batch(
        self,
        entities: Sequence[Entity],
        entity_type: EntityType
    ) -> List[EmbeddingOutcome]:
        """
        Embed many records, reporting success or failure per item.

        Chunks run one after another; items inside a chunk run concurrently.
        Outcomes are returned in input order. Generated embeddings are cached
        only once every chunk has finished, so a cancelled batch caches nothing.

        Raises:
            EmbeddingGenerationError: Only if every item failed
        """
        outcomes: List[EmbeddingOutcome] = []
        pending: List[EmbeddingRecord] = []
        total = len(entities)

        for start in range(0, total, self.batch_size):
            chunk = entities[start:start + self.batch_size]
            attempts = await asyncio.gather(*(
                self._attempt(start + offset, entity_type, entity)
                for offset, entity in enumerate(chunk)
            ))
            for outcome, record in attempts:
                outcomes.append(outcome)
                if record is not None:
                    pending.append(record)

            if start + self.batch_size < total and self.batch_delay > 0:
                await asyncio.sleep(self.batch_delay)

        for record in pending:
            self._write_cache(record.content_hash, record)

        outcomes.sort(key=lambda outcome: outcome.index)
        failures = [outcome for outcome in outcomes if not outcome.success]

        if outcomes and len(failures) == len(outcomes):
            logger.error(f"Batch embedding failed for all {total} items")
            raise EmbeddingGenerationError(
                f"All {total} items in the batch failed: {failures[0].error}"
            ) from failures[0].error

        logger.info(f"Batch embedded {total - len(failures)}/{total} {EntityType(entity_type).value} items")
        return outcomes

    async def _attempt(
        self,
        index: int,
        entity_type: EntityType,
        entity: Entity
    ) -> Tuple[EmbeddingOutcome, Optional[EmbeddingRecord]]:
        try:
            result, pending = await self._embed(entity_type, entity)
            return EmbeddingOutcome(index=index, item_id=entity.id, result=result), pending
        except Exception as e:
            logger.warning(f"Failed to embed {entity.id}: {e}")
            return EmbeddingOutcome(index=index, item_id=entity.id, error=e), None

    async def _generate(
        self,
        text: str,
        entity_id: Optional[str] = None,
        query: Optional[str] = None
    ) -> List[float]:
        """Call the provider, retrying once on a rate-limit signal."""
        text = text[:self.max_input_chars]
        subject = f"query '{query[:50]}'" if query is not None else f"entity {entity_id}"

        try:
            try:
                vector = await self.provider.generate(text, self.model_id)
            except RateLimited:
                self._stats['rate_limit_retries'] += 1
                logger.warning(
                    f"Rate limited while embedding {subject}; retrying in {self.rate_limit_backoff}s"
                )
                await asyncio.sleep(self.rate_limit_backoff)
                vector = await self.provider.generate(text, self.model_id)
        except RateLimited as e:
            self._stats['failures'] += 1
            raise EmbeddingGenerationError(
                f"Still rate limited after retry while embedding {subject}", entity_id=entity_id
            ) from e
        except ProviderError as e:
            self._stats['failures'] += 1
            raise EmbeddingGenerationError(
                f"Embedding provider failed for {subject}: {e}", entity_id=entity_id
            ) from e
        except Exception as e:
            self._stats['failures'] += 1
            raise EmbeddingGenerationError(
                f"Unexpected provider failure for {subject}: {e}", entity_id=entity_id
            ) from e

        checked = self._check_vector(vector, subject, entity_id)
        self._stats['generated'] += 1
        return checked

    def _check_vector(self, vector, subject: str, entity_id: Optional[str]) -> List[float]:
        """Reject empty, non-finite, all-zero or wrongly sized vectors."""
        values = np.asarray(vector if vector is not None else [], dtype=np.float64)

        if values.ndim != 1 or values.size == 0:
            raise EmbeddingGenerationError(f"Provider returned an empty vector for {subject}", entity_id)
        if not np.all(np.isfinite(values)):
            raise EmbeddingGenerationError(f"Provider returned non-finite values for {subject}", entity_id)
        if not np.any(values):
            raise EmbeddingGenerationError(f"Provider returned a zero vector for {subject}", entity_id)

        expected = self._dimensions.setdefault(self.model_id, int(values.size))
        if values.size != expected:
            raise EmbeddingGenerationError(
                f"Vector for {subject} has dimension {values.size}, expected {expected} for {self.model_id}",
                entity_id
            )
        return values.tolist()

    def _read_cache(self, digest: str, entity_type: EntityType) -> Optional[EmbeddingRecord]:
        """Cache lookup with the TTL and model policy applied."""
        try:
            record = self.cache.get(digest, entity_type)
        except CacheError as e:
            logger.warning(f"Embedding cache unavailable, regenerating: {e}")
            return None

        if record is None:
            return None
        if record.model_id != self.model_id:
            logger.debug(f"Cached embedding {digest[:12]} belongs to {record.model_id}; regenerating")
            return None
        if self._clock() - record.created_at > self.cache_ttl:
            self._stats['stale_hits'] += 1
            logger.debug(f"Cached embedding {digest[:12]} is stale; regenerating")
            return None
        return record

    def _write_cache(self, digest: str, record: EmbeddingRecord) -> None:
        try:
            self.cache.put(digest, record)
        except CacheError as e:
            logger.warning(f"Failed to cache embedding {digest[:12]}: {e}")

    async def health_check(self) -> Dict[str, Any]:
        """Embed a fixed text to verify the provider."""
        try:
            vector = await self._generate("health check", query="health check")
            return {
                'status': 'healthy',
                'model_id': self.model_id,
                'vector_dimension': len(vector)
            }
        except EmbeddingGenerationError as e:
            logger.error(f"Embedding health check failed: {e}")
            return {
                'status': 'unhealthy',
                'model_id': self.model_id,
                'vector_dimension': self.vector_dimension,
                'error': str(e)
            }

    def get_stats(self) -> Dict[str, Any]:
        """Get generator statistics."""
        return {
            **self._stats,
            'model_id': self.model_id,
            'vector_dimension': self.vector_dimension,
            'cache': self.cache.get_stats()
        }
