"""High-level retrieval service for receipts and warranties."""

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, Sequence, TypeVar
from concurrent.futures import ThreadPoolExecutor

from ..config import RetrievalConfig
from ..core.cache import EmbeddingCache
from ..core.context import AssembledContext, ContextAssembler
from ..core.duplicates import DuplicateDetector, DuplicateGroup
from ..core.embeddings import EmbeddingGenerator
from ..core.exceptions import NotFoundError, RetrievalError, SearchError, ConfigurationError
from ..core.insights import BudgetInsightEngine
from ..core.interfaces import EmbeddingProvider, RecordStore, TextSearch, VectorStore
from ..core.providers import HashingEmbeddingProvider, SentenceTransformerProvider
from ..core.query_understanding import QueryUnderstanding, QueryVocabulary
from ..core.engine import SearchOrchestrator
from ..core.stores import InMemoryRecordStore, InMemoryVectorStore, TfidfTextSearch
from ..models.embedding import EmbeddingOutcome, EmbeddingResult
from ..models.entities import Entity, EntityType
from ..models.query import EntityMap, IntentLabel, SearchFilters, SearchOptions
from ..models.result import DuplicateCandidate, Insights, RankedResults
from ..utils.logging_config import setup_logging
from ..utils.validators import validate_query_text, validate_reference_id

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetrievalService:
    """
    Entry point for search, duplicate detection, insights and chat context.

    Wires the embedding generator, stores and engines together, bounds
    every public call with the configured request timeout and owns the
    worker thread pool. Collaborators not supplied are replaced by the
    in-memory reference implementations.
    """

    def __init__(
        self,
        config: Optional[RetrievalConfig] = None,
        provider: Optional[EmbeddingProvider] = None,
        record_store: Optional[RecordStore] = None,
        vector_store: Optional[VectorStore] = None,
        text_search: Optional[TextSearch] = None,
        cache: Optional[EmbeddingCache] = None,
        vocabulary: Optional[QueryVocabulary] = None,
        cache_path: Optional[Path] = None,
        clock: Optional[Callable[[], datetime]] = None,
        log_level: Optional[str] = None
    ):
        """
        Initialize retrieval service.

        Args:
            config: Engine configuration
            provider: Embedding provider (chosen from config.model_id if omitted)
            record_store: Record store (in-memory if omitted)
            vector_store: Vector store (in-memory over the record store if omitted)
            text_search: Lexical search (TF-IDF over the record store if omitted)
            cache: Embedding cache shared across requests
            vocabulary: Known categories, merchants and products for queries
            cache_path: Snapshot file loaded on initialize and saved on close
            clock: Returns the current time
            log_level: Configure logging at this level when given
        """
        if log_level:
            setup_logging(level=log_level)

        self.config = config or RetrievalConfig()
        self.cache_path = cache_path
        self._clock = clock or datetime.now
        self.executor = ThreadPoolExecutor(max_workers=self.config.max_workers)

        self.provider = provider or self._default_provider()
        self.record_store = record_store or InMemoryRecordStore(clock=self._clock)

        if vector_store is None:
            if not isinstance(self.record_store, InMemoryRecordStore):
                raise ConfigurationError("A vector store is required with a custom record store")
            vector_store = InMemoryVectorStore(self.record_store, executor=self.executor, clock=self._clock)
        self.vector_store = vector_store
        self.text_search = text_search or TfidfTextSearch(self.record_store, executor=self.executor)

        self.cache = cache if cache is not None else EmbeddingCache(executor=self.executor)
        self.embeddings = EmbeddingGenerator(
            provider=self.provider,
            cache=self.cache,
            model_id=self.provider.model_id,
            cache_ttl=self.config.cache_ttl,
            batch_size=self.config.batch_size,
            batch_delay=self.config.batch_delay_seconds,
            rate_limit_backoff=self.config.rate_limit_backoff_seconds,
            max_input_chars=self.config.max_input_chars,
            clock=self._clock
        )

        self.query_understanding = QueryUnderstanding(
            vocabulary=vocabulary,
            max_query_length=self.config.max_query_length,
            clock=self._clock
        )
        self.duplicate_detector = DuplicateDetector(
            threshold=self.config.duplicate_threshold,
            limit=self.config.duplicate_limit
        )
        self.orchestrator = SearchOrchestrator(
            embeddings=self.embeddings,
            vector_store=self.vector_store,
            text_search=self.text_search,
            query_understanding=self.query_understanding,
            duplicate_detector=self.duplicate_detector,
            config=self.config,
            clock=self._clock
        )
        self.insight_engine = BudgetInsightEngine(
            embeddings=self.embeddings,
            vector_store=self.vector_store,
            record_store=self.record_store,
            query_understanding=self.query_understanding,
            config=self.config,
            clock=self._clock
        )
        self.context_assembler = ContextAssembler(
            embeddings=self.embeddings,
            vector_store=self.vector_store,
            insight_engine=self.insight_engine,
            config=self.config,
            clock=self._clock
        )

        self._initialized = False
        self._stats = {'indexed': 0, 'index_failures': 0, 'requests': 0, 'timeouts': 0}
        logger.info(f"Retrieval service created with model {self.provider.model_id}")

    def _default_provider(self) -> EmbeddingProvider:
        if self.config.model_id.startswith("hashing-"):
            return HashingEmbeddingProvider(dimension=self.config.vector_dimension, executor=self.executor)
        return SentenceTransformerProvider(model_name=self.config.model_id, executor=self.executor)

    async def initialize(self) -> None:
        """Load the embedding cache snapshot, if one exists."""
        if self.cache_path is not None and self.cache_path.exists():
            await self.cache.load(self.cache_path)
        self._initialized = True
        logger.info("Retrieval service initialization complete")

    async def close(self) -> None:
        """Save the cache snapshot and release the worker threads."""
        try:
            if self._initialized and self.cache_path is not None:
                await self.cache.save(self.cache_path)
        except RetrievalError as e:
            logger.error(f"Error during service shutdown: {e}")
        finally:
            self.executor.shutdown(wait=True)
            self._initialized = False
            logger.info("Retrieval service closed")

    @classmethod
    @asynccontextmanager
    async def create(cls, **kwargs) -> AsyncIterator['RetrievalService']:
        """
        Create and manage the service lifecycle.

        Yields:
            Initialized retrieval service
        """
        service = cls(**kwargs)
        try:
            await service.initialize()
            yield service
        finally:
            await service.close()

    def _check_initialized(self) -> None:
        if not self._initialized:
            raise SearchError("Service not initialized. Call initialize() first.")

    async def _run(self, operation: str, awaitable: Awaitable[T]) -> T:
        """Run a public operation under the request timeout."""
        self._stats['requests'] += 1
        try:
            return await asyncio.wait_for(awaitable, timeout=self.config.request_timeout_seconds)
        except asyncio.TimeoutError as e:
            self._stats['timeouts'] += 1
            logger.error(f"{operation} timed out after {self.config.request_timeout_seconds}s")
            raise SearchError(f"{operation} timed out") from e
        except RetrievalError:
            raise
        except Exception as e:
            logger.error(f"{operation} failed: {e}")
            raise SearchError(f"{operation} failed: {e}") from e

    # Indexing

    async def index_entity(self, entity_type: EntityType, entity: Entity) -> EmbeddingResult:
        """
        Embed a record and store its vector.

        With the in-memory record store the record itself is stored too.
        """
        self._check_initialized()
        return await self._run("Indexing", self._index_one(EntityType(entity_type), entity))

    async def _index_one(self, entity_type: EntityType, entity: Entity) -> EmbeddingResult:
        result = await self.embeddings.embed_entity(entity_type, entity)
        await self._store(entity_type, entity, result)
        return result

    async def index_entities(
        self,
        entities: Sequence[Entity],
        entity_type: EntityType
    ) -> List[EmbeddingOutcome]:
        """
        Embed and store many records; failures are reported per item.

        Raises:
            EmbeddingGenerationError: Only if every record failed
        """
        self._check_initialized()
        entity_type = EntityType(entity_type)

        async def run() -> List[EmbeddingOutcome]:
            outcomes = await self.embeddings.embed_batch(entities, entity_type)
            for outcome in outcomes:
                if outcome.success:
                    await self._store(entity_type, entities[outcome.index], outcome.result)
                else:
                    self._stats['index_failures'] += 1
            return outcomes

        return await self._run("Batch indexing", run())

    async def _store(self, entity_type: EntityType, entity: Entity, result: EmbeddingResult) -> None:
        if isinstance(self.record_store, InMemoryRecordStore):
            self.record_store.add(entity)
        await self.vector_store.upsert_embedding(
            entity_type,
            entity.id,
            result.vector,
            result.content_hash,
            result.model_id,
            {'user_id': entity.user_id, 'cached': result.cached}
        )
        self._stats['indexed'] += 1

    # Retrieval

    async def search(self, query: str, options: SearchOptions) -> RankedResults:
        self._check_initialized()
        return await self._run("Search", self.orchestrator.search(query, options))

    async def search_domain(
        self,
        domain: str,
        query: str,
        filters: Optional[SearchFilters],
        options: SearchOptions
    ) -> RankedResults:
        self._check_initialized()
        return await self._run(
            "Domain search", self.orchestrator.search_domain(domain, query, filters, options)
        )

    async def hybrid_search(
        self,
        query: str,
        vector_weight: float,
        text_weight: float,
        filters: Optional[SearchFilters],
        options: SearchOptions
    ) -> RankedResults:
        self._check_initialized()
        return await self._run(
            "Hybrid search",
            self.orchestrator.hybrid_search(query, vector_weight, text_weight, filters, options)
        )

    async def find_duplicates(
        self,
        reference_id: str,
        user_id: str,
        threshold: Optional[float] = None,
        entity_type: EntityType = EntityType.RECEIPT
    ) -> List[DuplicateCandidate]:
        """
        Records whose stored embedding is close to the reference record's.

        Raises:
            ValidationError: If the reference id is missing
            NotFoundError: If the reference record or its embedding is absent
        """
        self._check_initialized()
        reference_id = validate_reference_id(reference_id)
        options = SearchOptions(user_id=user_id)
        entity_type = EntityType(entity_type)

        async def run() -> List[DuplicateCandidate]:
            owned = await self.record_store.fetch(entity_type, ids=[reference_id], user_id=user_id)
            if not owned:
                raise NotFoundError(f"{entity_type.value} {reference_id} not found")

            vector = await self.vector_store.fetch_embedding(entity_type, reference_id)
            if vector is None:
                raise NotFoundError(
                    f"No embedding stored for {entity_type.value} {reference_id}; reprocess the record"
                )
            return await self.orchestrator.find_duplicates(
                vector, threshold, options, reference_id=reference_id, entity_type=entity_type
            )

        return await self._run("Duplicate check", run())

    async def duplicate_groups(self, user_id: str) -> List[DuplicateGroup]:
        """Group a user's receipts that share merchant, amount and date."""
        self._check_initialized()

        async def run() -> List[DuplicateGroup]:
            receipts = await self.record_store.fetch(EntityType.RECEIPT, user_id=user_id)
            receipts.sort(key=lambda receipt: (receipt.occurred_at or datetime.min, receipt.id))
            return self.duplicate_detector.group_potential_duplicates(receipts)

        return await self._run("Duplicate grouping", run())

    async def analyze_budget(
        self,
        query: str,
        user_id: str,
        timeframe_days: Optional[int] = None,
        insight_types: Optional[Sequence[str]] = None
    ) -> Insights:
        self._check_initialized()
        return await self._run(
            "Budget analysis",
            self.insight_engine.analyze(query, user_id, timeframe_days, insight_types)
        )

    async def assemble_context(
        self,
        query: str,
        user_id: str,
        conversation_id: Optional[str] = None,
        context_types: Optional[Sequence[str]] = None,
        max_items: int = 15
    ) -> AssembledContext:
        self._check_initialized()
        return await self._run(
            "Context assembly",
            self.context_assembler.assemble(query, user_id, conversation_id, context_types, max_items)
        )

    def format_context(self, context: AssembledContext) -> str:
        return self.context_assembler.format_for_prompt(context)

    # Query understanding

    def classify_intent(self, query: str) -> IntentLabel:
        query = validate_query_text(query, self.config.max_query_length)
        return self.query_understanding.classify_intent(query)

    def extract_entities(self, query: str, now: Optional[datetime] = None) -> EntityMap:
        query = validate_query_text(query, self.config.max_query_length)
        return self.query_understanding.extract_entities(query, now=now)

    def suggestions(self, prefix: str = "", limit: int = 5) -> List[Dict[str, Any]]:
        return self.query_understanding.suggest(prefix, limit)

    # Operations

    async def health_check(self) -> Dict[str, Any]:
        """Report provider health along with service state."""
        if not self._initialized:
            return {
                'status': 'not_initialized',
                'model_id': self.embeddings.model_id,
                'vector_dimension': self.embeddings.vector_dimension
            }
        try:
            status = await asyncio.wait_for(
                self.embeddings.health_check(), timeout=self.config.request_timeout_seconds
            )
        except asyncio.TimeoutError:
            logger.error("Health check timed out")
            status = {
                'status': 'unhealthy',
                'model_id': self.embeddings.model_id,
                'vector_dimension': self.embeddings.vector_dimension,
                'error': 'timeout'
            }
        return status

    def get_stats(self) -> Dict[str, Any]:
        """Get service and engine statistics."""
        return {
            'service': {**self._stats, 'initialized': self._initialized},
            'embeddings': self.embeddings.get_stats(),
            'search': self.orchestrator.get_stats(),
            'query_understanding': self.query_understanding.describe(),
        }
