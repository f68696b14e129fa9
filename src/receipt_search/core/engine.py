"""Search orchestration across retrieval modes."""

import asyncio
import logging
from dataclasses import replace
from datetime import datetime
from typing import Callable, Dict, List, Optional, Sequence

from ..config import RetrievalConfig
from ..models.entities import Entity, EntityType
from ..models.query import Query, SearchFilters, SearchOptions
from ..models.result import DuplicateCandidate, RankedResults, SearchResult
from ..utils.logging_config import StructuredLogger
from ..utils.validators import validate_domain, validate_query_text, validate_threshold
from .duplicates import DuplicateDetector
from .embeddings import EmbeddingGenerator
from .exceptions import ValidationError
from .interfaces import TextSearch, VectorStore
from .query_understanding import QueryUnderstanding
from .scoring import HybridScorer, normalize_scores

logger = logging.getLogger(__name__)

DOMAIN_NAMES = {
    EntityType.RECEIPT: "receipts",
    EntityType.WARRANTY: "warranties",
}


class SearchOrchestrator:
    """
    Runs the retrieval modes over the vector store and text search.

    Every mode parses the query the same way, scopes store calls to the
    caller and ranks with the same scorer. Result shape per domain is
    decided only when results are serialized.
    """

    def __init__(
        self,
        embeddings: EmbeddingGenerator,
        vector_store: VectorStore,
        text_search: Optional[TextSearch] = None,
        query_understanding: Optional[QueryUnderstanding] = None,
        scorer: Optional[HybridScorer] = None,
        duplicate_detector: Optional[DuplicateDetector] = None,
        config: Optional[RetrievalConfig] = None,
        clock: Optional[Callable[[], datetime]] = None
    ):
        """
        Initialize search orchestrator.

        Args:
            embeddings: Embedding generator used for query vectors
            vector_store: Nearest-neighbour store
            text_search: Lexical search, required for hybrid search
            query_understanding: Intent and entity extraction
            scorer: Hybrid scorer
            duplicate_detector: Duplicate selection policy
            config: Engine configuration
            clock: Returns the current time when options carry none
        """
        self.config = config or RetrievalConfig()
        self.embeddings = embeddings
        self.vector_store = vector_store
        self.text_search = text_search
        self._clock = clock or datetime.now
        self.query_understanding = query_understanding or QueryUnderstanding(
            max_query_length=self.config.max_query_length, clock=self._clock
        )
        self.scorer = scorer or HybridScorer(tolerance=self.config.weight_tolerance)
        self.duplicate_detector = duplicate_detector or DuplicateDetector(
            threshold=self.config.duplicate_threshold,
            limit=self.config.duplicate_limit
        )
        self.log = StructuredLogger(__name__)

        self._stats: Dict[str, float] = {
            'total_searches': 0,
            'duplicate_checks': 0
        }

    def _parse(self, query_text: str, options: SearchOptions) -> Query:
        query_text = validate_query_text(query_text, self.config.max_query_length)
        if options.now is None:
            options = replace(options, now=self._clock())
        return self.query_understanding.parse(query_text, options)

    async def search(self, query_text: str, options: SearchOptions) -> RankedResults:
        """
        General semantic search ranked by vector similarity alone.

        Args:
            query_text: Free-text query
            options: Caller identity, limit and threshold

        Returns:
            Ranked results; empty when nothing matches

        Raises:
            ValidationError: If the query or options are invalid
            EmbeddingGenerationError: If the query cannot be embedded
        """
        query = self._parse(query_text, options)
        filters = SearchFilters().merged_with_entities(query.entities)
        threshold = self._threshold(options.threshold, self.config.search_threshold)

        log = self.log.with_context(user_id=options.user_id, mode="semantic", intent=query.intent.value)
        with log.timed("Semantic search") as details:
            results = await self._vector_results(query, filters, threshold, options.limit)
            details['results'] = len(results)

        return self._ranked(query, "semantic", results)

    async def search_domain(
        self,
        domain: str,
        query_text: str,
        filters: Optional[SearchFilters],
        options: SearchOptions
    ) -> RankedResults:
        """
        Receipt or warranty search.

        Caller filters take precedence over values extracted from the
        query. Expired warranties are left out unless the options ask
        for them.

        Raises:
            ValidationError: If the domain, query or options are invalid
        """
        entity_type = validate_domain(domain)
        query = self._parse(query_text, options)

        merged = (filters or SearchFilters()).merged_with_entities(query.entities)
        include_expired = merged.include_expired and options.include_expired
        merged = replace(
            merged,
            item_types={entity_type},
            include_expired=include_expired if entity_type == EntityType.WARRANTY else True
        )

        default_threshold = (
            self.config.warranty_threshold if entity_type == EntityType.WARRANTY
            else self.config.receipt_threshold
        )
        threshold = self._threshold(options.threshold, default_threshold)

        domain_name = DOMAIN_NAMES[entity_type]
        log = self.log.with_context(user_id=options.user_id, mode="domain", domain=domain_name)
        with log.timed("Domain search") as details:
            results = await self._vector_results(query, merged, threshold, options.limit)
            details['results'] = len(results)

        return self._ranked(query, "domain", results, domain=domain_name)

    async def hybrid_search(
        self,
        query_text: str,
        vector_weight: float,
        text_weight: float,
        filters: Optional[SearchFilters],
        options: SearchOptions
    ) -> RankedResults:
        """
        Combine vector similarity and lexical relevance.

        Both searches run over the same filtered candidate set. Each score
        family is min-max normalized on its own before weighting; a record
        found by only one search scores 0 in the other. The threshold, if
        any, applies to the combined score.

        Raises:
            ValidationError: If the weights do not sum to 1.0, or the query
                or options are invalid
        """
        self.scorer.validate_weights(vector_weight, text_weight)
        if self.text_search is None:
            raise ValidationError("Hybrid search requires a text search backend")

        query = self._parse(query_text, options)
        merged = (filters or SearchFilters()).merged_with_entities(query.entities)
        threshold = self._threshold(options.threshold, self.config.search_threshold)
        candidate_limit = options.limit * self.config.candidate_multiplier

        log = self.log.with_context(user_id=options.user_id, mode="hybrid")
        with log.timed("Hybrid search") as details:
            vector = await self.embeddings.embed_query(query.raw_text.strip())
            vector_hits, text_hits = await asyncio.gather(
                self.vector_store.query(vector, options.user_id, merged, candidate_limit),
                self.text_search.query(query.raw_text.strip(), options.user_id, merged, candidate_limit)
            )

            items: Dict[str, Entity] = {}
            for entity, _ in list(vector_hits) + list(text_hits):
                items.setdefault(entity.id, entity)

            vector_scores = normalize_scores({entity.id: score for entity, score in vector_hits})
            text_scores = normalize_scores({entity.id: score for entity, score in text_hits})

            fused = self.scorer.fuse(vector_scores, text_scores, items, vector_weight, text_weight)
            results = [result for result in fused if result.combined_score >= threshold][:options.limit]

            details.update(vector_hits=len(vector_hits), text_hits=len(text_hits), results=len(results))

        return self._ranked(query, "hybrid", results)

    async def find_duplicates(
        self,
        reference_vector: Sequence[float],
        threshold: Optional[float],
        options: SearchOptions,
        reference_id: Optional[str] = None,
        entity_type: EntityType = EntityType.RECEIPT
    ) -> List[DuplicateCandidate]:
        """
        Records whose embedding is within `threshold` of the reference vector.

        Args:
            reference_vector: Embedding of the reference record
            threshold: Minimum similarity, inclusive (default 0.85)
            options: Caller identity
            reference_id: Reference record, excluded from the result
            entity_type: Type of record to compare against

        Returns:
            Duplicate candidates, most similar first, capped at the duplicate limit
        """
        validate_threshold(threshold, "duplicate threshold")
        if reference_vector is None or len(reference_vector) == 0:
            raise ValidationError("Reference vector is required for duplicate detection")

        limit = self.duplicate_detector.limit
        filters = SearchFilters(item_types={EntityType(entity_type)})

        log = self.log.with_context(user_id=options.user_id, mode="duplicates", reference_id=reference_id)
        with log.timed("Duplicate check") as details:
            # One extra so the reference itself does not crowd out a candidate
            hits = await self.vector_store.query(reference_vector, options.user_id, filters, limit + 1)
            candidates = self.duplicate_detector.select(hits, reference_id, threshold, limit)
            details['candidates'] = len(candidates)

        self._stats['duplicate_checks'] += 1
        return candidates

    async def _vector_results(
        self,
        query: Query,
        filters: SearchFilters,
        threshold: float,
        limit: int
    ) -> List[SearchResult]:
        vector = await self.embeddings.embed_query(query.raw_text.strip())
        hits = await self.vector_store.query(vector, query.options.user_id, filters, limit)

        results = [
            SearchResult(
                item_id=entity.id,
                item_type=entity.entity_type,
                vector_score=score,
                text_score=0.0,
                combined_score=score,
                raw_item=entity
            )
            for entity, score in hits
            if score >= threshold
        ]
        return self.scorer.rank(results)[:limit]

    def _ranked(
        self,
        query: Query,
        mode: str,
        results: List[SearchResult],
        domain: Optional[str] = None
    ) -> RankedResults:
        self._update_search_stats()
        return RankedResults(
            query=query.raw_text,
            intent=query.intent,
            entities=query.entities,
            mode=mode,
            results=results,
            domain=domain,
            timestamp=query.options.now if query.options and query.options.now else self._clock()
        )

    @staticmethod
    def _threshold(requested: Optional[float], default: float) -> float:
        threshold = default if requested is None else requested
        validate_threshold(threshold)
        return threshold

    def _update_search_stats(self) -> None:
        self._stats['total_searches'] += 1

    def get_stats(self) -> Dict[str, float]:
        """Get orchestrator statistics."""
        return {
            **self._stats,
            'receipt_threshold': self.config.receipt_threshold,
            'warranty_threshold': self.config.warranty_threshold,
            'duplicate_threshold': self.duplicate_detector.threshold,
        }
