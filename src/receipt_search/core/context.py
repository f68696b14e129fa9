"""Retrieval-augmented context assembly for assistant conversations."""

import asyncio
import logging
import math
from collections import Counter
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence
from dataclasses import dataclass, field

from ..config import RetrievalConfig
from ..models.entities import ConversationMessage, EntityType, Receipt, Warranty
from ..models.query import SearchFilters
from ..utils.logging_config import StructuredLogger
from ..utils.validators import validate_query_text
from .embeddings import EmbeddingGenerator
from .exceptions import ValidationError
from .insights import BudgetInsightEngine
from .interfaces import VectorStore

logger = logging.getLogger(__name__)

CONTEXT_SOURCES = ("receipts", "warranties", "conversations", "analytics")
DEFAULT_SOURCES = ("receipts", "warranties", "conversations")

ITEM_TYPES = {
    "receipts": "receipt",
    "warranties": "warranty",
    "conversations": "conversation",
    "analytics": "analytics",
}

# Share of the item budget reserved per type before remaining slots are filled by relevance
DIVERSITY_SHARES = {
    "receipt": 0.4,
    "warranty": 0.3,
    "conversation": 0.2,
    "analytics": 0.1,
}

ANALYTICS_QUERY = "spending patterns and trends"


@dataclass
class ContextItem:
    """Single piece of context offered to the assistant."""
    type: str
    id: str
    relevance_score: float
    source_score: float
    summary: str
    content: Dict[str, Any] = field(default_factory=dict)
    snippet: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    rank: int = 0
    normalized_relevance: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "id": self.id,
            "relevance_score": round(self.relevance_score, 4),
            "source_score": round(self.source_score, 4),
            "summary": self.summary,
            "content": self.content,
            "snippet": self.snippet,
            "metadata": self.metadata,
            "rank": self.rank,
            "normalized_relevance": round(self.normalized_relevance, 4),
        }


@dataclass
class AssembledContext:
    """Ranked context items with a summary and request metadata."""
    query: str
    items: List[ContextItem]
    summary: Dict[str, Any]
    metadata: Dict[str, Any]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "query": self.query,
            "context_items": [item.to_dict() for item in self.items],
            "context_summary": self.summary,
            "metadata": self.metadata,
        }


class ContextAssembler:
    """
    Collects relevant receipts, warranties, past messages and insights.

    Each source is queried concurrently with its own item limit and
    relevance threshold; its scores are scaled by the source weight. A
    failing source is logged and contributes nothing.
    """

    def __init__(
        self,
        embeddings: EmbeddingGenerator,
        vector_store: VectorStore,
        insight_engine: Optional[BudgetInsightEngine] = None,
        config: Optional[RetrievalConfig] = None,
        clock: Optional[Callable[[], datetime]] = None
    ):
        self.config = config or RetrievalConfig()
        self.embeddings = embeddings
        self.vector_store = vector_store
        self.insight_engine = insight_engine
        self._clock = clock or datetime.now
        self.weights = self.config.context_weights
        self.max_items = self.config.context_max_items
        self.thresholds = self.config.context_thresholds
        self.log = StructuredLogger(__name__)

    async def assemble(
        self,
        query: str,
        user_id: str,
        conversation_id: Optional[str] = None,
        context_types: Optional[Sequence[str]] = None,
        max_items: int = 15
    ) -> AssembledContext:
        """
        Assemble ranked context for a chat message.

        Args:
            query: The user's message
            user_id: Owner of the records
            conversation_id: Current conversation, flagged in message metadata
            context_types: Sources to consult (default receipts, warranties, conversations)
            max_items: Total item budget

        Raises:
            ValidationError: If the query or sources are invalid
            EmbeddingGenerationError: If the query cannot be embedded
        """
        query = validate_query_text(query, self.config.max_query_length)
        if not user_id:
            raise ValidationError("User ID is required")
        if max_items <= 0:
            raise ValidationError("max_items must be positive")

        sources = list(context_types or DEFAULT_SOURCES)
        unknown = [source for source in sources if source not in CONTEXT_SOURCES]
        if unknown:
            raise ValidationError(f"Unknown context types: {unknown}")

        now = self._clock()
        log = self.log.with_context(user_id=user_id, mode="context")

        with log.timed("Context assembly") as details:
            vector = await self.embeddings.embed_query(query)

            outcomes = await asyncio.gather(
                *(self._gather_source(source, vector, user_id, conversation_id, now) for source in sources),
                return_exceptions=True
            )

            collected: List[ContextItem] = []
            for source, outcome in zip(sources, outcomes):
                if isinstance(outcome, Exception):
                    log.error(f"Error getting {source} context: {outcome}")
                    continue
                if isinstance(outcome, BaseException):
                    raise outcome
                collected.extend(outcome)

            ranked = self.rank_and_limit(collected, max_items)
            details['items'] = len(ranked)

        return AssembledContext(
            query=query,
            items=ranked,
            summary=self.summarize(ranked),
            metadata={
                "total_items": len(ranked),
                "context_types": sources,
                "user_id": user_id,
                "conversation_id": conversation_id,
                "generated_at": now.isoformat(),
            }
        )

    async def _gather_source(
        self,
        source: str,
        vector: List[float],
        user_id: str,
        conversation_id: Optional[str],
        now: datetime
    ) -> List[ContextItem]:
        if source == "analytics":
            return await self._analytics_context(user_id, now)

        entity_type = {
            "receipts": EntityType.RECEIPT,
            "warranties": EntityType.WARRANTY,
            "conversations": EntityType.CONVERSATION,
        }[source]

        hits = await self.vector_store.query(
            vector, user_id, SearchFilters(item_types={entity_type}), self.max_items[source]
        )
        threshold = self.thresholds[source]
        weight = self.weights[source]

        items = []
        for entity, similarity in hits:
            if similarity < threshold:
                continue
            if isinstance(entity, Receipt):
                items.append(self._receipt_item(entity, similarity, weight))
            elif isinstance(entity, Warranty):
                items.append(self._warranty_item(entity, similarity, weight, now))
            elif isinstance(entity, ConversationMessage):
                items.append(self._conversation_item(entity, similarity, weight, conversation_id))
        return items

    def _receipt_item(self, receipt: Receipt, similarity: float, weight: float) -> ContextItem:
        date = receipt.occurred_at.date().isoformat() if receipt.occurred_at else "unknown date"
        amount = f"${receipt.amount:.2f}" if receipt.amount is not None else "an unknown amount"
        return ContextItem(
            type="receipt",
            id=receipt.id,
            relevance_score=similarity * weight,
            source_score=similarity,
            summary=f"Receipt from {receipt.merchant_name or 'unknown merchant'} on {date} for {amount}",
            content={
                "merchant_name": receipt.merchant_name,
                "total_amount": receipt.amount,
                "purchase_date": date,
                "category_name": receipt.category_name,
                "tags": list(receipt.tags),
                "is_business_expense": receipt.is_business_expense,
            },
            snippet=receipt.ocr_text[:200] if receipt.ocr_text else None,
        )

    def _warranty_item(self, warranty: Warranty, similarity: float, weight: float, now: datetime) -> ContextItem:
        status = warranty.status(now, self.config.expiring_soon_days)
        return ContextItem(
            type="warranty",
            id=warranty.id,
            relevance_score=similarity * weight,
            source_score=similarity,
            summary=f"Warranty for {warranty.product_name or 'unknown product'} ({status})",
            content={
                "product_name": warranty.product_name,
                "product_brand": warranty.product_brand,
                "warranty_status": status,
                "days_until_expiry": warranty.days_until_expiry(now),
                "support_contact": warranty.support_contact,
            },
            snippet=warranty.warranty_terms[:200] if warranty.warranty_terms else None,
        )

    def _conversation_item(
        self,
        message: ConversationMessage,
        similarity: float,
        weight: float,
        conversation_id: Optional[str]
    ) -> ContextItem:
        return ContextItem(
            type="conversation",
            id=message.id,
            relevance_score=similarity * weight,
            source_score=similarity,
            summary=f"Previous {message.message_type}: {message.content[:100]}",
            content={
                "conversation_id": message.conversation_id,
                "message_type": message.message_type,
                "content_text": message.content,
                "sequence_number": message.sequence_number,
            },
            snippet=message.content,
            metadata={
                "referenced_receipts": list(message.referenced_receipts),
                "referenced_warranties": list(message.referenced_warranties),
                "is_current_conversation": message.conversation_id == conversation_id,
            },
        )

    async def _analytics_context(self, user_id: str, now: datetime) -> List[ContextItem]:
        if self.insight_engine is None:
            return []

        analysis = await self.insight_engine.analyze(
            ANALYTICS_QUERY,
            user_id=user_id,
            timeframe_days=self.config.default_timeframe_days,
            insight_types=["patterns", "trends"],
            now=now
        )
        weight = self.weights["analytics"]
        threshold = self.thresholds["analytics"]

        items = []
        for index, insight in enumerate(analysis.insights):
            if insight.confidence < threshold:
                continue
            items.append(ContextItem(
                type="analytics",
                id=f"insight_{index}",
                relevance_score=insight.confidence * weight,
                source_score=insight.confidence,
                summary=f"{insight.title}: {insight.description}",
                content={
                    "insight_type": insight.type,
                    "title": insight.title,
                    "description": insight.description,
                    "recommendations": list(insight.recommendations),
                },
                snippet=insight.description,
            ))
        return items[:self.max_items["analytics"]]

    @staticmethod
    def rank_and_limit(items: List[ContextItem], max_items: int = 15) -> List[ContextItem]:
        """
        Order by relevance while keeping a mix of types.

        Each type first gets up to its share of `max_items`; leftover slots
        go to the most relevant remaining items.
        """
        ordered = sorted(items, key=lambda item: (-item.relevance_score, item.type, item.id))

        caps = {
            item_type: math.ceil(max_items * share)
            for item_type, share in DIVERSITY_SHARES.items()
        }
        selected: List[ContextItem] = []
        counts: Counter = Counter()

        for item in ordered:
            if len(selected) >= max_items:
                break
            if counts[item.type] < caps.get(item.type, math.ceil(max_items / 4)):
                selected.append(item)
                counts[item.type] += 1

        for item in ordered:
            if len(selected) >= max_items:
                break
            if item not in selected:
                selected.append(item)

        selected.sort(key=lambda item: (-item.relevance_score, item.type, item.id))
        top = ordered[0].relevance_score if ordered and ordered[0].relevance_score > 0 else 1.0
        for rank, item in enumerate(selected, 1):
            item.rank = rank
            item.normalized_relevance = item.relevance_score / top

        return selected

    @staticmethod
    def summarize(items: Sequence[ContextItem]) -> Dict[str, Any]:
        """
        Item counts per type and overall context strength.

        Strength is judged on the unweighted source scores: high above 0.7,
        medium above 0.5, low otherwise.
        """
        counts = Counter(item.type for item in items)
        avg_relevance = sum(item.source_score for item in items) / len(items) if items else 0.0

        if avg_relevance > 0.7:
            strength = "high"
        elif avg_relevance > 0.5:
            strength = "medium"
        else:
            strength = "low"

        return {
            "total_items": len(items),
            "items_by_type": dict(counts),
            "avg_relevance": avg_relevance,
            "context_strength": strength,
            "top_context_types": [
                {"type": item_type, "count": count}
                for item_type, count in sorted(counts.items(), key=lambda pair: (-pair[1], pair[0]))
            ],
        }

    @staticmethod
    def format_for_prompt(context: AssembledContext) -> str:
        """Render assembled context as markdown for a language model prompt."""
        sections: Dict[str, List[ContextItem]] = {item_type: [] for item_type in ITEM_TYPES.values()}
        for item in context.items:
            sections.setdefault(item.type, []).append(item)

        lines = ["## Available Context", ""]

        if sections["receipt"]:
            lines.append("### Recent Receipts")
            for index, item in enumerate(sections["receipt"], 1):
                lines.append(f"{index}. {item.summary}")
                if item.content.get("tags"):
                    lines.append(f"   Tags: {', '.join(item.content['tags'])}")
            lines.append("")

        if sections["warranty"]:
            lines.append("### Warranty Information")
            for index, item in enumerate(sections["warranty"], 1):
                lines.append(f"{index}. {item.summary}")
                if item.content.get("days_until_expiry") is not None:
                    lines.append(f"   Expires in {item.content['days_until_expiry']} days")
            lines.append("")

        if sections["conversation"]:
            lines.append("### Previous Conversations")
            for index, item in enumerate(sections["conversation"], 1):
                text = item.content.get("content_text", "")
                suffix = "..." if len(text) > 150 else ""
                lines.append(f"{index}. {item.content.get('message_type')}: {text[:150]}{suffix}")
            lines.append("")

        if sections["analytics"]:
            lines.append("### Spending Insights")
            for index, item in enumerate(sections["analytics"], 1):
                lines.append(f"{index}. {item.summary}")
            lines.append("")

        summary = context.summary
        lines.append("## Context Summary")
        lines.append(f"Total context items: {summary['total_items']}")
        lines.append(f"Context strength: {summary['context_strength']}")
        lines.append(f"Average relevance: {summary['avg_relevance']:.2f}")

        return "\n".join(lines) + "\n"
