"""Budget insights over a user's receipts."""

import logging
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import numpy as np

from ..config import RetrievalConfig
from ..models.entities import EntityType, Receipt, entity_summary
from ..models.query import DateRange, EntityMap, SearchFilters
from ..models.result import Insight, Insights
from ..utils.logging_config import StructuredLogger
from ..utils.text_processing import TextProcessor
from ..utils.validators import validate_insight_types, validate_query_text, validate_timeframe
from .embeddings import EmbeddingGenerator
from .interfaces import RecordStore, VectorStore
from .query_understanding import QueryUnderstanding

logger = logging.getLogger(__name__)

INSIGHT_TYPES = ("patterns", "anomalies", "trends")


def _month_key(value: datetime) -> str:
    return f"{value.year:04d}-{value.month:02d}"


def _month_range(first: datetime, last: datetime) -> List[str]:
    """Every month key from first to last inclusive."""
    keys = []
    year, month = first.year, first.month
    while (year, month) <= (last.year, last.month):
        keys.append(f"{year:04d}-{month:02d}")
        month += 1
        if month > 12:
            year, month = year + 1, 1
    return keys


def _intersect(first: DateRange, second: Optional[DateRange]) -> Optional[DateRange]:
    """Overlap of two ranges, or None when they are disjoint."""
    if second is None:
        return first
    starts = [value for value in (first.start, second.start) if value is not None]
    ends = [value for value in (first.end, second.end) if value is not None]
    start = max(starts) if starts else None
    end = min(ends) if ends else None
    if start is not None and end is not None and start > end:
        return None
    return DateRange(start=start, end=end)


class BudgetInsightEngine:
    """
    Statistical spending analysis.

    Records are selected by time window and extracted filters. When the
    query names something beyond the analysis vocabulary ("coffee spending
    trends") the query is embedded once and the vector store narrows the
    set; otherwise records come straight from the record store.
    """

    def __init__(
        self,
        embeddings: EmbeddingGenerator,
        vector_store: VectorStore,
        record_store: RecordStore,
        query_understanding: Optional[QueryUnderstanding] = None,
        config: Optional[RetrievalConfig] = None,
        clock: Optional[Callable[[], datetime]] = None
    ):
        self.config = config or RetrievalConfig()
        self.embeddings = embeddings
        self.vector_store = vector_store
        self.record_store = record_store
        self._clock = clock or datetime.now
        self.query_understanding = query_understanding or QueryUnderstanding(
            max_query_length=self.config.max_query_length, clock=self._clock
        )
        self.text_processor = TextProcessor()
        self.log = StructuredLogger(__name__)

    def is_semantic(self, query_text: str) -> bool:
        """True when the query carries content words beyond dates and analysis terms."""
        return bool(self.text_processor.content_words(query_text))

    async def analyze(
        self,
        query_text: str,
        user_id: str,
        timeframe_days: Optional[int] = None,
        insight_types: Optional[Sequence[str]] = None,
        now: Optional[datetime] = None
    ) -> Insights:
        """
        Compute totals, category breakdown and requested insights.

        Args:
            query_text: Free-text analysis request
            user_id: Owner of the records
            timeframe_days: Look-back window (default from config)
            insight_types: Any of 'patterns', 'anomalies', 'trends' (default all)
            now: Evaluation time

        Returns:
            Insights for the selected records; zero records is a valid result

        Raises:
            ValidationError: If the query, timeframe or insight types are invalid
        """
        query_text = validate_query_text(query_text, self.config.max_query_length)
        timeframe_days = timeframe_days or self.config.default_timeframe_days
        validate_timeframe(timeframe_days)
        requested = validate_insight_types(insight_types or INSIGHT_TYPES, INSIGHT_TYPES)
        now = now or self._clock()

        entities = self.query_understanding.extract_entities(query_text, now=now)
        semantic = self.is_semantic(query_text)

        log = self.log.with_context(user_id=user_id, mode="insights", semantic=semantic)
        with log.timed("Budget analysis") as details:
            receipts = await self._select_records(query_text, user_id, timeframe_days, entities, semantic, now)
            details['records'] = len(receipts)

            insights = self._build(query_text, timeframe_days, receipts, requested, entities, semantic)
            details['insights'] = len(insights.insights)

        return insights

    async def _select_records(
        self,
        query_text: str,
        user_id: str,
        timeframe_days: int,
        entities: EntityMap,
        semantic: bool,
        now: datetime
    ) -> List[Receipt]:
        window = DateRange(start=now - timedelta(days=timeframe_days), end=now)
        date_range = _intersect(window, entities.date_range)
        if date_range is None:
            return []

        filters = SearchFilters(
            item_types={EntityType.RECEIPT},
            date_range=date_range,
            amount_range=entities.amount_range,
            categories={entities.category} if entities.category else None,
            merchants={entities.merchant} if entities.merchant else None,
        )

        if semantic:
            vector = await self.embeddings.embed_query(query_text)
            hits = await self.vector_store.query(
                vector, user_id, filters, self.config.insight_candidate_limit
            )
            records = [
                entity for entity, similarity in hits
                if similarity >= self.config.insight_similarity_threshold
            ]
        else:
            records = await self.record_store.fetch(EntityType.RECEIPT, filters=filters, user_id=user_id)

        return [record for record in records if isinstance(record, Receipt) and record.amount is not None]

    def _build(
        self,
        query_text: str,
        timeframe_days: int,
        receipts: List[Receipt],
        requested: List[str],
        entities: EntityMap,
        semantic: bool
    ) -> Insights:
        amounts = np.asarray([receipt.amount for receipt in receipts], dtype=np.float64)
        total = float(amounts.sum()) if amounts.size else 0.0
        average = float(amounts.mean()) if amounts.size else 0.0
        breakdown = self.category_breakdown(receipts)

        insights: List[Insight] = []
        if "patterns" in requested:
            insights.extend(self.find_patterns(receipts, breakdown))
        if "anomalies" in requested:
            insights.extend(self.find_anomalies(receipts))
        if "trends" in requested:
            insights.extend(self.find_trends(receipts))

        return Insights(
            query=query_text,
            timeframe_days=timeframe_days,
            record_count=len(receipts),
            total_spent=total,
            average_amount=average,
            category_breakdown=breakdown,
            insights=insights,
            semantic=semantic,
            entities=entities
        )

    @staticmethod
    def category_breakdown(receipts: Sequence[Receipt]) -> Dict[str, Dict[str, float]]:
        """Total, count and share of spending per category."""
        totals: Dict[str, float] = defaultdict(float)
        counts: Dict[str, int] = defaultdict(int)
        for receipt in receipts:
            category = receipt.category or "Uncategorized"
            totals[category] += receipt.amount
            counts[category] += 1

        grand_total = sum(totals.values())
        return {
            category: {
                "total": round(totals[category], 2),
                "count": counts[category],
                "percentage": round(totals[category] / grand_total * 100, 2) if grand_total else 0.0,
            }
            for category in sorted(totals, key=lambda name: (-totals[name], name))
        }

    def find_patterns(
        self,
        receipts: Sequence[Receipt],
        breakdown: Dict[str, Dict[str, float]]
    ) -> List[Insight]:
        """Top spending category and merchants visited repeatedly."""
        insights: List[Insight] = []

        if breakdown:
            top_category, top = next(iter(breakdown.items()))
            insights.append(Insight(
                type="patterns",
                title="Top Spending Category",
                description=(
                    f"{top_category} accounts for {top['percentage']:.1f}% of spending "
                    f"across {top['count']} purchases"
                ),
                confidence=top["percentage"] / 100,
                data={"category": top_category, **top},
                recommendations=[f"Review your {top_category} budget"]
            ))

        by_merchant: Dict[str, List[Receipt]] = defaultdict(list)
        for receipt in receipts:
            if receipt.merchant:
                by_merchant[receipt.merchant.strip().lower()].append(receipt)

        minimum = self.config.recurring_purchase_min_count
        for key in sorted(by_merchant):
            purchases = by_merchant[key]
            if len(purchases) < minimum:
                continue
            merchant = purchases[0].merchant
            spent = sum(receipt.amount for receipt in purchases)
            insights.append(Insight(
                type="patterns",
                title="Recurring Purchase Pattern Detected",
                description=f"Found {len(purchases)} similar purchases at {merchant}",
                confidence=min(1.0, 0.5 + 0.1 * len(purchases)),
                data={
                    "merchant": merchant,
                    "count": len(purchases),
                    "total": round(spent, 2),
                    "receipts": [entity_summary(receipt) for receipt in purchases],
                },
                recommendations=[
                    f"Consider setting up budget tracking for {merchant}",
                    "Review if these purchases are necessary",
                    "Look for bulk purchase opportunities",
                ]
            ))

        return insights

    def find_anomalies(self, receipts: Sequence[Receipt]) -> List[Insight]:
        """Flag purchases more than k standard deviations above the mean."""
        if len(receipts) < 2:
            return []

        amounts = np.asarray([receipt.amount for receipt in receipts], dtype=np.float64)
        mean = float(amounts.mean())
        std = float(amounts.std())
        if std == 0:
            return []

        k = self.config.anomaly_std_multiplier
        cutoff = mean + k * std
        flagged: List[Tuple[Receipt, float]] = [
            (receipt, (receipt.amount - mean) / std)
            for receipt in receipts
            if receipt.amount > cutoff
        ]
        if not flagged:
            return []

        flagged.sort(key=lambda pair: (-pair[1], pair[0].id))
        max_z = flagged[0][1]
        return [Insight(
            type="anomalies",
            title="Unusual Purchases Detected",
            description=(
                f"{len(flagged)} purchase(s) exceed your average of ${mean:.2f} "
                f"by more than {k:g} standard deviations"
            ),
            confidence=min(1.0, max_z / (k + 1)),
            data={
                "mean": round(mean, 2),
                "std": round(std, 2),
                "cutoff": round(cutoff, 2),
                "receipts": [
                    {**entity_summary(receipt), "z_score": round(z, 2)}
                    for receipt, z in flagged
                ],
            },
            recommendations=["Verify these charges are expected"]
        )]

    def find_trends(self, receipts: Sequence[Receipt]) -> List[Insight]:
        """Compare average monthly spending in the later half against the earlier half."""
        dated = [receipt for receipt in receipts if receipt.occurred_at is not None]
        if not dated:
            return []

        first = min(receipt.occurred_at for receipt in dated)
        last = max(receipt.occurred_at for receipt in dated)
        months = _month_range(first, last)
        if len(months) < 2:
            return []

        monthly = {month: 0.0 for month in months}
        for receipt in dated:
            monthly[_month_key(receipt.occurred_at)] += receipt.amount

        totals = np.asarray([monthly[month] for month in months], dtype=np.float64)
        half = len(months) // 2
        earlier = float(totals[:half].mean())
        later = float(totals[-half:].mean())
        if earlier == 0:
            return []

        change = (later - earlier) / earlier
        band = self.config.trend_stable_band
        if change > band:
            direction = "increasing"
        elif change < -band:
            direction = "decreasing"
        else:
            direction = "stable"

        recommendations = []
        if direction == "increasing":
            recommendations.append("Spending is rising; consider setting a monthly budget")

        return [Insight(
            type="trends",
            title=f"Spending Trend: {direction.capitalize()}",
            description=f"Average monthly spending changed by {change * 100:+.1f}% over the period",
            confidence=min(1.0, len(months) / 6),
            data={
                "direction": direction,
                "change": round(change, 4),
                "monthly_totals": {month: round(monthly[month], 2) for month in months},
            },
            recommendations=recommendations
        )]
