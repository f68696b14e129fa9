"""Test budget insights."""

import pytest
from datetime import date

from receipt_search.core.embeddings import EmbeddingGenerator
from receipt_search.core.exceptions import ValidationError
from receipt_search.core.insights import BudgetInsightEngine
from receipt_search.core.stores import InMemoryRecordStore
from receipt_search.models.entities import Receipt

from conftest import StubVectorStore


def _receipt(receipt_id, amount, day, merchant="Corner Store", category="Groceries"):
    return Receipt(
        id=receipt_id,
        user_id="user_1",
        merchant_name=merchant,
        total_amount=amount,
        purchase_date=day,
        category_name=category,
    )


@pytest.fixture
def record_store(clock, sample_receipts):
    store = InMemoryRecordStore(clock=clock)
    store.add_many(sample_receipts)
    return store


def _engine(fake_provider, record_store, config, clock, vector_store=None):
    return BudgetInsightEngine(
        embeddings=EmbeddingGenerator(provider=fake_provider, clock=clock),
        vector_store=vector_store or StubVectorStore(),
        record_store=record_store,
        config=config,
        clock=clock,
    )


@pytest.fixture
def engine(fake_provider, record_store, config, clock):
    return _engine(fake_provider, record_store, config, clock)


class TestAnalyze:
    """Test record selection and aggregation."""

    async def test_time_bounded_query_skips_embedding(self, engine, fake_provider):
        insights = await engine.analyze("spending patterns and trends", "user_1")

        assert not insights.semantic
        assert fake_provider.calls == []
        assert insights.record_count == 5
        assert insights.total_spent == pytest.approx(1586.74)
        assert list(insights.category_breakdown)[0] == "Electronics"
        assert insights.category_breakdown["Groceries"]["count"] == 2

    async def test_extracted_dates_narrow_window(self, engine):
        insights = await engine.analyze("spending last month", "user_1")

        assert insights.record_count == 2
        assert insights.total_spent == pytest.approx(130.40)
        assert insights.average_amount == pytest.approx(65.20)

    async def test_timeframe_limits_records(self, engine):
        insights = await engine.analyze("total spending", "user_1", timeframe_days=30)

        # 2024-02-14 onward
        assert insights.record_count == 3

    async def test_other_users_excluded(self, engine):
        insights = await engine.analyze("total spending", "user_2")

        assert insights.record_count == 1

    async def test_semantic_query_uses_vector_store(self, fake_provider, record_store, config, clock, sample_receipts):
        r1, r2, r3, r4, r5, _ = sample_receipts
        vector_store = StubVectorStore([(r1, 0.8), (r4, 0.6), (r2, 0.1)])
        engine = _engine(fake_provider, record_store, config, clock, vector_store)

        insights = await engine.analyze("organic food spending", "user_1")

        assert insights.semantic
        assert len(fake_provider.calls) == 1
        assert insights.record_count == 2
        assert vector_store.queries[0]["limit"] == config.insight_candidate_limit

    async def test_no_records_is_valid(self, engine):
        insights = await engine.analyze("spending in january 2020", "user_1")

        assert insights.record_count == 0
        assert insights.total_spent == 0.0
        assert insights.insights == []

    async def test_requested_types_only(self, engine):
        insights = await engine.analyze("spending trends", "user_1", insight_types=["trends"])

        assert {insight.type for insight in insights.insights} == {"trends"}

    @pytest.mark.parametrize("kwargs", [
        {"timeframe_days": -5},
        {"insight_types": ["forecast"]},
    ])
    async def test_invalid_arguments(self, engine, kwargs):
        with pytest.raises(ValidationError):
            await engine.analyze("spending", "user_1", **kwargs)

    async def test_blank_query_rejected(self, engine):
        with pytest.raises(ValidationError):
            await engine.analyze("  ", "user_1")


class TestAnomalies:
    """Test unusual purchase detection."""

    def test_large_purchase_flagged(self, engine):
        receipts = [_receipt(f"s{i}", 10.0, date(2024, 3, 1)) for i in range(9)]
        receipts.append(_receipt("big", 200.0, date(2024, 3, 2)))

        insights = engine.find_anomalies(receipts)

        assert len(insights) == 1
        flagged = insights[0].data["receipts"]
        assert [receipt["id"] for receipt in flagged] == ["big"]
        assert flagged[0]["z_score"] == pytest.approx(3.0)
        assert insights[0].confidence == pytest.approx(1.0)

    def test_uniform_spending_not_flagged(self, engine):
        receipts = [_receipt(f"s{i}", 25.0, date(2024, 3, 1)) for i in range(5)]

        assert engine.find_anomalies(receipts) == []

    def test_single_receipt(self, engine):
        assert engine.find_anomalies([_receipt("s1", 25.0, date(2024, 3, 1))]) == []


class TestTrends:
    """Test month-over-month trend direction."""

    def test_increasing(self, engine):
        receipts = [
            _receipt("a", 100.0, date(2024, 1, 10)),
            _receipt("b", 100.0, date(2024, 2, 10)),
            _receipt("c", 300.0, date(2024, 3, 10)),
        ]

        trend = engine.find_trends(receipts)[0]

        assert trend.title == "Spending Trend: Increasing"
        assert trend.data["direction"] == "increasing"
        assert trend.data["change"] == pytest.approx(2.0)
        assert trend.recommendations

    def test_stable(self, engine):
        receipts = [
            _receipt("a", 100.0, date(2024, 1, 10)),
            _receipt("b", 50.0, date(2024, 2, 10)),
            _receipt("c", 105.0, date(2024, 3, 10)),
        ]

        trend = engine.find_trends(receipts)[0]

        assert trend.data["direction"] == "stable"

    def test_empty_months_count_as_zero(self, engine):
        receipts = [
            _receipt("a", 100.0, date(2023, 12, 5)),
            _receipt("b", 20.0, date(2024, 3, 5)),
        ]

        trend = engine.find_trends(receipts)[0]

        assert trend.data["monthly_totals"] == {
            "2023-12": 100.0, "2024-01": 0.0, "2024-02": 0.0, "2024-03": 20.0,
        }
        assert trend.data["direction"] == "decreasing"

    def test_single_month(self, engine):
        assert engine.find_trends([_receipt("a", 100.0, date(2024, 3, 1))]) == []


class TestPatterns:
    """Test category and merchant patterns."""

    def test_recurring_merchant(self, engine):
        receipts = [
            _receipt("a", 4.50, date(2024, 3, 1), merchant="Blue Bottle"),
            _receipt("b", 5.00, date(2024, 3, 4), merchant="blue bottle"),
            _receipt("c", 4.75, date(2024, 3, 8), merchant="Blue Bottle"),
            _receipt("d", 60.00, date(2024, 3, 9), merchant="Shell", category="Gas"),
        ]
        breakdown = engine.category_breakdown(receipts)

        insights = engine.find_patterns(receipts, breakdown)
        recurring = [insight for insight in insights if insight.title == "Recurring Purchase Pattern Detected"]

        assert len(recurring) == 1
        assert recurring[0].data["count"] == 3
        assert recurring[0].data["total"] == pytest.approx(14.25)
        assert recurring[0].confidence == pytest.approx(0.8)

    def test_top_category(self, engine, sample_receipts):
        receipts = sample_receipts[:5]
        insights = engine.find_patterns(receipts, engine.category_breakdown(receipts))

        assert insights[0].title == "Top Spending Category"
        assert insights[0].data["category"] == "Electronics"
        assert insights[0].confidence == pytest.approx(0.8193, abs=1e-3)

    def test_uncategorized_fallback(self, engine):
        receipts = [_receipt("a", 10.0, date(2024, 3, 1), category=None)]

        assert engine.category_breakdown(receipts) == {
            "Uncategorized": {"total": 10.0, "count": 1, "percentage": 100.0}
        }
