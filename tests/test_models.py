"""Test data models and validation."""

import pytest
from datetime import date, datetime, timedelta

from receipt_search.core.exceptions import ValidationError
from receipt_search.models.entities import (
    EntityType,
    Receipt,
    ReceiptModel,
    Warranty,
    WarrantyModel,
)
from receipt_search.models.query import (
    AmountRange,
    DateRange,
    EntityMap,
    HybridSearchRequestModel,
    SearchFilters,
    SearchOptions,
    SearchRequestModel,
)
from receipt_search.models.result import DuplicateCandidate, SearchResult, RankedResults
from receipt_search.models.query import IntentLabel
from receipt_search.utils.text_processing import TextProcessor


class TestReceipt:
    """Test Receipt model."""

    def test_valid_receipt_creation(self, sample_receipts):
        receipt = sample_receipts[0]

        assert receipt.entity_type == EntityType.RECEIPT
        assert receipt.amount == pytest.approx(85.40)
        assert receipt.occurred_at == datetime(2024, 2, 10)
        assert receipt.category == "Groceries"
        assert receipt.merchant == "Whole Foods Market"
        assert receipt.product is None

    def test_empty_id_validation(self):
        with pytest.raises(ValueError, match="Receipt ID cannot be empty"):
            Receipt(id="  ", user_id="user_1")

    def test_empty_user_validation(self):
        with pytest.raises(ValueError, match="User ID cannot be empty"):
            Receipt(id="r1", user_id="")

    def test_receipt_model_conversion(self):
        model = ReceiptModel(
            id="r9",
            user_id="user_1",
            merchant_name="  Trader Joe's  ",
            total_amount=12.5,
            purchase_date=date(2024, 3, 2),
            notes="   ",
            line_items=[{"description": "Coffee", "amount": 7.99}],
        )
        receipt = model.to_receipt()

        assert receipt.merchant_name == "Trader Joe's"
        assert receipt.notes is None
        assert receipt.line_items[0].description == "Coffee"

    def test_receipt_model_rejects_negative_total(self):
        with pytest.raises(ValueError):
            ReceiptModel(id="r9", user_id="user_1", total_amount=-1)


class TestWarranty:
    """Test Warranty model."""

    def test_status(self, sample_warranties, now):
        active, expired, expiring = sample_warranties

        assert active.status(now) == "active"
        assert expired.status(now) == "expired"
        assert expiring.status(now) == "expiring_soon"
        assert expiring.days_until_expiry(now) == 17

    def test_filter_accessors(self, sample_warranties):
        warranty = sample_warranties[0]

        assert warranty.category == "Electronics"
        assert warranty.merchant == "Apple Store"
        assert warranty.product == "MacBook Pro"
        assert warranty.amount == pytest.approx(2499.00)

    def test_end_before_purchase_rejected(self):
        with pytest.raises(ValueError):
            Warranty(
                id="w9",
                user_id="user_1",
                purchase_date=date(2024, 1, 2),
                warranty_end_date=date(2024, 1, 1),
            )

    def test_unknown_status_without_end_date(self, now):
        assert Warranty(id="w9", user_id="user_1").status(now) == "unknown"

    def test_warranty_model_conversion(self):
        warranty = WarrantyModel(
            id="w9", user_id="user_1", product_name="Kettle", warranty_end_date=date(2025, 1, 1)
        ).to_warranty()

        assert isinstance(warranty, Warranty)
        assert warranty.product_name == "Kettle"


class TestRanges:
    """Test DateRange and AmountRange."""

    def test_date_range_contains(self):
        date_range = DateRange(start=datetime(2024, 1, 1), end=datetime(2024, 1, 31))

        assert date_range.contains(datetime(2024, 1, 1))
        assert date_range.contains(datetime(2024, 1, 31))
        assert not date_range.contains(datetime(2024, 2, 1))

    def test_inverted_date_range_rejected(self):
        with pytest.raises(ValidationError):
            DateRange(start=datetime(2024, 2, 1), end=datetime(2024, 1, 1))

    def test_amount_range_requires_a_bound(self):
        with pytest.raises(ValidationError):
            AmountRange()

    def test_amount_range_open_upper_bound(self):
        amount_range = AmountRange(min=100)

        assert amount_range.contains(100)
        assert amount_range.contains(10_000)
        assert not amount_range.contains(99.99)


class TestEntityMap:
    """Test EntityMap serialization."""

    def test_absent_slots_are_omitted(self):
        entities = EntityMap(amount_range=AmountRange(min=100), merchant="Shell")

        assert entities.to_dict() == {
            "amount_range": {"min": 100, "max": None},
            "merchant": "Shell",
        }
        assert not entities.is_empty()
        assert EntityMap().is_empty()


class TestSearchFilters:
    """Test SearchFilters matching and merging."""

    def test_explicit_filters_win(self):
        filters = SearchFilters(categories={"Electronics"})
        merged = filters.merged_with_entities(
            EntityMap(category="Groceries", merchant="Shell", amount_range=AmountRange(max=50))
        )

        assert merged.categories == {"Electronics"}
        assert merged.merchants == {"Shell"}
        assert merged.amount_range == AmountRange(max=50)

    def test_matches_receipt_fields(self, sample_receipts, now):
        receipt = sample_receipts[0]

        assert SearchFilters(categories={"groceries"}).matches(receipt, now)
        assert SearchFilters(merchants={"whole foods"}).matches(receipt, now)
        assert not SearchFilters(categories={"Gas"}).matches(receipt, now)
        assert not SearchFilters(amount_range=AmountRange(min=100)).matches(receipt, now)
        assert not SearchFilters(item_types={EntityType.WARRANTY}).matches(receipt, now)

    def test_expired_warranties(self, sample_warranties, now):
        expired = sample_warranties[1]

        assert SearchFilters().matches(expired, now)
        assert not SearchFilters(include_expired=False).matches(expired, now)

    def test_missing_field_fails_active_filter(self, now):
        receipt = Receipt(id="r9", user_id="user_1", ocr_text="no amount")

        assert not SearchFilters(amount_range=AmountRange(min=1)).matches(receipt, now)
        assert not SearchFilters(date_range=DateRange(start=now - timedelta(days=1))).matches(receipt, now)


class TestSearchOptions:
    """Test SearchOptions validation."""

    def test_requires_user(self):
        with pytest.raises(ValidationError, match="User ID is required"):
            SearchOptions(user_id="")

    @pytest.mark.parametrize("limit", [0, -1, 1001])
    def test_limit_bounds(self, limit):
        with pytest.raises(ValidationError):
            SearchOptions(user_id="user_1", limit=limit)

    def test_threshold_bounds(self):
        with pytest.raises(ValidationError):
            SearchOptions(user_id="user_1", threshold=1.5)


class TestRequestModels:
    """Test pydantic request models."""

    def test_search_request_strips_query(self, now):
        request = SearchRequestModel(query="  coffee  ", user_id="user_1", limit=5)
        options = request.to_options(now)

        assert request.query == "coffee"
        assert options.limit == 5
        assert options.now == now

    def test_whitespace_query_rejected(self):
        with pytest.raises(ValueError):
            SearchRequestModel(query="   ", user_id="user_1")

    def test_hybrid_request_filters(self):
        request = HybridSearchRequestModel(query="coffee", user_id="user_1", categories=["Dining"])

        assert request.vector_weight == 0.7
        assert request.to_filters().categories == {"Dining"}
        assert request.to_filters().merchants is None


class TestResults:
    """Test result models."""

    def test_scores_must_be_normalized(self, sample_receipts):
        with pytest.raises(ValidationError):
            SearchResult(
                item_id="r1",
                item_type=EntityType.RECEIPT,
                vector_score=1.2,
                text_score=0.0,
                combined_score=0.5,
                raw_item=sample_receipts[0],
            )

    def test_duplicate_candidate_cannot_reference_itself(self):
        with pytest.raises(ValidationError):
            DuplicateCandidate(item_id="r1", similarity=0.9, reference_id="r1")

    def test_duplicate_candidate_similarity_bounds(self):
        with pytest.raises(ValidationError):
            DuplicateCandidate(item_id="r2", similarity=1.01, reference_id="r1")

    def test_domain_projection(self, sample_receipts, sample_warranties, now):
        receipt_result = SearchResult(
            item_id="r1", item_type=EntityType.RECEIPT, vector_score=0.9,
            text_score=0.0, combined_score=0.9, raw_item=sample_receipts[0],
        )
        warranty_result = SearchResult(
            item_id="w3", item_type=EntityType.WARRANTY, vector_score=0.8,
            text_score=0.0, combined_score=0.8, raw_item=sample_warranties[2],
        )
        results = RankedResults(
            query="q", intent=IntentLabel.SEARCH, entities=EntityMap(), mode="semantic",
            results=[receipt_result, warranty_result], timestamp=now,
        )
        data = results.to_dict()

        receipt_item = data["items"][0]["item"]
        warranty_item = data["items"][1]["item"]
        assert receipt_item["merchant_name"] == "Whole Foods Market"
        assert receipt_item["purchase_date"] == "2024-02-10"
        assert warranty_item["warranty_status"] == "expiring_soon"
        assert warranty_item["days_until_expiry"] == 17
        assert data["count"] == 2


class TestResultSnippets:
    """Test receipt snippets centred on the query terms."""

    @pytest.fixture
    def long_receipt(self) -> Receipt:
        filler = " ".join(f"ITEM{i:03d} 1.99" for i in range(40))
        return Receipt(
            id="r9",
            user_id="user_1",
            merchant_name="Whole Foods Market",
            ocr_text=f"{filler} WILD SALMON FILLET 18.99 {filler}",
        )

    def _snippet(self, receipt, query, now):
        result = SearchResult(
            item_id=receipt.id, item_type=EntityType.RECEIPT, vector_score=0.9,
            text_score=0.0, combined_score=0.9, raw_item=receipt,
        )
        results = RankedResults(
            query=query, intent=IntentLabel.SEARCH, entities=EntityMap(), mode="semantic",
            results=[result], timestamp=now,
        )
        return results.to_dict()["items"][0]["item"]["snippet"]

    def test_snippet_centred_on_query_terms(self, long_receipt, now):
        snippet = self._snippet(long_receipt, "receipts with wild salmon", now)

        assert "WILD SALMON" in snippet
        assert snippet.startswith("...")
        assert snippet.endswith("...")
        assert len(snippet) <= 206

    def test_snippet_without_matching_terms(self, long_receipt, now):
        snippet = self._snippet(long_receipt, "show my receipts", now)

        assert snippet.startswith("ITEM000")
        assert snippet.endswith("...")
        assert "SALMON" not in snippet

    def test_short_text_unchanged(self):
        processor = TextProcessor()

        assert processor.generate_context_snippet("SHELL unleaded fuel", ["fuel"]) == "SHELL unleaded fuel"
        assert processor.generate_context_snippet("", ["fuel"]) == ""
