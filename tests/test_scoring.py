"""Test hybrid scoring and ranking."""

import pytest

from receipt_search.core.exceptions import ValidationError
from receipt_search.core.scoring import HybridScorer, normalize_scores
from receipt_search.models.entities import EntityType
from receipt_search.models.result import SearchResult


@pytest.fixture
def scorer() -> HybridScorer:
    return HybridScorer()


def _result(item_id, combined, vector, receipt):
    return SearchResult(
        item_id=item_id,
        item_type=EntityType.RECEIPT,
        vector_score=vector,
        text_score=0.0,
        combined_score=combined,
        raw_item=receipt,
    )


class TestWeights:
    """Test weight validation."""

    def test_weights_must_sum_to_one(self, scorer):
        with pytest.raises(ValidationError, match="sum to 1.0"):
            scorer.validate_weights(0.6, 0.3)

    def test_valid_weights(self, scorer):
        scorer.validate_weights(0.7, 0.3)
        scorer.validate_weights(1.0, 0.0)

    def test_within_tolerance(self, scorer):
        scorer.validate_weights(0.705, 0.3)

    def test_negative_weight_rejected(self, scorer):
        with pytest.raises(ValidationError):
            scorer.validate_weights(1.2, -0.2)


class TestScore:
    """Test the combined score."""

    def test_weighted_sum(self, scorer):
        assert scorer.score(0.8, 0.5, 0.7, 0.3) == pytest.approx(0.71)

    def test_extremes(self, scorer):
        assert scorer.score(1.0, 1.0, 0.5, 0.5) == pytest.approx(1.0)
        assert scorer.score(0.0, 0.0, 0.5, 0.5) == 0.0

    def test_clamped_when_weights_exceed_one(self, scorer):
        assert scorer.score(1.0, 1.0, 0.705, 0.3) == 1.0

    @pytest.mark.parametrize("vector,text", [(1.2, 0.5), (0.5, -0.1), (None, 0.5)])
    def test_unnormalized_inputs_rejected(self, scorer, vector, text):
        with pytest.raises(ValidationError, match="normalized"):
            scorer.score(vector, text, 0.7, 0.3)


class TestNormalizeScores:
    """Test min-max normalization."""

    def test_min_max(self):
        normalized = normalize_scores({"a": 2.0, "b": 4.0, "c": 3.0})

        assert normalized == {"a": 0.0, "b": 1.0, "c": pytest.approx(0.5)}

    def test_equal_positive_scores(self):
        assert normalize_scores({"a": 0.4, "b": 0.4}) == {"a": 1.0, "b": 1.0}

    def test_equal_zero_scores(self):
        assert normalize_scores({"a": 0.0}) == {"a": 0.0}

    def test_empty(self):
        assert normalize_scores({}) == {}


class TestRanking:
    """Test ordering and fusion."""

    def test_ties_broken_by_vector_then_id(self, scorer, sample_receipts):
        receipt = sample_receipts[0]
        results = scorer.rank([
            _result("b", 0.5, 0.4, receipt),
            _result("c", 0.5, 0.6, receipt),
            _result("a", 0.5, 0.4, receipt),
            _result("d", 0.9, 0.1, receipt),
        ])

        assert [result.item_id for result in results] == ["d", "c", "a", "b"]

    def test_fuse_outer_join(self, scorer, sample_receipts):
        items = {receipt.id: receipt for receipt in sample_receipts}
        results = scorer.fuse(
            vector_scores={"r1": 1.0, "r2": 0.5},
            text_scores={"r2": 1.0, "r3": 0.8},
            items=items,
            vector_weight=0.5,
            text_weight=0.5,
        )
        by_id = {result.item_id: result for result in results}

        assert [result.item_id for result in results] == ["r2", "r1", "r3"]
        assert by_id["r2"].combined_score == pytest.approx(0.75)
        assert by_id["r1"].text_score == 0.0
        assert by_id["r3"].vector_score == 0.0
        assert by_id["r3"].combined_score == pytest.approx(0.4)

    def test_fuse_validates_weights(self, scorer, sample_receipts):
        with pytest.raises(ValidationError):
            scorer.fuse({}, {}, {}, 0.6, 0.3)

    def test_ranking_is_non_increasing(self, scorer, sample_receipts):
        items = {receipt.id: receipt for receipt in sample_receipts}
        results = scorer.fuse(
            vector_scores={"r1": 0.2, "r2": 0.9, "r3": 0.4, "r4": 0.7},
            text_scores={"r1": 1.0, "r5": 0.3},
            items=items,
            vector_weight=0.7,
            text_weight=0.3,
        )
        scores = [result.combined_score for result in results]

        assert scores == sorted(scores, reverse=True)
