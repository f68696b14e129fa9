"""Test the in-memory stores and the hashing provider."""

import pytest
import numpy as np

from receipt_search.core.exceptions import ProviderError, ValidationError
from receipt_search.core.providers import HashingEmbeddingProvider
from receipt_search.core.stores import InMemoryRecordStore, InMemoryVectorStore, TfidfTextSearch
from receipt_search.models.entities import EntityType
from receipt_search.models.query import AmountRange, SearchFilters


@pytest.fixture
def record_store(clock, sample_receipts, sample_warranties):
    store = InMemoryRecordStore(clock=clock)
    store.add_many(sample_receipts + sample_warranties)
    return store


@pytest.fixture
def vector_store(record_store, clock):
    return InMemoryVectorStore(record_store, clock=clock)


class TestRecordStore:
    """Test fetch and vocabulary."""

    async def test_fetch_by_ids_scoped_to_user(self, record_store):
        records = await record_store.fetch(EntityType.RECEIPT, ids=["r1", "other_1", "missing"], user_id="user_1")

        assert [record.id for record in records] == ["r1"]

    async def test_fetch_with_filters(self, record_store):
        filters = SearchFilters(amount_range=AmountRange(min=90))
        records = await record_store.fetch(EntityType.RECEIPT, filters=filters, user_id="user_1")

        assert sorted(record.id for record in records) == ["r3", "r4"]

    async def test_expiry_follows_injected_clock(self, record_store, clock):
        filters = SearchFilters(include_expired=False)

        before = await record_store.fetch(EntityType.WARRANTY, filters=filters, user_id="user_1")
        clock.advance(days=30)
        after = await record_store.fetch(EntityType.WARRANTY, filters=filters, user_id="user_1")

        assert sorted(record.id for record in before) == ["w1", "w3"]
        assert [record.id for record in after] == ["w1"]

    def test_vocabulary(self, record_store):
        vocabulary = record_store.vocabulary("user_1")

        assert "Groceries" in vocabulary["categories"]
        assert "Shell" in vocabulary["merchants"]
        assert "MacBook Pro" in vocabulary["products"]

    def test_remove(self, record_store):
        assert record_store.remove(EntityType.RECEIPT, "r1")
        assert record_store.get(EntityType.RECEIPT, "r1") is None
        assert not record_store.remove(EntityType.RECEIPT, "r1")


class TestVectorStore:
    """Test brute-force cosine search."""

    async def test_similarity_order_and_clamp(self, vector_store):
        await vector_store.upsert_embedding(EntityType.RECEIPT, "r1", [1.0, 0.0], "h1", "m", {})
        await vector_store.upsert_embedding(EntityType.RECEIPT, "r2", [1.0, 1.0], "h2", "m", {})
        await vector_store.upsert_embedding(EntityType.RECEIPT, "r3", [-1.0, 0.0], "h3", "m", {})

        hits = await vector_store.query([1.0, 0.0], "user_1", None, 10)

        assert [(entity.id, round(score, 4)) for entity, score in hits] == [
            ("r1", 1.0), ("r2", 0.7071), ("r3", 0.0)
        ]

    async def test_other_users_and_shapes_skipped(self, vector_store):
        await vector_store.upsert_embedding(EntityType.RECEIPT, "other_1", [1.0, 0.0], "h", "m", {})
        await vector_store.upsert_embedding(EntityType.RECEIPT, "r1", [1.0, 0.0, 0.0], "h", "m", {})

        assert await vector_store.query([1.0, 0.0], "user_1", None, 10) == []

    async def test_expired_warranties_filtered(self, vector_store):
        for warranty_id in ("w1", "w2"):
            await vector_store.upsert_embedding(EntityType.WARRANTY, warranty_id, [1.0, 0.0], "h", "m", {})

        hits = await vector_store.query([1.0, 0.0], "user_1", SearchFilters(include_expired=False), 10)

        assert [entity.id for entity, _ in hits] == ["w1"]

    async def test_fetch_embedding_and_metadata(self, vector_store):
        await vector_store.upsert_embedding(EntityType.RECEIPT, "r1", [0.5, 0.5], "h1", "m", {"user_id": "user_1"})

        assert await vector_store.fetch_embedding(EntityType.RECEIPT, "r1") == [0.5, 0.5]
        assert await vector_store.fetch_embedding(EntityType.RECEIPT, "r2") is None
        assert vector_store.get_metadata(EntityType.RECEIPT, "r1")["content_hash"] == "h1"

    async def test_empty_vector_rejected(self, vector_store):
        with pytest.raises(ValidationError):
            await vector_store.upsert_embedding(EntityType.RECEIPT, "r1", [], "h", "m", {})


class TestTfidfTextSearch:
    """Test lexical relevance."""

    async def test_relevant_records_only(self, record_store):
        search = TfidfTextSearch(record_store)

        hits = await search.query("salmon spinach", "user_1", None, 10)

        assert [entity.id for entity, _ in hits] == ["r4"]
        assert 0.0 < hits[0][1] <= 1.0

    async def test_filters_respected(self, record_store):
        search = TfidfTextSearch(record_store)
        filters = SearchFilters(item_types={EntityType.WARRANTY})

        hits = await search.query("whole foods", "user_1", filters, 10)

        assert hits == []


class TestHashingProvider:
    """Test the offline embedding provider."""

    async def test_normalized_vectors(self):
        provider = HashingEmbeddingProvider(dimension=64)

        vector = await provider.generate("organic bananas almond milk", provider.model_id)

        assert len(vector) == 64
        assert np.linalg.norm(vector) == pytest.approx(1.0)
        assert min(vector) >= 0.0

    async def test_deterministic(self):
        provider = HashingEmbeddingProvider(dimension=64)

        first = await provider.generate("shell fuel", "hashing-64")
        second = await provider.generate("shell fuel", "hashing-64")

        assert first == second

    async def test_unknown_model(self):
        provider = HashingEmbeddingProvider(dimension=64)

        with pytest.raises(ProviderError):
            await provider.generate("shell fuel", "text-embedding-3-small")
