"""Pytest configuration and shared fixtures."""

import asyncio
import hashlib
import tempfile
import pytest
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from receipt_search.config import RetrievalConfig
from receipt_search.core.exceptions import ProviderError, RateLimited
from receipt_search.core.interfaces import EmbeddingProvider, TextSearch, VectorStore
from receipt_search.models.entities import (
    ConversationMessage,
    Entity,
    EntityType,
    LineItem,
    Receipt,
    Warranty,
)

# Friday
NOW = datetime(2024, 3, 15, 12, 0, 0)


class FakeClock:
    """Settable clock for staleness tests."""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class FakeProvider(EmbeddingProvider):
    """
    Deterministic provider with failure injection.

    Vectors are derived from a SHA-256 digest of the text, so equal text
    always yields an equal, non-zero vector.
    """

    def __init__(self, model_id: str = "fake-model", dimension: int = 8):
        self._model_id = model_id
        self.dimension = dimension
        self.calls: List[str] = []
        self.rate_limit_remaining = 0
        self.fail_on: List[str] = []
        self.vectors: Dict[str, List[float]] = {}
        self.delay = 0.0
        self.delay_on: Dict[str, float] = {}
        self.completed: List[str] = []

    @property
    def model_id(self) -> str:
        return self._model_id

    async def generate(self, text: str, model_id: str) -> List[float]:
        self.calls.append(text)
        delay = self.delay + sum(seconds for marker, seconds in self.delay_on.items() if marker in text)
        if delay:
            await asyncio.sleep(delay)
        if self.rate_limit_remaining > 0:
            self.rate_limit_remaining -= 1
            raise RateLimited("429 Too Many Requests")
        if any(marker in text for marker in self.fail_on):
            raise ProviderError("provider exploded")
        self.completed.append(text)
        if text in self.vectors:
            return list(self.vectors[text])
        digest = hashlib.sha256(text.encode("utf-8")).digest()
        return [1.0 + digest[i] / 255.0 for i in range(self.dimension)]


class StubVectorStore(VectorStore):
    """Returns preset (record, similarity) hits after applying filters."""

    def __init__(self, hits: Optional[List[Tuple[Entity, float]]] = None, now: datetime = NOW):
        self.hits = list(hits or [])
        self.now = now
        self.queries: List[Dict[str, Any]] = []
        self.embeddings: Dict[Tuple[EntityType, str], List[float]] = {}
        self.fail_for: Optional[EntityType] = None

    async def query(self, vector, user_id, filters, limit):
        self.queries.append({"vector": vector, "user_id": user_id, "filters": filters, "limit": limit})
        if self.fail_for is not None and filters is not None and filters.item_types == {self.fail_for}:
            raise ConnectionError("vector store unavailable")
        matched = [
            (entity, score) for entity, score in self.hits
            if entity.user_id == user_id and (filters is None or filters.matches(entity, self.now))
        ]
        matched.sort(key=lambda hit: (-hit[1], hit[0].id))
        return matched[:limit]

    async def upsert_embedding(self, entity_type, entity_id, vector, content_hash, model_id, metadata):
        self.embeddings[(EntityType(entity_type), entity_id)] = list(vector)

    async def fetch_embedding(self, entity_type, entity_id):
        return self.embeddings.get((EntityType(entity_type), entity_id))


class StubTextSearch(TextSearch):
    """Returns preset (record, relevance) hits after applying filters."""

    def __init__(self, hits: Optional[List[Tuple[Entity, float]]] = None, now: datetime = NOW):
        self.hits = list(hits or [])
        self.now = now
        self.queries: List[str] = []

    async def query(self, text, user_id, filters, limit):
        self.queries.append(text)
        matched = [
            (entity, score) for entity, score in self.hits
            if entity.user_id == user_id and (filters is None or filters.matches(entity, self.now))
        ]
        matched.sort(key=lambda hit: (-hit[1], hit[0].id))
        return matched[:limit]


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def config() -> RetrievalConfig:
    """Configuration without throttling delays."""
    return RetrievalConfig(batch_delay_seconds=0.0, rate_limit_backoff_seconds=0.0)


@pytest.fixture
def fake_provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def sample_receipts() -> List[Receipt]:
    """Receipts for user_1 plus one receipt owned by someone else."""
    return [
        Receipt(
            id="r1",
            user_id="user_1",
            merchant_name="Whole Foods Market",
            total_amount=85.40,
            purchase_date=date(2024, 2, 10),
            category_name="Groceries",
            ocr_text="WHOLE FOODS MARKET organic bananas almond milk sourdough bread",
            line_items=[LineItem("Organic bananas", 3.49), LineItem("Almond milk", 4.99)],
            tags=["food"],
        ),
        Receipt(
            id="r2",
            user_id="user_1",
            merchant_name="Shell",
            total_amount=45.00,
            purchase_date=date(2024, 2, 20),
            category_name="Gas",
            ocr_text="SHELL fuel unleaded pump 4 gallons",
        ),
        Receipt(
            id="r3",
            user_id="user_1",
            merchant_name="Best Buy",
            total_amount=1299.99,
            purchase_date=date(2024, 3, 1),
            category_name="Electronics",
            ocr_text="BEST BUY laptop computer 16GB RAM",
            is_business_expense=True,
        ),
        Receipt(
            id="r4",
            user_id="user_1",
            merchant_name="Whole Foods Market",
            total_amount=92.10,
            purchase_date=date(2024, 3, 5),
            category_name="Groceries",
            ocr_text="WHOLE FOODS MARKET salmon fillet spinach olive oil",
        ),
        Receipt(
            id="r5",
            user_id="user_1",
            merchant_name="Olive Garden",
            total_amount=64.25,
            purchase_date=date(2024, 1, 15),
            category_name="Restaurants",
            ocr_text="OLIVE GARDEN dinner pasta breadsticks tip",
        ),
        Receipt(
            id="other_1",
            user_id="user_2",
            merchant_name="Whole Foods Market",
            total_amount=85.40,
            purchase_date=date(2024, 2, 10),
            category_name="Groceries",
            ocr_text="WHOLE FOODS MARKET organic bananas almond milk sourdough bread",
        ),
    ]


@pytest.fixture
def sample_warranties() -> List[Warranty]:
    """Active, expired and expiring-soon warranties for user_1."""
    return [
        Warranty(
            id="w1",
            user_id="user_1",
            product_name="MacBook Pro",
            product_brand="Apple",
            product_category="Electronics",
            warranty_terms="One year limited hardware warranty",
            purchase_price=2499.00,
            purchase_location="Apple Store",
            purchase_date=date(2024, 3, 1),
            warranty_end_date=date(2025, 3, 1),
        ),
        Warranty(
            id="w2",
            user_id="user_1",
            product_name="Dyson V11 vacuum",
            product_brand="Dyson",
            product_category="Appliances",
            warranty_terms="Two year parts and labour",
            purchase_price=599.00,
            purchase_location="Target",
            purchase_date=date(2022, 2, 1),
            warranty_end_date=date(2024, 2, 1),
        ),
        Warranty(
            id="w3",
            user_id="user_1",
            product_name="Sony headphones",
            product_brand="Sony",
            product_category="Electronics",
            warranty_terms="One year manufacturer warranty",
            purchase_price=349.99,
            purchase_location="Best Buy",
            purchase_date=date(2023, 4, 1),
            warranty_end_date=date(2024, 4, 1),
        ),
    ]


@pytest.fixture
def sample_messages() -> List[ConversationMessage]:
    return [
        ConversationMessage(
            id="m1",
            user_id="user_1",
            conversation_id="c1",
            content="How much did I spend on groceries in February?",
            created_at=datetime(2024, 3, 1, 9, 30),
            referenced_receipts=["r1"],
        ),
    ]


@pytest.fixture
def temp_cache_path():
    """Create temporary directory for cache snapshots."""
    with tempfile.TemporaryDirectory() as temp_dir:
        yield Path(temp_dir) / "embedding_cache.pkl"
