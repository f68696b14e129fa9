"""Basic usage example for the receipt retrieval service."""

import asyncio
from datetime import date, timedelta

from receipt_search import (
    EntityType,
    LineItem,
    Receipt,
    RetrievalConfig,
    RetrievalService,
    SearchOptions,
    Warranty,
)


def sample_receipts() -> list:
    """A handful of receipts for one user."""
    today = date.today()
    return [
        Receipt(
            id="rcpt_001",
            user_id="demo_user",
            merchant_name="Whole Foods Market",
            total_amount=85.40,
            purchase_date=today - timedelta(days=12),
            category_name="Groceries",
            ocr_text="WHOLE FOODS MARKET organic bananas almond milk sourdough bread",
            line_items=[LineItem("Organic bananas", 3.49), LineItem("Almond milk", 4.99)],
        ),
        Receipt(
            id="rcpt_002",
            user_id="demo_user",
            merchant_name="Shell",
            total_amount=45.00,
            purchase_date=today - timedelta(days=9),
            category_name="Gas",
            ocr_text="SHELL unleaded fuel pump 4",
        ),
        Receipt(
            id="rcpt_003",
            user_id="demo_user",
            merchant_name="Best Buy",
            total_amount=1299.99,
            purchase_date=today - timedelta(days=5),
            category_name="Electronics",
            ocr_text="BEST BUY laptop computer 16GB RAM",
            is_business_expense=True,
        ),
        Receipt(
            id="rcpt_004",
            user_id="demo_user",
            merchant_name="Whole Foods Market",
            total_amount=85.40,
            purchase_date=today - timedelta(days=12),
            category_name="Groceries",
            ocr_text="WHOLE FOODS MARKET organic bananas almond milk sourdough bread",
            line_items=[LineItem("Organic bananas", 3.49), LineItem("Almond milk", 4.99)],
        ),
    ]


def sample_warranties() -> list:
    today = date.today()
    return [
        Warranty(
            id="wrnt_001",
            user_id="demo_user",
            product_name="Laptop",
            product_brand="Lenovo",
            product_category="Electronics",
            warranty_terms="One year limited hardware warranty",
            purchase_price=1299.99,
            purchase_location="Best Buy",
            purchase_date=today - timedelta(days=5),
            warranty_end_date=today + timedelta(days=360),
        ),
    ]


async def basic_retrieval_demo():
    """Demonstrate search, duplicates, insights and chat context."""
    print("🔍 Receipt Retrieval - Basic Usage Demo")
    print("=" * 50)

    print("\n1. Initializing retrieval service...")
    config = RetrievalConfig(batch_delay_seconds=0.0)
    async with RetrievalService.create(config=config, log_level="INFO") as service:

        print("\n2. Indexing receipts and warranties...")
        outcomes = await service.index_entities(sample_receipts(), EntityType.RECEIPT)
        await service.index_entities(sample_warranties(), EntityType.WARRANTY)
        print(f"   Indexed {sum(outcome.success for outcome in outcomes)} receipts")

        print("\n3. Performing searches...")
        options = SearchOptions(user_id="demo_user", limit=3)
        for query_text in ("organic groceries", "receipts over $100", "fuel last week"):
            results = await service.search(query_text, options)
            print(f"\n   Query: '{query_text}' (intent: {results.intent.value})")
            for i, result in enumerate(results.results, 1):
                print(f"     {i}. {result.item_type.value} {result.item_id} - Score: {result.combined_score:.3f}")

        print("\n4. Hybrid search (70% vector, 30% keyword)...")
        results = await service.hybrid_search("laptop computer", 0.7, 0.3, None, options)
        for result in results.results:
            print(f"   {result.item_id}: vector={result.vector_score:.2f} text={result.text_score:.2f} "
                  f"combined={result.combined_score:.2f}")

        print("\n5. Duplicate detection...")
        candidates = await service.find_duplicates("rcpt_001", "demo_user")
        for candidate in candidates:
            print(f"   {candidate.item_id} looks like a duplicate ({candidate.similarity:.2f})")

        print("\n6. Budget insights...")
        insights = await service.analyze_budget("spending patterns and trends", "demo_user", timeframe_days=30)
        print(f"   Total spent: ${insights.total_spent:.2f} across {insights.record_count} receipts")
        for insight in insights.insights:
            print(f"   - {insight.title}: {insight.description}")

        print("\n7. Chat context...")
        context = await service.assemble_context("is my laptop still under warranty?", "demo_user")
        print(service.format_context(context))

        health = await service.health_check()
        print(f"   System status: {health['status']}")

    print("\n✅ Demo completed successfully!")


if __name__ == "__main__":
    asyncio.run(basic_retrieval_demo())
