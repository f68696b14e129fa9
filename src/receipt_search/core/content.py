"""Canonical content strings and content hashes for embedding."""

import hashlib
from typing import Callable, Dict, List, Optional

from ..models.entities import ConversationMessage, Entity, EntityType, Receipt, Warranty
from .exceptions import ValidationError


def content_hash(content: str) -> str:
    """SHA-256 fingerprint of canonical content."""
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


def _present(value) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    if isinstance(value, (list, tuple, set)):
        return len(value) > 0
    return True


def _money(amount) -> str:
    return f"${amount:.2f}"


def _iso(value) -> str:
    return value.isoformat()


def build_receipt_content(receipt: Receipt) -> str:
    """
    Build canonical receipt content.

    Field order: merchant, amount, date, category, extracted text, line
    items, tags, notes, location. Empty fields are skipped.
    """
    parts: List[str] = []

    if _present(receipt.merchant_name):
        parts.append(f"Merchant: {receipt.merchant_name}")
    if _present(receipt.total_amount):
        parts.append(f"Amount: {_money(receipt.total_amount)}")
    if _present(receipt.purchase_date):
        parts.append(f"Date: {_iso(receipt.purchase_date)}")
    if _present(receipt.category_name):
        parts.append(f"Category: {receipt.category_name}")
    if _present(receipt.ocr_text):
        parts.append(f"Receipt text: {receipt.ocr_text}")
    if _present(receipt.line_items):
        items_text = ", ".join(
            f"{item.description} {_money(item.amount)}" for item in receipt.line_items
        )
        parts.append(f"Items: {items_text}")
    if _present(receipt.tags):
        parts.append(f"Tags: {', '.join(receipt.tags)}")
    if _present(receipt.notes):
        parts.append(f"Notes: {receipt.notes}")
    if _present(receipt.location_address):
        parts.append(f"Location: {receipt.location_address}")

    return "\n".join(parts)


def build_warranty_content(warranty: Warranty) -> str:
    """Build canonical warranty content."""
    parts: List[str] = []

    if _present(warranty.product_name):
        parts.append(f"Product: {warranty.product_name}")
    if _present(warranty.product_brand):
        parts.append(f"Brand: {warranty.product_brand}")
    if _present(warranty.product_model):
        parts.append(f"Model: {warranty.product_model}")
    if _present(warranty.product_category):
        parts.append(f"Category: {warranty.product_category}")
    if _present(warranty.warranty_terms):
        parts.append(f"Warranty terms: {warranty.warranty_terms}")
    if _present(warranty.purchase_price):
        parts.append(f"Purchase price: {_money(warranty.purchase_price)}")
    if _present(warranty.purchase_location):
        parts.append(f"Purchase location: {warranty.purchase_location}")
    if _present(warranty.warranty_end_date):
        parts.append(f"Warranty expires: {_iso(warranty.warranty_end_date)}")

    return "\n".join(parts)


def build_conversation_content(message: ConversationMessage, context_window: int = 3) -> str:
    """Build canonical content for a chat message and its recent context."""
    parts: List[str] = []

    if _present(message.content):
        parts.append(message.content)
    if message.previous_messages:
        context_text = "\n".join(
            f"{previous.message_type}: {previous.content}"
            for previous in message.previous_messages[-context_window:]
        )
        parts.append(f"Context: {context_text}")
    if message.referenced_receipts:
        parts.append(f"References receipts: {len(message.referenced_receipts)} items")
    if message.referenced_warranties:
        parts.append(f"References warranties: {len(message.referenced_warranties)} items")

    return "\n".join(parts)


CONTENT_BUILDERS: Dict[EntityType, Callable[..., str]] = {
    EntityType.RECEIPT: build_receipt_content,
    EntityType.WARRANTY: build_warranty_content,
    EntityType.CONVERSATION: build_conversation_content,
}


def build_content(entity_type: EntityType, entity: Entity) -> str:
    """Dispatch to the builder for `entity_type`."""
    try:
        entity_type = EntityType(entity_type)
    except ValueError:
        raise ValidationError(f"Unknown entity type: {entity_type}")

    builder: Optional[Callable[..., str]] = CONTENT_BUILDERS.get(entity_type)
    if builder is None:
        raise ValidationError(f"No content builder for entity type: {entity_type.value}")
    if entity.entity_type != entity_type:
        raise ValidationError(
            f"Entity {entity.id} is a {entity.entity_type.value}, not a {entity_type.value}"
        )
    return builder(entity)
