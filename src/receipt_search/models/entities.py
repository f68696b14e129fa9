"""Financial record models: receipts, warranties and chat messages."""

from datetime import date, datetime, time
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional, Union
from dataclasses import dataclass, field
from pydantic import BaseModel, Field, field_validator


class EntityType(str, Enum):
    """Record types that can be embedded and searched."""
    RECEIPT = "receipt"
    WARRANTY = "warranty"
    CONVERSATION = "conversation"


Amount = Union[float, int, Decimal]
DateLike = Union[date, datetime]


def as_datetime(value: Optional[DateLike]) -> Optional[datetime]:
    """Promote a date to a naive datetime at midnight."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value
    return datetime.combine(value, time.min)


@dataclass
class LineItem:
    """Single purchased line on a receipt."""
    description: str
    amount: Amount
    quantity: Optional[float] = None


@dataclass
class Receipt:
    """
    Receipt owned by a single user.

    Attributes:
        id: Unique receipt identifier
        user_id: Owner of the receipt
        merchant_name: Store or vendor name
        total_amount: Receipt total
        purchase_date: Date of purchase
        category_name: Spending category
        ocr_text: Raw text extracted from the receipt image
        line_items: Purchased items
        tags: Free-form user tags
        notes: User notes
        location_address: Store address
        is_business_expense: Whether the purchase is a business expense
    """
    id: str
    user_id: str
    merchant_name: Optional[str] = None
    total_amount: Optional[Amount] = None
    purchase_date: Optional[DateLike] = None
    category_name: Optional[str] = None
    ocr_text: Optional[str] = None
    line_items: List[LineItem] = field(default_factory=list)
    tags: List[str] = field(default_factory=list)
    notes: Optional[str] = None
    location_address: Optional[str] = None
    is_business_expense: bool = False

    entity_type = EntityType.RECEIPT

    def __post_init__(self) -> None:
        """Validate receipt after initialization."""
        if not self.id.strip():
            raise ValueError("Receipt ID cannot be empty")
        if not self.user_id.strip():
            raise ValueError("User ID cannot be empty")

    @property
    def amount(self) -> Optional[float]:
        return float(self.total_amount) if self.total_amount is not None else None

    @property
    def occurred_at(self) -> Optional[datetime]:
        return as_datetime(self.purchase_date)

    @property
    def category(self) -> Optional[str]:
        return self.category_name

    @property
    def merchant(self) -> Optional[str]:
        return self.merchant_name

    @property
    def product(self) -> Optional[str]:
        return None


@dataclass
class Warranty:
    """Product warranty owned by a single user."""
    id: str
    user_id: str
    product_name: Optional[str] = None
    product_brand: Optional[str] = None
    product_model: Optional[str] = None
    product_category: Optional[str] = None
    warranty_terms: Optional[str] = None
    purchase_price: Optional[Amount] = None
    purchase_location: Optional[str] = None
    purchase_date: Optional[DateLike] = None
    warranty_end_date: Optional[DateLike] = None
    support_contact: Optional[str] = None

    entity_type = EntityType.WARRANTY

    def __post_init__(self) -> None:
        """Validate warranty after initialization."""
        if not self.id.strip():
            raise ValueError("Warranty ID cannot be empty")
        if not self.user_id.strip():
            raise ValueError("User ID cannot be empty")
        start = as_datetime(self.purchase_date)
        end = as_datetime(self.warranty_end_date)
        if start and end and start > end:
            raise ValueError("Warranty cannot end before the purchase date")

    @property
    def amount(self) -> Optional[float]:
        return float(self.purchase_price) if self.purchase_price is not None else None

    @property
    def occurred_at(self) -> Optional[datetime]:
        return as_datetime(self.purchase_date)

    @property
    def category(self) -> Optional[str]:
        return self.product_category

    @property
    def merchant(self) -> Optional[str]:
        return self.purchase_location

    @property
    def product(self) -> Optional[str]:
        return self.product_name

    def days_until_expiry(self, now: datetime) -> Optional[int]:
        """Whole days until the warranty ends; negative once expired."""
        end = as_datetime(self.warranty_end_date)
        if end is None:
            return None
        return (end.date() - now.date()).days

    def is_expired(self, now: datetime) -> bool:
        days = self.days_until_expiry(now)
        return days is not None and days < 0

    def status(self, now: datetime, expiring_soon_days: int = 30) -> str:
        """Return 'active', 'expiring_soon', 'expired' or 'unknown'."""
        days = self.days_until_expiry(now)
        if days is None:
            return "unknown"
        if days < 0:
            return "expired"
        if days <= expiring_soon_days:
            return "expiring_soon"
        return "active"


@dataclass
class ConversationMessage:
    """Chat message exchanged with the assistant."""
    id: str
    user_id: str
    conversation_id: str
    content: str
    message_type: str = "user"
    sequence_number: int = 0
    created_at: Optional[datetime] = None
    previous_messages: List["ConversationMessage"] = field(default_factory=list)
    referenced_receipts: List[str] = field(default_factory=list)
    referenced_warranties: List[str] = field(default_factory=list)

    entity_type = EntityType.CONVERSATION

    def __post_init__(self) -> None:
        if not self.id.strip():
            raise ValueError("Message ID cannot be empty")
        if not self.user_id.strip():
            raise ValueError("User ID cannot be empty")

    @property
    def amount(self) -> Optional[float]:
        return None

    @property
    def occurred_at(self) -> Optional[datetime]:
        return self.created_at

    @property
    def category(self) -> Optional[str]:
        return None

    @property
    def merchant(self) -> Optional[str]:
        return None

    @property
    def product(self) -> Optional[str]:
        return None


Entity = Union[Receipt, Warranty, ConversationMessage]


class LineItemModel(BaseModel):
    """Pydantic model for line items in API contexts."""

    description: str = Field(..., min_length=1)
    amount: float
    quantity: Optional[float] = Field(None, ge=0)


class ReceiptModel(BaseModel):
    """Pydantic model for receipt validation in API contexts."""

    id: str = Field(..., min_length=1, description="Unique receipt identifier")
    user_id: str = Field(..., min_length=1, description="Owner identifier")
    merchant_name: Optional[str] = None
    total_amount: Optional[float] = Field(None, ge=0, description="Receipt total")
    purchase_date: Optional[date] = None
    category_name: Optional[str] = None
    ocr_text: Optional[str] = None
    line_items: List[LineItemModel] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    notes: Optional[str] = None
    location_address: Optional[str] = None
    is_business_expense: bool = False

    @field_validator('merchant_name', 'category_name', 'notes', 'ocr_text')
    @classmethod
    def strip_text(cls, v: Optional[str]) -> Optional[str]:
        """Collapse whitespace-only text to None."""
        if v is None:
            return v
        return v.strip() or None

    def to_receipt(self) -> Receipt:
        """Convert to Receipt dataclass."""
        return Receipt(
            id=self.id,
            user_id=self.user_id,
            merchant_name=self.merchant_name,
            total_amount=self.total_amount,
            purchase_date=self.purchase_date,
            category_name=self.category_name,
            ocr_text=self.ocr_text,
            line_items=[
                LineItem(description=item.description, amount=item.amount, quantity=item.quantity)
                for item in self.line_items
            ],
            tags=list(self.tags),
            notes=self.notes,
            location_address=self.location_address,
            is_business_expense=self.is_business_expense
        )


class WarrantyModel(BaseModel):
    """Pydantic model for warranty validation in API contexts."""

    id: str = Field(..., min_length=1)
    user_id: str = Field(..., min_length=1)
    product_name: Optional[str] = None
    product_brand: Optional[str] = None
    product_model: Optional[str] = None
    product_category: Optional[str] = None
    warranty_terms: Optional[str] = None
    purchase_price: Optional[float] = Field(None, ge=0)
    purchase_location: Optional[str] = None
    purchase_date: Optional[date] = None
    warranty_end_date: Optional[date] = None
    support_contact: Optional[str] = None

    def to_warranty(self) -> Warranty:
        """Convert to Warranty dataclass."""
        return Warranty(**self.model_dump())


def entity_summary(entity: Entity) -> Dict[str, Any]:
    """Minimal identifying fields used in logs and insight payloads."""
    return {
        "id": entity.id,
        "type": entity.entity_type.value,
        "amount": entity.amount,
        "date": entity.occurred_at.isoformat() if entity.occurred_at else None,
        "merchant": entity.merchant,
    }
