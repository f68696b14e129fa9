"""Input validation utilities."""

from typing import Iterable, Optional

from ..core.exceptions import ValidationError
from ..models.entities import EntityType


def validate_query_text(text: str, max_length: int = 1000) -> str:
    """
    Validate free-text query input.

    Args:
        text: Raw query text
        max_length: Maximum accepted length

    Returns:
        The stripped query text

    Raises:
        ValidationError: If the text is empty or too long
    """
    if not isinstance(text, str):
        raise ValidationError("Query must be a string")

    stripped = text.strip()
    if not stripped:
        raise ValidationError("Query is required and must be a non-empty string")

    if len(stripped) > max_length:
        raise ValidationError(f"Query is too long. Maximum {max_length} characters allowed.")

    return stripped


def validate_weights(vector_weight: float, text_weight: float, tolerance: float = 0.01) -> None:
    """
    Validate hybrid scoring weights.

    Raises:
        ValidationError: If a weight is outside [0, 1] or the sum is not 1.0
    """
    for name, weight in (("vector_weight", vector_weight), ("text_weight", text_weight)):
        if weight is None or not 0.0 <= weight <= 1.0:
            raise ValidationError(f"{name} must be between 0.0 and 1.0")

    if abs((vector_weight + text_weight) - 1.0) > tolerance:
        raise ValidationError(
            f"Vector weight and text weight must sum to 1.0 "
            f"(got {vector_weight} + {text_weight} = {vector_weight + text_weight:.3f})"
        )


def validate_threshold(threshold: Optional[float], name: str = "threshold") -> None:
    """Validate a similarity threshold."""
    if threshold is None:
        return
    if not 0.0 <= threshold <= 1.0:
        raise ValidationError(f"{name} must be between 0.0 and 1.0")


def validate_reference_id(reference_id: Optional[str]) -> str:
    """Duplicate checks need a reference record."""
    if not reference_id or not str(reference_id).strip():
        raise ValidationError("Receipt ID is required for duplicate detection")
    return str(reference_id).strip()


def validate_insight_types(insight_types: Iterable[str], allowed: Iterable[str]) -> list:
    """Validate requested insight types, preserving order and dropping repeats."""
    allowed_set = set(allowed)
    result = []
    for insight_type in insight_types:
        if insight_type not in allowed_set:
            raise ValidationError(
                f"Unknown insight type {insight_type!r}; expected one of {sorted(allowed_set)}"
            )
        if insight_type not in result:
            result.append(insight_type)
    if not result:
        raise ValidationError("At least one insight type is required")
    return result


def validate_timeframe(timeframe_days: int, maximum: int = 3650) -> None:
    if not isinstance(timeframe_days, int) or timeframe_days <= 0:
        raise ValidationError("Timeframe must be a positive number of days")
    if timeframe_days > maximum:
        raise ValidationError(f"Timeframe cannot exceed {maximum} days")


def validate_domain(domain: str) -> EntityType:
    """Map a search domain name to the record type it covers."""
    domains = {
        "receipts": EntityType.RECEIPT,
        "receipt": EntityType.RECEIPT,
        "warranties": EntityType.WARRANTY,
        "warranty": EntityType.WARRANTY,
    }
    entity_type = domains.get(str(domain).lower()) if domain else None
    if entity_type is None:
        raise ValidationError(f"Unknown search domain: {domain!r}")
    return entity_type
