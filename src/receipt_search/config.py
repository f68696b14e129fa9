"""Engine configuration with validated defaults."""

from datetime import timedelta
from typing import Dict

from pydantic import BaseModel, Field, model_validator


class RetrievalConfig(BaseModel):
    """
    Tunable settings for the retrieval engine.

    The duplicate threshold and the cache TTL are product defaults rather
    than engineering invariants, so both are exposed here.
    """

    # Embedding generation
    model_id: str = Field("hashing-384", min_length=1, description="Embedding model identifier")
    vector_dimension: int = Field(384, ge=8, le=8192, description="Dimension for the hashing provider")
    cache_ttl_hours: float = Field(24.0, gt=0, description="Age after which cached embeddings are regenerated")
    batch_size: int = Field(50, ge=1, le=1000, description="Items per concurrent batch chunk")
    batch_delay_seconds: float = Field(0.1, ge=0, description="Pause between batch chunks")
    rate_limit_backoff_seconds: float = Field(1.0, ge=0, description="Wait before the single rate-limit retry")
    max_input_chars: int = Field(8000, ge=1, description="Content is truncated to this many characters")
    max_workers: int = Field(4, ge=1, description="Worker threads for CPU-bound work")

    # Query handling
    max_query_length: int = Field(1000, ge=1)
    default_limit: int = Field(10, ge=1, le=1000)
    search_threshold: float = Field(0.0, ge=0.0, le=1.0)
    receipt_threshold: float = Field(0.7, ge=0.0, le=1.0)
    warranty_threshold: float = Field(0.75, ge=0.0, le=1.0)
    vector_weight: float = Field(0.7, ge=0.0, le=1.0)
    text_weight: float = Field(0.3, ge=0.0, le=1.0)
    weight_tolerance: float = Field(0.01, ge=0.0, le=0.5)
    candidate_multiplier: int = Field(3, ge=1, description="Over-fetch factor for hybrid candidates")

    # Duplicate detection
    duplicate_threshold: float = Field(0.85, ge=0.0, le=1.0)
    duplicate_limit: int = Field(20, ge=1, le=1000)

    # Budget insights
    default_timeframe_days: int = Field(90, ge=1)
    anomaly_std_multiplier: float = Field(2.0, gt=0)
    insight_candidate_limit: int = Field(500, ge=1)
    insight_similarity_threshold: float = Field(0.2, ge=0.0, le=1.0)
    recurring_purchase_min_count: int = Field(3, ge=2)
    trend_stable_band: float = Field(0.10, ge=0.0)

    # Warranties
    expiring_soon_days: int = Field(30, ge=0)

    # Retrieval-augmented context
    context_weights: Dict[str, float] = Field(
        default_factory=lambda: {
            "receipts": 0.4, "warranties": 0.3, "conversations": 0.2, "analytics": 0.1
        }
    )
    context_max_items: Dict[str, int] = Field(
        default_factory=lambda: {
            "receipts": 8, "warranties": 5, "conversations": 7, "analytics": 3
        }
    )
    context_thresholds: Dict[str, float] = Field(
        default_factory=lambda: {
            "receipts": 0.65, "warranties": 0.70, "conversations": 0.60, "analytics": 0.55
        }
    )

    # Request handling
    request_timeout_seconds: float = Field(30.0, gt=0)

    @model_validator(mode='after')
    def check_default_weights(self) -> "RetrievalConfig":
        """Default hybrid weights obey the same sum rule as requests."""
        if abs(self.vector_weight + self.text_weight - 1.0) > self.weight_tolerance:
            raise ValueError("vector_weight and text_weight must sum to 1.0")
        return self

    @property
    def cache_ttl(self) -> timedelta:
        return timedelta(hours=self.cache_ttl_hours)
