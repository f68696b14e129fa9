"""Utility modules for the retrieval engine."""

from .text_processing import TextProcessor
from .validators import validate_query_text, validate_weights
from .logging_config import setup_logging, StructuredLogger

__all__ = ["TextProcessor", "validate_query_text", "validate_weights", "setup_logging", "StructuredLogger"]
