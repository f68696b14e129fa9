"""Logging configuration for the retrieval engine."""

import logging
import sys
import time
from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional

NOISY_LIBRARIES = ("sklearn", "numpy", "sentence_transformers", "torch", "asyncio")


def setup_logging(
    level: str = "INFO",
    format_string: Optional[str] = None,
    include_timestamp: bool = True
) -> None:
    """
    Configure logging for the retrieval engine.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        format_string: Custom format string
        include_timestamp: Whether to include timestamps
    """
    numeric_level = getattr(logging, level.upper(), None)
    if not isinstance(numeric_level, int):
        raise ValueError(f"Unknown log level: {level}")

    if format_string is None:
        if include_timestamp:
            format_string = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        else:
            format_string = "%(name)s - %(levelname)s - %(message)s"

    logging.basicConfig(
        level=numeric_level,
        format=format_string,
        stream=sys.stdout,
        force=True
    )

    logging.getLogger("receipt_search").setLevel(numeric_level)

    for name in NOISY_LIBRARIES:
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.getLogger(__name__).info(f"Logging configured with level: {level.upper()}")


class StructuredLogger:
    """Logger that appends request context such as user and mode to each message."""

    def __init__(self, name: str, context: Optional[Dict[str, Any]] = None):
        self.logger = logging.getLogger(name)
        self.context = dict(context or {})

    def with_context(self, **kwargs) -> 'StructuredLogger':
        """Return a logger carrying additional context."""
        return StructuredLogger(self.logger.name, {**self.context, **kwargs})

    def _format_message(self, message: str) -> str:
        if not self.context:
            return message
        context_str = " ".join(f"{k}={v}" for k, v in self.context.items() if v is not None)
        return f"{message} [{context_str}]" if context_str else message

    def debug(self, message: str) -> None:
        self.logger.debug(self._format_message(message))

    def info(self, message: str) -> None:
        self.logger.info(self._format_message(message))

    def warning(self, message: str) -> None:
        self.logger.warning(self._format_message(message))

    def error(self, message: str) -> None:
        self.logger.error(self._format_message(message))

    @contextmanager
    def timed(self, operation: str) -> Iterator[Dict[str, Any]]:
        """
        Log the duration of a block at INFO, or at ERROR if it raises.

        The yielded dict is appended to the completion message, so callers
        can report counts gathered inside the block.
        """
        details: Dict[str, Any] = {}
        start = time.perf_counter()
        try:
            yield details
        except Exception as e:
            elapsed = time.perf_counter() - start
            self.error(f"{operation} failed after {elapsed:.3f}s: {e}")
            raise
        elapsed = time.perf_counter() - start
        extra = " ".join(f"{k}={v}" for k, v in details.items())
        self.info(f"{operation} completed in {elapsed:.3f}s" + (f" {extra}" if extra else ""))
