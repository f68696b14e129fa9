"""Content-addressed embedding cache."""

import asyncio
import logging
import pickle
from pathlib import Path
from typing import Any, Dict, MutableMapping, Optional
from concurrent.futures import ThreadPoolExecutor

from ..models.embedding import EmbeddingRecord
from ..models.entities import EntityType
from .exceptions import CacheError, ValidationError

logger = logging.getLogger(__name__)


class EmbeddingCache:
    """
    Content-addressed store of embedding records.

    Records are keyed by entity type and content hash, so identical content
    is shared across users. The cache has no notion of staleness; TTL is a
    read-time policy applied by the caller.

    Any ``MutableMapping[str, EmbeddingRecord]`` can back the cache: a plain
    dict (default) or a ``shelve`` file for durability. Concurrent writers on
    the same key resolve as last-write-wins.
    """

    def __init__(
        self,
        backend: Optional[MutableMapping[str, EmbeddingRecord]] = None,
        executor: Optional[ThreadPoolExecutor] = None
    ):
        """
        Initialize embedding cache.

        Args:
            backend: Key-value mapping holding the records
            executor: Thread pool used for snapshot persistence
        """
        self._backend = backend if backend is not None else {}
        self._executor = executor
        self._stats = {'hits': 0, 'misses': 0, 'writes': 0, 'errors': 0}

    @staticmethod
    def _key(entity_type: EntityType, content_hash: str) -> str:
        return f"{EntityType(entity_type).value}:{content_hash}"

    def get(self, content_hash: str, entity_type: EntityType) -> Optional[EmbeddingRecord]:
        """
        Look up a record.

        Returns:
            The stored record, or None on a miss

        Raises:
            CacheError: If the backend fails
        """
        try:
            record = self._backend.get(self._key(entity_type, content_hash))
        except Exception as e:
            self._stats['errors'] += 1
            raise CacheError(f"Cache read failed for {content_hash[:12]}: {e}") from e

        if record is None:
            self._stats['misses'] += 1
        else:
            self._stats['hits'] += 1
        return record

    def put(self, content_hash: str, record: EmbeddingRecord) -> None:
        """
        Store a record, replacing any previous one for the same content.

        Raises:
            ValidationError: If the record does not belong to `content_hash`
            CacheError: If the backend fails
        """
        if record.content_hash != content_hash:
            raise ValidationError("Record content hash does not match cache key")

        try:
            self._backend[self._key(record.source_entity_type, content_hash)] = record
        except Exception as e:
            self._stats['errors'] += 1
            raise CacheError(f"Cache write failed for {content_hash[:12]}: {e}") from e

        self._stats['writes'] += 1

    def __len__(self) -> int:
        return len(self._backend)

    def clear(self) -> None:
        self._backend.clear()

    async def save(self, path: Path) -> None:
        """Snapshot the cache to disk."""
        try:
            snapshot = dict(self._backend)
            await asyncio.get_running_loop().run_in_executor(
                self._executor, self._save_sync, path, snapshot
            )
            logger.info(f"Embedding cache saved to {path} ({len(snapshot)} records)")
        except Exception as e:
            logger.error(f"Failed to save embedding cache: {e}")
            raise CacheError(f"Failed to save embedding cache: {e}") from e

    def _save_sync(self, path: Path, snapshot: Dict[str, EmbeddingRecord]) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, 'wb') as f:
            pickle.dump(snapshot, f)

    async def load(self, path: Path) -> None:
        """Merge a snapshot from disk into the cache."""
        try:
            snapshot = await asyncio.get_running_loop().run_in_executor(
                self._executor, self._load_sync, path
            )
            self._backend.update(snapshot)
            logger.info(f"Embedding cache loaded from {path} ({len(snapshot)} records)")
        except Exception as e:
            logger.error(f"Failed to load embedding cache: {e}")
            raise CacheError(f"Failed to load embedding cache: {e}") from e

    def _load_sync(self, path: Path) -> Dict[str, EmbeddingRecord]:
        with open(path, 'rb') as f:
            return pickle.load(f)

    def get_stats(self) -> Dict[str, Any]:
        """Get cache statistics."""
        return {**self._stats, 'size': len(self)}
