"""Embedding provider adapters."""

import asyncio
import logging
from typing import Any, Dict, List, Optional
from concurrent.futures import ThreadPoolExecutor

import numpy as np
from sklearn.feature_extraction.text import HashingVectorizer

from .exceptions import ConfigurationError, ProviderError
from .interfaces import EmbeddingProvider

logger = logging.getLogger(__name__)


class HashingEmbeddingProvider(EmbeddingProvider):
    """
    Offline embedding provider based on feature hashing.

    Produces L2-normalized, non-negative term vectors of a fixed dimension.
    It captures lexical rather than semantic similarity, which makes it a
    deterministic stand-in for a hosted model in development and tests.
    """

    def __init__(
        self,
        dimension: int = 384,
        ngram_range: tuple = (1, 2),
        executor: Optional[ThreadPoolExecutor] = None
    ):
        """
        Initialize hashing provider.

        Args:
            dimension: Number of hashed features per vector
            ngram_range: N-gram range for feature extraction
            executor: Thread pool executor for vectorization
        """
        self.dimension = dimension
        self._model_id = f"hashing-{dimension}"
        self._vectorizer = HashingVectorizer(
            n_features=dimension,
            ngram_range=ngram_range,
            alternate_sign=False,
            norm='l2',
            lowercase=True,
            strip_accents='unicode',
            token_pattern=r'\b[a-zA-Z0-9][a-zA-Z0-9.]*\b'
        )
        self._executor = executor

    @property
    def model_id(self) -> str:
        return self._model_id

    async def generate(self, text: str, model_id: str) -> List[float]:
        if model_id != self._model_id:
            raise ProviderError(f"Unknown model {model_id!r}; this provider serves {self._model_id!r}")
        try:
            return await asyncio.get_running_loop().run_in_executor(
                self._executor, self._encode, text
            )
        except Exception as e:
            raise ProviderError(f"Hashing vectorization failed: {e}") from e

    def _encode(self, text: str) -> List[float]:
        matrix = self._vectorizer.transform([text])
        return matrix.toarray()[0].astype(np.float64).tolist()


class SentenceTransformerProvider(EmbeddingProvider):
    """
    Sentence-BERT embedding provider.

    Requires the ``transformers`` extra (sentence-transformers and torch).
    The model is loaded on first use.
    """

    def __init__(
        self,
        model_name: str = "sentence-transformers/all-MiniLM-L6-v2",
        device: Optional[str] = None,
        executor: Optional[ThreadPoolExecutor] = None
    ):
        """
        Initialize transformer provider.

        Args:
            model_name: Sentence transformer model name
            device: Device to run the model on ('cpu', 'cuda', 'mps')
            executor: Thread pool executor for encoding
        """
        self.model_name = model_name
        self.device = device
        self._model = None
        self._executor = executor

    @property
    def model_id(self) -> str:
        return self.model_name

    def _get_best_device(self) -> str:
        """Determine the best available device."""
        import torch

        if torch.cuda.is_available():
            return "cuda"
        elif hasattr(torch.backends, 'mps') and torch.backends.mps.is_available():
            return "mps"
        else:
            return "cpu"

    def _load_model(self):
        if self._model is not None:
            return self._model
        try:
            from sentence_transformers import SentenceTransformer
        except ImportError as e:
            raise ConfigurationError(
                "Transformer dependencies not available. Install with: "
                "pip install 'receipt-semantic-search[transformers]'"
            ) from e

        self.device = self.device or self._get_best_device()
        self._model = SentenceTransformer(self.model_name, device=self.device)
        logger.info(f"Loaded sentence transformer {self.model_name} on {self.device}")
        return self._model

    async def generate(self, text: str, model_id: str) -> List[float]:
        if model_id != self.model_name:
            raise ProviderError(f"Unknown model {model_id!r}; this provider serves {self.model_name!r}")
        try:
            return await asyncio.get_running_loop().run_in_executor(
                self._executor, self._encode, text
            )
        except ConfigurationError:
            raise
        except Exception as e:
            raise ProviderError(f"Sentence transformer encoding failed: {e}") from e

    def _encode(self, text: str) -> List[float]:
        model = self._load_model()
        embedding = model.encode([text], convert_to_numpy=True)[0]
        return embedding.astype(np.float32).tolist()

    def get_stats(self) -> Dict[str, Any]:
        return {
            'model_name': self.model_name,
            'device': self.device,
            'loaded': self._model is not None,
        }
