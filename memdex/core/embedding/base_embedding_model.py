"""Base embedding model interface for memdex.

Defines the abstract base class and standard API for all embedding model implementations.
"""

import asyncio
import hashlib
import os
from abc import ABC, abstractmethod
from collections import OrderedDict

import numpy as np
from loguru import logger

from ..enumeration import EmbeddingBackend
from ..exceptions import EmbeddingProviderError
from ..utils.common_utils import to_float32


class BaseEmbeddingModel(ABC):
    """Abstract base class for embedding model implementations.

    Provides a standard interface for text-to-vector generation with
    an in-memory LRU cache, retry logic and output validation. Every
    vector returned has exactly ``dimensions`` finite float32 values;
    anything else raises ``EmbeddingProviderError``.
    """

    backend: EmbeddingBackend = EmbeddingBackend.OPENAI
    default_model_name: str = ""
    default_dimensions: dict[str, int] = {}

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        model_name: str = "",
        dimensions: int | None = None,
        max_retries: int = 3,
        retry_delay: float = 1.0,
        max_input_length: int = 8192,
        max_cache_size: int = 2000,
        enable_cache: bool = True,
        **kwargs,
    ):
        """Initialize model configuration and parameters.

        Args:
            api_key: API key for the embedding service
            base_url: Base URL for the embedding service
            model_name: Name of the embedding model
            dimensions: Vector dimensions; looked up from the model name when omitted
            max_retries: Maximum number of attempts per request
            retry_delay: Base delay in seconds, multiplied by the attempt number
            max_input_length: Maximum input text length in characters
            max_cache_size: Maximum number of embeddings to cache in memory (LRU)
            enable_cache: Whether to enable the in-memory cache
            **kwargs: Additional model-specific parameters
        """
        self._api_key: str | None = api_key
        self._base_url: str | None = base_url
        self.model_name = model_name or self.default_model_name
        self.dimensions = dimensions or self._lookup_dimensions(self.model_name)
        self.max_retries = max(1, max_retries)
        self.retry_delay = retry_delay
        self.max_input_length = max_input_length
        self.max_cache_size = max_cache_size
        self.enable_cache = enable_cache
        self.kwargs = kwargs

        self._embedding_cache: OrderedDict[str, list[float]] = OrderedDict()
        self._cache_hits = 0
        self._cache_misses = 0

    @property
    def api_key(self) -> str | None:
        """Get API key, falling back to the environment."""
        return self._api_key or os.getenv("MEMDEX_EMBEDDING_API_KEY")

    @property
    def base_url(self) -> str | None:
        """Get base URL, falling back to the environment."""
        return self._base_url or os.getenv("MEMDEX_EMBEDDING_BASE_URL")

    @property
    def provider_name(self) -> str:
        return self.backend.value

    @property
    def model_key(self) -> str:
        """Identity of the vectors this model produces, stored alongside each chunk."""
        return f"{self.provider_name}/{self.model_name}/{self.dimensions or 0}"

    def _lookup_dimensions(self, model_name: str) -> int | None:
        base_name = model_name.split(":", 1)[0]
        return self.default_dimensions.get(model_name) or self.default_dimensions.get(base_name)

    def _truncate_text(self, text: str) -> str:
        """Truncate text to max_input_length if it exceeds the limit."""
        if len(text) > self.max_input_length:
            logger.warning(f"Text length {len(text)} exceeds {self.max_input_length}, truncating")
            return text[: self.max_input_length]
        return text

    def _get_cache_key(self, text: str) -> str:
        """Generate a cache key by hashing text + model_name + dimensions."""
        cache_string = f"{text}|{self.model_name}|{self.dimensions}"
        return hashlib.sha256(cache_string.encode("utf-8")).hexdigest()

    def _get_from_cache(self, text: str) -> list[float] | None:
        """Retrieve embedding from cache if it exists."""
        if not self.enable_cache:
            return None

        cache_key = self._get_cache_key(text)
        if cache_key in self._embedding_cache:
            self._embedding_cache.move_to_end(cache_key)
            self._cache_hits += 1
            return list(self._embedding_cache[cache_key])
        self._cache_misses += 1
        return None

    def _put_to_cache(self, text: str, embedding: list[float]) -> None:
        """Store embedding in cache with LRU eviction."""
        if not self.enable_cache or self.max_cache_size <= 0:
            return

        cache_key = self._get_cache_key(text)
        if len(self._embedding_cache) >= self.max_cache_size and cache_key not in self._embedding_cache:
            self._embedding_cache.popitem(last=False)

        self._embedding_cache[cache_key] = list(embedding)
        self._embedding_cache.move_to_end(cache_key)

    def get_cache_stats(self) -> dict[str, int | float]:
        """Get cache statistics.

        Returns:
            Dictionary with cache size, hits, misses, and hit rate
        """
        total_requests = self._cache_hits + self._cache_misses
        hit_rate = self._cache_hits / total_requests if total_requests > 0 else 0.0
        return {
            "cache_size": len(self._embedding_cache),
            "max_cache_size": self.max_cache_size,
            "cache_hits": self._cache_hits,
            "cache_misses": self._cache_misses,
            "hit_rate": hit_rate,
        }

    def clear_cache(self) -> None:
        """Clear the embedding cache and reset statistics."""
        self._embedding_cache.clear()
        self._cache_hits = 0
        self._cache_misses = 0

    def _validate_embedding(self, embedding) -> list[float]:
        """Reject garbled provider output and normalise it to float32 values."""
        if embedding is None or len(embedding) == 0:
            raise EmbeddingProviderError("Provider returned an empty embedding", self.provider_name, self.model_name)

        try:
            array = np.asarray(embedding, dtype=np.float32)
        except (TypeError, ValueError) as e:
            raise EmbeddingProviderError(
                f"Provider returned a non-numeric embedding: {e}",
                self.provider_name,
                self.model_name,
            ) from e

        if array.ndim != 1:
            raise EmbeddingProviderError(
                f"Provider returned an embedding of shape {array.shape}",
                self.provider_name,
                self.model_name,
            )

        if self.dimensions is None:
            self.dimensions = int(array.shape[0])
        elif array.shape[0] != self.dimensions:
            raise EmbeddingProviderError(
                f"Expected {self.dimensions} dimensions, got {array.shape[0]}",
                self.provider_name,
                self.model_name,
            )

        if not np.all(np.isfinite(array)):
            raise EmbeddingProviderError("Provider returned non-finite values", self.provider_name, self.model_name)

        return to_float32(array)

    @abstractmethod
    async def _get_embeddings(self, input_text: list[str], **kwargs) -> list[list[float]]:
        """Internal async implementation for calling the embedding API with batch input."""

    async def get_embedding(self, input_text: str, **kwargs) -> list[float]:
        """Get embedding for a single text with linear backoff retries.

        Raises:
            EmbeddingProviderError: If every attempt fails or the output is unusable
        """
        truncated_text = self._truncate_text(input_text)

        cached_embedding = self._get_from_cache(truncated_text)
        if cached_embedding is not None:
            return cached_embedding

        last_error: Exception | None = None
        for i in range(self.max_retries):
            try:
                result = await self._get_embeddings([truncated_text], **kwargs)
                embedding = self._validate_embedding(result[0] if result else None)
                self._put_to_cache(truncated_text, embedding)
                return embedding
            except Exception as e:
                logger.error(f"Model {self.model_name} failed (attempt {i + 1}/{self.max_retries}): {e}")
                last_error = e
                if i < self.max_retries - 1:
                    await asyncio.sleep(self.retry_delay * (i + 1))

        raise EmbeddingProviderError(
            f"Model {self.model_name} failed after {self.max_retries} attempts: {last_error}",
            self.provider_name,
            self.model_name,
        ) from last_error

    async def close(self):
        """Asynchronously release resources and close connections."""
