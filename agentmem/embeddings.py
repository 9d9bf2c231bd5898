"""
Vector Embeddings - Semantic understanding with sentence-transformers.

This module provides:
- EmbeddingProvider protocol (text -> fixed-dimension unit vector)
- SentenceTransformerProvider: local model, loaded lazily once per instance
- HashEmbeddingProvider: deterministic fallback when the model is unavailable
- EmbeddingService: the injected service the memory store talks to
"""

import asyncio
import logging
import threading
from typing import List, Optional, Protocol, Sequence, runtime_checkable

from .cache import TTLCache
from .config import Settings, settings as default_settings
from .errors import EmbeddingDimensionError, EmbeddingError
from . import vectors

logger = logging.getLogger(__name__)


@runtime_checkable
class EmbeddingProvider(Protocol):
    """Anything that turns text into a unit vector of a fixed dimension."""

    dimension: int

    def embed(self, text: str) -> List[float]:
        ...

    def embed_batch(self, texts: Sequence[str]) -> List[List[float]]:
        ...


class SentenceTransformerProvider:
    """
    Local embedding model via sentence-transformers.

    The model is loaded on first use and reused afterwards. Concurrent first
    calls (several worker threads) share a single load.
    """

    def __init__(self, model_name: str, dimension: int):
        self.model_name = model_name
        self.dimension = dimension
        self._model = None
        self._load_lock = threading.Lock()

    def _get_model(self):
        if self._model is None:
            with self._load_lock:
                if self._model is None:
                    from sentence_transformers import SentenceTransformer

                    logger.info(f"Loading embedding model ({self.model_name})...")
                    model = SentenceTransformer(self.model_name)
                    model_dim = model.get_sentence_embedding_dimension()
                    if model_dim is not None and model_dim != self.dimension:
                        raise EmbeddingDimensionError(self.dimension, model_dim)
                    self._model = model
                    logger.info(f"Embedding model loaded ({self.dimension}-dim embeddings).")
        return self._model

    def embed(self, text: str) -> List[float]:
        model = self._get_model()
        embedding = model.encode(text, convert_to_numpy=True, normalize_embeddings=True)
        return embedding.tolist()

    def embed_batch(self, texts: Sequence[str]) -> List[List[float]]:
        if not texts:
            return []
        model = self._get_model()
        embeddings = model.encode(list(texts), convert_to_numpy=True, normalize_embeddings=True)
        return embeddings.tolist()


class HashEmbeddingProvider:
    """
    Deterministic pseudo-random unit vector derived from the text (FNV-1a).

    Keeps the store functional with degraded relevance when the real model
    cannot be loaded. Identical texts always map to identical vectors.
    """

    FNV_OFFSET = 2166136261
    FNV_PRIME = 16777619
    NUM_HASHES = 32

    def __init__(self, dimension: int):
        self.dimension = dimension

    def embed(self, text: str) -> List[float]:
        hash_bytes: List[int] = []
        for i in range(self.NUM_HASHES):
            h = (self.FNV_OFFSET + i) & 0xFFFFFFFF
            for ch in text:
                h ^= ord(ch)
                h = (h * self.FNV_PRIME) & 0xFFFFFFFF
            hash_bytes.extend([h & 0xFF, (h >> 8) & 0xFF, (h >> 16) & 0xFF, (h >> 24) & 0xFF])

        raw = [
            (hash_bytes[i % len(hash_bytes)] / 255) * 2 - 1
            for i in range(self.dimension)
        ]
        return vectors.normalize(raw)

    def embed_batch(self, texts: Sequence[str]) -> List[List[float]]:
        return [self.embed(t) for t in texts]


def provider_from_settings(config: Settings) -> EmbeddingProvider:
    """Build the configured embedding provider."""
    if config.embedding_backend == "hash":
        return HashEmbeddingProvider(config.embedding_dimension)
    return SentenceTransformerProvider(config.embedding_model, config.embedding_dimension)


class EmbeddingService:
    """
    Embedding front door for the memory store.

    - embed_for_store: strict. A provider failure raises EmbeddingError so no
      entry is ever persisted without a usable vector (unless
      store_fallback_enabled is set).
    - embed_query: forgiving. Falls back to the hash provider silently so
      search degrades instead of failing. Real-model results are cached.

    Model calls run in a worker thread so the event loop stays responsive.
    """

    def __init__(
        self,
        provider: Optional[EmbeddingProvider] = None,
        fallback: Optional[EmbeddingProvider] = None,
        config: Optional[Settings] = None
    ):
        self.config = config or default_settings
        self.provider = provider or provider_from_settings(self.config)
        self.fallback = fallback or HashEmbeddingProvider(self.provider.dimension)
        self._cache = TTLCache(
            ttl=self.config.embedding_cache_ttl_seconds,
            maxsize=self.config.embedding_cache_size
        )

        if self.fallback.dimension != self.provider.dimension:
            raise EmbeddingDimensionError(self.provider.dimension, self.fallback.dimension)

    @property
    def dimension(self) -> int:
        return self.provider.dimension

    def _check(self, vector: List[float]) -> List[float]:
        if len(vector) != self.dimension:
            raise EmbeddingDimensionError(self.dimension, len(vector))
        return vector

    async def embed_for_store(self, text: str) -> List[float]:
        """Embed text that is about to be persisted."""
        try:
            vector = await asyncio.to_thread(self.provider.embed, text)
        except EmbeddingDimensionError:
            raise
        except Exception as e:
            if not self.config.store_fallback_enabled:
                raise EmbeddingError(f"Embedding provider failed: {e}") from e
            logger.warning(f"Embedding provider failed, storing hash fallback vector: {e}")
            vector = self.fallback.embed(text)
        return self._check(vector)

    async def embed_query(self, text: str) -> List[float]:
        """Embed a search query, falling back to the hash vector on failure."""
        found, cached = self._cache.get(text)
        if found:
            return cached

        try:
            vector = await asyncio.to_thread(self.provider.embed, text)
        except EmbeddingDimensionError:
            raise
        except Exception as e:
            logger.warning(f"Embedding provider unavailable, using hash fallback: {e}")
            # Fallback vectors are not cached so recovery is picked up at once
            return self._check(self.fallback.embed(text))

        vector = self._check(vector)
        self._cache.set(text, vector)
        return vector

    async def embed_batch(self, texts: Sequence[str]) -> List[List[float]]:
        """Strictly embed many texts at once (used when re-embedding storage)."""
        if not texts:
            return []
        try:
            batch = await asyncio.to_thread(self.provider.embed_batch, list(texts))
        except EmbeddingDimensionError:
            raise
        except Exception as e:
            raise EmbeddingError(f"Embedding provider failed: {e}") from e
        return [self._check(v) for v in batch]

    @property
    def cache_stats(self) -> dict:
        return self._cache.stats
