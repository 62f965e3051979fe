"""
Embedding provider layer. Text to fixed-length vectors.
Falls back to hashed bag-of-words vectors when the model is unavailable.
"""

from abc import ABC, abstractmethod
from collections import OrderedDict
import asyncio
import hashlib
import re
import time
from typing import Dict, List, Optional
import numpy as np

from util.logging import logger

_TOKEN_RE = re.compile(r"[a-z0-9']+")


class IEmbeddingProvider(ABC):
    """Abstract interface for embedding providers."""

    @abstractmethod
    def embed_text(self, text: str) -> list[float]:
        """Generate embedding vector for given text."""
        pass

    @abstractmethod
    def get_dimension(self) -> int:
        """Get the dimension of the embedding vectors."""
        pass


class DeterministicHashEmbedding(IEmbeddingProvider):
    """Hashed bag-of-words embedding provider.

    Every token is hashed onto one signed bucket of a fixed-size vector and the
    result is L2-normalized. Identical texts always produce identical vectors,
    and texts sharing vocabulary land near each other, which is enough for
    retrieval to keep working without a model.
    """

    def __init__(self, dimension: int = 384):
        self.dimension = dimension

    def _bucket(self, token: str):
        digest = hashlib.md5(token.encode()).hexdigest()
        index = int(digest[:8], 16) % self.dimension
        sign = 1.0 if int(digest[8:10], 16) % 2 == 0 else -1.0
        return index, sign

    def embed_text(self, text: str) -> list[float]:
        """Generate deterministic embedding vector using token hashing."""
        vector = np.zeros(self.dimension, dtype=np.float64)
        for token in _TOKEN_RE.findall(text.lower()):
            index, sign = self._bucket(token)
            vector[index] += sign

        norm = np.linalg.norm(vector)
        if norm > 0:
            vector = vector / norm
        return vector.tolist()

    def get_dimension(self) -> int:
        """Get the dimension of the embedding vectors."""
        return self.dimension


class SentenceTransformerEmbedding(IEmbeddingProvider):
    """Sentence transformers embedding provider using pre-trained models.

    Defaults to all-MiniLM-L6-v2 (384 dimensions).
    """

    def __init__(self, model_name: str = "all-MiniLM-L6-v2"):
        self.model_name = model_name
        self._model = None
        self._dimension = None

    @property
    def model(self):
        if self._model is None:
            from sentence_transformers import SentenceTransformer
            self._model = SentenceTransformer(self.model_name)
        return self._model

    def embed_text(self, text: str) -> list[float]:
        """Generate embedding vector using sentence transformers."""
        embedding = self.model.encode(text, convert_to_tensor=False)
        return embedding.tolist()

    def get_dimension(self) -> int:
        """Get the dimension of the embedding vectors."""
        if self._dimension is None:
            self._dimension = self.model.get_sentence_embedding_dimension()
        return self._dimension


class EmbeddingCache:
    """LRU cache of embeddings with a time-to-live per entry."""

    def __init__(self, max_size: int = 1000, ttl_sec: float = 86400, clock=time.monotonic):
        self.max_size = max_size
        self.ttl_sec = ttl_sec
        self._clock = clock
        self._entries: "OrderedDict[str, tuple]" = OrderedDict()
        self._stats = {"hits": 0, "misses": 0, "evictions": 0}

    @staticmethod
    def make_key(text: str) -> str:
        return " ".join(text.lower().split())

    def get(self, text: str) -> Optional[np.ndarray]:
        key = self.make_key(text)
        entry = self._entries.get(key)
        if entry is None:
            self._stats["misses"] += 1
            return None

        vector, created_at = entry
        if self._clock() - created_at > self.ttl_sec:
            del self._entries[key]
            self._stats["misses"] += 1
            return None

        self._entries.move_to_end(key)
        self._stats["hits"] += 1
        return vector

    def set(self, text: str, vector: np.ndarray) -> None:
        key = self.make_key(text)
        self._entries[key] = (vector, self._clock())
        self._entries.move_to_end(key)
        while len(self._entries) > self.max_size:
            self._entries.popitem(last=False)
            self._stats["evictions"] += 1

    def clear(self) -> None:
        self._entries.clear()

    def get_stats(self) -> Dict[str, float]:
        lookups = self._stats["hits"] + self._stats["misses"]
        return {
            **self._stats,
            "size": len(self._entries),
            "hit_rate": self._stats["hits"] / lookups if lookups else 0.0,
        }


class EmbeddingService:
    """
    Embedding entry point used by the rest of the system.

    Wraps a primary provider with a cache and a hashed fallback. ``embed`` never
    raises: the first provider failure switches the service into degraded mode,
    after which the fallback serves every request until ``reset_degraded`` is
    called.
    """

    def __init__(self, provider: IEmbeddingProvider = None, fallback: IEmbeddingProvider = None,
                 cache: EmbeddingCache = None):
        from replyguard.core.config import EMBED_CACHE_SIZE, EMBED_CACHE_TTL_SEC, EMBED_DIM
        self.provider = provider or DeterministicHashEmbedding(EMBED_DIM)
        self.fallback = fallback or DeterministicHashEmbedding(EMBED_DIM)
        self.cache = cache if cache is not None else EmbeddingCache(EMBED_CACHE_SIZE, EMBED_CACHE_TTL_SEC)
        self._degraded = False

    @property
    def degraded(self) -> bool:
        """True when vectors are coming from the fallback provider."""
        return self._degraded

    @property
    def dimension(self) -> int:
        return self.fallback.get_dimension()

    def reset_degraded(self) -> None:
        self._degraded = False

    def _embed_sync(self, text: str) -> np.ndarray:
        if not self._degraded:
            try:
                return np.asarray(self.provider.embed_text(text), dtype=np.float32)
            except Exception as e:
                self._degraded = True
                logger.log_embedding_fallback(type(self.provider).__name__, str(e))
        return np.asarray(self.fallback.embed_text(text), dtype=np.float32)

    async def embed(self, text: str) -> np.ndarray:
        """Embed ``text``, consulting the cache first."""
        cached = self.cache.get(text)
        if cached is not None:
            return cached

        if self._degraded or isinstance(self.provider, DeterministicHashEmbedding):
            vector = self._embed_sync(text)
        else:
            vector = await asyncio.to_thread(self._embed_sync, text)

        self.cache.set(text, vector)
        return vector

    async def embed_batch(self, texts: List[str], batch_size: int = None) -> List[np.ndarray]:
        """Embed texts in small batches, preserving order."""
        from replyguard.core.config import EMBED_BATCH_SIZE
        batch_size = batch_size or EMBED_BATCH_SIZE

        vectors = []
        for start in range(0, len(texts), batch_size):
            batch = texts[start:start + batch_size]
            vectors.extend(await asyncio.gather(*(self.embed(text) for text in batch)))
        return vectors

    def get_stats(self) -> Dict[str, object]:
        return {
            "provider": type(self.provider).__name__,
            "degraded": self._degraded,
            "dimension": self.dimension,
            "cache": self.cache.get_stats(),
        }
