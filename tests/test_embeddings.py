"""
Tests for embedding providers, the embedding cache and the degraded fallback.
"""

import asyncio
from unittest.mock import MagicMock, patch

import numpy as np
import pytest

from replyguard.vector.embeddings import (
    DeterministicHashEmbedding,
    EmbeddingCache,
    EmbeddingService,
    IEmbeddingProvider,
    SentenceTransformerEmbedding,
)
from replyguard.vector.index import cosine_similarity


class FailingProvider(IEmbeddingProvider):
    def __init__(self):
        self.calls = 0

    def embed_text(self, text):
        self.calls += 1
        raise RuntimeError("model failed to load")

    def get_dimension(self):
        return 16


class CountingProvider(IEmbeddingProvider):
    def __init__(self):
        self.calls = 0
        self.inner = DeterministicHashEmbedding(16)

    def embed_text(self, text):
        self.calls += 1
        return self.inner.embed_text(text)

    def get_dimension(self):
        return 16


def test_embedding_interface():
    embedder = DeterministicHashEmbedding(dimension=384)
    assert isinstance(embedder, IEmbeddingProvider)
    assert embedder.get_dimension() == 384


def test_deterministic_embedding():
    """The same input always produces the same normalized output."""
    embedder = DeterministicHashEmbedding(dimension=384)
    vector1 = embedder.embed_text("I feel anxious before work")
    vector2 = DeterministicHashEmbedding(dimension=384).embed_text("I feel anxious before work")

    assert vector1 == vector2
    assert len(vector1) == 384
    assert np.linalg.norm(vector1) == pytest.approx(1.0)


def test_shared_vocabulary_is_closer():
    embedder = DeterministicHashEmbedding(dimension=384)
    anxiety = embedder.embed_text("breathing exercises help with anxiety")
    related = embedder.embed_text("anxiety and breathing")
    unrelated = embedder.embed_text("quarterly tax filing deadline")

    assert cosine_similarity(anxiety, related) > cosine_similarity(anxiety, unrelated)


def test_empty_text_is_zero_vector():
    vector = DeterministicHashEmbedding(dimension=8).embed_text("")
    assert vector == [0.0] * 8


def test_sentence_transformer_loads_lazily():
    provider = SentenceTransformerEmbedding("all-MiniLM-L6-v2")
    assert provider._model is None

    fake_model = MagicMock()
    fake_model.encode.return_value = np.array([0.1, 0.2, 0.3])
    fake_model.get_sentence_embedding_dimension.return_value = 3
    provider._model = fake_model

    assert provider.embed_text("hello") == pytest.approx([0.1, 0.2, 0.3])
    assert provider.get_dimension() == 3


class TestEmbeddingCache:

    def test_hit_and_miss(self):
        cache = EmbeddingCache(max_size=10, ttl_sec=60)
        assert cache.get("hello") is None
        cache.set("hello", np.ones(3))
        assert cache.get("  HELLO ") is not None

        stats = cache.get_stats()
        assert stats["hits"] == 1
        assert stats["misses"] == 1
        assert stats["hit_rate"] == pytest.approx(0.5)

    def test_lru_eviction(self):
        cache = EmbeddingCache(max_size=2, ttl_sec=60)
        cache.set("a", np.ones(2))
        cache.set("b", np.ones(2))
        cache.get("a")
        cache.set("c", np.ones(2))

        assert cache.get("b") is None
        assert cache.get("a") is not None
        assert cache.get_stats()["evictions"] == 1

    def test_ttl_expiry(self):
        now = [100.0]
        cache = EmbeddingCache(max_size=10, ttl_sec=5, clock=lambda: now[0])
        cache.set("a", np.ones(2))
        now[0] = 104.0
        assert cache.get("a") is not None
        now[0] = 110.0
        assert cache.get("a") is None
        assert cache.get_stats()["size"] == 0


class TestEmbeddingService:

    def test_embed_returns_float32_vector(self):
        service = EmbeddingService(DeterministicHashEmbedding(16), DeterministicHashEmbedding(16), EmbeddingCache())
        vector = asyncio.run(service.embed("grounding techniques"))
        assert vector.dtype == np.float32
        assert vector.shape == (16,)
        assert not service.degraded

    def test_cache_avoids_second_provider_call(self):
        provider = CountingProvider()
        service = EmbeddingService(provider, DeterministicHashEmbedding(16), EmbeddingCache())

        async def run():
            await service.embed("same text")
            await service.embed("same text")

        asyncio.run(run())
        assert provider.calls == 1

    def test_failure_switches_to_fallback(self):
        provider = FailingProvider()
        fallback = DeterministicHashEmbedding(16)
        service = EmbeddingService(provider, fallback, EmbeddingCache())

        with patch("replyguard.vector.embeddings.logger") as mock_logger:
            vector = asyncio.run(service.embed("I can't sleep"))

        assert service.degraded
        assert np.allclose(vector, fallback.embed_text("I can't sleep"))
        mock_logger.log_embedding_fallback.assert_called_once()

    def test_degraded_mode_is_sticky(self):
        provider = FailingProvider()
        service = EmbeddingService(provider, DeterministicHashEmbedding(16), EmbeddingCache())

        async def run():
            await service.embed("first message")
            await service.embed("second message")

        asyncio.run(run())
        assert provider.calls == 1
        assert service.get_stats()["degraded"] is True

        service.reset_degraded()
        assert not service.degraded

    def test_embed_batch_preserves_order(self):
        service = EmbeddingService(DeterministicHashEmbedding(16), DeterministicHashEmbedding(16), EmbeddingCache())
        texts = [f"entry number {i}" for i in range(7)]
        vectors = asyncio.run(service.embed_batch(texts, batch_size=3))

        expected = [DeterministicHashEmbedding(16).embed_text(t) for t in texts]
        assert len(vectors) == 7
        for got, want in zip(vectors, expected):
            assert np.allclose(got, want)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
