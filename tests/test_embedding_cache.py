"""Tests for the embedding cache."""
import pytest

from app.services.embedding_cache import EmbeddingCache, fingerprint, normalize_text


class TestFingerprint:

    def test_normalization_ignores_case_and_whitespace(self):
        assert fingerprint("Hello   World\n") == fingerprint("hello world")
        assert normalize_text("  Ｆｕｌｌ\twidth  ") == "full width"

    def test_namespace_separates_models(self):
        assert fingerprint("same text", "model-a") != fingerprint("same text", "model-b")

    def test_different_text_different_key(self):
        assert fingerprint("mitochondria") != fingerprint("ribosome")


class TestEmbeddingCache:

    def test_miss_then_hit_updates_stats(self):
        cache = EmbeddingCache()
        key = fingerprint("photosynthesis")

        assert cache.get(key) is None
        cache.put(key, [0.1, 0.2])
        assert cache.get(key) == [0.1, 0.2]
        cache.get(fingerprint("unknown"))

        stats = cache.stats()
        assert stats == {"entries": 1, "hits": 1, "misses": 2, "hitRate": 0.3333}

    def test_empty_stats(self):
        assert EmbeddingCache().stats() == {"entries": 0, "hits": 0, "misses": 0, "hitRate": 0.0}

    def test_put_overwrites_and_keeps_hit_count(self):
        cache = EmbeddingCache()
        cache.put("k", [1.0])
        cache.get("k")
        cache.put("k", [2.0])

        assert cache.get("k") == [2.0]
        assert cache._entries["k"].hit_count == 2
        assert len(cache) == 1

    def test_clear_resets_everything(self):
        cache = EmbeddingCache()
        cache.put("k", [1.0])
        cache.get("k")
        cache.clear()

        assert cache.stats() == {"entries": 0, "hits": 0, "misses": 0, "hitRate": 0.0}

    def test_empty_vector_rejected(self):
        with pytest.raises(ValueError):
            EmbeddingCache().put("k", [])
