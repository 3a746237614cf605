"""Tests for chunk embedding."""
import asyncio

import pytest

from app.core.errors import EmbeddingError
from app.services.embedder import Embedder
from app.services.embedding_cache import EmbeddingCache
from app.utils.text_chunker import TextChunk

from conftest import FakeLLM


def make_chunks(texts):
    return [
        TextChunk(index=i, text=text, char_start=0, char_end=len(text), page_number=1, token_estimate=1)
        for i, text in enumerate(texts)
    ]


class TestEmbedder:

    def test_vectors_align_with_chunks(self):
        llm = FakeLLM()
        chunks = make_chunks(["alpha", "beta", "gamma"])

        vectors = asyncio.run(Embedder(llm, batch_size=10).embed_chunks(chunks))

        assert vectors == [llm.vector_for("alpha"), llm.vector_for("beta"), llm.vector_for("gamma")]

    def test_duplicate_texts_embedded_once(self):
        llm = FakeLLM()
        chunks = make_chunks(["repeat", "unique", "repeat"])

        vectors = asyncio.run(Embedder(llm, batch_size=10).embed_chunks(chunks))

        assert llm.embed_calls == [["repeat", "unique"]]
        assert vectors[0] == vectors[2]

    def test_cache_avoids_provider_calls(self):
        llm = FakeLLM()
        cache = EmbeddingCache()
        chunks = make_chunks(["one", "two"])

        asyncio.run(Embedder(llm, cache, batch_size=10).embed_chunks(chunks))
        asyncio.run(Embedder(llm, cache, batch_size=10).embed_chunks(chunks))

        assert len(llm.embed_calls) == 1
        assert cache.stats()["hits"] == 2

    def test_batches_and_progress(self):
        llm = FakeLLM()
        progress = []

        async def on_batch(batch_number, total_batches, embedded):
            progress.append((batch_number, total_batches, embedded))

        chunks = make_chunks([f"text {i}" for i in range(5)])
        asyncio.run(Embedder(llm, batch_size=2).embed_chunks(chunks, on_batch=on_batch))

        assert [len(batch) for batch in llm.embed_calls] == [2, 2, 1]
        assert progress == [(1, 3, 2), (2, 3, 4), (3, 3, 5)]

    def test_provider_failure(self):
        with pytest.raises(EmbeddingError):
            asyncio.run(Embedder(FakeLLM(fail_embeddings=True)).embed_chunks(make_chunks(["x"])))

    def test_wrong_dimension(self):
        with pytest.raises(EmbeddingError):
            asyncio.run(Embedder(FakeLLM(dimensions=4)).embed_chunks(make_chunks(["x"])))
