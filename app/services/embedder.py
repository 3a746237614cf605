"""Chunk embedding with cache lookups and batched provider calls."""
import logging
from typing import Awaitable, Callable, Dict, List, Optional, Sequence

from app.core.config import settings
from app.core.errors import EmbeddingError, TransientProviderError
from app.services.embedding_cache import EmbeddingCache, fingerprint
from app.utils.text_chunker import TextChunk


logger = logging.getLogger(__name__)

BatchCallback = Callable[[int, int, int], Awaitable[None]]


class Embedder:
    """
    Produce one vector per chunk.

    Cached vectors are reused; remaining texts are de-duplicated and sent to
    the provider ``batch_size`` at a time.
    """

    def __init__(self, llm, cache: Optional[EmbeddingCache] = None, batch_size: Optional[int] = None):
        self.llm = llm
        self.cache = cache
        self.batch_size = batch_size or settings.EMBEDDING_BATCH_SIZE
        self.namespace = getattr(llm, "embedding_model", "") or ""

    async def embed_chunks(
        self,
        chunks: Sequence[TextChunk],
        on_batch: Optional[BatchCallback] = None,
    ) -> List[List[float]]:
        """
        Return vectors aligned with ``chunks``.

        ``on_batch(batch_number, total_batches, embedded_so_far)`` is awaited
        after each provider batch.

        Raises:
            EmbeddingError: On any provider failure or malformed vector
        """
        vectors: List[Optional[List[float]]] = [None] * len(chunks)
        pending: Dict[str, List[int]] = {}
        pending_texts: Dict[str, str] = {}

        for position, chunk in enumerate(chunks):
            key = fingerprint(chunk.text, self.namespace)
            if key in pending:
                pending[key].append(position)
                continue
            cached = self.cache.get(key) if self.cache is not None else None
            if cached is not None:
                vectors[position] = cached
                continue
            pending[key] = [position]
            pending_texts[key] = chunk.text

        keys = list(pending)
        total_batches = (len(keys) + self.batch_size - 1) // self.batch_size
        if keys:
            logger.info(
                "Embedding %d unique texts in %d batches (%d served from cache)",
                len(keys), total_batches, len(chunks) - sum(len(p) for p in pending.values()),
            )

        embedded = 0
        for batch_number, start in enumerate(range(0, len(keys), self.batch_size), 1):
            batch_keys = keys[start:start + self.batch_size]
            try:
                batch_vectors = await self.llm.embed_many([pending_texts[k] for k in batch_keys])
            except TransientProviderError as e:
                raise EmbeddingError(
                    f"Embedding batch {batch_number}/{total_batches} failed: {e.message}",
                    is_timeout=e.is_timeout,
                )

            if len(batch_vectors) != len(batch_keys):
                raise EmbeddingError(
                    f"Embedding batch {batch_number}/{total_batches} returned "
                    f"{len(batch_vectors)} vectors for {len(batch_keys)} texts"
                )

            for key, vector in zip(batch_keys, batch_vectors):
                self._check_vector(vector)
                if self.cache is not None:
                    self.cache.put(key, vector)
                for position in pending[key]:
                    vectors[position] = vector

            embedded += len(batch_keys)
            if on_batch is not None:
                await on_batch(batch_number, total_batches, embedded)

        return vectors

    def _check_vector(self, vector) -> None:
        if not vector:
            raise EmbeddingError("Provider returned an empty embedding vector")
        expected = settings.EMBEDDING_DIMENSIONS
        if expected and len(vector) != expected:
            raise EmbeddingError(
                f"Embedding has {len(vector)} dimensions, expected {expected}"
            )
