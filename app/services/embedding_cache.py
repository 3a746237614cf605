"""In-process embedding cache keyed by a fingerprint of normalized text."""
import hashlib
import re
import threading
import unicodedata
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

from app.core.config import settings


_WHITESPACE = re.compile(r"\s+")


def normalize_text(text: str) -> str:
    """NFKC, lower-case, collapsed whitespace."""
    text = unicodedata.normalize("NFKC", text or "")
    return _WHITESPACE.sub(" ", text.lower()).strip()


def fingerprint(text: str, namespace: str = "") -> str:
    """SHA-256 hex digest of the namespace and the normalized text."""
    payload = f"{namespace}\0{normalize_text(text)}"
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


@dataclass
class CacheEntry:
    vector: List[float]
    hit_count: int = 0
    created_at: datetime = field(default_factory=datetime.utcnow)
    last_used_at: datetime = field(default_factory=datetime.utcnow)


class EmbeddingCache:
    """
    Map from text fingerprint to embedding vector.

    Lookups and writes are safe from several tasks at once; concurrent writes
    of the same fingerprint are last-writer-wins.
    """

    def __init__(self):
        self._entries: Dict[str, CacheEntry] = {}
        self._hits = 0
        self._misses = 0
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[List[float]]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None
            self._hits += 1
            entry.hit_count += 1
            entry.last_used_at = datetime.utcnow()
            return entry.vector

    def put(self, key: str, vector: List[float]) -> None:
        if not vector:
            raise ValueError("Cannot cache an empty embedding vector")
        with self._lock:
            existing = self._entries.get(key)
            entry = CacheEntry(vector=list(vector))
            if existing is not None:
                entry.hit_count = existing.hit_count
                entry.created_at = existing.created_at
            self._entries[key] = entry

    def stats(self) -> dict:
        with self._lock:
            lookups = self._hits + self._misses
            return {
                "entries": len(self._entries),
                "hits": self._hits,
                "misses": self._misses,
                "hitRate": round(self._hits / lookups, 4) if lookups else 0.0,
            }

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._hits = 0
            self._misses = 0

    def __len__(self) -> int:
        return len(self._entries)


_embedding_cache: Optional[EmbeddingCache] = None


def get_embedding_cache() -> Optional[EmbeddingCache]:
    """Process-wide cache, or None when caching is switched off."""
    global _embedding_cache
    if not settings.EMBEDDING_CACHE_ENABLED:
        return None
    if _embedding_cache is None:
        _embedding_cache = EmbeddingCache()
    return _embedding_cache
