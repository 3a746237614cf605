"""Frequency-based keyword extraction over document chunks."""
import math
import re
from collections import Counter
from typing import Dict, Iterable, List, Optional

from app.core.config import settings


MIN_WORD_LENGTH = 3

STOP_WORDS = frozenset("""
the and for are but not you all any can had her was one our out day get has him his how man new now
old see two way who boy did its let put say she too use that with have this will your from they know
want been good much some time very when come here just like long make many more only over such take
than them well were what where which while would there their these those then into also about after
again could should other each most through before between under page does done doing going used using
uses made making makes came coming comes took taken taking being because around another even must
""".split())

WORD_PATTERN = re.compile(r"[a-z][a-z0-9-]*")
PAGE_MARKER = re.compile(r"\[Page \d+\]")


class KeywordExtractor:
    """Weighted single-word and two-word keywords for a document."""

    @staticmethod
    def tokenize(text: str) -> List[str]:
        text = PAGE_MARKER.sub(" ", text or "").lower()
        words = []
        for word in WORD_PATTERN.findall(text):
            word = word.strip("-")
            if word.startswith(("http", "www")):
                continue
            if len(word) < MIN_WORD_LENGTH or word in STOP_WORDS:
                continue
            words.append(word)
        return words

    @staticmethod
    def extract(texts: Iterable[str], max_keywords: Optional[int] = None) -> List[Dict[str, object]]:
        """
        Score terms across all texts and return the top ones.

        Single words score ``log1p(freq) * freq``; adjacent word pairs that
        occur more than once score ``2 * freq``. Scores are scaled to weights
        in 0.1..1.0 (0.5 when every score is equal).

        Returns:
            List of ``{"term": str, "weight": float}`` sorted by weight, with
            phrases ahead of single words of similar weight.
        """
        max_keywords = max_keywords or settings.MAX_KEYWORDS

        scores: Dict[str, float] = {}
        word_counts: Counter = Counter()
        pair_counts: Counter = Counter()
        for text in texts:
            words = KeywordExtractor.tokenize(text)
            word_counts.update(words)
            pair_counts.update(f"{a} {b}" for a, b in zip(words, words[1:]))

        for word, freq in word_counts.items():
            scores[word] = math.log1p(freq) * freq
        for pair, freq in pair_counts.items():
            if freq > 1:
                scores[pair] = freq * 2.0

        if not scores:
            return []

        low, high = min(scores.values()), max(scores.values())
        span = high - low
        weighted = [
            {"term": term, "weight": 0.5 if span == 0 else round(0.1 + 0.9 * (score - low) / span, 2)}
            for term, score in scores.items()
        ]
        weighted.sort(key=lambda k: (-k["weight"], k["term"]))
        top = weighted[:max_keywords]

        # Phrases first within a 0.1 weight band
        top.sort(key=lambda k: (-round(k["weight"], 1), " " not in k["term"], -k["weight"], k["term"]))
        return top
