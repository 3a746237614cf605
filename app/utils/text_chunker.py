"""Text chunking utilities for splitting documents into manageable pieces."""
import re
from dataclasses import dataclass
from typing import List, Optional, Tuple

from app.core.config import settings


PAGE_MARKER = re.compile(r'\[Page (\d+)\]')


@dataclass
class TextChunk:
    index: int
    text: str
    char_start: int
    char_end: int
    page_number: int
    token_estimate: int


class TextChunker:
    """Split text into overlapping fixed-size windows with page attribution."""

    @staticmethod
    def chunk_text(
        text: str,
        chunk_size: Optional[int] = None,
        overlap: Optional[int] = None,
        total_pages: int = 1,
        chars_per_token: Optional[int] = None,
    ) -> List[TextChunk]:
        """
        Split text into overlapping chunks.

        Args:
            text: Text to chunk, optionally carrying ``[Page N]`` markers
            chunk_size: Window size in tokens
            overlap: Overlap between consecutive windows in tokens
            total_pages: Page count used to clamp detected page numbers
            chars_per_token: Characters per estimated token

        Returns:
            Chunks with contiguous indices starting at 0
        """
        chunk_size = chunk_size if chunk_size is not None else settings.CHUNK_SIZE_TOKENS
        overlap = overlap if overlap is not None else settings.CHUNK_OVERLAP_TOKENS
        chars_per_token = chars_per_token or settings.CHARS_PER_TOKEN

        if chunk_size <= 0:
            raise ValueError(f"chunk_size must be positive, got {chunk_size}")
        if overlap < 0 or overlap >= chunk_size:
            raise ValueError(f"overlap must be between 0 and chunk_size ({chunk_size}), got {overlap}")

        if not text or not text.strip():
            return []

        window = chunk_size * chars_per_token
        step = window - overlap * chars_per_token
        markers = TextChunker._find_page_markers(text)
        max_page = max(total_pages or 1, 1)

        chunks: List[TextChunk] = []
        start = 0
        while start < len(text):
            end = min(start + window, len(text))
            content = text[start:end].strip()

            if content:
                page = TextChunker._page_for_window(markers, start, end)
                chunks.append(TextChunk(
                    index=len(chunks),
                    text=content,
                    char_start=start,
                    char_end=end,
                    page_number=min(max(1, page), max_page),
                    token_estimate=round(len(content) / chars_per_token),
                ))

            if end == len(text):
                break
            start += step

        return chunks

    @staticmethod
    def _find_page_markers(text: str) -> List[Tuple[int, int]]:
        """Return (position, page number) pairs in document order."""
        return [(m.start(), int(m.group(1))) for m in PAGE_MARKER.finditer(text)]

    @staticmethod
    def _page_for_window(markers: List[Tuple[int, int]], start: int, end: int) -> int:
        """Last marker inside the window, else the last one before it, else page 1."""
        page = 1
        for position, page_number in markers:
            if position >= end:
                break
            page = page_number
        return page
