"""Tests for text extraction and chunking."""
import io

import pytest
from docx import Document as DocxDocument
from reportlab.pdfgen import canvas

from app.core.errors import ExtractionError
from app.utils.file_processor import FileProcessor
from app.utils.keyword_extractor import KeywordExtractor
from app.utils.text_chunker import TextChunker

from conftest import text_for_chunks


def build_pdf(pages):
    buffer = io.BytesIO()
    pdf = canvas.Canvas(buffer)
    for text in pages:
        pdf.drawString(72, 720, text)
        pdf.showPage()
    pdf.save()
    return buffer.getvalue()


class TestFileProcessor:

    def test_pdf_pages_are_marked(self):
        data = build_pdf(["Cells are the unit of life", "Mitochondria make energy"])
        extracted = FileProcessor.extract_bytes(data, "biology.pdf")

        assert extracted.pages == 2
        assert extracted.file_type == "PDF"
        assert "[Page 1]" in extracted.text
        assert "[Page 2]" in extracted.text
        assert extracted.text.index("Cells") < extracted.text.index("Mitochondria")

    def test_corrupt_pdf_raises(self):
        with pytest.raises(ExtractionError):
            FileProcessor.extract_bytes(b"this is not a pdf", "broken.pdf")

    def test_docx(self):
        doc = DocxDocument()
        doc.add_paragraph("First paragraph")
        doc.add_paragraph("Second paragraph")
        buffer = io.BytesIO()
        doc.save(buffer)

        extracted = FileProcessor.extract_bytes(buffer.getvalue(), "notes.docx")
        assert extracted.text == "First paragraph\n\nSecond paragraph"
        assert extracted.pages == 1

    def test_text_with_latin1_fallback(self):
        extracted = FileProcessor.extract_bytes("café notes".encode("latin-1"), "notes.md")
        assert extracted.text == "café notes"
        assert extracted.file_type == "TEXT"

    def test_empty_text_raises(self):
        with pytest.raises(ExtractionError):
            FileProcessor.extract_bytes(b"   \n ", "empty.txt")

    def test_unsupported_extension(self):
        assert not FileProcessor.is_supported("virus.exe")
        with pytest.raises(ExtractionError):
            FileProcessor.extract_bytes(b"MZ", "virus.exe")


class TestTextChunker:

    def test_empty_text(self):
        assert TextChunker.chunk_text("   ") == []

    def test_indices_contiguous_with_overlap(self):
        chunks = TextChunker.chunk_text(text_for_chunks(12))

        assert [c.index for c in chunks] == list(range(12))
        # 500 tokens * 4 chars, stepping by (500 - 100) * 4
        assert chunks[1].char_start == 1600
        assert chunks[0].char_end == 2000
        assert all(c.text == c.text.strip() and c.text for c in chunks)
        assert chunks[0].token_estimate == 500

    def test_page_numbers_follow_markers(self):
        text = "[Page 1]\n" + "x" * 500 + "\n[Page 2]\n" + "y" * 500
        chunks = TextChunker.chunk_text(text, chunk_size=100, overlap=0, total_pages=2)

        assert [c.page_number for c in chunks] == [1, 2, 2]

    def test_page_numbers_clamped_to_total(self):
        text = "[Page 1]\n" + "x" * 500 + "\n[Page 2]\n" + "y" * 500
        chunks = TextChunker.chunk_text(text, chunk_size=100, overlap=0, total_pages=1)

        assert {c.page_number for c in chunks} == {1}

    def test_invalid_overlap(self):
        with pytest.raises(ValueError):
            TextChunker.chunk_text("text", chunk_size=100, overlap=100)


class TestKeywordExtractor:

    TEXTS = [
        "Photosynthesis converts light energy. Photosynthesis happens in the chloroplasts.",
        "Light energy drives photosynthesis.",
    ]

    def test_repeated_phrase_and_frequent_word_lead(self):
        keywords = KeywordExtractor.extract(self.TEXTS)

        assert [k["term"] for k in keywords[:2]] == ["light energy", "photosynthesis"]
        assert all(0.1 <= k["weight"] <= 1.0 for k in keywords)

    def test_stop_words_and_short_words_dropped(self):
        terms = {k["term"] for k in KeywordExtractor.extract(self.TEXTS)}

        assert "the" not in terms
        assert "in" not in terms
        assert "chloroplasts" in terms

    def test_limit_and_empty_input(self):
        assert len(KeywordExtractor.extract(self.TEXTS, max_keywords=3)) == 3
        assert KeywordExtractor.extract(["", "[Page 1]"]) == []

    def test_single_distinct_score_weighs_half(self):
        keywords = KeywordExtractor.extract(["mitochondria"])

        assert keywords == [{"term": "mitochondria", "weight": 0.5}]
