"""File processing utilities for extracting text from uploaded documents."""
import io
from dataclasses import dataclass
from pathlib import Path
import pypdf
from pypdf.errors import PdfReadError
from docx import Document as DocxDocument

from app.core.errors import ExtractionError


@dataclass
class ExtractedText:
    text: str
    pages: int
    file_type: str


class FileProcessor:
    """Extract paginated text from PDF, DOCX and plain text uploads."""

    SUPPORTED_EXTENSIONS = {'.pdf', '.docx', '.txt', '.md'}
    CONTENT_TYPES = {
        '.pdf': 'application/pdf',
        '.docx': 'application/vnd.openxmlformats-officedocument.wordprocessingml.document',
        '.txt': 'text/plain',
        '.md': 'text/markdown',
    }

    @staticmethod
    def extract_bytes(data: bytes, filename: str) -> ExtractedText:
        """
        Extract text from an uploaded file's bytes.

        PDF pages are prefixed with ``[Page N]`` markers so the chunker can
        attribute chunks to pages. Other formats count as a single page.

        Raises:
            ExtractionError: If the format is unsupported or no text comes out
        """
        extension = Path(filename).suffix.lower()

        if extension == '.pdf':
            text, pages = FileProcessor._extract_from_pdf(data)
            file_type = 'PDF'
        elif extension == '.docx':
            text, pages = FileProcessor._extract_from_docx(data), 1
            file_type = 'DOCX'
        elif extension in {'.txt', '.md'}:
            text, pages = FileProcessor._extract_from_text(data), 1
            file_type = 'TEXT'
        else:
            raise ExtractionError(f"Unsupported file format: {extension or filename}")

        if not text.strip():
            raise ExtractionError("No extractable text found in document")

        return ExtractedText(text=text, pages=max(pages, 1), file_type=file_type)

    @staticmethod
    def _extract_from_pdf(data: bytes):
        """Extract text from PDF bytes, one marked section per non-empty page."""
        text_parts = []

        try:
            pdf_reader = pypdf.PdfReader(io.BytesIO(data))
            if pdf_reader.is_encrypted:
                raise ExtractionError("PDF is encrypted")

            for page_num, page in enumerate(pdf_reader.pages, 1):
                page_text = page.extract_text() or ""
                if page_text.strip():
                    text_parts.append(f"[Page {page_num}]\n{page_text.strip()}")
            num_pages = len(pdf_reader.pages)
        except ExtractionError:
            raise
        except (PdfReadError, ValueError, KeyError) as e:
            raise ExtractionError(f"Error extracting text from PDF: {str(e)}")

        return "\n\n".join(text_parts), num_pages

    @staticmethod
    def _extract_from_docx(data: bytes) -> str:
        """Extract text from DOCX bytes."""
        try:
            doc = DocxDocument(io.BytesIO(data))
        except Exception as e:
            raise ExtractionError(f"Error extracting text from DOCX: {str(e)}")
        paragraphs = [para.text for para in doc.paragraphs if para.text.strip()]
        return "\n\n".join(paragraphs)

    @staticmethod
    def _extract_from_text(data: bytes) -> str:
        """Decode a plain text file."""
        try:
            return data.decode('utf-8')
        except UnicodeDecodeError:
            # Try with different encoding
            return data.decode('latin-1')

    @staticmethod
    def is_supported(filename: str) -> bool:
        """Check if a file format is supported."""
        extension = Path(filename).suffix.lower()
        return extension in FileProcessor.SUPPORTED_EXTENSIONS

    @staticmethod
    def content_type_for(filename: str) -> str:
        return FileProcessor.CONTENT_TYPES.get(Path(filename).suffix.lower(), 'application/octet-stream')
