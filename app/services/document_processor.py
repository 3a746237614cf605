"""Local processing pipeline: download, extract, chunk, embed, store."""
import asyncio
import logging
from typing import Callable, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.errors import AppError, ConsistencyError, ExtractionError, NotFoundError
from app.models import Chunk, Document, DocumentStatus
from app.services.embedder import Embedder
from app.services.executors import ProcessingJob
from app.services.file_store import LocalFileStore
from app.services.processing_logger import ProcessingLogger, Stage
from app.utils.file_processor import FileProcessor
from app.utils.keyword_extractor import KeywordExtractor
from app.utils.text_chunker import TextChunker


logger = logging.getLogger(__name__)

PROCESSING_METHOD = "local"


def delete_document_chunks(db: Session, document_id, document_slug: str) -> None:
    """
    Delete every chunk of a document and verify none is left.

    Rows are matched by document id, and by slug for rows that lack an id.
    Does not commit.

    Raises:
        ConsistencyError: If chunks remain after the delete
    """
    db.query(Chunk).filter(Chunk.document_id == document_id).delete(synchronize_session=False)
    db.query(Chunk).filter(
        Chunk.document_slug == document_slug,
        Chunk.document_id.is_(None),
    ).delete(synchronize_session=False)

    remaining = db.query(Chunk).filter(
        or_(Chunk.document_id == document_id, Chunk.document_slug == document_slug)
    ).count()
    if remaining:
        raise ConsistencyError(
            f"{remaining} chunks still present for {document_slug} after delete",
            extra={"remainingChunks": remaining},
        )


class DocumentProcessor:
    """Run the full processing pipeline for one document in this process."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        file_store: LocalFileStore,
        embedder: Embedder,
        processing_logger: ProcessingLogger,
        chunk_size: Optional[int] = None,
        chunk_overlap: Optional[int] = None,
        llm=None,
    ):
        self.session_factory = session_factory
        self.file_store = file_store
        self.embedder = embedder
        self.llm = llm or embedder.llm
        self.log = processing_logger.for_method(PROCESSING_METHOD)
        self.chunk_size = chunk_size or settings.CHUNK_SIZE_TOKENS
        self.chunk_overlap = chunk_overlap if chunk_overlap is not None else settings.CHUNK_OVERLAP_TOKENS

    async def process(self, job: ProcessingJob) -> int:
        """
        Process a document and return the number of stored chunks.

        On any failure the document is marked failed, the failure is logged
        and the exception is re-raised.
        """
        slug = job.document_slug
        stage = Stage.DOWNLOAD
        try:
            self.log.started(slug, stage, "Downloading source file", mode=job.mode)
            data = await self.file_store.download(job.source_file_ref)
            self.log.completed(slug, stage, "Source file downloaded", bytes=len(data))

            stage = Stage.EXTRACT
            self.log.started(slug, stage, "Extracting text")
            filename = job.original_filename or job.source_file_ref
            extracted = await asyncio.to_thread(FileProcessor.extract_bytes, data, filename)
            self.log.completed(
                slug, stage, f"Extracted {len(extracted.text)} characters",
                pages=extracted.pages, fileType=extracted.file_type,
            )

            stage = Stage.CHUNK
            self.log.started(slug, stage, "Chunking text")
            chunks = TextChunker.chunk_text(
                extracted.text,
                chunk_size=self.chunk_size,
                overlap=self.chunk_overlap,
                total_pages=extracted.pages,
            )
            if not chunks:
                raise ExtractionError("Document produced no chunks")
            self.log.completed(slug, stage, f"Created {len(chunks)} chunks", chunkCount=len(chunks))

            abstract, keywords = await self._summarize(job, chunks)

            stage = Stage.EMBED
            self.log.started(slug, stage, f"Generating embeddings for {len(chunks)} chunks")

            async def on_batch(batch_number: int, total_batches: int, embedded: int) -> None:
                self.log.progress(
                    slug, Stage.EMBED, f"Embedded batch {batch_number}/{total_batches}",
                    batch=batch_number, totalBatches=total_batches, embedded=embedded,
                )

            vectors = await self.embedder.embed_chunks(chunks, on_batch=on_batch)
            self.log.completed(slug, stage, "Embeddings generated", vectors=len(vectors))

            stage = Stage.STORE
            self.log.started(slug, stage, "Replacing stored chunks")
            self._store(job, chunks, vectors, extracted.pages, abstract, keywords)
            self.log.completed(slug, stage, f"Stored {len(chunks)} chunks")
        except Exception as e:
            self._mark_failed(job, stage, e)
            raise

        self.log.completed(slug, Stage.COMPLETE, "Document ready", chunkCount=len(chunks), pages=extracted.pages)
        return len(chunks)

    async def _summarize(self, job: ProcessingJob, chunks):
        """Abstract and keywords for the document; a failed abstract is logged and skipped."""
        slug = job.document_slug
        texts = [chunk.text for chunk in chunks]
        keywords = KeywordExtractor.extract(texts)

        abstract = None
        try:
            abstract = await self.llm.generate_abstract(texts, job.document_title)
        except AppError as e:
            logger.warning("Abstract generation failed for %s: %s", slug, e.message)
            self.log.progress(slug, Stage.SUMMARIZE, "Abstract generation failed; continuing without it", reason=e.message)
        else:
            self.log.progress(
                slug, Stage.SUMMARIZE, "Generated abstract and keywords",
                abstractWords=len(abstract.split()) if abstract else 0, keywords=len(keywords),
            )
        return abstract, keywords

    def _store(self, job: ProcessingJob, chunks, vectors, pages: int, abstract=None, keywords=None) -> None:
        """Swap the chunk set and mark the document ready in one transaction."""
        db = self.session_factory()
        try:
            document = db.query(Document).filter(Document.id == job.document_id).first()
            if document is None:
                raise NotFoundError(f"Document {job.document_slug} no longer exists")

            delete_document_chunks(db, document.id, document.slug)

            db.add_all([
                Chunk(
                    document_id=document.id,
                    document_slug=document.slug,
                    chunk_index=chunk.index,
                    text=chunk.text,
                    page_number=chunk.page_number,
                    char_start=chunk.char_start,
                    char_end=chunk.char_end,
                    token_estimate=chunk.token_estimate,
                    embedding=vector,
                )
                for chunk, vector in zip(chunks, vectors)
            ])

            document.status = DocumentStatus.READY
            document.chunk_count = len(chunks)
            document.page_count = pages
            document.abstract = abstract
            document.keywords = keywords or []
            document.error_message = None
            document.processing_method = PROCESSING_METHOD
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def _mark_failed(self, job: ProcessingJob, stage: str, exc: Exception) -> None:
        message = getattr(exc, "message", None) or str(exc) or type(exc).__name__
        error_message = f"Processing failed during {stage}: {message}"

        db = self.session_factory()
        try:
            document = db.query(Document).filter(Document.id == job.document_id).first()
            if document is not None:
                document.status = DocumentStatus.FAILED
                document.error_message = error_message
                document.processing_method = PROCESSING_METHOD
                db.commit()
        except Exception:
            db.rollback()
            logger.exception("Could not mark %s as failed", job.document_slug)
        finally:
            db.close()

        self.log.failed(job.document_slug, stage, error_message)
        self.log.error(job.document_slug, exc, stage=stage)
