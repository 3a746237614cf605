"""Processing orchestration: admission, venue selection, fallback.

``process_document`` validates the request, moves the document to
``processing`` and schedules a supervising task that runs the chosen venue.
When the remote venue fails for any reason the supervisor falls back to
the local pipeline; the two never run at the same time for one document.
"""
import asyncio
import logging
import re
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Dict, Optional, Set

from sqlalchemy.orm import Session

from app.core.config import Settings, settings as default_settings
from app.core.errors import (
    AccessDeniedError,
    AuthError,
    CapacityError,
    ConflictError,
    ConsistencyError,
    NotFoundError,
    ValidationError,
)
from app.core.permissions import CallerPrivilege
from app.db.sessions import SessionLocal
from app.models import Document, DocumentStatus, ProcessingMode
from app.services.document_processor import DocumentProcessor, delete_document_chunks
from app.services.embedder import Embedder
from app.services.embedding_cache import get_embedding_cache
from app.services.executors import Executor, LocalExecutor, ProcessingJob, RemoteExecutor
from app.services.file_store import LocalFileStore, get_file_store
from app.services.openai_service import get_llm
from app.services.processing_logger import ProcessingLogger, Stage
from app.services.training_history import TrainingHistoryLogger
from app.utils.file_processor import FileProcessor


logger = logging.getLogger(__name__)

METHOD_REMOTE = "remote"
METHOD_LOCAL = "local"


@dataclass
class SourceUpload:
    filename: str
    data: bytes
    content_type: Optional[str] = None


def make_document_slug(title: str) -> str:
    """``user-<slugified title>-<millisecond timestamp>``."""
    base = re.sub(r"[^a-z0-9]+", "-", (title or "").lower()).strip("-")[:50].strip("-")
    return f"user-{base or 'document'}-{int(time.time() * 1000)}"


class ProcessingOrchestrator:
    """Admit processing requests and supervise their execution."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        file_store: LocalFileStore,
        remote_executor: Optional[Executor],
        local_executor_factory: Callable[[], Executor],
        settings: Settings = default_settings,
        processing_logger: Optional[ProcessingLogger] = None,
        training_history: Optional[TrainingHistoryLogger] = None,
    ):
        self.session_factory = session_factory
        self.file_store = file_store
        self.remote_executor = remote_executor
        self.local_executor_factory = local_executor_factory
        self.settings = settings
        self.log = processing_logger or ProcessingLogger(session_factory)
        self.history = training_history or TrainingHistoryLogger(session_factory)
        self._tasks: Dict[str, asyncio.Task] = {}
        # Slugs between admission and task creation
        self._admitting: Set[str] = set()

    @property
    def active_jobs(self) -> int:
        return sum(1 for task in self._tasks.values() if not task.done()) + len(self._admitting)

    def is_running(self, slug: str) -> bool:
        if slug in self._admitting:
            return True
        task = self._tasks.get(slug)
        return task is not None and not task.done()

    def _validate_upload(self, upload: SourceUpload) -> None:
        if not upload.filename or not FileProcessor.is_supported(upload.filename):
            raise ValidationError(
                f"Unsupported file format: {upload.filename}. Supported: PDF, DOCX, TXT, MD"
            )
        if not upload.data:
            raise ValidationError("Uploaded file is empty")
        if len(upload.data) > self.settings.MAX_FILE_SIZE_BYTES:
            raise ValidationError(
                f"File exceeds the maximum size of {self.settings.MAX_FILE_SIZE_BYTES} bytes",
                extra={"maxBytes": self.settings.MAX_FILE_SIZE_BYTES},
            )

    @staticmethod
    def _source_path(document: Document, filename: str) -> str:
        safe_name = re.sub(r"[^A-Za-z0-9._-]+", "_", filename)
        return f"{document.owner_id}/{document.slug}/{safe_name}"

    async def register_upload(self, db: Session, owner_id: uuid.UUID, title: Optional[str], upload: SourceUpload) -> Document:
        """Store an uploaded file and create its ``uploaded`` document."""
        self._validate_upload(upload)
        title = (title or "").strip() or upload.filename.rsplit(".", 1)[0]

        document = Document(
            slug=make_document_slug(title),
            title=title,
            owner_id=owner_id,
            status=DocumentStatus.UPLOADED,
            original_filename=upload.filename,
            file_size_bytes=len(upload.data),
        )
        document.source_file_ref = self._source_path(document, upload.filename)
        await self.file_store.upload(
            document.source_file_ref, upload.data,
            upload.content_type or FileProcessor.content_type_for(upload.filename),
        )

        db.add(document)
        db.commit()
        db.refresh(document)
        logger.info("Registered document %s (%d bytes)", document.slug, document.file_size_bytes)
        return document

    def _select_method(self, document: Document) -> str:
        if (
            self.remote_executor is not None
            and self.settings.remote_processing_enabled
            and (document.file_size_bytes or 0) <= self.settings.REMOTE_MAX_FILE_SIZE_BYTES
        ):
            return METHOD_REMOTE
        return METHOD_LOCAL

    def _is_stuck(self, document: Document) -> bool:
        if document.updated_at is None:
            return True
        age = datetime.utcnow() - document.updated_at
        return age > timedelta(seconds=self.settings.STUCK_PROCESSING_SECONDS)

    def _check_transition(self, document: Document, mode: str) -> None:
        slug = document.slug
        if self.is_running(slug):
            raise ConflictError(
                "Document is already being processed",
                extra={"documentSlug": slug, "status": DocumentStatus.PROCESSING},
            )

        if document.status == DocumentStatus.PROCESSING:
            if not self._is_stuck(document):
                raise ConflictError(
                    "Document is already being processed",
                    extra={"documentSlug": slug, "status": document.status},
                )
            logger.warning("Recovering document %s stuck in processing since %s", slug, document.updated_at)
            self.log.progress(
                slug, Stage.DOWNLOAD, "Recovering processing that stopped making progress",
                stuckSince=document.updated_at.isoformat() if document.updated_at else None,
            )
        elif document.status == DocumentStatus.READY and mode != ProcessingMode.RETRAIN:
            raise ConflictError(
                "Document has already been processed; use retrain to process it again",
                extra={"documentSlug": slug, "status": document.status},
            )

    async def process_document(
        self,
        db: Session,
        slug: str,
        mode: str,
        caller_id: Optional[uuid.UUID],
        privilege: CallerPrivilege = CallerPrivilege.NONE,
        upload: Optional[SourceUpload] = None,
    ) -> dict:
        """
        Admit a processing request and schedule it.

        Returns immediately after the document is marked ``processing``.

        Raises:
            ValidationError: Unknown mode or bad replacement file
            AuthError / AccessDeniedError: Caller may not process this document
            NotFoundError: No such document
            ConflictError: Processing already running, or ``ready`` without retrain
            CapacityError: Too many processing jobs in flight
            ConsistencyError: Retrain could not clear the old chunks
        """
        if mode not in (ProcessingMode.INITIAL, ProcessingMode.RETRAIN):
            raise ValidationError(f"Unknown processing mode: {mode}")
        if caller_id is None:
            raise AuthError("You must be logged in to process documents")

        document = db.query(Document).filter(Document.slug == slug).first()
        if document is None:
            raise NotFoundError(f"Document not found: {slug}")
        if document.owner_id != caller_id and not privilege.is_elevated:
            raise AccessDeniedError("Only the document owner or an admin can process this document")

        self._check_transition(document, mode)

        if self.active_jobs >= self.settings.MAX_CONCURRENT_PROCESSING_JOBS:
            raise CapacityError(
                "Too many documents are being processed; try again shortly",
                extra={"activeJobs": self.active_jobs, "retryAfterSeconds": 30},
            )

        if mode != ProcessingMode.RETRAIN and upload is not None:
            raise ValidationError("A replacement file can only be supplied when retraining")
        if upload is not None:
            self._validate_upload(upload)

        # Reserved before the first await so a concurrent request sees the slug as busy
        self._admitting.add(slug)
        try:
            if mode == ProcessingMode.RETRAIN:
                try:
                    await self._prepare_retrain(db, document, upload)
                except ConsistencyError:
                    self.history.failed(
                        self._job_for(document, mode, caller_id), caller_id, None, document.error_message,
                    )
                    raise

            method = self._select_method(document)
            document.status = DocumentStatus.PROCESSING
            document.processing_method = method
            document.error_message = None
            document.updated_at = datetime.utcnow()
            db.commit()
            if mode == ProcessingMode.RETRAIN:
                self.log.progress(slug, Stage.STORE, "Cleared existing chunks for retrain")

            job = self._job_for(document, mode, caller_id)
            self.log.for_method(method).progress(
                slug, Stage.DOWNLOAD, f"Processing scheduled ({mode}) via {method}",
                mode=mode, fileSizeBytes=job.file_size_bytes,
            )
            self.history.started(job, caller_id, method)

            task = asyncio.create_task(self._supervise(job, method))
            self._tasks[slug] = task
            task.add_done_callback(lambda finished: self._forget(slug, finished))
        finally:
            self._admitting.discard(slug)

        return {
            "accepted": True,
            "status": DocumentStatus.PROCESSING,
            "method": method,
            "documentSlug": slug,
        }

    def _forget(self, slug: str, task: asyncio.Task) -> None:
        if self._tasks.get(slug) is task:
            del self._tasks[slug]

    @staticmethod
    def _job_for(document: Document, mode: str, caller_id: Optional[uuid.UUID]) -> ProcessingJob:
        return ProcessingJob(
            document_id=document.id,
            document_slug=document.slug,
            mode=mode,
            source_file_ref=document.source_file_ref,
            file_size_bytes=document.file_size_bytes or 0,
            original_filename=document.original_filename,
            document_title=document.title,
            requested_by=caller_id,
        )

    async def _prepare_retrain(self, db: Session, document: Document, upload: Optional[SourceUpload]) -> None:
        """
        Replace the stored file if a new one was given, then clear old chunks.

        The previous file is removed only once the old chunks are verified gone.
        """
        old_ref = None
        if upload is not None:
            old_ref = document.source_file_ref
            new_ref = self._source_path(document, upload.filename)
            await self.file_store.upload(
                new_ref, upload.data,
                upload.content_type or FileProcessor.content_type_for(upload.filename),
            )
            document.source_file_ref = new_ref
            document.original_filename = upload.filename
            document.file_size_bytes = len(upload.data)

        document.retrained_at = datetime.utcnow()
        db.commit()

        try:
            delete_document_chunks(db, document.id, document.slug)
        except ConsistencyError as e:
            db.rollback()
            document.status = DocumentStatus.FAILED
            document.error_message = f"Retrain aborted: {e.message}"
            db.commit()
            self.log.failed(document.slug, Stage.STORE, document.error_message)
            self.log.error(document.slug, e, stage=Stage.STORE)
            raise
        document.chunk_count = 0

        if old_ref and old_ref != document.source_file_ref:
            await self.file_store.remove(old_ref)

    async def _supervise(self, job: ProcessingJob, method: str) -> None:
        slug = job.document_slug
        started = time.monotonic()

        def elapsed_ms() -> int:
            return int((time.monotonic() - started) * 1000)

        try:
            if method == METHOD_REMOTE:
                result = await self.remote_executor.run(job)
                if result.success:
                    self.log.for_method(METHOD_REMOTE).completed(slug, Stage.COMPLETE, result.detail or "Remote processing completed")
                    self.history.completed(job, job.requested_by, METHOD_REMOTE, elapsed_ms())
                    return
                self._prepare_fallback(job, result.detail)

            result = await self.local_executor_factory().run(job)
            if result.success:
                self.history.completed(job, job.requested_by, METHOD_LOCAL, elapsed_ms(), chunk_count=result.chunk_count)
            else:
                logger.warning("Local processing failed for %s: %s", slug, result.detail)
                self.history.failed(job, job.requested_by, METHOD_LOCAL, result.detail or "Local processing failed", elapsed_ms())
        except Exception as e:
            logger.exception("Processing supervisor crashed for %s", slug)
            self._mark_failed(job, e)
            self.history.failed(job, job.requested_by, method, str(e) or type(e).__name__, elapsed_ms())

    def _prepare_fallback(self, job: ProcessingJob, detail: Optional[str]) -> None:
        db = self.session_factory()
        try:
            document = db.query(Document).filter(Document.id == job.document_id).first()
            if document is None:
                raise NotFoundError(f"Document {job.document_slug} no longer exists")
            document.error_message = None
            document.processing_method = METHOD_LOCAL
            document.status = DocumentStatus.PROCESSING
            document.updated_at = datetime.utcnow()
            db.commit()
        finally:
            db.close()
        self.log.for_method(METHOD_LOCAL).progress(
            job.document_slug, Stage.DOWNLOAD,
            "Remote processing failed; falling back to local processing",
            reason=detail,
        )

    def _mark_failed(self, job: ProcessingJob, exc: Exception) -> None:
        message = getattr(exc, "message", None) or str(exc) or type(exc).__name__
        db = self.session_factory()
        try:
            document = db.query(Document).filter(Document.id == job.document_id).first()
            if document is not None and document.status == DocumentStatus.PROCESSING:
                document.status = DocumentStatus.FAILED
                document.error_message = f"Processing failed: {message}"
                db.commit()
        finally:
            db.close()
        self.log.error(job.document_slug, exc)

    def get_processing_status(
        self,
        db: Session,
        slug: str,
        caller_id: Optional[uuid.UUID],
        privilege: CallerPrivilege = CallerPrivilege.NONE,
        log_limit: int = 50,
    ) -> dict:
        document = self._visible_document(db, slug, caller_id, privilege)

        return {
            "documentSlug": document.slug,
            "status": document.status,
            "errorMessage": document.error_message,
            "processingMethod": document.processing_method,
            "chunkCount": document.chunk_count or 0,
            "pageCount": document.page_count,
            "abstract": document.abstract,
            "keywords": document.keywords or [],
            "isRunning": self.is_running(slug),
            "updatedAt": document.updated_at.isoformat() if document.updated_at else None,
            "logs": self.log.list_for(slug, limit=log_limit),
        }

    def get_training_history(
        self,
        db: Session,
        slug: str,
        caller_id: Optional[uuid.UUID],
        privilege: CallerPrivilege = CallerPrivilege.NONE,
        limit: int = 20,
    ) -> dict:
        """Train/retrain audit rows for a document, newest first."""
        document = self._visible_document(db, slug, caller_id, privilege)
        return {"documentSlug": document.slug, "history": self.history.list_for(slug, limit=limit)}

    @staticmethod
    def _visible_document(db: Session, slug: str, caller_id: Optional[uuid.UUID], privilege: CallerPrivilege) -> Document:
        document = db.query(Document).filter(Document.slug == slug).first()
        if document is None:
            raise NotFoundError(f"Document not found: {slug}")
        if caller_id is None:
            raise AuthError("You must be logged in to view processing status")
        if document.owner_id != caller_id and not privilege.is_elevated:
            raise AccessDeniedError("Only the document owner or an admin can view processing status")
        return document

    async def wait_for(self, slug: str) -> None:
        task = self._tasks.get(slug)
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)

    async def drain(self) -> None:
        tasks = [task for task in self._tasks.values() if not task.done()]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)


def build_local_executor(session_factory: Callable[[], Session], file_store: LocalFileStore) -> LocalExecutor:
    processor = DocumentProcessor(
        session_factory=session_factory,
        file_store=file_store,
        embedder=Embedder(get_llm(), get_embedding_cache()),
        processing_logger=ProcessingLogger(session_factory),
    )
    return LocalExecutor(processor)


_orchestrator: Optional[ProcessingOrchestrator] = None


def get_orchestrator() -> ProcessingOrchestrator:
    """Process-wide orchestrator; its task registry is the source of truth for live jobs."""
    global _orchestrator
    if _orchestrator is None:
        file_store = get_file_store()
        remote = RemoteExecutor(file_store) if default_settings.remote_processing_enabled else None
        _orchestrator = ProcessingOrchestrator(
            session_factory=SessionLocal,
            file_store=file_store,
            remote_executor=remote,
            local_executor_factory=lambda: build_local_executor(SessionLocal, file_store),
        )
    return _orchestrator
