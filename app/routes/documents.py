"""Document upload and processing routes."""
import uuid
from typing import List, Optional
from fastapi import APIRouter, Depends, File, Form, Query, UploadFile, status
from fastapi.responses import FileResponse
from sqlalchemy.orm import Session
from pydantic import BaseModel

from app.db.sessions import get_db
from app.core.errors import AccessDeniedError, NotFoundError
from app.core.permissions import PermissionChecker
from app.core.security import get_current_user_id
from app.models import ProcessingMode
from app.services.file_store import LocalFileStore, get_file_store
from app.services.processing_orchestrator import (
    ProcessingOrchestrator,
    SourceUpload,
    get_orchestrator,
)
from app.utils.file_processor import FileProcessor


router = APIRouter(prefix="/documents", tags=["Documents"])


# Request/Response schemas
class DocumentResponse(BaseModel):
    id: str
    slug: str
    title: str
    owner_id: str
    status: str
    original_filename: Optional[str]
    file_size_bytes: int
    created_at: str


class ProcessAcceptedResponse(BaseModel):
    accepted: bool
    status: str
    method: str
    documentSlug: str


class ProcessingLogEntry(BaseModel):
    stage: str
    level: str
    message: str
    details: dict
    processingMethod: Optional[str]
    createdAt: Optional[str]


class ProcessingStatusResponse(BaseModel):
    documentSlug: str
    status: str
    errorMessage: Optional[str]
    processingMethod: Optional[str]
    chunkCount: int
    pageCount: Optional[int]
    abstract: Optional[str]
    keywords: List[dict]
    isRunning: bool
    updatedAt: Optional[str]
    logs: List[ProcessingLogEntry]


class TrainingHistoryEntry(BaseModel):
    actionType: str
    status: str
    userId: Optional[str]
    processingMethod: Optional[str]
    fileName: Optional[str]
    fileSize: Optional[int]
    chunkCount: Optional[int]
    processingTimeMs: Optional[int]
    errorMessage: Optional[str]
    createdAt: Optional[str]


class TrainingHistoryResponse(BaseModel):
    documentSlug: str
    history: List[TrainingHistoryEntry]


@router.post("/upload", response_model=DocumentResponse, status_code=status.HTTP_201_CREATED)
async def upload_document(
    file: UploadFile = File(...),
    title: Optional[str] = Form(None),
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    orchestrator: ProcessingOrchestrator = Depends(get_orchestrator),
):
    """
    Upload a source file (PDF, DOCX, TXT, MD) and register it as a document.

    The document starts in ``uploaded``; call ``/documents/{slug}/process``
    to run the pipeline.
    """
    data = await file.read()
    document = await orchestrator.register_upload(
        db, user_id, title, SourceUpload(file.filename or "", data, file.content_type)
    )
    return DocumentResponse(
        id=str(document.id),
        slug=document.slug,
        title=document.title,
        owner_id=str(document.owner_id),
        status=document.status,
        original_filename=document.original_filename,
        file_size_bytes=document.file_size_bytes,
        created_at=document.created_at.isoformat(),
    )


@router.get("/files/{path:path}")
def download_source_file(
    path: str,
    token: str = Query(...),
    file_store: LocalFileStore = Depends(get_file_store),
):
    """Serve a stored source file to the holder of a signed link."""
    if file_store.verify_signed_token(token) != path:
        raise AccessDeniedError("File link does not match the requested file")
    if not file_store.exists(path):
        raise NotFoundError("File not found on server")

    filename = path.rsplit("/", 1)[-1]
    return FileResponse(
        path=str(file_store.local_path(path)),
        media_type=FileProcessor.content_type_for(filename),
        filename=filename,
    )


@router.post("/{slug}/process", response_model=ProcessAcceptedResponse, status_code=status.HTTP_202_ACCEPTED)
async def process_document(
    slug: str,
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    orchestrator: ProcessingOrchestrator = Depends(get_orchestrator),
):
    """Start initial processing. Returns as soon as the job is scheduled."""
    privilege = PermissionChecker(db).check(user_id, slug).privilege
    return await orchestrator.process_document(db, slug, ProcessingMode.INITIAL, user_id, privilege)


@router.post("/{slug}/retrain", response_model=ProcessAcceptedResponse, status_code=status.HTTP_202_ACCEPTED)
async def retrain_document(
    slug: str,
    file: Optional[UploadFile] = File(None),
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    orchestrator: ProcessingOrchestrator = Depends(get_orchestrator),
):
    """
    Re-process a document, optionally replacing its source file.

    The slug is kept; existing chunks are removed before the new run starts.
    """
    privilege = PermissionChecker(db).check(user_id, slug).privilege
    upload = None
    if file is not None and file.filename:
        upload = SourceUpload(file.filename, await file.read(), file.content_type)
    return await orchestrator.process_document(db, slug, ProcessingMode.RETRAIN, user_id, privilege, upload=upload)


@router.get("/{slug}/status", response_model=ProcessingStatusResponse)
def get_processing_status(
    slug: str,
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    orchestrator: ProcessingOrchestrator = Depends(get_orchestrator),
):
    privilege = PermissionChecker(db).check(user_id, slug).privilege
    return orchestrator.get_processing_status(db, slug, user_id, privilege)


@router.get("/{slug}/history", response_model=TrainingHistoryResponse)
def get_training_history(
    slug: str,
    limit: int = Query(20, ge=1, le=100),
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    orchestrator: ProcessingOrchestrator = Depends(get_orchestrator),
):
    """Train and retrain runs for a document, newest first."""
    privilege = PermissionChecker(db).check(user_id, slug).privilege
    return orchestrator.get_training_history(db, slug, user_id, privilege, limit=limit)
