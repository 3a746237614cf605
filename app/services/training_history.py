"""Per-document train/retrain audit trail.

One ``started`` row is written when a run is admitted and one ``completed``
or ``failed`` row when it ends. Like the processing log, writing never raises.
"""
import logging
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.models import ProcessingMode, TrainingAction, TrainingHistory, TrainingStatus


logger = logging.getLogger(__name__)


def action_for_mode(mode: str) -> str:
    return TrainingAction.RETRAIN if mode == ProcessingMode.RETRAIN else TrainingAction.TRAIN


class TrainingHistoryLogger:
    """Record train/retrain runs for documents."""

    def __init__(self, session_factory: Callable[[], Session]):
        self.session_factory = session_factory

    def started(self, job, user_id, method: str) -> None:
        self._write(job, user_id, TrainingStatus.STARTED, method)

    def completed(self, job, user_id, method: str, processing_time_ms: int, chunk_count: Optional[int] = None) -> None:
        self._write(
            job, user_id, TrainingStatus.COMPLETED, method,
            processing_time_ms=processing_time_ms, chunk_count=chunk_count,
        )

    def failed(self, job, user_id, method: Optional[str], error_message: str, processing_time_ms: Optional[int] = None) -> None:
        self._write(
            job, user_id, TrainingStatus.FAILED, method,
            processing_time_ms=processing_time_ms, error_message=error_message,
        )

    def list_for(self, slug: str, limit: int = 20) -> List[Dict[str, Any]]:
        """Most recent ``limit`` rows for a document, newest first."""
        db = self.session_factory()
        try:
            rows = (
                db.query(TrainingHistory)
                .filter(TrainingHistory.document_slug == slug)
                .order_by(TrainingHistory.id.desc())
                .limit(limit)
                .all()
            )
            return [
                {
                    "actionType": row.action_type,
                    "status": row.status,
                    "userId": str(row.user_id) if row.user_id else None,
                    "processingMethod": row.processing_method,
                    "fileName": row.file_name,
                    "fileSize": row.file_size,
                    "chunkCount": row.chunk_count,
                    "processingTimeMs": row.processing_time_ms,
                    "errorMessage": row.error_message,
                    "createdAt": row.created_at.isoformat() if row.created_at else None,
                }
                for row in rows
            ]
        finally:
            db.close()

    def _write(self, job, user_id, status: str, method: Optional[str], **fields: Any) -> None:
        action = action_for_mode(job.mode)
        logger.info("[%s] %s:%s via %s", job.document_slug, action, status, method)
        db = self.session_factory()
        try:
            db.add(TrainingHistory(
                document_id=job.document_id,
                document_slug=job.document_slug,
                user_id=user_id,
                action_type=action,
                status=status,
                processing_method=method,
                file_name=job.original_filename,
                file_size=job.file_size_bytes,
                **fields,
            ))
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            logger.exception("Failed to record training history for %s", job.document_slug)
        finally:
            db.close()
