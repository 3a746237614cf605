"""Per-document processing log sink.

Each entry is persisted as a ``ProcessingLog`` row in its own short session
and mirrored to the module logger. Writing a log entry never raises.
"""
import logging
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.models import ProcessingLog


logger = logging.getLogger(__name__)


class Stage:
    DOWNLOAD = "download"
    EXTRACT = "extract"
    CHUNK = "chunk"
    EMBED = "embed"
    SUMMARIZE = "summarize"
    STORE = "store"
    COMPLETE = "complete"
    QUIZ = "quiz"
    ERROR = "error"


class Level:
    STARTED = "started"
    PROGRESS = "progress"
    COMPLETED = "completed"
    FAILED = "failed"
    ERROR = "error"


_PY_LEVELS = {
    Level.STARTED: logging.INFO,
    Level.PROGRESS: logging.INFO,
    Level.COMPLETED: logging.INFO,
    Level.FAILED: logging.WARNING,
    Level.ERROR: logging.ERROR,
}


class ProcessingLogger:
    """Append structured processing events for documents."""

    def __init__(self, session_factory: Callable[[], Session], processing_method: Optional[str] = None):
        self.session_factory = session_factory
        self.processing_method = processing_method

    def for_method(self, processing_method: Optional[str]) -> "ProcessingLogger":
        return ProcessingLogger(self.session_factory, processing_method)

    def started(self, slug: str, stage: str, message: str, **details: Any) -> None:
        self._write(slug, stage, Level.STARTED, message, details)

    def progress(self, slug: str, stage: str, message: str, **details: Any) -> None:
        self._write(slug, stage, Level.PROGRESS, message, details)

    def completed(self, slug: str, stage: str, message: str, **details: Any) -> None:
        self._write(slug, stage, Level.COMPLETED, message, details)

    def failed(self, slug: str, stage: str, message: str, **details: Any) -> None:
        self._write(slug, stage, Level.FAILED, message, details)

    def error(self, slug: str, exc: BaseException, stage: str = Stage.ERROR, **details: Any) -> None:
        details.setdefault("errorType", type(exc).__name__)
        message = getattr(exc, "message", None) or str(exc) or type(exc).__name__
        self._write(slug, stage, Level.ERROR, message, details)

    def list_for(self, slug: str, limit: int = 50) -> List[Dict[str, Any]]:
        """Most recent ``limit`` entries for a document, oldest first."""
        db = self.session_factory()
        try:
            rows = (
                db.query(ProcessingLog)
                .filter(ProcessingLog.document_slug == slug)
                .order_by(ProcessingLog.id.desc())
                .limit(limit)
                .all()
            )
            return [
                {
                    "stage": row.stage,
                    "level": row.level,
                    "message": row.message,
                    "details": row.details or {},
                    "processingMethod": row.processing_method,
                    "createdAt": row.created_at.isoformat() if row.created_at else None,
                }
                for row in reversed(rows)
            ]
        finally:
            db.close()

    def _write(self, slug: str, stage: str, level: str, message: str, details: Dict[str, Any]) -> None:
        logger.log(
            _PY_LEVELS.get(level, logging.INFO),
            "[%s] %s:%s %s",
            slug, stage, level, message,
        )
        db = self.session_factory()
        try:
            db.add(ProcessingLog(
                document_slug=slug,
                stage=stage,
                level=level,
                message=message,
                details=_jsonable(details),
                processing_method=self.processing_method,
            ))
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            logger.exception("Failed to persist processing log for %s", slug)
        finally:
            db.close()


def _jsonable(details: Dict[str, Any]) -> Dict[str, Any]:
    out = {}
    for key, value in details.items():
        if value is None or isinstance(value, (str, int, float, bool, list, dict)):
            out[key] = value
        else:
            out[key] = str(value)
    return out
