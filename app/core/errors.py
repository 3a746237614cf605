"""Error taxonomy shared by services and routes.

Services raise these; ``register_exception_handlers`` turns them into JSON
responses so routers stay free of status-code plumbing.
"""
import logging
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse


logger = logging.getLogger(__name__)


class AppError(Exception):
    """Base class for errors that map onto an HTTP response."""

    status_code = 500
    error = "Internal server error"
    retryable = False

    def __init__(self, message: str, extra: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.extra = extra or {}

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.error, "message": self.message, **self.extra}


class ValidationError(AppError):
    status_code = 400
    error = "Invalid request"


class AuthError(AppError):
    status_code = 401
    error = "Authentication required"


class AccessDeniedError(AppError):
    status_code = 403
    error = "Access denied"


class NotFoundError(AppError):
    status_code = 404
    error = "Not found"


class ConflictError(AppError):
    status_code = 409
    error = "Conflict"


class ExtractionError(AppError):
    """Source file could not be turned into text."""

    status_code = 422
    error = "Extraction failed"


class ConsistencyError(AppError):
    """Chunk replacement could not guarantee an empty chunk set."""

    status_code = 500
    error = "Consistency check failed"


class QuizGenerationError(AppError):
    status_code = 500
    error = "Failed to generate questions"


class TransientProviderError(AppError):
    """Remote venue or LLM provider failure (timeout, network, bad response)."""

    status_code = 502
    error = "Upstream provider error"
    retryable = True

    def __init__(self, message: str, is_timeout: bool = False, extra: Optional[Dict[str, Any]] = None):
        super().__init__(message, extra)
        self.is_timeout = is_timeout


class EmbeddingError(TransientProviderError):
    error = "Embedding generation failed"


class CapacityError(AppError):
    status_code = 503
    error = "Server busy"
    retryable = True


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.warning("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content={"error": "Internal server error", "message": "An unexpected error occurred"},
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
