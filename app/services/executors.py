"""Execution venues for document processing.

The remote venue is an HTTP function with a hard wall-clock limit; the local
venue runs the pipeline inside this process. Both report an
``ExecutionResult`` instead of raising so the orchestrator can fall back.
"""
import logging
from dataclasses import dataclass
from typing import Optional

import httpx

from app.core.config import settings
from app.core.errors import AppError


logger = logging.getLogger(__name__)


@dataclass
class ProcessingJob:
    document_id: object
    document_slug: str
    mode: str
    source_file_ref: str
    file_size_bytes: int = 0
    original_filename: Optional[str] = None
    document_title: Optional[str] = None
    requested_by: object = None


@dataclass
class ExecutionResult:
    success: bool
    detail: Optional[str] = None
    timed_out: bool = False
    chunk_count: Optional[int] = None


class Executor:
    """A place where a processing job can run."""

    name = "executor"

    async def run(self, job: ProcessingJob) -> ExecutionResult:
        raise NotImplementedError


class RemoteExecutor(Executor):
    """Invoke the remote processing function over HTTP."""

    name = "remote"

    def __init__(
        self,
        file_store,
        url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.file_store = file_store
        self.url = url or settings.REMOTE_PROCESSING_URL
        self.api_key = api_key or settings.REMOTE_PROCESSING_API_KEY
        self.timeout = timeout or settings.remote_timeout_seconds
        self.transport = transport

    async def run(self, job: ProcessingJob) -> ExecutionResult:
        if not self.url:
            return ExecutionResult(False, "Remote processing URL is not configured")

        source_url = settings.PUBLIC_BASE_URL.rstrip("/") + self.file_store.create_signed_url(job.source_file_ref)
        payload = {
            "documentId": str(job.document_id),
            "documentSlug": job.document_slug,
            "mode": job.mode,
            "sourceUrl": source_url,
        }
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        logger.info("Invoking remote processing for %s (timeout %.0fs)", job.document_slug, self.timeout)
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(self.url, json=payload, headers=headers)
        except httpx.TimeoutException:
            logger.warning("Remote processing timed out for %s", job.document_slug)
            return ExecutionResult(False, f"Remote processing timed out after {self.timeout:.0f}s", timed_out=True)
        except httpx.HTTPError as e:
            logger.warning("Remote processing request failed for %s: %s", job.document_slug, e)
            return ExecutionResult(False, f"Remote processing request failed: {str(e)}")

        if not response.is_success:
            return ExecutionResult(
                False, f"Remote processing returned HTTP {response.status_code}: {response.text[:200]}"
            )

        try:
            body = response.json()
        except ValueError:
            return ExecutionResult(False, "Remote processing returned an invalid response body")

        if not isinstance(body, dict) or body.get("success") is not True:
            error = body.get("error") if isinstance(body, dict) else None
            return ExecutionResult(False, f"Remote processing reported failure: {error or 'unknown error'}")

        return ExecutionResult(True, body.get("message") or "Remote processing completed")


class LocalExecutor(Executor):
    """Run the pipeline in this process."""

    name = "local"

    def __init__(self, processor):
        self.processor = processor

    async def run(self, job: ProcessingJob) -> ExecutionResult:
        # The processor has already marked the document failed when it raises
        try:
            chunk_count = await self.processor.process(job)
        except AppError as e:
            return ExecutionResult(False, e.message)
        except Exception as e:
            logger.exception("Local processing crashed for %s", job.document_slug)
            return ExecutionResult(False, str(e) or type(e).__name__)
        return ExecutionResult(True, f"Stored {chunk_count} chunks", chunk_count=chunk_count)
