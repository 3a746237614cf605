"""Tests for the file store and the remote executor."""
import asyncio
import json
import uuid

import httpx
import pytest

from app.core.errors import AccessDeniedError, NotFoundError, ValidationError
from app.services.executors import ProcessingJob, RemoteExecutor


class TestLocalFileStore:

    def test_upload_download_remove(self, file_store):
        asyncio.run(file_store.upload("owner/doc/file.txt", b"content", "text/plain"))

        assert asyncio.run(file_store.download("owner/doc/file.txt")) == b"content"
        assert asyncio.run(file_store.remove("owner/doc/file.txt")) is True
        with pytest.raises(NotFoundError):
            asyncio.run(file_store.download("owner/doc/file.txt"))

    def test_signed_url_round_trip(self, file_store):
        url = file_store.create_signed_url("owner/doc/file.txt", ttl_seconds=60)

        assert url.startswith("/documents/files/owner/doc/file.txt?token=")
        token = url.split("token=", 1)[1]
        assert file_store.verify_signed_token(token) == "owner/doc/file.txt"

    def test_tampered_token_rejected(self, file_store):
        with pytest.raises(AccessDeniedError):
            file_store.verify_signed_token("not-a-token")

    def test_path_escape_rejected(self, file_store):
        with pytest.raises(ValidationError):
            asyncio.run(file_store.upload("../outside.txt", b"x"))


def make_job():
    return ProcessingJob(
        document_id=uuid.uuid4(),
        document_slug="user-notes-1",
        mode="retrain",
        source_file_ref="owner/user-notes-1/notes.txt",
        file_size_bytes=10,
    )


def remote(file_store, handler):
    return RemoteExecutor(
        file_store,
        url="http://remote.test/process",
        api_key="remote-key",
        timeout=5,
        transport=httpx.MockTransport(handler),
    )


class TestRemoteExecutor:

    def test_success_posts_payload(self, file_store):
        seen = {}

        def handler(request):
            seen["body"] = json.loads(request.content)
            seen["auth"] = request.headers["Authorization"]
            return httpx.Response(200, json={"success": True, "message": "done"})

        result = asyncio.run(remote(file_store, handler).run(make_job()))

        assert result.success
        assert seen["auth"] == "Bearer remote-key"
        assert seen["body"]["documentSlug"] == "user-notes-1"
        assert seen["body"]["mode"] == "retrain"
        assert "/documents/files/owner/user-notes-1/notes.txt?token=" in seen["body"]["sourceUrl"]

    def test_http_error_is_failure(self, file_store):
        result = asyncio.run(remote(file_store, lambda r: httpx.Response(500, text="boom")).run(make_job()))

        assert not result.success
        assert "500" in result.detail

    def test_unsuccessful_body_is_failure(self, file_store):
        handler = lambda r: httpx.Response(200, json={"success": False, "error": "parse failed"})
        result = asyncio.run(remote(file_store, handler).run(make_job()))

        assert not result.success
        assert "parse failed" in result.detail

    def test_invalid_body_is_failure(self, file_store):
        result = asyncio.run(remote(file_store, lambda r: httpx.Response(200, text="<html>")).run(make_job()))

        assert not result.success

    def test_timeout_is_flagged(self, file_store):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        result = asyncio.run(remote(file_store, handler).run(make_job()))

        assert not result.success
        assert result.timed_out
