"""HTTP-level tests for the document, quiz and cache routers."""
import asyncio
import uuid

import pytest
from fastapi.testclient import TestClient

from app.core.security import create_access_token
from app.main import app
from app.models import Role, UserRole
from app.services.file_store import get_file_store
from app.services.openai_service import get_llm
from app.services.processing_orchestrator import get_orchestrator

from conftest import text_for_chunks


def auth_headers(user_id):
    return {"Authorization": f"Bearer {create_access_token({'sub': str(user_id)})}"}


@pytest.fixture
def orchestrator(make_orchestrator):
    return make_orchestrator()


@pytest.fixture
def client(orchestrator, file_store, fake_llm):
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    app.dependency_overrides[get_file_store] = lambda: file_store
    app.dependency_overrides[get_llm] = lambda: fake_llm
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


class TestDocumentRoutes:

    def test_upload_requires_login(self, client):
        response = client.post("/documents/upload", files={"file": ("notes.txt", b"hello", "text/plain")})

        assert response.status_code == 401
        assert response.json()["error"] == "Authentication required"

    def test_upload_rejects_unsupported_format(self, client):
        response = client.post(
            "/documents/upload",
            files={"file": ("virus.exe", b"MZ", "application/octet-stream")},
            headers=auth_headers(uuid.uuid4()),
        )

        assert response.status_code == 400

    def test_upload_process_and_status(self, client, orchestrator):
        owner = uuid.uuid4()
        response = client.post(
            "/documents/upload",
            files={"file": ("cells.txt", text_for_chunks(3).encode("utf-8"), "text/plain")},
            data={"title": "Cell Basics"},
            headers=auth_headers(owner),
        )
        assert response.status_code == 201
        document = response.json()
        assert document["status"] == "uploaded"
        assert document["slug"].startswith("user-cell-basics-")
        slug = document["slug"]

        response = client.post(f"/documents/{slug}/process", headers=auth_headers(owner))
        assert response.status_code == 202
        assert response.json() == {"accepted": True, "status": "processing", "method": "local", "documentSlug": slug}

        client.portal.call(orchestrator.drain)

        status = client.get(f"/documents/{slug}/status", headers=auth_headers(owner)).json()
        assert status["status"] == "ready"
        assert status["chunkCount"] == 3
        assert status["abstract"] == "An overview of Cell Basics."

        history = client.get(f"/documents/{slug}/history", headers=auth_headers(owner)).json()["history"]
        assert [(h["actionType"], h["status"]) for h in history] == [("train", "completed"), ("train", "started")]

        response = client.post(f"/documents/{slug}/process", headers=auth_headers(owner))
        assert response.status_code == 409

        response = client.get(f"/documents/{slug}/status", headers=auth_headers(uuid.uuid4()))
        assert response.status_code == 403

    def test_signed_file_download(self, client, file_store):
        asyncio.run(file_store.upload("owner/doc/notes.txt", b"source bytes"))
        url = file_store.create_signed_url("owner/doc/notes.txt")

        response = client.get(url)
        assert response.status_code == 200
        assert response.content == b"source bytes"

        response = client.get("/documents/files/owner/doc/notes.txt?token=forged")
        assert response.status_code == 403


class TestQuizRoutes:

    def test_generate_serve_and_attempt(self, client, make_ready_document):
        owner = uuid.uuid4()
        document = make_ready_document(n_chunks=20, owner_id=owner)
        slug = document.slug

        response = client.post("/quiz/generate", json={"documentSlug": slug, "numQuestions": 12}, headers=auth_headers(owner))
        assert response.status_code == 201
        assert response.json()["numQuestions"] == 12

        response = client.post("/quiz/generate", json={"documentSlug": slug}, headers=auth_headers(owner))
        assert response.status_code == 409
        assert "nextAllowedDate" in response.json()

        assert client.get(f"/quiz/{slug}/status").json()["status"] == "completed"

        quiz = client.get(f"/quiz/{slug}").json()
        assert quiz["numQuestions"] == 10
        assert client.get(f"/quiz/{slug}?all=true").status_code == 403

        attempt = {"documentSlug": slug, "score": 11, "questionIds": quiz["questionIds"]}
        assert client.post("/quiz/attempt", json=attempt).status_code == 400
        attempt["score"] = 9
        response = client.post("/quiz/attempt", json=attempt)
        assert response.status_code == 201
        assert response.json()["totalQuestions"] == 10

        assert client.get(f"/quiz/{slug}/statistics").status_code == 401
        stats = client.get(f"/quiz/{slug}/statistics", headers=auth_headers(owner)).json()
        assert stats["totalAttempts"] == 1
        assert stats["anonymousAttempts"] == 1

    def test_invalid_question_count(self, client, make_ready_document):
        document = make_ready_document()

        response = client.post(
            "/quiz/generate",
            json={"documentSlug": document.slug, "numQuestions": 500},
            headers=auth_headers(uuid.uuid4()),
        )
        assert response.status_code == 400

    def test_super_admin_sees_full_bank(self, client, db, make_ready_document):
        admin = uuid.uuid4()
        db.add(UserRole(user_id=admin, role=Role.SUPER_ADMIN))
        db.commit()
        document = make_ready_document(n_chunks=30)

        client.post("/quiz/generate", json={"documentSlug": document.slug, "numQuestions": 15}, headers=auth_headers(admin))
        quiz = client.get(f"/quiz/{document.slug}?all=true", headers=auth_headers(admin)).json()

        assert quiz["numQuestions"] == 15


class TestCacheRoutes:

    def test_stats_and_clear(self, client, db):
        user = uuid.uuid4()
        stats = client.get("/cache/stats", headers=auth_headers(user))
        assert stats.status_code == 200
        assert set(stats.json()) == {"enabled", "entries", "hits", "misses", "hitRate"}

        assert client.post("/cache/clear", headers=auth_headers(user)).status_code == 403

        db.add(UserRole(user_id=user, role=Role.SUPER_ADMIN))
        db.commit()
        response = client.post("/cache/clear", headers=auth_headers(user))
        assert response.status_code == 200
        assert response.json()["entries"] == 0
