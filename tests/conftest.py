"""
Shared fixtures.

The environment is pinned before anything under ``app`` is imported so the
engine binds to an in-memory SQLite database and vectors stay small.
"""
import hashlib
import os
import tempfile
import uuid
from datetime import datetime

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["EMBEDDING_DIMENSIONS"] = "8"
os.environ["OPENAI_API_KEY"] = "test-key"
os.environ["USE_REMOTE_PROCESSING"] = "false"
os.environ["UPLOAD_DIR"] = tempfile.mkdtemp(prefix="docquiz-uploads-")

import pytest

from app.core.config import settings as app_settings
from app.core.errors import TransientProviderError
from app.db.base import Base
from app.db.sessions import SessionLocal, engine
from app.models import Chunk, Document, DocumentStatus
from app.services.document_processor import DocumentProcessor
from app.services.embedder import Embedder
from app.services.embedding_cache import EmbeddingCache
from app.services.executors import LocalExecutor
from app.services.file_store import LocalFileStore
from app.services.processing_logger import ProcessingLogger
from app.services.processing_orchestrator import ProcessingOrchestrator

DIMENSIONS = 8


class FakeLLM:
    """In-process stand-in for the OpenAI service."""

    embedding_model = "fake-embedding"

    def __init__(self, fail_embeddings=False, quiz_error=None, dimensions=DIMENSIONS, abstract_error=None):
        self.fail_embeddings = fail_embeddings
        self.quiz_error = quiz_error
        self.abstract_error = abstract_error
        self.dimensions = dimensions
        self.embed_calls = []
        self.quiz_calls = []
        self.abstract_calls = []

    async def generate_abstract(self, texts, document_title=None):
        self.abstract_calls.append({"chunks": len(texts), "title": document_title})
        if self.abstract_error is not None:
            raise self.abstract_error
        return f"An overview of {document_title}."

    async def embed_many(self, texts):
        self.embed_calls.append(list(texts))
        if self.fail_embeddings:
            raise TransientProviderError("embedding service unavailable")
        return [self.vector_for(text) for text in texts]

    def vector_for(self, text):
        digest = hashlib.sha256(text.encode("utf-8")).digest()
        return [byte / 255 for byte in digest[:self.dimensions]]

    async def generate_quiz_questions(self, chunks_content, num_questions, document_title=None):
        call_number = len(self.quiz_calls) + 1
        self.quiz_calls.append({"chunks": len(chunks_content), "num_questions": num_questions})
        if self.quiz_error is not None:
            raise self.quiz_error
        return [
            {
                "question": f"Batch {call_number} question {i}?",
                "options": ["alpha", "beta", "gamma", "delta"],
                "correct_answer": i % 4,
            }
            for i in range(num_questions)
        ]


def text_for_chunks(n_chunks: int) -> str:
    """Plain text that the default chunker splits into exactly ``n_chunks`` windows."""
    window = app_settings.CHUNK_SIZE_TOKENS * app_settings.CHARS_PER_TOKEN
    step = window - app_settings.CHUNK_OVERLAP_TOKENS * app_settings.CHARS_PER_TOKEN
    length = step * (n_chunks - 1) + window // 2 + 200
    parts = []
    i = 0
    while sum(len(p) for p in parts) < length:
        parts.append(f"Sentence {i} explains concept number {i} in detail. ")
        i += 1
    return "".join(parts)[:length]


@pytest.fixture(autouse=True)
def schema():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db(schema):
    session = SessionLocal()
    yield session
    session.close()


@pytest.fixture
def file_store(tmp_path):
    return LocalFileStore(root=str(tmp_path / "store"), secret_key="test-secret")


@pytest.fixture
def fake_llm():
    return FakeLLM()


@pytest.fixture
def make_document(db, file_store):
    def factory(
        text=None,
        data=None,
        filename="notes.txt",
        owner_id=None,
        status=DocumentStatus.UPLOADED,
        updated_at=None,
        title="Notes",
    ):
        owner_id = owner_id or uuid.uuid4()
        data = data if data is not None else (text or text_for_chunks(3)).encode("utf-8")
        slug = f"user-notes-{uuid.uuid4().hex[:12]}"
        source_ref = f"{owner_id}/{slug}/{filename}"

        path = file_store.local_path(source_ref)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)

        document = Document(
            slug=slug,
            title=title,
            owner_id=owner_id,
            status=status,
            source_file_ref=source_ref,
            original_filename=filename,
            file_size_bytes=len(data),
            updated_at=updated_at or datetime.utcnow(),
        )
        db.add(document)
        db.commit()
        db.refresh(document)
        return document

    return factory


@pytest.fixture
def make_ready_document(db):
    def factory(n_chunks=12, owner_id=None, title="Biology Notes"):
        document = Document(
            slug=f"user-biology-{uuid.uuid4().hex[:12]}",
            title=title,
            owner_id=owner_id or uuid.uuid4(),
            status=DocumentStatus.READY,
            source_file_ref="unused/biology.txt",
            original_filename="biology.txt",
            file_size_bytes=1000,
            chunk_count=n_chunks,
            page_count=1,
        )
        db.add(document)
        db.flush()
        db.add_all([
            Chunk(
                document_id=document.id,
                document_slug=document.slug,
                chunk_index=i,
                text=f"Chunk {i} covers cell structure topic {i}.",
                page_number=1,
                embedding=[0.0] * DIMENSIONS,
            )
            for i in range(n_chunks)
        ])
        db.commit()
        db.refresh(document)
        return document

    return factory


@pytest.fixture
def make_orchestrator(file_store, fake_llm):
    def factory(settings=None, remote_executor=None, local_executor_factory=None, llm=None):
        llm = llm or fake_llm

        def build_local():
            processor = DocumentProcessor(
                session_factory=SessionLocal,
                file_store=file_store,
                embedder=Embedder(llm, EmbeddingCache()),
                processing_logger=ProcessingLogger(SessionLocal),
            )
            return LocalExecutor(processor)

        return ProcessingOrchestrator(
            session_factory=SessionLocal,
            file_store=file_store,
            remote_executor=remote_executor,
            local_executor_factory=local_executor_factory or build_local,
            settings=settings or app_settings,
        )

    return factory
