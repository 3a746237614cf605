"""Document model."""
import uuid
from datetime import datetime
from sqlalchemy import Column, String, DateTime, Text, Integer, BigInteger, Boolean, JSON
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship
from app.db.base import Base


class DocumentStatus:
    UPLOADED = "uploaded"
    PROCESSING = "processing"
    READY = "ready"
    FAILED = "failed"


class ProcessingMode:
    INITIAL = "initial"
    RETRAIN = "retrain"


class Document(Base):
    """An uploaded source document and its processing state."""

    __tablename__ = "documents"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    slug = Column(String(120), unique=True, nullable=False, index=True)
    title = Column(String(255), nullable=False)
    owner_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    status = Column(String(20), nullable=False, default=DocumentStatus.UPLOADED)
    error_message = Column(Text)
    source_file_ref = Column(Text, nullable=False)
    original_filename = Column(String(255))
    file_size_bytes = Column(BigInteger, nullable=False, default=0)
    processing_method = Column(String(20))  # remote / local
    chunk_count = Column(Integer, default=0)
    page_count = Column(Integer)
    quizzes_generated = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    retrained_at = Column(DateTime)
    abstract = Column(Text)
    keywords = Column(JSON)  # [{"term": str, "weight": float}]

    # Relationships
    chunks = relationship("Chunk", back_populates="document", cascade="all, delete-orphan")
    quiz_bank = relationship("QuizBank", back_populates="document", uselist=False, cascade="all, delete-orphan")
