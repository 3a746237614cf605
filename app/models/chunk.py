"""Chunk model."""
import uuid
from datetime import datetime
from sqlalchemy import Column, String, DateTime, Text, Integer, ForeignKey, JSON, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship
from app.db.base import Base


class Chunk(Base):
    """A bounded span of a document's extracted text plus its embedding."""

    __tablename__ = "chunks"
    __table_args__ = (
        UniqueConstraint("document_slug", "chunk_index", name="uq_chunks_document_slug_index"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    document_id = Column(UUID(as_uuid=True), ForeignKey("documents.id", ondelete="CASCADE"), index=True)
    document_slug = Column(String(120), nullable=False, index=True)
    chunk_index = Column(Integer, nullable=False)
    text = Column(Text, nullable=False)
    page_number = Column(Integer)
    char_start = Column(Integer)
    char_end = Column(Integer)
    token_estimate = Column(Integer)
    embedding = Column(JSON, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    # Relationships
    document = relationship("Document", back_populates="chunks")
