"""Quiz models."""
import uuid
from datetime import datetime
from sqlalchemy import Column, String, DateTime, Text, Integer, ForeignKey, JSON
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship
from app.db.base import Base


class QuizBankStatus:
    GENERATING = "generating"
    COMPLETED = "completed"
    FAILED = "failed"


class QuizBank(Base):
    """Question bank for a document (one per document, replaced on regeneration)."""

    __tablename__ = "quiz_banks"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    document_id = Column(UUID(as_uuid=True), ForeignKey("documents.id", ondelete="CASCADE"), nullable=False, unique=True)
    document_slug = Column(String(120), nullable=False, unique=True, index=True)
    bank_size = Column(Integer, nullable=False)
    quiz_size = Column(Integer, nullable=False, default=10)
    status = Column(String(20), nullable=False, default=QuizBankStatus.GENERATING)
    error_message = Column(Text)
    generated_at = Column(DateTime, default=datetime.utcnow)
    generated_by = Column(UUID(as_uuid=True))

    # Relationships
    document = relationship("Document", back_populates="quiz_bank")
    questions = relationship(
        "QuizQuestion",
        back_populates="bank",
        cascade="all, delete-orphan",
        order_by="QuizQuestion.question_index",
    )
    attempts = relationship("QuizAttempt", back_populates="bank", cascade="all, delete-orphan")


class QuizQuestion(Base):
    """Multiple-choice question in a bank."""

    __tablename__ = "quiz_questions"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    bank_id = Column(UUID(as_uuid=True), ForeignKey("quiz_banks.id", ondelete="CASCADE"), nullable=False, index=True)
    question_index = Column(Integer, nullable=False)
    question = Column(Text, nullable=False)
    options = Column(JSON, nullable=False)
    correct_answer_index = Column(Integer, nullable=False)

    # Relationships
    bank = relationship("QuizBank", back_populates="questions")


class QuizAttempt(Base):
    """Scored attempt; user_id is null for anonymous attempts."""

    __tablename__ = "quiz_attempts"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    bank_id = Column(UUID(as_uuid=True), ForeignKey("quiz_banks.id", ondelete="CASCADE"), nullable=False, index=True)
    document_slug = Column(String(120), nullable=False, index=True)
    user_id = Column(UUID(as_uuid=True), index=True)
    score = Column(Integer, nullable=False)
    quiz_size = Column(Integer, nullable=False)
    question_ids = Column(JSON)
    answers = Column(JSON)
    completed_at = Column(DateTime, default=datetime.utcnow)

    # Relationships
    bank = relationship("QuizBank", back_populates="attempts")
