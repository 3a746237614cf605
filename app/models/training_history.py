"""Training history model."""
from datetime import datetime
from sqlalchemy import Column, Integer, BigInteger, String, DateTime, Text, JSON
from sqlalchemy.dialects.postgresql import UUID
from app.db.base import Base


class TrainingAction:
    TRAIN = "train"
    RETRAIN = "retrain"


class TrainingStatus:
    STARTED = "started"
    COMPLETED = "completed"
    FAILED = "failed"


class TrainingHistory(Base):
    """Audit row for one train/retrain run of a document."""

    __tablename__ = "document_training_history"

    id = Column(Integer, primary_key=True, autoincrement=True)
    document_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    document_slug = Column(String(120), nullable=False, index=True)
    user_id = Column(UUID(as_uuid=True))
    action_type = Column(String(20), nullable=False)
    status = Column(String(20), nullable=False)
    processing_method = Column(String(20))
    file_name = Column(String(255))
    file_size = Column(BigInteger)
    chunk_count = Column(Integer)
    processing_time_ms = Column(Integer)
    error_message = Column(Text)
    details = Column(JSON, default=dict)
    created_at = Column(DateTime, default=datetime.utcnow)
