"""Processing log model."""
from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, Text, JSON
from app.db.base import Base


class ProcessingLog(Base):
    """Append-only processing event for a document."""

    __tablename__ = "processing_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    document_slug = Column(String(120), nullable=False, index=True)
    stage = Column(String(20), nullable=False)
    level = Column(String(20), nullable=False)
    message = Column(Text, nullable=False)
    details = Column(JSON, default=dict)
    processing_method = Column(String(20))
    created_at = Column(DateTime, default=datetime.utcnow, index=True)
