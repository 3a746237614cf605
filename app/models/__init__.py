"""Database models."""
from app.models.document import Document, DocumentStatus, ProcessingMode
from app.models.chunk import Chunk
from app.models.processing_log import ProcessingLog
from app.models.training_history import TrainingHistory, TrainingAction, TrainingStatus
from app.models.quiz import QuizBank, QuizBankStatus, QuizQuestion, QuizAttempt
from app.models.user_role import UserRole, Role

__all__ = [
    "Document",
    "DocumentStatus",
    "ProcessingMode",
    "Chunk",
    "ProcessingLog",
    "TrainingHistory",
    "TrainingAction",
    "TrainingStatus",
    "QuizBank",
    "QuizBankStatus",
    "QuizQuestion",
    "QuizAttempt",
    "UserRole",
    "Role",
]
