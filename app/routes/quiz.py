"""Quiz routes."""
import uuid
from typing import Any, List, Optional
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session
from pydantic import BaseModel, Field

from app.db.sessions import get_db
from app.core.permissions import PermissionChecker
from app.core.security import get_current_user_id, get_optional_user_id
from app.services.openai_service import OpenAIService, get_llm
from app.services.quiz_service import QuizService


router = APIRouter(prefix="/quiz", tags=["Quiz"])


# Request/Response schemas
class GenerateQuizRequest(BaseModel):
    documentSlug: str = Field(..., min_length=1)
    # Range is checked by the service so the error carries the standard body
    numQuestions: Optional[Any] = None


class GenerateQuizResponse(BaseModel):
    success: bool
    documentSlug: str
    numQuestions: int
    generatedAt: Optional[str]


class QuizStatusResponse(BaseModel):
    status: Optional[str]
    numQuestions: Optional[int]
    generatedAt: Optional[str]
    errorMessage: Optional[str] = None


class QuestionResponse(BaseModel):
    id: str
    question: str
    options: List[str]
    correctAnswer: int


class QuizResponse(BaseModel):
    questions: List[QuestionResponse]
    questionIds: List[str]
    documentSlug: str
    documentTitle: str
    numQuestions: int
    quizSize: int
    bankSize: int
    generatedAt: Optional[str]


class AttemptRequest(BaseModel):
    documentSlug: str = Field(..., min_length=1)
    score: Any
    questionIds: Optional[List[str]] = None
    answers: Optional[List[Any]] = None


class AttemptResponse(BaseModel):
    attemptId: str
    score: int
    totalQuestions: int
    completedAt: Optional[str]


class QuizStatisticsResponse(BaseModel):
    documentSlug: str
    numQuestions: int
    generatedAt: Optional[str]
    configuredQuizSize: int
    totalAttempts: int
    uniqueUsers: int
    anonymousAttempts: int
    averageScore: float
    averagePercentage: float
    highestScore: int
    lowestScore: int
    lastAttemptAt: Optional[str]


def get_quiz_service(
    db: Session = Depends(get_db),
    llm_service: OpenAIService = Depends(get_llm),
) -> QuizService:
    return QuizService(db, llm_service)


@router.post("/generate", response_model=GenerateQuizResponse, status_code=status.HTTP_201_CREATED)
async def generate_quiz(
    request: GenerateQuizRequest,
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    quiz_service: QuizService = Depends(get_quiz_service),
):
    """
    Generate the question bank for a processed document.

    Regeneration is limited to once per cooldown period unless the caller
    is a super admin or an admin of the document's owner.
    """
    privilege = PermissionChecker(db).check(user_id, request.documentSlug).privilege
    return await quiz_service.generate_quiz(request.documentSlug, request.numQuestions, user_id, privilege)


@router.post("/attempt", response_model=AttemptResponse, status_code=status.HTTP_201_CREATED)
def record_attempt(
    request: AttemptRequest,
    user_id: Optional[uuid.UUID] = Depends(get_optional_user_id),
    quiz_service: QuizService = Depends(get_quiz_service),
):
    """Record a finished attempt. Anonymous attempts are allowed."""
    return quiz_service.record_attempt(
        request.documentSlug,
        request.score,
        question_ids=request.questionIds,
        user_id=user_id,
        answers=request.answers,
    )


@router.get("/{slug}/status", response_model=QuizStatusResponse)
def get_quiz_status(
    slug: str,
    quiz_service: QuizService = Depends(get_quiz_service),
):
    return quiz_service.get_quiz_status(slug)


@router.get("/{slug}/statistics", response_model=QuizStatisticsResponse)
def get_quiz_statistics(
    slug: str,
    user_id: uuid.UUID = Depends(get_current_user_id),
    quiz_service: QuizService = Depends(get_quiz_service),
):
    return quiz_service.get_statistics(slug, user_id)


@router.get("/{slug}", response_model=QuizResponse)
def get_quiz(
    slug: str,
    all: bool = Query(False, description="Return the whole bank (admins only)"),
    user_id: Optional[uuid.UUID] = Depends(get_optional_user_id),
    db: Session = Depends(get_db),
    quiz_service: QuizService = Depends(get_quiz_service),
):
    """Serve a random quiz from the document's bank."""
    privilege = PermissionChecker(db).check(user_id, slug).privilege
    return quiz_service.get_quiz(slug, want_all=all, privilege=privilege)
