"""Quiz bank generation, serving, attempts and statistics."""
import asyncio
import logging
import math
import random
import uuid
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from sqlalchemy.orm import Session

from app.core.config import Settings, settings as default_settings
from app.core.errors import (
    AccessDeniedError,
    AppError,
    AuthError,
    ConflictError,
    NotFoundError,
    QuizGenerationError,
    TransientProviderError,
    ValidationError,
)
from app.core.permissions import CallerPrivilege
from app.db.sessions import SessionLocal
from app.models import Chunk, Document, QuizAttempt, QuizBank, QuizBankStatus, QuizQuestion
from app.services.processing_logger import ProcessingLogger, Stage


logger = logging.getLogger(__name__)

MIN_BANK_SIZE = 10
MAX_BANK_SIZE = 100
MIN_CHUNK_SAMPLE = 10
LARGE_QUIZ_HINT_THRESHOLD = 50


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


class QuizService:
    """Service for a document's question bank and the quizzes served from it."""

    def __init__(
        self,
        db: Session,
        llm_service,
        settings: Settings = default_settings,
        processing_logger: Optional[ProcessingLogger] = None,
    ):
        self.db = db
        self.llm_service = llm_service
        self.settings = settings
        self.log = processing_logger or ProcessingLogger(SessionLocal)

    def _get_document(self, slug: str) -> Document:
        document = self.db.query(Document).filter(Document.slug == slug).first()
        if document is None:
            raise NotFoundError(f"Document not found: {slug}")
        return document

    def _get_bank(self, slug: str) -> Optional[QuizBank]:
        return self.db.query(QuizBank).filter(QuizBank.document_slug == slug).first()

    def resolve_count(self, requested_count, chunk_count: int) -> int:
        """Explicit counts must be integers in [1, 100]; otherwise derive one from the chunk count."""
        if requested_count is None:
            return max(MIN_BANK_SIZE, min(MAX_BANK_SIZE, chunk_count // 2))
        if isinstance(requested_count, bool) or not isinstance(requested_count, int):
            raise ValidationError("numQuestions must be an integer")
        if not 1 <= requested_count <= MAX_BANK_SIZE:
            raise ValidationError(
                f"numQuestions must be between 1 and {MAX_BANK_SIZE}",
                extra={"numQuestions": requested_count},
            )
        return requested_count

    def _check_generation_allowed(self, bank: Optional[QuizBank], privilege: CallerPrivilege) -> None:
        if bank is None or bank.generated_at is None:
            return
        now = datetime.utcnow()

        if bank.status == QuizBankStatus.GENERATING:
            stale_after = bank.generated_at + timedelta(seconds=self.settings.QUIZ_GENERATION_STALE_SECONDS)
            if now < stale_after:
                raise ConflictError(
                    "Quiz generation is already in progress for this document",
                    extra={"startedAt": _iso(bank.generated_at)},
                )
            logger.warning("Replacing stale quiz generation for %s", bank.document_slug)
            return

        if bank.status == QuizBankStatus.COMPLETED and not privilege.is_elevated:
            next_allowed = bank.generated_at + timedelta(days=self.settings.QUIZ_COOLDOWN_DAYS)
            if now < next_allowed:
                raise ConflictError(
                    f"Quiz was generated recently. You can regenerate after {self.settings.QUIZ_COOLDOWN_DAYS} days.",
                    extra={
                        "lastGenerated": _iso(bank.generated_at),
                        "nextAllowedDate": _iso(next_allowed),
                    },
                )

    async def generate_quiz(
        self,
        slug: str,
        requested_count: Optional[int] = None,
        caller_id: Optional[uuid.UUID] = None,
        privilege: CallerPrivilege = CallerPrivilege.NONE,
    ) -> Dict:
        """
        Generate (or regenerate) the question bank for a document.

        Returns:
            {"success", "documentSlug", "numQuestions", "generatedAt"}

        Raises:
            AuthError: Anonymous caller
            NotFoundError: Unknown document or no chunks
            ValidationError: Bad question count
            ConflictError: Cooldown active or generation already running
            QuizGenerationError: The provider failed; the bank is marked failed
        """
        if caller_id is None:
            raise AuthError("You must be logged in to generate quizzes")

        document = self._get_document(slug)
        chunks = (
            self.db.query(Chunk)
            .filter(Chunk.document_slug == slug)
            .order_by(Chunk.chunk_index)
            .all()
        )
        count = self.resolve_count(requested_count, len(chunks))

        bank = self._get_bank(slug)
        self._check_generation_allowed(bank, privilege)

        if not chunks:
            raise NotFoundError("No chunks available for quiz generation", extra={"documentSlug": slug})

        sample_size = min(len(chunks), max(count * 2, MIN_CHUNK_SAMPLE))
        sampled = [
            {"text": chunk.text, "page_number": chunk.page_number}
            for chunk in random.sample(chunks, sample_size)
        ]

        if bank is None:
            bank = QuizBank(document_id=document.id, document_slug=slug)
            self.db.add(bank)
        bank.status = QuizBankStatus.GENERATING
        bank.bank_size = count
        bank.quiz_size = self.settings.DEFAULT_QUIZ_SIZE
        bank.generated_at = datetime.utcnow()
        bank.generated_by = caller_id
        bank.error_message = None
        self.db.commit()

        self.log.started(
            slug, Stage.QUIZ, f"Generating {count} questions from {sample_size} chunks",
            numQuestions=count, chunks=sample_size,
        )

        try:
            questions = await self._generate_questions(sampled, count, document.title)
        except Exception as e:
            message = self._failure_message(e, count)
            bank.status = QuizBankStatus.FAILED
            bank.error_message = message
            self.db.commit()
            self.log.failed(slug, Stage.QUIZ, message, numQuestions=count)
            if not isinstance(e, AppError):
                logger.exception("Unexpected quiz generation failure for %s", slug)
            raise QuizGenerationError(
                message,
                extra={"retryable": isinstance(e, TransientProviderError)},
            ) from e

        self.db.query(QuizQuestion).filter(QuizQuestion.bank_id == bank.id).delete(synchronize_session=False)
        self.db.add_all([
            QuizQuestion(
                bank_id=bank.id,
                question_index=index,
                question=item["question"],
                options=item["options"],
                correct_answer_index=item["correct_answer"],
            )
            for index, item in enumerate(questions)
        ])
        bank.bank_size = len(questions)
        bank.status = QuizBankStatus.COMPLETED
        document.quizzes_generated = True
        self.db.commit()
        self.db.refresh(bank)

        self.log.completed(slug, Stage.QUIZ, f"Generated {len(questions)} questions", numQuestions=len(questions))

        return {
            "success": True,
            "documentSlug": slug,
            "numQuestions": bank.bank_size,
            "generatedAt": _iso(bank.generated_at),
        }

    async def _generate_questions(self, chunks: List[Dict], count: int, title: Optional[str]) -> List[Dict]:
        """Single call for small banks; otherwise bounded-concurrency batches over round-robin chunk groups."""
        batch_size = self.settings.QUIZ_BATCH_SIZE
        if count <= batch_size:
            questions = await self.llm_service.generate_quiz_questions(chunks, count, title)
            return questions[:count]

        num_batches = math.ceil(count / batch_size)
        groups = [chunks[i::num_batches] or chunks for i in range(num_batches)]
        sizes = [min(batch_size, count - i * batch_size) for i in range(num_batches)]
        semaphore = asyncio.Semaphore(self.settings.QUIZ_BATCH_CONCURRENCY)

        logger.info("Generating %d questions in %d batches", count, num_batches)

        async def run_batch(index: int) -> List[Dict]:
            async with semaphore:
                return await self.llm_service.generate_quiz_questions(groups[index], sizes[index], title)

        results = await asyncio.gather(*(run_batch(i) for i in range(num_batches)), return_exceptions=True)
        for result in results:
            if isinstance(result, BaseException):
                raise result

        merged = [question for batch in results for question in batch]
        return merged[:count]

    @staticmethod
    def _failure_message(exc: Exception, count: int) -> str:
        if isinstance(exc, TransientProviderError) and exc.is_timeout:
            message = "Quiz generation timed out. Please try again."
        else:
            detail = getattr(exc, "message", None) or str(exc)
            message = f"Failed to generate questions: {detail}"
        if count > LARGE_QUIZ_HINT_THRESHOLD:
            message += f" Generating {count} questions is slow; try a smaller number."
        return message

    def get_quiz_status(self, slug: str) -> Dict:
        self._get_document(slug)
        bank = self._get_bank(slug)
        if bank is None:
            return {"status": None, "numQuestions": None, "generatedAt": None}
        return {
            "status": bank.status,
            "numQuestions": bank.bank_size,
            "generatedAt": _iso(bank.generated_at),
            "errorMessage": bank.error_message,
        }

    def get_quiz(
        self,
        slug: str,
        want_all: bool = False,
        privilege: CallerPrivilege = CallerPrivilege.NONE,
    ) -> Dict:
        """
        Serve a quiz from the bank.

        Everyone receives a random sample of the configured quiz size (at
        least 10, at most the bank). The whole bank is only served to
        elevated callers who ask for it.
        """
        document = self._get_document(slug)
        bank = self._get_bank(slug)
        if bank is None or bank.status != QuizBankStatus.COMPLETED or not bank.questions:
            raise NotFoundError("No quiz available for this document", extra={"documentSlug": slug})
        if want_all and not privilege.is_elevated:
            raise AccessDeniedError("Only admins can view the full question bank")

        questions = list(bank.questions)
        quiz_size = min(max(bank.quiz_size or self.settings.DEFAULT_QUIZ_SIZE, MIN_BANK_SIZE), len(questions))
        selected = questions if want_all else random.sample(questions, quiz_size)

        return {
            "questions": [
                {
                    "id": str(q.id),
                    "question": q.question,
                    "options": q.options,
                    "correctAnswer": q.correct_answer_index,
                }
                for q in selected
            ],
            "questionIds": [str(q.id) for q in selected],
            "documentSlug": slug,
            "documentTitle": document.title,
            "numQuestions": len(selected),
            "quizSize": quiz_size,
            "bankSize": len(questions),
            "generatedAt": _iso(bank.generated_at),
        }

    def record_attempt(
        self,
        slug: str,
        score,
        question_ids: Optional[List[str]] = None,
        user_id: Optional[uuid.UUID] = None,
        answers: Optional[list] = None,
    ) -> Dict:
        bank = self._get_bank(slug)
        if bank is None:
            raise NotFoundError("No quiz exists for this document", extra={"documentSlug": slug})

        if isinstance(score, bool) or not isinstance(score, int) or score < 0:
            raise ValidationError("score must be a non-negative integer")

        question_ids = [str(qid) for qid in (question_ids or [])]
        if len(set(question_ids)) != len(question_ids):
            raise ValidationError("questionIds must not contain duplicates")
        if question_ids:
            known = {str(q.id) for q in bank.questions}
            unknown = [qid for qid in question_ids if qid not in known]
            if unknown:
                raise ValidationError(
                    "questionIds contain questions that are not in this quiz",
                    extra={"unknownQuestionIds": unknown},
                )

        quiz_size = len(question_ids) if question_ids else self.settings.DEFAULT_QUIZ_SIZE
        if score > quiz_size:
            raise ValidationError(
                f"score ({score}) cannot exceed the number of questions ({quiz_size})",
                extra={"score": score, "quizSize": quiz_size},
            )

        attempt = QuizAttempt(
            bank_id=bank.id,
            document_slug=slug,
            user_id=user_id,
            score=score,
            quiz_size=quiz_size,
            question_ids=question_ids or None,
            answers=answers,
        )
        self.db.add(attempt)
        self.db.commit()
        self.db.refresh(attempt)

        return {
            "attemptId": str(attempt.id),
            "score": attempt.score,
            "totalQuestions": attempt.quiz_size,
            "completedAt": _iso(attempt.completed_at),
        }

    def get_statistics(self, slug: str, caller_id: Optional[uuid.UUID]) -> Dict:
        if caller_id is None:
            raise AuthError("You must be logged in to view quiz statistics")

        bank = self._get_bank(slug)
        if bank is None:
            raise NotFoundError("No quiz exists for this document", extra={"documentSlug": slug})

        attempts = (
            self.db.query(QuizAttempt)
            .filter(QuizAttempt.bank_id == bank.id)
            .order_by(QuizAttempt.completed_at)
            .all()
        )
        scores = [a.score for a in attempts]
        percentages = [a.score / a.quiz_size * 100 for a in attempts if a.quiz_size]

        return {
            "documentSlug": slug,
            "numQuestions": bank.bank_size,
            "generatedAt": _iso(bank.generated_at),
            "configuredQuizSize": bank.quiz_size,
            "totalAttempts": len(attempts),
            "uniqueUsers": len({a.user_id for a in attempts if a.user_id is not None}),
            "anonymousAttempts": sum(1 for a in attempts if a.user_id is None),
            "averageScore": round(sum(scores) / len(scores), 2) if scores else 0,
            "averagePercentage": round(sum(percentages) / len(percentages), 2) if percentages else 0,
            "highestScore": max(scores) if scores else 0,
            "lowestScore": min(scores) if scores else 0,
            "lastAttemptAt": _iso(attempts[-1].completed_at) if attempts else None,
        }
