# ==================================================================
# services/evaluation.py (answer key publication + batch scoring)
# ==================================================================
import logging
from datetime import datetime
from decimal import Decimal

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from helpers import utcnow, as_utc, isoformat, round_half_up
from services.quiz_store import SQLQuizStore
from services.quizzes import quiz_list_cache
from services.types import (
    EvaluationResult, AttemptScore, TransactionFailed,
    QUIZ_NOT_FOUND, INCOMPLETE_ANSWER_KEY, INVALID_ANSWER_KEY,
)
from utils.cache import TTLCache

logger = logging.getLogger(__name__)


def score_percentage(correct: int, total_questions: int) -> int:
    """round(100 * correct / total), halves rounded up. A quiz with no questions scores 0."""
    if total_questions <= 0:
        return 0
    return round_half_up(Decimal(100 * correct) / Decimal(total_questions))


def _invalid_key_entries(questions, correct_answers: dict) -> list:
    invalid = []
    for question in questions:
        if question.id not in correct_answers:
            continue
        option = correct_answers[question.id]
        if isinstance(option, bool) or not isinstance(option, int):
            invalid.append(question.id)
        elif not 0 <= option < len(question.options or []):
            invalid.append(question.id)
    return invalid


# ===============================================================
# Evaluate quiz
# ===============================================================
async def evaluate_quiz(
    session: AsyncSession,
    quiz_id: str,
    correct_answers,
    *,
    cache: TTLCache | None = None,
    now: datetime | None = None,
) -> EvaluationResult:
    """
    Publish the answer key for a quiz and score every pending attempt.

    All-or-nothing: the key must cover every question of the quiz, and the
    question updates plus all attempt scores commit in one transaction.
    Attempts already evaluated are never touched again, even if the key
    differs from the one they were scored against.
    """
    now = as_utc(now or utcnow())
    store = SQLQuizStore(session)

    if not isinstance(correct_answers, dict):
        return EvaluationResult(success=False, error=INVALID_ANSWER_KEY)

    try:
        quiz = await store.get_quiz(quiz_id, lock=True)
        if not quiz:
            await session.rollback()
            return EvaluationResult(success=False, error=QUIZ_NOT_FOUND)

        questions = await store.get_questions(quiz_id)

        invalid = _invalid_key_entries(questions, correct_answers)
        if invalid:
            await session.rollback()
            logger.warning(f"⚠️ Invalid answer key entries for quiz {quiz_id}: {invalid}")
            return EvaluationResult(success=False, error=INVALID_ANSWER_KEY, invalid_questions=invalid)

        missing = [q.id for q in questions if q.id not in correct_answers]
        if missing:
            await session.rollback()
            logger.warning(f"⚠️ Answer key for quiz {quiz_id} misses {len(missing)} question(s)")
            return EvaluationResult(success=False, error=INCOMPLETE_ANSWER_KEY, missing_questions=missing)

        question_ids = {q.id for q in questions}
        foreign = [qid for qid in correct_answers if qid not in question_ids]
        if foreign:
            logger.info(f"ℹ️ Ignoring {len(foreign)} answer key entries not in quiz {quiz_id}")

        # 1) Record the answer key
        key = {q.id: correct_answers[q.id] for q in questions}
        for question in questions:
            question.correct_option = key[question.id]
            question.has_correct_answer = True

        # 2) Score pending attempts
        attempts = await store.pending_attempts(quiz_id)
        total_questions = len(questions)
        logger.info(f"[QUIZ_EVALUATION] Starting evaluation for quiz {quiz_id} with {len(attempts)} attempts")

        results = []
        for attempt in attempts:
            correct = 0
            for answer in attempt.answers:
                answer.is_correct = answer.selected_option == key.get(answer.question_id)
                if answer.is_correct:
                    correct += 1

            percentage = score_percentage(correct, total_questions)
            attempt.score = percentage
            attempt.is_evaluated = True
            attempt.evaluated_at = now

            results.append(AttemptScore(
                attempt_id=attempt.id,
                user_id=attempt.user_id,
                user_email=attempt.user.email if attempt.user else None,
                score=correct,
                total_questions=total_questions,
                percentage=percentage,
            ))
            logger.debug(
                f"[QUIZ_EVALUATION] Attempt {attempt.id} (user {attempt.user_id}) "
                f"scored {correct}/{total_questions} ({percentage}%)"
            )

        await session.commit()

    except SQLAlchemyError as e:
        await session.rollback()
        logger.exception(f"❌ Evaluation of quiz {quiz_id} failed, rolled back: {e}")
        raise TransactionFailed("quiz_evaluation") from e

    logger.info(f"[QUIZ_EVALUATION] Completed evaluation for {len(results)} attempts of quiz {quiz_id}")

    warnings = []
    try:
        (cache if cache is not None else quiz_list_cache).invalidate_prefix("quizzes:")
    except Exception as e:
        logger.warning(f"⚠️ Quiz list cache invalidation failed after evaluating {quiz_id}: {e}")
        warnings.append("cache_invalidation_failed")

    return EvaluationResult(
        success=True,
        evaluated_count=len(results),
        results=results,
        warnings=warnings,
    )


# ===============================================================
# Evaluation status (admin dashboard)
# ===============================================================
async def get_evaluation_status(session: AsyncSession, quiz_id: str) -> dict | None:
    store = SQLQuizStore(session)
    quiz = await store.get_quiz(quiz_id)
    if not quiz:
        return None

    questions = await store.get_questions(quiz_id)
    attempts = await store.list_attempts(quiz_id)

    total_attempts = len(attempts)
    evaluated_attempts = sum(1 for a in attempts if a.is_evaluated)
    pending_attempts = total_attempts - evaluated_attempts

    return {
        "quiz": {
            "id": quiz.id,
            "title": quiz.title,
            "totalQuestions": len(questions),
            "questionsWithAnswers": sum(1 for q in questions if q.has_correct_answer),
        },
        "evaluation": {
            "totalAttempts": total_attempts,
            "evaluatedAttempts": evaluated_attempts,
            "pendingAttempts": pending_attempts,
            "isFullyEvaluated": pending_attempts == 0 and all(q.has_correct_answer for q in questions),
        },
        "questions": [
            {
                "id": q.id,
                "text": q.text,
                "options": q.options,
                "correctOption": q.correct_option,
                "hasCorrectAnswer": q.has_correct_answer,
            }
            for q in questions
        ],
        "attempts": [
            {
                "id": a.id,
                "userId": a.user_id,
                "score": a.score,
                "isEvaluated": a.is_evaluated,
                "createdAt": isoformat(a.created_at),
            }
            for a in attempts
        ],
    }
