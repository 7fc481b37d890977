# ==================================================================
# services/quizzes.py (quiz listing cache + attempt submission)
# ==================================================================
import logging
from datetime import datetime

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from config import QUIZ_LIST_CACHE_TTL, QUIZ_LIST_CACHE_MAXSIZE
from helpers import utcnow, as_utc, isoformat, money_json
from models import QuizAttempt, Answer
from services.access import check_access
from services.quiz_store import SQLQuizStore
from services.types import (
    SubmissionResult, TransactionFailed,
    PAYMENT_REQUIRED, QUIZ_NOT_FOUND, INVALID_SUBMISSION,
)
from utils.cache import TTLCache

logger = logging.getLogger(__name__)

# Per-user quiz listings, keyed by user + access state
quiz_list_cache = TTLCache(QUIZ_LIST_CACHE_TTL, maxsize=QUIZ_LIST_CACHE_MAXSIZE)


def quiz_list_key(user_id: str, has_access: bool) -> str:
    return f"quizzes:{user_id}:{'access' if has_access else 'noaccess'}"


def invalidate_user_quizzes(cache: TTLCache, user_id: str) -> int:
    """Drop every cached listing for this user, whatever the access state."""
    return cache.invalidate_prefix(f"quizzes:{user_id}:")


# ===============================================================
# Quiz listing
# ===============================================================
async def list_quizzes(
    session: AsyncSession,
    user_id: str,
    *,
    cache: TTLCache | None = None,
    now: datetime | None = None,
) -> dict:
    cache = cache if cache is not None else quiz_list_cache
    access = await check_access(session, user_id, now=now)
    key = quiz_list_key(user_id, access.has_access)

    cached = cache.get(key)
    if cached is not None:
        logger.debug(f"⚡ Quiz list cache hit for {key}")
        return cached

    store = SQLQuizStore(session)
    quizzes = await store.active_quizzes()
    counts = await store.question_counts(q.id for q in quizzes)
    attempted = await store.attempted_quiz_ids(user_id)

    data = {
        "hasAccess": access.has_access,
        "accessExpiresAt": isoformat(access.expires_at),
        "quizzes": [
            {
                "id": quiz.id,
                "title": quiz.title,
                "description": quiz.description,
                "accessPrice": money_json(quiz.access_price),
                "questionCount": counts.get(quiz.id, 0),
                "hasAttempted": quiz.id in attempted,
            }
            for quiz in quizzes
        ],
    }
    cache.set(key, data)
    return data


# ===============================================================
# Attempt submission
# ===============================================================
def _normalize_answers(answers, question_ids: set) -> dict | None:
    """
    Map questionId -> selectedOption. Unknown questions are dropped and the
    last answer for a question wins. Returns None on malformed input.
    """
    if not isinstance(answers, list):
        return None
    selected = {}
    for item in answers:
        if not isinstance(item, dict):
            return None
        question_id = item.get("questionId")
        option = item.get("selectedOption")
        if isinstance(option, bool) or not isinstance(option, int) or option < 0:
            return None
        if question_id in question_ids:
            selected[question_id] = option
    return selected


async def submit_attempt(
    session: AsyncSession,
    user_id: str,
    quiz_id: str,
    answers,
    *,
    cache: TTLCache | None = None,
    now: datetime | None = None,
) -> SubmissionResult:
    """Record a completed, not-yet-evaluated attempt for a user holding quiz access."""
    now = as_utc(now or utcnow())
    cache = cache if cache is not None else quiz_list_cache

    access = await check_access(session, user_id, now=now)
    if not access.has_access:
        return SubmissionResult(
            success=False,
            error=PAYMENT_REQUIRED,
            message="No active payment found. Please make a payment to access quizzes.",
        )

    store = SQLQuizStore(session)
    quiz = await store.get_quiz(quiz_id)
    if not quiz or quiz.status != "active":
        return SubmissionResult(success=False, error=QUIZ_NOT_FOUND, message="Quiz not found or inactive")

    questions = await store.get_questions(quiz_id)
    selected = _normalize_answers(answers, {q.id for q in questions})
    if selected is None:
        return SubmissionResult(success=False, error=INVALID_SUBMISSION, message="Invalid submission data")

    attempt = QuizAttempt(
        user_id=user_id,
        quiz_id=quiz_id,
        access_grant_id=access.grant_id,
        score=0,
        is_completed=True,
        is_evaluated=False,
        completed_at=now,
        created_at=now,
    )
    rows = [
        Answer(question_id=qid, selected_option=option, is_correct=False, created_at=now)
        for qid, option in selected.items()
    ]

    try:
        await store.add_attempt(attempt, rows)
        attempt_id = attempt.id
        await session.commit()
    except SQLAlchemyError as e:
        await session.rollback()
        logger.exception(f"❌ Failed to store attempt for user_id={user_id} quiz_id={quiz_id}: {e}")
        raise TransactionFailed("quiz_submission") from e

    invalidate_user_quizzes(cache, user_id)
    logger.info(
        f"📝 Attempt {attempt_id} submitted → user_id={user_id}, quiz_id={quiz_id}, "
        f"answers={len(rows)}/{len(questions)}"
    )
    return SubmissionResult(
        success=True,
        attempt_id=attempt_id,
        submitted_answers=len(rows),
        total_questions=len(questions),
        message="Your answers have been submitted and will be scored once the answer key is published.",
    )
