# ==============================================================
# handlers/admin.py — admin quiz evaluation endpoints
# ==============================================================
import logging
from fastapi import APIRouter, Depends, Request, Query
from sqlalchemy.ext.asyncio import AsyncSession

from db import get_session
from handlers.common import read_json_body, error_response
from models import User
from services.evaluation import evaluate_quiz, get_evaluation_status
from services.types import QUIZ_NOT_FOUND, INCOMPLETE_ANSWER_KEY, INVALID_ANSWER_KEY
from utils.security import require_admin

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])


# ----------------------------
# POST /admin/quiz-evaluation
# ----------------------------
@router.post("/quiz-evaluation")
async def submit_answer_key(
    request: Request,
    admin: User = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
):
    payload = await read_json_body(request)
    if payload is None:
        return error_response(400, "InvalidRequest", message="Body must be a JSON object")

    quiz_id = payload.get("quizId")
    correct_answers = payload.get("correctAnswers")
    if not isinstance(quiz_id, str) or not quiz_id or not isinstance(correct_answers, dict):
        return error_response(400, "InvalidRequest", message="quizId and correctAnswers are required")

    logger.info(f"🧮 Admin {admin.id} submitted answer key for quiz {quiz_id}")
    result = await evaluate_quiz(session, quiz_id, correct_answers)

    if result.error == QUIZ_NOT_FOUND:
        return error_response(404, QUIZ_NOT_FOUND, message="Quiz not found")
    if result.error == INCOMPLETE_ANSWER_KEY:
        return error_response(
            400, INCOMPLETE_ANSWER_KEY,
            message="Missing correct answers for some questions",
            missingQuestions=result.missing_questions,
        )
    if result.error == INVALID_ANSWER_KEY:
        return error_response(
            400, INVALID_ANSWER_KEY,
            message="Correct answers must be valid option indexes",
            invalidQuestions=result.invalid_questions,
        )

    return {
        "message": "Quiz evaluated successfully",
        "evaluatedAttempts": result.evaluated_count,
        "results": [r.to_dict() for r in result.results],
        "warnings": result.warnings,
    }


# ----------------------------
# GET /admin/quiz-evaluation?quizId=
# ----------------------------
@router.get("/quiz-evaluation")
async def evaluation_status(
    quiz_id: str | None = Query(None, alias="quizId"),
    admin: User = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
):
    if not quiz_id:
        return error_response(400, "InvalidRequest", message="Quiz ID is required")

    status = await get_evaluation_status(session, quiz_id)
    if status is None:
        return error_response(404, QUIZ_NOT_FOUND, message="Quiz not found")
    return status
