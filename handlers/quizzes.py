# ==============================================================
# handlers/quizzes.py — quiz listing + submission endpoints
# ==============================================================
import json
import hashlib
import logging
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, Response
from sqlalchemy.ext.asyncio import AsyncSession

from db import get_session
from handlers.common import read_json_body, error_response
from models import User
from services.quizzes import list_quizzes, submit_attempt
from services.types import PAYMENT_REQUIRED, QUIZ_NOT_FOUND
from utils.security import get_current_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/quizzes", tags=["quizzes"])

CACHE_CONTROL = "private, max-age=30"

SUBMISSION_ERROR_STATUS = {
    PAYMENT_REQUIRED: 402,
    QUIZ_NOT_FOUND: 404,
}


def compute_etag(data) -> str:
    body = json.dumps(data, sort_keys=True, separators=(",", ":"))
    return '"' + hashlib.sha1(body.encode("utf-8")).hexdigest() + '"'


# ----------------------------
# GET /quizzes
# ----------------------------
@router.get("")
async def quizzes(
    request: Request,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    data = await list_quizzes(session, user.id)
    etag = compute_etag(data)
    headers = {"ETag": etag, "Cache-Control": CACHE_CONTROL}

    if request.headers.get("if-none-match") == etag:
        return Response(status_code=304, headers=headers)
    return JSONResponse(data, headers=headers)


# ----------------------------
# POST /quizzes/{quiz_id}/submit
# ----------------------------
@router.post("/{quiz_id}/submit")
async def submit(
    quiz_id: str,
    request: Request,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    payload = await read_json_body(request)
    if payload is None or not isinstance(payload.get("answers"), list):
        return error_response(400, "InvalidRequest", message="answers must be a list")

    result = await submit_attempt(session, user.id, quiz_id, payload["answers"])
    if not result.success:
        status = SUBMISSION_ERROR_STATUS.get(result.error, 400)
        extra = {"requiresPayment": True} if result.error == PAYMENT_REQUIRED else {}
        return error_response(status, result.error, message=result.message, **extra)

    return {
        "attemptId": result.attempt_id,
        "submittedAnswers": result.submitted_answers,
        "totalQuestions": result.total_questions,
        "status": "pending_evaluation",
        "message": result.message,
    }
