# ==============================================================
# handlers/wallet.py — wallet deduction + access endpoints
# ==============================================================
import logging
from fastapi import APIRouter, Depends, Request, Query
from sqlalchemy.ext.asyncio import AsyncSession

from db import get_session
from handlers.common import read_json_body, error_response
from helpers import isoformat, money_json
from models import User
from services.access import check_access
from services.types import (
    INVALID_AMOUNT, MISSING_IDEMPOTENCY_TOKEN, INVALID_IDEMPOTENCY_TOKEN,
    USER_NOT_FOUND, INSUFFICIENT_BALANCE, DUPLICATE_TRANSACTION,
)
from services.wallet import (
    deduct_wallet,
    get_wallet_balance,
    get_transaction_history,
    get_quiz_access_price,
)
from utils.security import get_current_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/wallet", tags=["wallet"])

DEDUCTION_ERROR_STATUS = {
    INVALID_AMOUNT: 400,
    MISSING_IDEMPOTENCY_TOKEN: 400,
    INVALID_IDEMPOTENCY_TOKEN: 400,
    INSUFFICIENT_BALANCE: 402,
    USER_NOT_FOUND: 404,
    DUPLICATE_TRANSACTION: 409,
}


# ------------------------------------------------------
# POST /wallet/deduct
# ------------------------------------------------------
@router.post("/deduct")
async def deduct(
    request: Request,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    payload = await read_json_body(request)
    if payload is None:
        return error_response(400, "InvalidRequest", message="Body must be a JSON object")

    quiz_id = payload.get("quizId")
    token = payload.get("idempotencyToken")
    note = payload.get("note")
    if any(v is not None and not isinstance(v, str) for v in (quiz_id, token, note)):
        return error_response(400, "InvalidRequest", message="quizId, idempotencyToken and note must be strings")

    result = await deduct_wallet(
        session,
        user.id,
        payload.get("amount"),
        idempotency_token=token,
        quiz_id=quiz_id,
        note=note,
    )

    if not result.success:
        status = DEDUCTION_ERROR_STATUS.get(result.error, 400)
        extra = {}
        if result.error == INSUFFICIENT_BALANCE:
            extra = {
                "requiredAmount": money_json(result.required_amount),
                "currentBalance": money_json(result.current_balance),
            }
        return error_response(status, result.error, message=result.message, **extra)

    return {
        "newBalance": money_json(result.new_balance),
        "message": result.message,
        "transactionId": result.transaction_id,
        "accessExpiresAt": isoformat(result.access_expires_at),
        "warnings": result.warnings,
    }


# ------------------------------------------------------
# Read-only wallet views
# ------------------------------------------------------
@router.get("/balance")
async def balance(user: User = Depends(get_current_user), session: AsyncSession = Depends(get_session)):
    return {"balance": money_json(await get_wallet_balance(session, user.id))}


@router.get("/transactions")
async def transactions(
    limit: int = Query(50, ge=1, le=200),
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    return {"transactions": await get_transaction_history(session, user.id, limit=limit)}


@router.get("/access")
async def access(user: User = Depends(get_current_user), session: AsyncSession = Depends(get_session)):
    status = await check_access(session, user.id)
    return {
        "hasAccess": status.has_access,
        "grantId": status.grant_id,
        "expiresAt": isoformat(status.expires_at),
        "secondsRemaining": status.seconds_remaining,
    }


@router.get("/access-price")
async def access_price(session: AsyncSession = Depends(get_session)):
    return {"price": money_json(await get_quiz_access_price(session))}
