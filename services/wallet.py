# ================================================================
# services/wallet.py
# ================================================================
import json
import logging
from datetime import datetime
from decimal import Decimal, InvalidOperation

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

import config
from helpers import utcnow, as_utc, isoformat, to_money, money_json, mask_sensitive, CENTS
from services.access import grant_expiry
from services.ledger_store import SQLLedgerStore
from services.quiz_store import SQLQuizStore
from services.quizzes import quiz_list_cache, invalidate_user_quizzes
from services.types import (
    DeductionResult, TransactionFailed,
    INVALID_AMOUNT, MISSING_IDEMPOTENCY_TOKEN, INVALID_IDEMPOTENCY_TOKEN,
    USER_NOT_FOUND, INSUFFICIENT_BALANCE, DUPLICATE_TRANSACTION,
)
from utils.cache import TTLCache

logger = logging.getLogger(__name__)

MAX_AMOUNT = Decimal("9999999999.99")  # Numeric(12, 2)
MAX_TOKEN_LENGTH = 128


# ------------------------------------------------------
# 1. Input validation
# ------------------------------------------------------
def parse_amount(value) -> Decimal | None:
    """
    Accept a positive, finite amount with at most two decimals.
    Returns the amount as Decimal, or None if it is invalid.
    """
    if value is None or isinstance(value, bool):
        return None
    try:
        if isinstance(value, Decimal):
            amount = value
        elif isinstance(value, (int, float)):
            amount = Decimal(str(value))
        elif isinstance(value, str):
            amount = Decimal(value.strip())
        else:
            return None
        if not amount.is_finite() or amount <= 0 or amount > MAX_AMOUNT:
            return None
        if amount != amount.quantize(CENTS):
            return None
        return amount.quantize(CENTS)
    except (InvalidOperation, ValueError):
        return None


def _normalize_token(token) -> str | None:
    if token is None:
        return None
    token = str(token).strip()
    return token or None


def _default_note(quiz_id: str | None) -> str:
    if quiz_id:
        return f"Quiz access payment for quiz: {quiz_id}"
    return "24-hour quiz access payment"


# ------------------------------------------------------
# 2. Deduct wallet balance for quiz access
# ------------------------------------------------------
async def deduct_wallet(
    session: AsyncSession,
    user_id: str,
    amount,
    idempotency_token: str | None = None,
    quiz_id: str | None = None,
    note: str | None = None,
    *,
    cache: TTLCache | None = None,
    now: datetime | None = None,
) -> DeductionResult:
    """
    Deduct `amount` from the user's wallet and grant 24h quiz access.

    Balance decrement, ledger entry and access grant commit together or not
    at all. Business outcomes (insufficient balance, duplicate token, ...)
    come back as a DeductionResult; storage failures raise TransactionFailed.

    The audit log row and cache invalidation run after the commit and are
    best-effort: a failure there is reported in `warnings` but the deduction
    stands.
    """
    now = as_utc(now or utcnow())

    parsed = parse_amount(amount)
    if parsed is None:
        logger.warning(f"⚠️ Invalid deduction amount from user_id={user_id}: {amount!r}")
        return DeductionResult(success=False, error=INVALID_AMOUNT, message="Invalid amount")

    token = _normalize_token(idempotency_token)
    if token is None:
        if config.REQUIRE_IDEMPOTENCY_TOKEN:
            return DeductionResult(
                success=False,
                error=MISSING_IDEMPOTENCY_TOKEN,
                message="An idempotency token is required for wallet deductions",
            )
        token = f"quiz_access_{int(now.timestamp() * 1000)}_{user_id}"
    if len(token) > MAX_TOKEN_LENGTH:
        return DeductionResult(success=False, error=INVALID_IDEMPOTENCY_TOKEN, message="Idempotency token too long")

    store = SQLLedgerStore(session)

    try:
        user = await store.get_user(user_id)
        if not user:
            await session.rollback()
            logger.warning(f"⚠️ Deduction requested for unknown user_id={user_id}")
            return DeductionResult(
                success=False,
                error=USER_NOT_FOUND,
                message="User not found. Please try logging out and back in.",
            )

        if await store.token_exists(token):
            await session.rollback()
            logger.info(f"🔁 Duplicate deduction ignored for token={mask_sensitive(token)}")
            return DeductionResult(success=False, error=DUPLICATE_TRANSACTION, message="Duplicate transaction")

        new_balance = await store.decrement_balance(user_id, parsed)
        if new_balance is None:
            current = to_money(await store.get_balance(user_id))
            await session.rollback()
            logger.info(
                f"💸 Insufficient balance for user_id={user_id}: required={parsed}, current={current}"
            )
            return DeductionResult(
                success=False,
                error=INSUFFICIENT_BALANCE,
                message="Insufficient wallet balance",
                required_amount=parsed,
                current_balance=current,
            )

        note = note or _default_note(quiz_id)
        expires_at = grant_expiry(now)
        await store.add_ledger_entry(user_id, parsed, token, note, now)
        await store.add_access_grant(user_id, parsed, token, quiz_id, now, expires_at)
        await session.commit()

    except IntegrityError as e:
        await session.rollback()
        # A concurrent request with the same token won the unique index
        if await store.token_exists(token):
            logger.info(f"🔁 Concurrent duplicate deduction for token={mask_sensitive(token)}")
            return DeductionResult(success=False, error=DUPLICATE_TRANSACTION, message="Duplicate transaction")
        logger.exception(f"❌ Integrity error during deduction for user_id={user_id}: {e}")
        raise TransactionFailed("wallet_deduction") from e
    except SQLAlchemyError as e:
        await session.rollback()
        logger.exception(f"❌ Wallet deduction failed for user_id={user_id}: {e}")
        raise TransactionFailed("wallet_deduction") from e

    new_balance = to_money(new_balance)
    logger.info(
        f"✅ Deducted {parsed} from user_id={user_id} → balance={new_balance}, "
        f"access until {expires_at.isoformat()} (token={mask_sensitive(token)})"
    )

    # ------------------------------------------------------
    # Best-effort side effects (deduction is already committed)
    # ------------------------------------------------------
    warnings = []
    try:
        await store.log_transaction("wallet", json.dumps({
            "type": "deduction",
            "user_id": user_id,
            "amount": str(parsed),
            "transaction_id": token,
            "quiz_id": quiz_id,
            "new_balance": str(new_balance),
            "at": now.isoformat(),
        }))
    except SQLAlchemyError as e:
        await session.rollback()
        logger.warning(f"⚠️ Audit log write failed for token={mask_sensitive(token)} (deduction stands): {e}")
        warnings.append("audit_log_failed")

    try:
        invalidate_user_quizzes(cache if cache is not None else quiz_list_cache, user_id)
    except Exception as e:
        logger.warning(f"⚠️ Quiz list cache invalidation failed for user_id={user_id}: {e}")
        warnings.append("cache_invalidation_failed")

    return DeductionResult(
        success=True,
        new_balance=new_balance,
        message="Payment successful! You now have 24-hour quiz access.",
        transaction_id=token,
        access_expires_at=expires_at,
        warnings=warnings,
    )


# ------------------------------------------------------
# 3. Read helpers
# ------------------------------------------------------
async def get_wallet_balance(session: AsyncSession, user_id: str) -> Decimal:
    # Unknown users read as 0 (may not be synced from the identity provider yet)
    return to_money(await SQLLedgerStore(session).get_balance(user_id))


def transaction_to_dict(tx) -> dict:
    return {
        "id": tx.id,
        "amount": money_json(tx.amount),
        "paymentMethod": tx.payment_method,
        "transactionId": tx.transaction_id,
        "status": tx.status,
        "adminNotes": tx.admin_notes,
        "processedAt": isoformat(tx.processed_at),
        "createdAt": isoformat(tx.created_at),
    }


async def get_transaction_history(session: AsyncSession, user_id: str, limit: int = 50) -> list:
    limit = max(1, min(int(limit), 200))
    rows = await SQLLedgerStore(session).list_transactions(user_id, limit=limit)
    return [transaction_to_dict(tx) for tx in rows]


async def get_quiz_access_price(session: AsyncSession) -> Decimal:
    """Access price of the oldest active quiz, or the configured default."""
    quizzes = await SQLQuizStore(session).active_quizzes()
    if quizzes and quizzes[0].access_price is not None:
        return to_money(quizzes[0].access_price)
    return to_money(config.DEFAULT_ACCESS_PRICE)
