import asyncio
from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import select, func
from sqlalchemy.exc import OperationalError

import config
from models import User, WalletTransaction, AccessGrant, TransactionLog
from services.ledger_store import SQLLedgerStore
from services.quizzes import quiz_list_key
from services.types import (
    TransactionFailed,
    INVALID_AMOUNT, MISSING_IDEMPOTENCY_TOKEN, INVALID_IDEMPOTENCY_TOKEN,
    USER_NOT_FOUND, INSUFFICIENT_BALANCE, DUPLICATE_TRANSACTION,
)
from services.wallet import (
    deduct_wallet, parse_amount, get_wallet_balance,
    get_transaction_history, get_quiz_access_price,
)
from utils.cache import TTLCache
from tests.conftest import T0


async def _count(session_factory, model, *where):
    async with session_factory() as s:
        return (await s.execute(select(func.count()).select_from(model).where(*where))).scalar_one()


class TestParseAmount:
    @pytest.mark.parametrize("value, expected", [
        (2, Decimal("2.00")),
        (2.5, Decimal("2.50")),
        ("0.01", Decimal("0.01")),
        (Decimal("10"), Decimal("10.00")),
    ])
    def test_accepts_positive_amounts(self, value, expected):
        assert parse_amount(value) == expected

    @pytest.mark.parametrize("value", [
        0, -1, "-2", None, True, "abc", float("nan"), float("inf"), "2.005", [2], "1e20",
    ])
    def test_rejects_invalid_amounts(self, value):
        assert parse_amount(value) is None


class TestDeductWallet:
    async def test_successful_deduction_writes_ledger_and_grant(self, session, session_factory, make_user, fetch, cache):
        user_id = await make_user(balance="10.00")

        result = await deduct_wallet(session, user_id, 2, idempotency_token="tx1", cache=cache, now=T0)

        assert result.success is True
        assert result.new_balance == Decimal("8.00")
        assert result.transaction_id == "tx1"
        assert result.access_expires_at == T0 + timedelta(hours=24)
        assert result.warnings == []

        user = await fetch(User, user_id)
        assert user.wallet_balance == Decimal("8.00")

        async with session_factory() as s:
            entry = (await s.execute(
                select(WalletTransaction).where(WalletTransaction.transaction_id == "tx1")
            )).scalar_one()
            grant = (await s.execute(
                select(AccessGrant).where(AccessGrant.transaction_id == "tx1")
            )).scalar_one()

        assert entry.amount == Decimal("-2.00")
        assert entry.status == "approved"
        assert entry.payment_method == "QuizAccess"
        assert entry.admin_notes == "24-hour quiz access payment"
        assert grant.user_id == user_id
        assert grant.amount == Decimal("2.00")
        assert grant.expires_at.replace(tzinfo=None) == (T0 + timedelta(hours=24)).replace(tzinfo=None)
        assert await _count(session_factory, TransactionLog) == 1

    async def test_note_mentions_quiz_when_given(self, session, session_factory, make_user, cache):
        user_id = await make_user()
        await deduct_wallet(session, user_id, 2, idempotency_token="tx-q", quiz_id="quiz-42", cache=cache)

        async with session_factory() as s:
            entry = (await s.execute(select(WalletTransaction))).scalar_one()
        assert entry.admin_notes == "Quiz access payment for quiz: quiz-42"

    async def test_repeated_token_is_rejected_without_mutation(self, session, session_factory, make_user, fetch, cache):
        user_id = await make_user(balance="10.00")
        first = await deduct_wallet(session, user_id, 2, idempotency_token="tx1", cache=cache)
        second = await deduct_wallet(session, user_id, 2, idempotency_token="tx1", cache=cache)

        assert first.success is True
        assert second.success is False
        assert second.error == DUPLICATE_TRANSACTION
        assert (await fetch(User, user_id)).wallet_balance == Decimal("8.00")
        assert await _count(session_factory, WalletTransaction) == 1
        assert await _count(session_factory, AccessGrant) == 1

    async def test_insufficient_balance_reports_amounts(self, session, session_factory, make_user, fetch, cache):
        user_id = await make_user(balance="1.00")

        result = await deduct_wallet(session, user_id, 2, idempotency_token="tx2", cache=cache)

        assert result.success is False
        assert result.error == INSUFFICIENT_BALANCE
        assert result.required_amount == Decimal("2.00")
        assert result.current_balance == Decimal("1.00")
        assert (await fetch(User, user_id)).wallet_balance == Decimal("1.00")
        assert await _count(session_factory, WalletTransaction) == 0
        assert await _count(session_factory, AccessGrant) == 0

    async def test_exact_balance_can_be_spent(self, session, make_user, cache):
        user_id = await make_user(balance="2.00")
        result = await deduct_wallet(session, user_id, "2.00", idempotency_token="tx-exact", cache=cache)
        assert result.success is True
        assert result.new_balance == Decimal("0.00")

    @pytest.mark.parametrize("amount", [0, -5, "abc", None])
    async def test_invalid_amount(self, session, make_user, fetch, cache, amount):
        user_id = await make_user(balance="10.00")
        result = await deduct_wallet(session, user_id, amount, idempotency_token="tx-bad", cache=cache)
        assert result.error == INVALID_AMOUNT
        assert (await fetch(User, user_id)).wallet_balance == Decimal("10.00")

    async def test_token_is_required_by_default(self, session, make_user, cache):
        user_id = await make_user()
        result = await deduct_wallet(session, user_id, 2, idempotency_token="  ", cache=cache)
        assert result.error == MISSING_IDEMPOTENCY_TOKEN

    async def test_generated_token_when_requirement_is_relaxed(self, session, make_user, cache, monkeypatch):
        monkeypatch.setattr(config, "REQUIRE_IDEMPOTENCY_TOKEN", False)
        user_id = await make_user()
        result = await deduct_wallet(session, user_id, 2, cache=cache, now=T0)
        assert result.success is True
        assert result.transaction_id == f"quiz_access_{int(T0.timestamp() * 1000)}_{user_id}"

    async def test_overlong_token_is_rejected(self, session, make_user, cache):
        user_id = await make_user()
        result = await deduct_wallet(session, user_id, 2, idempotency_token="x" * 129, cache=cache)
        assert result.error == INVALID_IDEMPOTENCY_TOKEN

    async def test_unknown_user(self, session, cache):
        result = await deduct_wallet(session, "no-such-user", 2, idempotency_token="tx-u", cache=cache)
        assert result.error == USER_NOT_FOUND

    async def test_invalidates_cached_quiz_lists(self, session, make_user, cache):
        user_id = await make_user()
        other_id = await make_user()
        cache.set(quiz_list_key(user_id, False), {"quizzes": []})
        cache.set(quiz_list_key(user_id, True), {"quizzes": []})
        cache.set(quiz_list_key(other_id, False), {"quizzes": []})

        await deduct_wallet(session, user_id, 2, idempotency_token="tx-c", cache=cache)

        assert cache.get(quiz_list_key(user_id, False)) is None
        assert cache.get(quiz_list_key(user_id, True)) is None
        assert cache.get(quiz_list_key(other_id, False)) is not None


class TestDeductionFailures:
    async def test_storage_failure_rolls_back_everything(self, session, session_factory, make_user, fetch, cache, monkeypatch):
        user_id = await make_user(balance="10.00")

        async def broken_grant(*args, **kwargs):
            raise OperationalError("INSERT INTO access_grants", {}, Exception("connection lost"))

        monkeypatch.setattr(SQLLedgerStore, "add_access_grant", broken_grant)

        with pytest.raises(TransactionFailed):
            await deduct_wallet(session, user_id, 2, idempotency_token="tx-f", cache=cache)

        assert (await fetch(User, user_id)).wallet_balance == Decimal("10.00")
        assert await _count(session_factory, WalletTransaction) == 0

    async def test_audit_log_failure_is_surfaced_not_rolled_back(self, session, make_user, fetch, cache, monkeypatch):
        user_id = await make_user(balance="10.00")

        async def broken_log(*args, **kwargs):
            raise OperationalError("INSERT INTO transaction_logs", {}, Exception("disk full"))

        monkeypatch.setattr(SQLLedgerStore, "log_transaction", broken_log)

        result = await deduct_wallet(session, user_id, 2, idempotency_token="tx-a", cache=cache)

        assert result.success is True
        assert result.warnings == ["audit_log_failed"]
        assert (await fetch(User, user_id)).wallet_balance == Decimal("8.00")

    async def test_cache_failure_is_surfaced(self, session, make_user, monkeypatch):
        user_id = await make_user()
        cache = TTLCache(60)

        def boom(prefix):
            raise RuntimeError("cache down")

        monkeypatch.setattr(cache, "invalidate_prefix", boom)
        result = await deduct_wallet(session, user_id, 2, idempotency_token="tx-k", cache=cache)

        assert result.success is True
        assert "cache_invalidation_failed" in result.warnings


async def test_concurrent_deductions_never_overspend(session_factory, make_user, fetch):
    user_id = await make_user(balance="5.00")

    async def attempt(i):
        async with session_factory() as s:
            return await deduct_wallet(s, user_id, "2.00", idempotency_token=f"race-{i}", cache=TTLCache(60))

    outcomes = await asyncio.gather(*(attempt(i) for i in range(6)), return_exceptions=True)
    succeeded = [o for o in outcomes if not isinstance(o, BaseException) and o.success]

    assert len(succeeded) == 2
    balance = (await fetch(User, user_id)).wallet_balance
    assert balance == Decimal("5.00") - Decimal("2.00") * len(succeeded)
    assert balance >= 0
    assert await _count(session_factory, WalletTransaction) == len(succeeded)


async def test_concurrent_duplicate_tokens_deduct_once(session_factory, make_user, fetch):
    user_id = await make_user(balance="10.00")

    async def attempt():
        async with session_factory() as s:
            return await deduct_wallet(s, user_id, "2.00", idempotency_token="same-token", cache=TTLCache(60))

    outcomes = await asyncio.gather(*(attempt() for _ in range(4)), return_exceptions=True)
    succeeded = [o for o in outcomes if not isinstance(o, BaseException) and o.success]

    assert len(succeeded) <= 1
    assert (await fetch(User, user_id)).wallet_balance == Decimal("10.00") - Decimal("2.00") * len(succeeded)


class TestWalletReads:
    async def test_balance_and_history(self, session, make_user, cache):
        user_id = await make_user(balance="10.00")
        await deduct_wallet(session, user_id, 2, idempotency_token="h1", cache=cache, now=T0)
        await deduct_wallet(session, user_id, 3, idempotency_token="h2", cache=cache, now=T0 + timedelta(hours=1))

        assert await get_wallet_balance(session, user_id) == Decimal("5.00")
        history = await get_transaction_history(session, user_id)
        assert [h["transactionId"] for h in history] == ["h2", "h1"]
        assert history[0]["amount"] == -3.0

    async def test_unknown_user_balance_reads_zero(self, session):
        assert await get_wallet_balance(session, "ghost") == Decimal("0.00")

    async def test_access_price_defaults_without_active_quiz(self, session, make_quiz):
        await make_quiz(status="draft", access_price="9.00")
        assert await get_quiz_access_price(session) == Decimal("2.00")

    async def test_access_price_from_active_quiz(self, session, make_quiz):
        await make_quiz(status="active", access_price="3.50")
        assert await get_quiz_access_price(session) == Decimal("3.50")
