import os

# Required settings must exist before the app modules are imported
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("SESSION_SECRET", "test-session-secret")

import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import httpx
import pytest

from db import build_engine, build_sessionmaker, get_session, init_db
from models import User, Quiz, Question, QuizAttempt, Answer, AccessGrant
from services.quizzes import quiz_list_cache
from utils.cache import TTLCache

T0 = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
async def engine(tmp_path):
    eng = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'think2win.db'}")
    await init_db(eng)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine):
    return build_sessionmaker(engine)


@pytest.fixture
async def session(session_factory):
    """Session handed to the service under test."""
    async with session_factory() as s:
        yield s


@pytest.fixture
def cache():
    return TTLCache(300)


# ----------------------------------------------------------------
# Seeding helpers: each uses its own session and returns plain ids
# ----------------------------------------------------------------
@pytest.fixture
def make_user(session_factory):
    async def _make(balance="10.00", is_admin=False) -> str:
        async with session_factory() as s:
            user = User(
                email=f"{uuid.uuid4().hex}@example.com",
                name="Test Player",
                wallet_balance=Decimal(balance),
                is_admin=is_admin,
            )
            s.add(user)
            await s.commit()
            return user.id
    return _make


@pytest.fixture
def make_quiz(session_factory):
    async def _make(n_questions=2, status="active", access_price="2.00") -> tuple:
        async with session_factory() as s:
            quiz = Quiz(title="Cricket Night", status=status, access_price=Decimal(access_price), created_at=T0)
            s.add(quiz)
            await s.flush()
            questions = [
                Question(
                    quiz_id=quiz.id,
                    text=f"Question {i + 1}",
                    options=["A", "B", "C", "D"],
                    created_at=T0 + timedelta(seconds=i),
                )
                for i in range(n_questions)
            ]
            s.add_all(questions)
            await s.commit()
            return quiz.id, [q.id for q in questions]
    return _make


@pytest.fixture
def make_attempt(session_factory):
    async def _make(user_id, quiz_id, selections: dict, is_evaluated=False, score=0) -> str:
        async with session_factory() as s:
            attempt = QuizAttempt(
                user_id=user_id,
                quiz_id=quiz_id,
                score=score,
                is_completed=True,
                is_evaluated=is_evaluated,
                completed_at=T0,
            )
            s.add(attempt)
            await s.flush()
            s.add_all([
                Answer(attempt_id=attempt.id, question_id=qid, selected_option=option)
                for qid, option in selections.items()
            ])
            await s.commit()
            return attempt.id
    return _make


@pytest.fixture
def make_grant(session_factory):
    async def _make(user_id, created_at=T0, hours=24) -> str:
        async with session_factory() as s:
            grant = AccessGrant(
                user_id=user_id,
                amount=Decimal("2.00"),
                transaction_id=f"grant-{uuid.uuid4().hex}",
                created_at=created_at,
                expires_at=created_at + timedelta(hours=hours),
            )
            s.add(grant)
            await s.commit()
            return grant.id
    return _make


@pytest.fixture
def fetch(session_factory):
    """Load a fresh copy of a row, bypassing the service session's identity map."""
    async def _fetch(model, ident):
        async with session_factory() as s:
            return await s.get(model, ident)
    return _fetch


# ----------------------------------------------------------------
# HTTP client wired to the per-test database
# ----------------------------------------------------------------
@pytest.fixture
async def client(session_factory):
    from app import app

    async def _override_session():
        async with session_factory() as s:
            yield s

    app.dependency_overrides[get_session] = _override_session
    quiz_list_cache.clear()
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()
    quiz_list_cache.clear()
