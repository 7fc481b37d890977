# ================================================================
# services/quiz_store.py
# ================================================================
"""
Quiz storage port and its SQLAlchemy adapter.

Covers quizzes, questions, attempts and answers. Like the ledger store it
only flushes; the evaluation and submission services own the commit.
"""
from abc import ABC, abstractmethod
from typing import Dict, Iterable, List, Optional, Set

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from models import Quiz, Question, QuizAttempt, Answer


class QuizStore(ABC):

    @abstractmethod
    async def get_quiz(self, quiz_id: str, lock: bool = False) -> Optional[Quiz]:
        pass

    @abstractmethod
    async def get_questions(self, quiz_id: str) -> List[Question]:
        pass

    @abstractmethod
    async def pending_attempts(self, quiz_id: str) -> List[QuizAttempt]:
        pass

    @abstractmethod
    async def list_attempts(self, quiz_id: str) -> List[QuizAttempt]:
        pass

    @abstractmethod
    async def active_quizzes(self) -> List[Quiz]:
        pass

    @abstractmethod
    async def question_counts(self, quiz_ids: Iterable[str]) -> Dict[str, int]:
        pass

    @abstractmethod
    async def attempted_quiz_ids(self, user_id: str) -> Set[str]:
        pass

    @abstractmethod
    async def add_attempt(self, attempt: QuizAttempt, answers: List[Answer]) -> QuizAttempt:
        pass


class SQLQuizStore(QuizStore):
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_quiz(self, quiz_id: str, lock: bool = False) -> Optional[Quiz]:
        stmt = select(Quiz).where(Quiz.id == quiz_id)
        if lock:
            # Serializes concurrent evaluations of the same quiz (no-op on SQLite,
            # where the database-wide writer lock already does it).
            stmt = stmt.with_for_update()
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_questions(self, quiz_id: str) -> List[Question]:
        result = await self.session.execute(
            select(Question)
            .where(Question.quiz_id == quiz_id)
            .order_by(Question.created_at, Question.id)
        )
        return list(result.scalars().all())

    async def pending_attempts(self, quiz_id: str) -> List[QuizAttempt]:
        result = await self.session.execute(
            select(QuizAttempt)
            .where(QuizAttempt.quiz_id == quiz_id, QuizAttempt.is_evaluated.is_(False))
            .options(selectinload(QuizAttempt.answers), selectinload(QuizAttempt.user))
            .order_by(QuizAttempt.created_at)
        )
        return list(result.scalars().all())

    async def list_attempts(self, quiz_id: str) -> List[QuizAttempt]:
        result = await self.session.execute(
            select(QuizAttempt)
            .where(QuizAttempt.quiz_id == quiz_id)
            .order_by(QuizAttempt.created_at)
        )
        return list(result.scalars().all())

    async def active_quizzes(self) -> List[Quiz]:
        result = await self.session.execute(
            select(Quiz).where(Quiz.status == "active").order_by(Quiz.created_at)
        )
        return list(result.scalars().all())

    async def question_counts(self, quiz_ids: Iterable[str]) -> Dict[str, int]:
        quiz_ids = list(quiz_ids)
        if not quiz_ids:
            return {}
        result = await self.session.execute(
            select(Question.quiz_id, func.count(Question.id))
            .where(Question.quiz_id.in_(quiz_ids))
            .group_by(Question.quiz_id)
        )
        return {quiz_id: count for quiz_id, count in result.all()}

    async def attempted_quiz_ids(self, user_id: str) -> Set[str]:
        result = await self.session.execute(
            select(QuizAttempt.quiz_id).where(QuizAttempt.user_id == user_id).distinct()
        )
        return set(result.scalars().all())

    async def add_attempt(self, attempt: QuizAttempt, answers: List[Answer]) -> QuizAttempt:
        self.session.add(attempt)
        await self.session.flush()  # assign attempt.id
        for answer in answers:
            answer.attempt_id = attempt.id
            self.session.add(answer)
        await self.session.flush()
        return attempt
