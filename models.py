#=================================================================
# models.py (wallet ledger, access grants, quizzes + evaluation)
#=================================================================
import uuid
from decimal import Decimal
from sqlalchemy import (
    Column, String, Integer, ForeignKey, Text, CheckConstraint,
    Boolean, JSON, DateTime, Numeric, UniqueConstraint, Index
)
from sqlalchemy.orm import relationship
from base import Base  # from base.py
from helpers import utcnow


def _uuid() -> str:
    return str(uuid.uuid4())


Money = Numeric(12, 2, asdecimal=True)


# ================================================================
# 1. USERS
# ================================================================
class User(Base):
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=_uuid)
    email = Column(String, unique=True, nullable=False)
    name = Column(String, nullable=True)

    wallet_balance = Column(Money, nullable=False, default=Decimal("0.00"))
    is_admin = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint("wallet_balance >= 0", name="check_wallet_balance_non_negative"),
    )

    # Relationships
    transactions = relationship("WalletTransaction", back_populates="user")
    access_grants = relationship("AccessGrant", back_populates="user")
    attempts = relationship("QuizAttempt", back_populates="user")


# ================================================================
# 2. WALLET TRANSACTIONS (ledger entries, immutable)
# ================================================================
class WalletTransaction(Base):
    __tablename__ = "wallet_transactions"

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    amount = Column(Money, nullable=False)  # negative for deductions
    payment_method = Column(String, nullable=False)
    transaction_id = Column(String(128), unique=True, nullable=False)
    status = Column(String, nullable=False, default="pending")
    admin_notes = Column(Text, nullable=True)

    processed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending','approved','rejected')",
            name="check_wallet_transaction_status"
        ),
    )

    user = relationship("User", back_populates="transactions")


# ================================================================
# 3. ACCESS GRANTS (24h quiz access bought from the wallet)
# ================================================================
class AccessGrant(Base):
    __tablename__ = "access_grants"

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)

    amount = Column(Money, nullable=False)
    status = Column(String, nullable=False, default="completed")
    payment_method = Column(String, nullable=False, default="wallet")
    transaction_id = Column(String(128), unique=True, nullable=False)
    quiz_id = Column(String(36), nullable=True)  # informational, the grant covers all quizzes

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        CheckConstraint("status IN ('completed','refunded')", name="check_access_grant_status"),
        Index("ix_access_grants_user_expires", "user_id", "expires_at"),
    )

    user = relationship("User", back_populates="access_grants")


# ================================================================
# 4. QUIZZES
# ================================================================
class Quiz(Base):
    __tablename__ = "quizzes"

    id = Column(String(36), primary_key=True, default=_uuid)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    status = Column(String, nullable=False, default="draft")
    access_price = Column(Money, nullable=False, default=Decimal("2.00"))
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint("status IN ('draft','active','inactive')", name="check_quiz_status"),
    )

    questions = relationship(
        "Question",
        back_populates="quiz",
        order_by="Question.created_at",
        cascade="all, delete-orphan",
    )
    attempts = relationship("QuizAttempt", back_populates="quiz", cascade="all, delete-orphan")


# ================================================================
# 5. QUESTIONS
# ================================================================
class Question(Base):
    __tablename__ = "questions"

    id = Column(String(36), primary_key=True, default=_uuid)
    quiz_id = Column(String(36), ForeignKey("quizzes.id", ondelete="CASCADE"), nullable=False, index=True)
    text = Column(Text, nullable=False)
    options = Column(JSON, nullable=False, default=list)

    correct_option = Column(Integer, nullable=True)
    has_correct_answer = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    quiz = relationship("Quiz", back_populates="questions")


# ================================================================
# 6. QUIZ ATTEMPTS
# ================================================================
class QuizAttempt(Base):
    __tablename__ = "quiz_attempts"

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    quiz_id = Column(String(36), ForeignKey("quizzes.id", ondelete="CASCADE"), nullable=False)
    access_grant_id = Column(String(36), ForeignKey("access_grants.id", ondelete="SET NULL"), nullable=True)

    score = Column(Integer, default=0, nullable=False)  # percentage, 0-100
    is_completed = Column(Boolean, default=False, nullable=False)
    is_evaluated = Column(Boolean, default=False, nullable=False)

    completed_at = Column(DateTime(timezone=True), nullable=True)
    evaluated_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint("score >= 0 AND score <= 100", name="check_attempt_score_range"),
        Index("ix_quiz_attempts_quiz_evaluated", "quiz_id", "is_evaluated"),
    )

    user = relationship("User", back_populates="attempts")
    quiz = relationship("Quiz", back_populates="attempts")
    answers = relationship("Answer", back_populates="attempt", cascade="all, delete-orphan")


# ================================================================
# 7. ANSWERS
# ================================================================
class Answer(Base):
    __tablename__ = "answers"

    id = Column(String(36), primary_key=True, default=_uuid)
    attempt_id = Column(String(36), ForeignKey("quiz_attempts.id", ondelete="CASCADE"), nullable=False)
    question_id = Column(String(36), ForeignKey("questions.id", ondelete="CASCADE"), nullable=False)

    selected_option = Column(Integer, nullable=False)
    is_correct = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("attempt_id", "question_id", name="uq_answer_attempt_question"),
    )

    attempt = relationship("QuizAttempt", back_populates="answers")


# ================================================================
# 8. TRANSACTION LOG (best-effort audit trail)
# ================================================================
class TransactionLog(Base):
    __tablename__ = "transaction_logs"

    id = Column(String(36), primary_key=True, default=_uuid)
    provider = Column(String, nullable=False)
    payload = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
