# =================================================================
# services/types.py
# ================================================================
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

# ----------------------------------------------------------------
# Error codes (returned in results, never raised)
# ----------------------------------------------------------------
INVALID_AMOUNT = "InvalidAmount"
MISSING_IDEMPOTENCY_TOKEN = "MissingIdempotencyToken"
INVALID_IDEMPOTENCY_TOKEN = "InvalidIdempotencyToken"
USER_NOT_FOUND = "UserNotFound"
INSUFFICIENT_BALANCE = "InsufficientBalance"
DUPLICATE_TRANSACTION = "DuplicateTransaction"

QUIZ_NOT_FOUND = "QuizNotFound"
INCOMPLETE_ANSWER_KEY = "IncompleteAnswerKey"
INVALID_ANSWER_KEY = "InvalidAnswerKey"

PAYMENT_REQUIRED = "PaymentRequired"
INVALID_SUBMISSION = "InvalidSubmission"


class TransactionFailed(Exception):
    """Storage-layer failure; every mutation of the operation was rolled back."""

    def __init__(self, operation: str, message: str = "Transaction failed"):
        super().__init__(f"{operation}: {message}")
        self.operation = operation


@dataclass
class DeductionResult:
    success: bool
    new_balance: Optional[Decimal] = None
    message: Optional[str] = None
    transaction_id: Optional[str] = None
    access_expires_at: Optional[datetime] = None
    error: Optional[str] = None
    required_amount: Optional[Decimal] = None
    current_balance: Optional[Decimal] = None
    warnings: List[str] = field(default_factory=list)


@dataclass
class AccessStatus:
    has_access: bool
    grant_id: Optional[str] = None
    expires_at: Optional[datetime] = None
    seconds_remaining: int = 0


@dataclass
class AttemptScore:
    attempt_id: str
    user_id: str
    score: int            # raw correct count
    total_questions: int
    percentage: int
    user_email: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "attemptId": self.attempt_id,
            "userId": self.user_id,
            "userEmail": self.user_email,
            "score": self.score,
            "totalQuestions": self.total_questions,
            "percentage": self.percentage,
        }


@dataclass
class EvaluationResult:
    success: bool
    evaluated_count: int = 0
    results: List[AttemptScore] = field(default_factory=list)
    error: Optional[str] = None
    missing_questions: List[str] = field(default_factory=list)
    invalid_questions: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


@dataclass
class SubmissionResult:
    success: bool
    attempt_id: Optional[str] = None
    submitted_answers: int = 0
    total_questions: int = 0
    error: Optional[str] = None
    message: Optional[str] = None
