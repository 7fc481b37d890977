# ========================================================
# services/__init__.py
# ========================================================
"""
Business Logic Services.

Contains reusable service modules decoupled from handlers:

- wallet.py:       atomic wallet deduction + 24h access grant
- access.py:       access window checks
- evaluation.py:   answer key publication and batch scoring
- quizzes.py:      quiz listing cache and attempt submission
- ledger_store.py / quiz_store.py: storage ports and SQLAlchemy adapters
- types.py:        result dataclasses and error codes
"""
