# ==================================================
# handlers/__init__.py
# ==================================================
"""
HTTP Handlers Package (FastAPI routers).

- wallet.py:  wallet deduction, balance, history and access status
- quizzes.py: quiz listing (cached, ETag) and attempt submission
- admin.py:   answer key publication and evaluation status
- common.py:  JSON body parsing and error responses
"""
