# ===============================================================
# utils/security.py
# ===============================================================
import logging
import itsdangerous
from fastapi import Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from config import SESSION_SECRET, SESSION_MAX_AGE
from db import get_session
from models import User
from services.ledger_store import SQLLedgerStore

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------
# 🔐 Session tokens (issued by the identity layer, verified here)
# ---------------------------------------------------------------
serializer = itsdangerous.URLSafeTimedSerializer(SESSION_SECRET, salt="think2win-session")


def issue_session_token(user_id: str) -> str:
    return serializer.dumps({"uid": str(user_id)})


def verify_session_token(token: str, max_age: int = SESSION_MAX_AGE) -> str | None:
    """Return the user id carried by a valid token, else None."""
    if not token:
        return None
    try:
        data = serializer.loads(token, max_age=max_age)
    except itsdangerous.BadData:
        return None
    if not isinstance(data, dict) or not data.get("uid"):
        return None
    return str(data["uid"])


def _extract_token(request: Request) -> str | None:
    auth = request.headers.get("authorization") or ""
    if auth.lower().startswith("bearer "):
        return auth[7:].strip() or None
    return request.cookies.get("session")


# ---------------------------------------------------------------
# 👤 FastAPI dependencies
# ---------------------------------------------------------------
async def get_current_user(
    request: Request,
    session: AsyncSession = Depends(get_session),
) -> User:
    user_id = verify_session_token(_extract_token(request))
    if not user_id:
        raise HTTPException(status_code=401, detail="Unauthorized")

    user = await SQLLedgerStore(session).get_user(user_id)
    if not user:
        logger.warning(f"⚠️ Valid session for unknown user_id={user_id}")
        raise HTTPException(status_code=401, detail="Unauthorized")
    return user


# ---------------------------------------------------------------
# 👮 Admin check
# ---------------------------------------------------------------
def is_admin(user: User) -> bool:
    return bool(user and getattr(user, "is_admin", False))


async def require_admin(user: User = Depends(get_current_user)) -> User:
    if not is_admin(user):
        logger.warning(f"🚫 Non-admin user_id={user.id} tried an admin endpoint")
        raise HTTPException(status_code=403, detail="Forbidden")
    return user
