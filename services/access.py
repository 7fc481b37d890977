# ================================================================
# services/access.py
# ================================================================
import logging
from datetime import datetime, timedelta

from sqlalchemy.ext.asyncio import AsyncSession

from helpers import utcnow, as_utc
from services.ledger_store import SQLLedgerStore
from services.types import AccessStatus

logger = logging.getLogger(__name__)

# Fixed window bought by one wallet deduction
ACCESS_WINDOW = timedelta(hours=24)


def grant_expiry(created_at: datetime) -> datetime:
    return as_utc(created_at) + ACCESS_WINDOW


def is_grant_active(grant, now: datetime | None = None) -> bool:
    """A grant created at T is valid on [T, T+24h)."""
    now = as_utc(now or utcnow())
    if grant is None or grant.status != "completed":
        return False
    return as_utc(grant.created_at) <= now < as_utc(grant.expires_at)


async def check_access(
    session: AsyncSession,
    user_id: str,
    now: datetime | None = None,
) -> AccessStatus:
    """Return the user's current quiz access, based on the latest-expiring valid grant."""
    now = as_utc(now or utcnow())
    grant = await SQLLedgerStore(session).latest_active_grant(user_id, now)

    if not is_grant_active(grant, now):
        logger.debug(f"🔒 No active access grant for user_id={user_id}")
        return AccessStatus(has_access=False)

    expires_at = as_utc(grant.expires_at)
    return AccessStatus(
        has_access=True,
        grant_id=grant.id,
        expires_at=expires_at,
        seconds_remaining=int((expires_at - now).total_seconds()),
    )
