# ================================================================
# services/ledger_store.py
# ================================================================
"""
Ledger storage port and its SQLAlchemy adapter.

Everything the wallet and access flows read or write goes through a
LedgerStore: user balances, ledger entries (wallet_transactions), access
grants and the audit log. The adapter never commits except for the audit
log; the calling service owns the transaction boundary.
"""
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from models import User, WalletTransaction, AccessGrant, TransactionLog

logger = logging.getLogger(__name__)


class LedgerStore(ABC):

    @abstractmethod
    async def get_user(self, user_id: str) -> Optional[User]:
        pass

    @abstractmethod
    async def get_balance(self, user_id: str) -> Optional[Decimal]:
        pass

    @abstractmethod
    async def token_exists(self, token: str) -> bool:
        pass

    @abstractmethod
    async def decrement_balance(self, user_id: str, amount: Decimal) -> Optional[Decimal]:
        """
        Atomically subtract `amount` if the balance covers it.
        Returns the new balance, or None when the balance is insufficient.
        """
        pass

    @abstractmethod
    async def add_ledger_entry(
        self, user_id: str, amount: Decimal, token: str, note: str, now: datetime
    ) -> WalletTransaction:
        pass

    @abstractmethod
    async def add_access_grant(
        self, user_id: str, amount: Decimal, token: str, quiz_id: Optional[str],
        now: datetime, expires_at: datetime
    ) -> AccessGrant:
        pass

    @abstractmethod
    async def latest_active_grant(self, user_id: str, now: datetime) -> Optional[AccessGrant]:
        pass

    @abstractmethod
    async def list_transactions(self, user_id: str, limit: int = 50) -> List[WalletTransaction]:
        pass

    @abstractmethod
    async def log_transaction(self, provider: str, payload: str) -> None:
        pass


class SQLLedgerStore(LedgerStore):
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_user(self, user_id: str) -> Optional[User]:
        result = await self.session.execute(select(User).where(User.id == user_id))
        return result.scalar_one_or_none()

    async def get_balance(self, user_id: str) -> Optional[Decimal]:
        result = await self.session.execute(
            select(User.wallet_balance).where(User.id == user_id)
        )
        return result.scalar_one_or_none()

    async def token_exists(self, token: str) -> bool:
        ledger_hit = await self.session.execute(
            select(WalletTransaction.id).where(WalletTransaction.transaction_id == token).limit(1)
        )
        if ledger_hit.first() is not None:
            return True
        grant_hit = await self.session.execute(
            select(AccessGrant.id).where(AccessGrant.transaction_id == token).limit(1)
        )
        return grant_hit.first() is not None

    async def decrement_balance(self, user_id: str, amount: Decimal) -> Optional[Decimal]:
        # Single conditional UPDATE: the floor check and the decrement happen
        # under the same row lock, so two requests cannot spend one balance.
        stmt = (
            update(User)
            .where(User.id == user_id, User.wallet_balance >= amount)
            .values(wallet_balance=User.wallet_balance - amount)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        if result.rowcount != 1:
            return None
        return await self.get_balance(user_id)

    async def add_ledger_entry(self, user_id, amount, token, note, now) -> WalletTransaction:
        entry = WalletTransaction(
            user_id=user_id,
            amount=-amount,  # Negative for deduction
            payment_method="QuizAccess",
            transaction_id=token,
            status="approved",  # Auto-approved: system-initiated deduction
            admin_notes=note,
            processed_at=now,
            created_at=now,
        )
        self.session.add(entry)
        await self.session.flush()
        return entry

    async def add_access_grant(self, user_id, amount, token, quiz_id, now, expires_at) -> AccessGrant:
        grant = AccessGrant(
            user_id=user_id,
            amount=amount,
            status="completed",
            payment_method="wallet",
            transaction_id=token,
            quiz_id=quiz_id,
            created_at=now,
            expires_at=expires_at,
        )
        self.session.add(grant)
        await self.session.flush()
        return grant

    async def latest_active_grant(self, user_id: str, now: datetime) -> Optional[AccessGrant]:
        result = await self.session.execute(
            select(AccessGrant)
            .where(
                AccessGrant.user_id == user_id,
                AccessGrant.status == "completed",
                AccessGrant.created_at <= now,
                AccessGrant.expires_at > now,
            )
            .order_by(AccessGrant.expires_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def list_transactions(self, user_id: str, limit: int = 50) -> List[WalletTransaction]:
        result = await self.session.execute(
            select(WalletTransaction)
            .where(WalletTransaction.user_id == user_id)
            .order_by(WalletTransaction.created_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def log_transaction(self, provider: str, payload: str) -> None:
        log = TransactionLog(provider=provider, payload=payload)
        self.session.add(log)
        await self.session.commit()
