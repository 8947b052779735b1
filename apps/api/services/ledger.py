"""Credit ledger: balances, atomic debits with usage records, grants and history."""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import func, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from models.credit_grant import CreditGrant
from models.usage_record import UsageRecord
from models.user import User
from services.errors import (
    STORE_ERRORS,
    AccountNotFoundError,
    InvalidCreditAmountError,
    StoreUnavailableError,
    store_unavailable_on_failure,
)

logger = logging.getLogger(__name__)


GRANT_SOURCES = {"admin", "billing", "refund", "system"}


@dataclass(frozen=True)
class DebitResult:
    ok: bool
    required: int
    new_balance: Optional[int] = None
    available: Optional[int] = None
    usage_record_id: Optional[str] = None


class CreditLedger:
    """Authoritative per-account balance.

    Every balance change is a single conditional UPDATE on the users row plus an
    append-only history insert, committed together. The session is owned by the
    caller (one per request); the ledger commits or rolls back its own unit of work.
    """

    def __init__(self, db: AsyncSession):
        self._db = db

    async def _query(self, statement):
        async with store_unavailable_on_failure("Credit history could not be read."):
            return await self._db.execute(statement)

    async def _read_balance(self, account_id: str) -> Optional[int]:
        result = await self._db.execute(select(User.credits).where(User.id == account_id))
        value = result.scalar_one_or_none()
        return None if value is None else int(value)

    async def get_balance(self, account_id: str) -> int:
        try:
            balance = await self._read_balance(account_id)
        except STORE_ERRORS as exc:
            raise StoreUnavailableError(f"Could not read balance for account {account_id}.") from exc
        if balance is None:
            raise AccountNotFoundError(account_id)
        return balance

    async def _apply_debit(
        self,
        account_id: str,
        amount: int,
        feature_id: str,
        description: Optional[str],
    ) -> DebitResult:
        result = await self._db.execute(
            update(User)
            .where(User.id == account_id, User.credits >= amount)
            .values(credits=User.credits - amount)
            .execution_options(synchronize_session=False)
        )
        # The write lock taken by the UPDATE is held until commit/rollback, so this read is stable.
        balance = await self._read_balance(account_id)
        if balance is None:
            raise AccountNotFoundError(account_id)
        if result.rowcount != 1:
            await self._db.rollback()
            return DebitResult(ok=False, required=amount, available=balance)

        record = UsageRecord(
            user_id=account_id,
            feature_id=feature_id,
            credits=amount,
            balance_after=balance,
            description=description,
        )
        self._db.add(record)
        await self._db.flush()
        await self._db.commit()
        return DebitResult(ok=True, required=amount, new_balance=balance, usage_record_id=record.id)

    async def try_debit(
        self,
        account_id: str,
        amount: int,
        *,
        feature_id: str,
        description: Optional[str] = None,
    ) -> DebitResult:
        """Decrement the balance by ``amount`` if it is sufficient, recording one usage entry.

        Returns ``DebitResult(ok=False, available=..., required=...)`` when the balance is
        too low; state is unchanged in that case.
        """
        debit = int(amount)
        if debit < 0:
            raise InvalidCreditAmountError("debit amount must be a non-negative integer")

        try:
            outcome = await self._apply_debit(account_id, debit, feature_id, description)
        except STORE_ERRORS as exc:
            await self._db.rollback()
            logger.warning("credit_debit_store_failure user=%s feature=%s: %s", account_id, feature_id, exc)
            raise StoreUnavailableError(f"Debit for account {account_id} was not applied.") from exc
        except Exception:
            await self._db.rollback()
            raise

        if outcome.ok:
            logger.info(
                "credit_debit user=%s feature=%s amount=%s balance_after=%s",
                account_id,
                feature_id,
                debit,
                outcome.new_balance,
            )
        else:
            logger.info(
                "credit_debit_denied user=%s feature=%s required=%s available=%s",
                account_id,
                feature_id,
                debit,
                outcome.available,
            )
        return outcome

    async def _apply_grant(self, account_id: str, amount: int, reason: str, source: str) -> int:
        result = await self._db.execute(
            update(User)
            .where(User.id == account_id)
            .values(credits=User.credits + amount)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise AccountNotFoundError(account_id)
        balance = await self._read_balance(account_id)
        self._db.add(
            CreditGrant(
                user_id=account_id,
                credits=amount,
                balance_after=balance,
                reason=reason,
                source=source,
            )
        )
        await self._db.commit()
        return int(balance)

    async def grant(self, account_id: str, amount: int, reason: str, source: str = "admin") -> int:
        """Add ``amount`` credits to the account and return the new balance."""
        credits = int(amount)
        if credits <= 0:
            raise InvalidCreditAmountError("credits must be greater than 0")
        if source not in GRANT_SOURCES:
            raise ValueError(f"Unknown grant source: {source}")

        try:
            balance = await self._apply_grant(account_id, credits, reason, source)
        except STORE_ERRORS as exc:
            await self._db.rollback()
            logger.warning("credit_grant_store_failure user=%s: %s", account_id, exc)
            raise StoreUnavailableError(f"Grant for account {account_id} was not applied.") from exc
        except Exception:
            await self._db.rollback()
            raise

        logger.info(
            "credit_grant user=%s amount=%s source=%s balance_after=%s",
            account_id,
            credits,
            source,
            balance,
        )
        return balance

    async def history(self, account_id: str, limit: int = 10, offset: int = 0) -> List[Dict[str, Any]]:
        """Merged grants and usages, newest first."""
        window = max(int(offset), 0) + max(int(limit), 0)
        if window == 0:
            return []

        usage_rows = (
            await self._query(
                select(UsageRecord)
                .where(UsageRecord.user_id == account_id)
                .order_by(UsageRecord.created_at.desc())
                .limit(window)
            )
        ).scalars().all()
        grant_rows = (
            await self._query(
                select(CreditGrant)
                .where(CreditGrant.user_id == account_id)
                .order_by(CreditGrant.created_at.desc())
                .limit(window)
            )
        ).scalars().all()

        entries: List[Dict[str, Any]] = [
            {
                "id": row.id,
                "operation": "use",
                "amount": -int(row.credits),
                "feature_id": row.feature_id,
                "description": row.description,
                "balance_after": row.balance_after,
                "created_at": row.created_at,
            }
            for row in usage_rows
        ]
        entries.extend(
            {
                "id": row.id,
                "operation": "add",
                "amount": int(row.credits),
                "source": row.source,
                "description": row.reason,
                "balance_after": row.balance_after,
                "created_at": row.created_at,
            }
            for row in grant_rows
        )
        entries.sort(key=lambda entry: (entry["created_at"] is not None, entry["created_at"]), reverse=True)
        page = entries[max(int(offset), 0):window]
        for entry in page:
            entry["created_at"] = entry["created_at"].isoformat() if entry["created_at"] else None
        return page

    async def usage_count(self, account_id: str) -> int:
        result = await self._query(
            select(func.count(UsageRecord.id)).where(UsageRecord.user_id == account_id)
        )
        return int(result.scalar() or 0)

    async def usage_stats(self, feature_names: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        """Credits consumed per feature across all accounts."""
        names = feature_names or {}
        result = await self._query(
            select(
                UsageRecord.feature_id,
                func.coalesce(func.sum(UsageRecord.credits), 0),
                func.count(UsageRecord.id),
            ).group_by(UsageRecord.feature_id)
        )
        rows = [(feature_id, int(total or 0), int(uses or 0)) for feature_id, total, uses in result.all()]
        total_usage = sum(total for _, total, _ in rows)
        rows.sort(key=lambda row: row[1], reverse=True)
        return {
            "total_usage": total_usage,
            "usage_stats": [
                {
                    "feature_id": feature_id,
                    "feature_name": names.get(feature_id, feature_id),
                    "total_usage": total,
                    "uses": uses,
                    "percentage_of_total": round(total / total_usage * 100, 2) if total_usage > 0 else 0.0,
                }
                for feature_id, total, uses in rows
            ],
        }

    async def reconcile(self, account_id: str) -> Dict[str, Any]:
        """Compare the stored balance with grants minus usage. Read-only."""
        balance = await self.get_balance(account_id)
        granted = (
            await self._query(
                select(func.coalesce(func.sum(CreditGrant.credits), 0)).where(CreditGrant.user_id == account_id)
            )
        ).scalar()
        used = (
            await self._query(
                select(func.coalesce(func.sum(UsageRecord.credits), 0)).where(UsageRecord.user_id == account_id)
            )
        ).scalar()
        expected = int(granted or 0) - int(used or 0)
        drift = balance - expected
        if drift:
            logger.warning("credit_reconcile_drift user=%s balance=%s expected=%s", account_id, balance, expected)
        return {
            "user_id": account_id,
            "balance": balance,
            "granted": int(granted or 0),
            "used": int(used or 0),
            "expected_balance": expected,
            "drift": drift,
            "consistent": drift == 0,
        }
