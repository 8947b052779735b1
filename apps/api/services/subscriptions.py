"""Plan subscriptions and the billing-triggered credit grants they produce.

The payment provider's checkout and webhook transport stay outside this module:
``subscribe`` leaves paid plans ``pending`` and ``record_payment`` applies one
verified payment notification. Approved payments and free-plan activations grant
the plan's credits through the ledger with ``source="billing"``; the grant commits
the pending subscription changes in the same transaction.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
import logging
from typing import Any, Dict, Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from config import settings
from models.plan import Plan
from models.subscription import (
    SUBSCRIPTION_ACTIVE,
    SUBSCRIPTION_CANCELLED,
    SUBSCRIPTION_PENDING,
    Subscription,
)
from models.subscription_payment import SubscriptionPayment
from services.errors import (
    PlanNotFoundError,
    SubscriptionNotFoundError,
    SubscriptionStateError,
    store_unavailable_on_failure,
)
from services.ledger import CreditLedger
from services.plans import PlanCatalog

logger = logging.getLogger(__name__)

PAYMENT_APPROVED = "approved"
PAYMENT_FAILED_STATUSES = {"rejected", "cancelled"}
FREE_PLAN_REFERENCE = "free-plan"


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def serialize_subscription(subscription: Subscription) -> Dict[str, Any]:
    return {
        "id": subscription.id,
        "user_id": subscription.user_id,
        "plan_id": subscription.plan_id,
        "status": subscription.status,
        "payment_reference": subscription.payment_reference,
        "start_date": _iso(subscription.start_date),
        "renewal_date": _iso(subscription.renewal_date),
        "end_date": _iso(subscription.end_date),
    }


class SubscriptionService:
    def __init__(self, db: AsyncSession, plans: PlanCatalog, ledger: CreditLedger):
        self._db = db
        self._plans = plans
        self._ledger = ledger

    async def _find(self, *criteria) -> Optional[Subscription]:
        async with store_unavailable_on_failure("Subscription could not be read."):
            result = await self._db.execute(select(Subscription).where(*criteria))
        return result.scalar_one_or_none()

    async def _commit(self, subscription: Subscription) -> None:
        async with store_unavailable_on_failure(f"Subscription {subscription.id} change was not saved."):
            await self._db.commit()

    async def _reload(self, subscription: Subscription) -> Subscription:
        async with store_unavailable_on_failure("Subscription could not be read."):
            await self._db.refresh(subscription)
        return subscription

    def _activate(self, subscription: Subscription, reference: str) -> None:
        now = datetime.now(timezone.utc)
        subscription.status = SUBSCRIPTION_ACTIVE
        subscription.payment_reference = reference
        subscription.start_date = now
        subscription.renewal_date = now + timedelta(days=max(int(settings.SUBSCRIPTION_PERIOD_DAYS), 1))
        subscription.end_date = None

    async def _grant_plan_credits(self, subscription: Subscription, plan: Plan, reason: str) -> Optional[int]:
        if plan.credits <= 0:
            await self._commit(subscription)
            return None
        return await self._ledger.grant(subscription.user_id, plan.credits, reason, source="billing")

    async def current(self, account_id: str) -> Optional[Tuple[Subscription, Plan]]:
        subscription = await self._find(Subscription.user_id == account_id)
        if subscription is None:
            return None
        return subscription, await self._plans.get(subscription.plan_id)

    async def subscribe(self, account_id: str, plan_id: str) -> Dict[str, Any]:
        plan = await self._plans.get(plan_id)
        if not plan.active:
            raise PlanNotFoundError(plan_id)

        subscription = await self._find(Subscription.user_id == account_id)
        if subscription is None:
            subscription = Subscription(user_id=account_id, plan_id=plan.id, status=SUBSCRIPTION_PENDING)
            self._db.add(subscription)
        elif subscription.status == SUBSCRIPTION_ACTIVE and subscription.plan_id == plan.id:
            raise SubscriptionStateError(f"Subscription to plan {plan.id} is already active.")
        else:
            subscription.plan_id = plan.id
            subscription.status = SUBSCRIPTION_PENDING
            subscription.end_date = None

        balance = None
        is_free = plan.price_cents == 0
        if is_free:
            self._activate(subscription, FREE_PLAN_REFERENCE)
            balance = await self._grant_plan_credits(subscription, plan, f"Free plan activation: {plan.name}")
            logger.info("subscription_free_activation user=%s plan=%s credits=%s", account_id, plan.id, plan.credits)
        else:
            await self._commit(subscription)
            logger.info("subscription_pending user=%s plan=%s", account_id, plan.id)

        await self._reload(subscription)
        return {
            "subscription": subscription,
            "plan": plan,
            "is_free": is_free,
            "payment_required": not is_free,
            "credits_granted": plan.credits if is_free else 0,
            "balance_after": balance,
        }

    async def cancel(self, account_id: str) -> Subscription:
        subscription = await self._find(Subscription.user_id == account_id)
        if subscription is None:
            raise SubscriptionNotFoundError(account_id)
        if subscription.status == SUBSCRIPTION_CANCELLED:
            raise SubscriptionStateError("Subscription is already cancelled.")
        subscription.status = SUBSCRIPTION_CANCELLED
        subscription.end_date = datetime.now(timezone.utc)
        await self._commit(subscription)
        logger.info("subscription_cancelled user=%s plan=%s", account_id, subscription.plan_id)
        return await self._reload(subscription)

    async def record_payment(
        self,
        subscription_id: str,
        payment_id: str,
        status: str,
        amount_cents: int = 0,
    ) -> Dict[str, Any]:
        """Apply one payment notification; replays of a ``payment_id`` change nothing."""
        subscription = await self._find(Subscription.id == subscription_id)
        if subscription is None:
            raise SubscriptionNotFoundError(subscription_id)

        async with store_unavailable_on_failure("Payment history could not be read."):
            seen = await self._db.execute(
                select(SubscriptionPayment.id).where(SubscriptionPayment.payment_id == payment_id)
            )
        if seen.first() is not None:
            logger.info("subscription_payment_replay payment=%s subscription=%s", payment_id, subscription_id)
            return {"processed": False, "subscription": subscription, "credits_granted": 0}

        plan = await self._plans.get(subscription.plan_id)
        payment = SubscriptionPayment(
            subscription_id=subscription.id,
            payment_id=payment_id,
            status=status,
            amount_cents=max(int(amount_cents), 0),
            credits_granted=0,
        )
        self._db.add(payment)
        try:
            async with store_unavailable_on_failure("Payment could not be recorded."):
                await self._db.flush()
        except IntegrityError:
            # A concurrent delivery of the same notification won the insert.
            await self._db.rollback()
            return {"processed": False, "subscription": await self._reload(subscription), "credits_granted": 0}

        credits_granted = 0
        if status == PAYMENT_APPROVED:
            self._activate(subscription, payment_id)
            payment.credits_granted = plan.credits
            credits_granted = plan.credits
            await self._grant_plan_credits(subscription, plan, f"Plan {plan.name} credits, payment {payment_id}")
        elif status in PAYMENT_FAILED_STATUSES:
            subscription.status = SUBSCRIPTION_CANCELLED
            subscription.end_date = datetime.now(timezone.utc)
            await self._commit(subscription)
        else:
            await self._commit(subscription)

        logger.info(
            "subscription_payment payment=%s subscription=%s status=%s credits=%s",
            payment_id,
            subscription_id,
            status,
            credits_granted,
        )
        return {
            "processed": True,
            "subscription": await self._reload(subscription),
            "credits_granted": credits_granted,
        }
