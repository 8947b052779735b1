"""Plan catalog: the credit bundles accounts can subscribe to."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from models.plan import Plan
from services.errors import InvalidCreditAmountError, PlanNotFoundError, store_unavailable_on_failure

logger = logging.getLogger(__name__)

_MUTABLE_FIELDS = ("name", "description", "price_cents", "currency", "credits", "features", "active")


def serialize_plan(plan: Plan) -> Dict[str, Any]:
    return {
        "id": plan.id,
        "name": plan.name,
        "description": plan.description or "",
        "price_cents": plan.price_cents,
        "currency": plan.currency,
        "credits": plan.credits,
        "features": list(plan.features or []),
        "active": bool(plan.active),
        "is_free": plan.price_cents == 0,
        "created_at": plan.created_at.isoformat() if plan.created_at else None,
        "updated_at": plan.updated_at.isoformat() if plan.updated_at else None,
    }


def _check_amounts(fields: Dict[str, Any]) -> None:
    for key in ("price_cents", "credits"):
        value = fields.get(key)
        if value is not None and int(value) < 0:
            raise InvalidCreditAmountError(f"{key} must be a non-negative integer")


class PlanCatalog:
    def __init__(self, db: AsyncSession):
        self._db = db

    async def list(self, active_only: bool = False) -> List[Plan]:
        query = select(Plan).order_by(Plan.price_cents.asc(), Plan.name.asc())
        if active_only:
            query = query.where(Plan.active.is_(True))
        async with store_unavailable_on_failure("Plan catalog could not be read."):
            result = await self._db.execute(query)
        return list(result.scalars().all())

    async def get(self, plan_id: str) -> Plan:
        async with store_unavailable_on_failure("Plan catalog could not be read."):
            result = await self._db.execute(select(Plan).where(Plan.id == plan_id))
        plan = result.scalar_one_or_none()
        if plan is None:
            raise PlanNotFoundError(plan_id)
        return plan

    async def create(
        self,
        *,
        name: str,
        price_cents: int,
        credits: int,
        description: str = "",
        currency: str = "BRL",
        features: Optional[List[str]] = None,
        active: bool = True,
    ) -> Plan:
        _check_amounts({"price_cents": price_cents, "credits": credits})
        plan = Plan(
            name=name,
            description=description or "",
            price_cents=int(price_cents),
            currency=currency.upper(),
            credits=int(credits),
            features=list(features or []),
            active=bool(active),
        )
        self._db.add(plan)
        await self._save(plan)
        logger.info("plan_created plan=%s credits=%s price_cents=%s", plan.id, plan.credits, plan.price_cents)
        return plan

    async def update(self, plan_id: str, **fields: Any) -> Plan:
        """Apply the given non-None fields; unknown field names raise ``TypeError``."""
        unknown = set(fields) - set(_MUTABLE_FIELDS)
        if unknown:
            raise TypeError(f"Unknown plan fields: {sorted(unknown)}")
        _check_amounts(fields)

        plan = await self.get(plan_id)
        for key, value in fields.items():
            if value is None:
                continue
            if key == "currency":
                value = str(value).upper()
            setattr(plan, key, value)
        await self._save(plan)
        logger.info("plan_updated plan=%s fields=%s", plan_id, sorted(k for k, v in fields.items() if v is not None))
        return plan

    async def deactivate(self, plan_id: str) -> Plan:
        # Existing subscriptions keep pointing at the plan.
        return await self.update(plan_id, active=False)

    async def _save(self, plan: Plan) -> None:
        async with store_unavailable_on_failure("Plan change was not saved."):
            await self._db.commit()
            await self._db.refresh(plan)
