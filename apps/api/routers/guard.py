"""Dependencies wiring the credit services to the request session."""

from fastapi import Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from services.access_guard import AccessGuard, Decision
from services.feature_costs import FeatureCostRegistry
from services.ledger import CreditLedger
from services.plans import PlanCatalog
from services.subscriptions import SubscriptionService


def get_registry(db: AsyncSession = Depends(get_db)) -> FeatureCostRegistry:
    return FeatureCostRegistry(db)


def get_ledger(db: AsyncSession = Depends(get_db)) -> CreditLedger:
    return CreditLedger(db)


def get_access_guard(
    registry: FeatureCostRegistry = Depends(get_registry),
    ledger: CreditLedger = Depends(get_ledger),
) -> AccessGuard:
    return AccessGuard(registry, ledger)


def get_plan_catalog(db: AsyncSession = Depends(get_db)) -> PlanCatalog:
    return PlanCatalog(db)


def get_subscriptions(
    db: AsyncSession = Depends(get_db),
    plans: PlanCatalog = Depends(get_plan_catalog),
    ledger: CreditLedger = Depends(get_ledger),
) -> SubscriptionService:
    return SubscriptionService(db, plans, ledger)


def raise_for_decision(decision: Decision) -> None:
    """Translate a non-permitting decision into the matching HTTP error."""
    if decision.permitted:
        return
    if decision.status == "forbidden":
        if decision.reason == "no_session":
            raise HTTPException(status_code=401, detail="Missing or invalid session token.")
        raise HTTPException(status_code=403, detail="Access to this feature is not allowed.")
    if decision.status == "not_found":
        if decision.reason == "unknown_account":
            raise HTTPException(status_code=404, detail="Account not found.")
        raise HTTPException(status_code=404, detail=f"Feature {decision.feature_id} not found.")
    raise HTTPException(
        status_code=402,
        detail={
            "message": (
                f"Insufficient credits. Required: {decision.required}, available: {decision.available}. "
                "Top up credits to continue."
            ),
            "feature_id": decision.feature_id,
            "required": decision.required,
            "available": decision.available,
        },
    )
