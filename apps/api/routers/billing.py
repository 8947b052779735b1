"""Plans, subscriptions and payment notifications router."""

from __future__ import annotations

import hmac
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException
from pydantic import BaseModel, ConfigDict, Field

from config import settings
from routers.auth_scope import get_principal
from routers.guard import get_plan_catalog, get_subscriptions
from routers.rate_limit import rate_limit
from services.access_guard import Principal
from services.errors import (
    AccountNotFoundError,
    PlanNotFoundError,
    SubscriptionNotFoundError,
    SubscriptionStateError,
)
from services.plans import PlanCatalog, serialize_plan
from services.subscriptions import SubscriptionService, serialize_subscription

router = APIRouter()
logger = logging.getLogger(__name__)


class SubscribeRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    plan_id: str = Field(min_length=1, max_length=64)


class PaymentNotification(BaseModel):
    model_config = ConfigDict(extra="forbid")

    payment_id: str = Field(min_length=1, max_length=128)
    subscription_id: str = Field(min_length=1, max_length=64)
    status: str = Field(min_length=1, max_length=32)
    amount_cents: int = Field(default=0, ge=0)


def verify_billing_token(x_billing_token: Optional[str] = Header(default=None)) -> None:
    secret = (settings.BILLING_WEBHOOK_SECRET or "").strip()
    if not secret:
        raise HTTPException(status_code=503, detail="Billing webhook is not configured.")
    if not x_billing_token or not hmac.compare_digest(x_billing_token, secret):
        raise HTTPException(status_code=401, detail="Invalid billing token.")


@router.get("/plans")
async def list_plans(catalog: PlanCatalog = Depends(get_plan_catalog)):
    plans = await catalog.list(active_only=True)
    return {"success": True, "plans": [serialize_plan(plan) for plan in plans]}


@router.get("/subscription")
async def current_subscription(
    principal: Principal = Depends(get_principal),
    subscriptions: SubscriptionService = Depends(get_subscriptions),
):
    current = await subscriptions.current(principal.account_id)
    if current is None:
        return {"success": True, "has_subscription": False}
    subscription, plan = current
    return {
        "success": True,
        "has_subscription": True,
        "subscription": serialize_subscription(subscription),
        "plan": serialize_plan(plan),
    }


@router.post("/subscribe")
async def subscribe(
    request: SubscribeRequest,
    _rate_limit: None = Depends(rate_limit("billing_subscribe", limit=20, window_seconds=3600)),
    principal: Principal = Depends(get_principal),
    subscriptions: SubscriptionService = Depends(get_subscriptions),
):
    try:
        outcome = await subscriptions.subscribe(principal.account_id, request.plan_id)
    except PlanNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except SubscriptionStateError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc

    subscription = outcome["subscription"]
    return {
        "success": True,
        "is_free": outcome["is_free"],
        "payment_required": outcome["payment_required"],
        # Checkout reference for the payment provider; notifications echo it back.
        "external_reference": subscription.id,
        "credits_granted": outcome["credits_granted"],
        "balance_after": outcome["balance_after"],
        "subscription": serialize_subscription(subscription),
        "plan": serialize_plan(outcome["plan"]),
    }


@router.post("/subscription/cancel")
async def cancel_subscription(
    principal: Principal = Depends(get_principal),
    subscriptions: SubscriptionService = Depends(get_subscriptions),
):
    try:
        subscription = await subscriptions.cancel(principal.account_id)
    except SubscriptionNotFoundError as exc:
        raise HTTPException(status_code=404, detail="No subscription for this account.") from exc
    except SubscriptionStateError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    return {"success": True, "subscription": serialize_subscription(subscription)}


@router.post("/payments", dependencies=[Depends(verify_billing_token)])
async def payment_notification(
    notification: PaymentNotification,
    subscriptions: SubscriptionService = Depends(get_subscriptions),
):
    try:
        outcome = await subscriptions.record_payment(
            notification.subscription_id,
            notification.payment_id,
            notification.status.strip().lower(),
            notification.amount_cents,
        )
    except SubscriptionNotFoundError as exc:
        logger.warning("billing_payment_unmatched payment=%s", notification.payment_id)
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except (AccountNotFoundError, PlanNotFoundError) as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc

    return {
        "success": True,
        "processed": outcome["processed"],
        "credits_granted": outcome["credits_granted"],
        "subscription": serialize_subscription(outcome["subscription"]),
    }
